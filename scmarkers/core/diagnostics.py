"""Errors and the advisory channel returned alongside marker results."""

import warnings
from dataclasses import dataclass, field
from typing import List


class ScMarkersError(Exception):
    """Base class for errors raised by scmarkers."""


class EmptyFeatureSetError(ScMarkersError, ValueError):
    """No feature survived a prefilter."""


class UnknownTestError(ScMarkersError, ValueError):
    """The requested differential test does not exist."""

    def __init__(self, method):
        self.method = method
        super().__init__(f"Unknown test: {method}")


class MissingDependencyError(ScMarkersError, ImportError):
    """An optional library needed by the selected test is not installed."""


class SkippedFeatureWarning(UserWarning):
    """A feature was left out of a GLM-family test."""


class LatentVarsIgnoredWarning(UserWarning):
    """Covariates were supplied to a test that does not use them."""


class SmallGroupWarning(UserWarning):
    """A cell group is below the minimum group size."""


@dataclass
class Diagnostic:
    category: str
    message: str


@dataclass
class Diagnostics:
    """Advisories collected during a run.

    Every entry is also emitted through ``warnings.warn`` so callers that
    never look at this object still see it.
    """

    records: List[Diagnostic] = field(default_factory=list)

    def warn(self, message, category=UserWarning):
        self.records.append(Diagnostic(category.__name__, message))
        warnings.warn(message, category, stacklevel=3)

    def extend(self, other):
        self.records.extend(other.records)

    @property
    def messages(self):
        return [r.message for r in self.records]

    def of(self, category):
        name = category if isinstance(category, str) else category.__name__
        return [r for r in self.records if r.category == name]

    def __len__(self):
        return len(self.records)
