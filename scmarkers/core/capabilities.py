"""Optional library availability, queried once per process."""

import importlib.util
from dataclasses import dataclass
from functools import lru_cache

from .diagnostics import MissingDependencyError

_INSTALL_HINTS = {
    "hurdle": "Please install patsy to use the MAST hurdle test: pip install patsy",
    "size_factor": (
        "Please install pydeseq2 to use the DESeq2 test: pip install pydeseq2 "
        "- learn more at https://github.com/owkin/PyDESeq2"
    ),
}


@dataclass(frozen=True)
class Capabilities:
    hurdle: bool
    size_factor: bool

    def require(self, name):
        if not getattr(self, name):
            raise MissingDependencyError(_INSTALL_HINTS[name])


def _has_module(name):
    return importlib.util.find_spec(name) is not None


@lru_cache(maxsize=1)
def get_capabilities():
    """Return the cached ``Capabilities`` of this interpreter."""
    return Capabilities(
        hurdle=_has_module("patsy"),
        size_factor=_has_module("pydeseq2"),
    )
