"""Core types for scmarkers"""

from .methods import TestMethod, DataSlot, LATENT_VAR_METHODS
from .capabilities import Capabilities, get_capabilities
from .diagnostics import (
    Diagnostics,
    ScMarkersError,
    EmptyFeatureSetError,
    UnknownTestError,
    MissingDependencyError,
    SkippedFeatureWarning,
    LatentVarsIgnoredWarning,
    SmallGroupWarning,
)

__all__ = [
    "TestMethod",
    "DataSlot",
    "LATENT_VAR_METHODS",
    "Capabilities",
    "get_capabilities",
    "Diagnostics",
    "ScMarkersError",
    "EmptyFeatureSetError",
    "UnknownTestError",
    "MissingDependencyError",
    "SkippedFeatureWarning",
    "LatentVarsIgnoredWarning",
    "SmallGroupWarning",
]
