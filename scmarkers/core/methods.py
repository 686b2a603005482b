"""Test method and data slot enumerations

The names accepted by ``find_markers(test_use=...)`` are the enum values.
Each method also carries a few traits the orchestrator needs: whether it
is rank based (AUC output), whether it needs raw counts, whether it uses
latent covariates, and whether the prefilters must be bypassed.
"""

from enum import Enum

from .diagnostics import UnknownTestError

# in the order they are listed to users
LATENT_VAR_METHODS = ("negbinom", "poisson", "LR", "MAST")


class DataSlot(Enum):
    """Which representation of the expression values to test on."""

    DATA = "data"
    COUNTS = "counts"
    SCALE_DATA = "scale.data"

    @classmethod
    def parse(cls, slot):
        if isinstance(slot, cls):
            return slot
        for member in cls:
            if member.value == slot:
                return member
        raise ValueError(
            f"Unknown slot: {slot}. Must be one of {[m.value for m in cls]}"
        )


class TestMethod(Enum):
    """Closed set of differential tests."""

    PRESTO = "presto"
    WILCOX = "wilcox"
    BIMOD = "bimod"
    ROC = "roc"
    T = "t"
    NEGBINOM = "negbinom"
    POISSON = "poisson"
    MAST = "MAST"
    DESEQ2 = "DESeq2"
    LR = "LR"

    # keep pytest from collecting this class
    __test__ = False

    @classmethod
    def parse(cls, name):
        """Return the member named ``name`` or raise ``UnknownTestError``."""
        if isinstance(name, cls):
            return name
        for member in cls:
            if member.value == name:
                return member
        raise UnknownTestError(name)

    @property
    def is_rank_auc(self):
        return self is TestMethod.ROC

    @property
    def uses_counts(self):
        return self in (TestMethod.NEGBINOM, TestMethod.POISSON, TestMethod.DESEQ2)

    @property
    def uses_latent_vars(self):
        return self.value in LATENT_VAR_METHODS

    @property
    def skips_prefilter(self):
        return self is TestMethod.DESEQ2

