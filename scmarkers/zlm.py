"""
Zero-inflated (hurdle) model fitting for single-cell expression data.

Each feature is modelled in two parts: a logistic regression for
expressed vs not expressed (discrete component, ``D``) and a Gaussian
linear model of the expression level in the cells where it is expressed
(continuous component, ``C``). The hurdle test combines both.
"""

import logging

import numpy as np
import pandas as pd
from scipy import stats
from typing import Optional, Dict

from .core.capabilities import get_capabilities
from .utils.utils import apply_per_feature

logger = logging.getLogger(__name__)


class ZlmFit:
    """
    Zero-inflated linear model fit result.

    Holds per-feature coefficients, log-likelihoods and convergence flags
    for both components of the hurdle model.
    """

    def __init__(
        self,
        coefC: pd.DataFrame,
        coefD: pd.DataFrame,
        loglik: pd.DataFrame,
        n_coef: pd.DataFrame,
        converged: pd.DataFrame,
        design: pd.DataFrame,
        formula: str,
    ):
        self._coefC = coefC
        self._coefD = coefD
        self._loglik = loglik
        self._n_coef = n_coef
        self._converged = converged
        self._design = design
        self._formula = formula

    @property
    def coefC(self) -> pd.DataFrame:
        """Continuous component coefficients."""
        return self._coefC

    @property
    def coefD(self) -> pd.DataFrame:
        """Discrete component coefficients."""
        return self._coefD

    @property
    def loglik(self) -> pd.DataFrame:
        """Log-likelihoods, columns ``C`` and ``D``."""
        return self._loglik

    @property
    def n_coef(self) -> pd.DataFrame:
        """Number of estimable coefficients per component."""
        return self._n_coef

    @property
    def converged(self) -> pd.DataFrame:
        """Convergence flags, columns ``C`` and ``D``."""
        return self._converged

    @property
    def design(self) -> pd.DataFrame:
        return self._design

    @property
    def formula(self) -> str:
        return self._formula

    @property
    def nfeatures(self) -> int:
        return self._coefC.shape[0]

    @property
    def ncells(self) -> int:
        return self._design.shape[0]

    def __repr__(self) -> str:
        return f"ZlmFit: {self.nfeatures} features, {self.ncells} cells\nFormula: {self._formula}"


def _make_design_matrix(formula: str, data: pd.DataFrame) -> pd.DataFrame:
    """Create design matrix from formula and data."""
    import patsy

    return patsy.dmatrix(formula, data, return_type="dataframe")


def _gaussian_loglik(deviance: float, n: int) -> float:
    """Log-likelihood of a Gaussian fit at the MLE dispersion."""
    s2 = max(deviance / n, np.finfo(float).tiny)
    return -0.5 * n * (np.log(2 * np.pi * s2) + 1)


def _fit_discrete_feature(positive: np.ndarray, design: np.ndarray):
    import statsmodels.api as sm

    p = design.shape[1]
    if positive.all() or not positive.any():
        return np.zeros(p), 0.0, False

    result = sm.GLM(positive.astype(float), design, family=sm.families.Binomial()).fit()
    return np.asarray(result.params), float(result.llf), bool(result.converged)


def _fit_continuous_feature(y: np.ndarray, positive: np.ndarray, design: np.ndarray):
    import statsmodels.api as sm

    p = design.shape[1]
    X = design[positive, :]
    npos = int(positive.sum())
    rank = np.linalg.matrix_rank(X) if npos > 0 else 0
    if npos - rank <= 0:
        return np.zeros(p), 0.0, False

    result = sm.GLM(y[positive], X, family=sm.families.Gaussian()).fit()
    return np.asarray(result.params), _gaussian_loglik(result.deviance, npos), bool(result.converged)


def fit_feature(args):
    """Fit both hurdle components for a single feature (parallel-safe)."""
    y, design = args
    positive = y > 0
    coefD, loglikD, convD = _fit_discrete_feature(positive, design)
    coefC, loglikC, convC = _fit_continuous_feature(y, positive, design)
    rankC = np.linalg.matrix_rank(design[positive, :]) if convC else 0
    rankD = np.linalg.matrix_rank(design) if convD else 0
    return {
        "coefC": coefC,
        "coefD": coefD,
        "loglik": (loglikC, loglikD),
        "n_coef": (rankC, rankD),
        "converged": (convC, convD),
    }


def zlm(
    formula: str,
    exprs: pd.DataFrame,
    cdata: pd.DataFrame,
    n_jobs: int = 1,
    verbose: bool = False,
) -> ZlmFit:
    """
    Fit a hurdle model for each feature.

    Parameters
    ----------
    formula : str
        Right-hand side formula (e.g. ``'~ condition + nCount'``)
    exprs : pandas.DataFrame
        Log-scale expression values, features x cells
    cdata : pandas.DataFrame
        Cell covariates indexed by the columns of ``exprs``
    n_jobs : int
        Number of parallel jobs; 1 for serial processing
    verbose : bool
        Show progress

    Returns
    -------
    ZlmFit
        Zero-inflated model fit result
    """
    get_capabilities().require("hurdle")

    cdata = cdata.loc[exprs.columns]
    design_df = _make_design_matrix(formula, cdata)
    design = design_df.to_numpy(dtype=float)
    features = exprs.index.tolist()

    logger.info("Fitting hurdle model %s for %d features and %d cells",
                formula, len(features), design.shape[0])

    values = exprs.to_numpy(dtype=float)
    results = apply_per_feature(
        fit_feature,
        [(values[i, :], design) for i in range(values.shape[0])],
        n_jobs=n_jobs,
        verbose=verbose,
        desc="Fitting features",
    )

    columns = design_df.columns
    coefC = pd.DataFrame([r["coefC"] for r in results], index=features, columns=columns)
    coefD = pd.DataFrame([r["coefD"] for r in results], index=features, columns=columns)
    loglik = pd.DataFrame([r["loglik"] for r in results], index=features, columns=["C", "D"])
    n_coef = pd.DataFrame([r["n_coef"] for r in results], index=features, columns=["C", "D"])
    converged = pd.DataFrame([r["converged"] for r in results], index=features, columns=["C", "D"])

    return ZlmFit(
        coefC=coefC,
        coefD=coefD,
        loglik=loglik,
        n_coef=n_coef,
        converged=converged,
        design=design_df,
        formula=formula,
    )


def lr_test(full: ZlmFit, reduced: ZlmFit) -> pd.DataFrame:
    """
    Likelihood ratio test of a full hurdle fit against a nested one.

    Components that did not converge in either model contribute zero to
    the statistic and zero degrees of freedom; a test with zero degrees
    of freedom has p-value 1.

    Parameters
    ----------
    full : ZlmFit
        Fit with the tested term
    reduced : ZlmFit
        Fit without it, same features and cells

    Returns
    -------
    pandas.DataFrame
        Columns ``lambda``, ``df`` and ``Pr(>Chisq)`` for each component
        (``C``, ``D``, ``H``), as a two-level column index
    """
    testable = full.converged.to_numpy() & reduced.converged.to_numpy()

    lam = -2 * (reduced.loglik.to_numpy() - full.loglik.to_numpy())
    lam = np.where(testable, np.maximum(lam, 0), 0.0)
    df = np.where(testable, full.n_coef.to_numpy() - reduced.n_coef.to_numpy(), 0)

    lam_h = lam.sum(axis=1)
    df_h = df.sum(axis=1)

    def _pval(stat, dof):
        return np.where(dof > 0, stats.chi2.sf(stat, np.maximum(dof, 1)), 1.0)

    out: Dict[tuple, np.ndarray] = {}
    for j, component in enumerate(["C", "D"]):
        out[("lambda", component)] = lam[:, j]
        out[("df", component)] = df[:, j]
        out[("Pr(>Chisq)", component)] = _pval(lam[:, j], df[:, j])
    out[("lambda", "H")] = lam_h
    out[("df", "H")] = df_h
    out[("Pr(>Chisq)", "H")] = _pval(lam_h, df_h)

    return pd.DataFrame(out, index=full.coefC.index)


def hurdle_test(
    exprs: pd.DataFrame,
    cdata: pd.DataFrame,
    term: str,
    covariates: Optional[list] = None,
    n_jobs: int = 1,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Hurdle likelihood-ratio test of one covariate.

    Fits ``~ term + covariates`` and ``~ covariates`` and compares them
    with ``lr_test``.
    """
    covariates = list(covariates or [])
    full_formula = "~ " + " + ".join([term] + covariates)
    reduced_formula = "~ " + (" + ".join(covariates) if covariates else "1")

    full = zlm(full_formula, exprs, cdata, n_jobs=n_jobs, verbose=verbose)
    reduced = zlm(reduced_formula, exprs, cdata, n_jobs=n_jobs, verbose=verbose)
    return lr_test(full, reduced)
