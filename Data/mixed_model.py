"""
Mixed-effects model for landmark residual motion.
=================================================

Fits ``Distance ~ Method + Marker + Group`` with a random intercept per
Subject and derives the inference tables of the analysis:

- residual_normality: Shapiro-Wilk check on the conditional residuals
- anova_table: Wald F test for each fixed-effect term
- method_contrasts: all pairwise Method differences with multiplicity
  adjusted p-values (single-step by default, as in multcomp's glht)
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)

__all__ = [
    "build_formula",
    "fit_mixed_model",
    "fit_summary",
    "residual_normality",
    "anova_table",
    "method_contrasts",
]

RESPONSE = "Distance"
FIXED_TERMS = ["Method", "Marker", "Group"]


def build_formula(data: pd.DataFrame) -> str:
    """
    Build the fixed-effects formula for the distance summary.

    Marker and Group are dropped when only one level is observed, since a
    single-level factor has no estimable effect. Method is always kept.
    """
    terms = []
    for term in FIXED_TERMS:
        if term == "Method" or data[term].nunique() > 1:
            terms.append(term)
        else:
            logger.warning(f"Dropping {term} from the model: only one level observed")
    return f"{RESPONSE} ~ " + " + ".join(terms)


def fit_mixed_model(
    summary: pd.DataFrame,
    reml: bool = True,
    formula: Optional[str] = None
):
    """
    Fit the linear mixed model with a random intercept per Subject.

    Args:
        summary: Distance summary with Subject, Marker, Method, Group, Distance
        reml: Use restricted maximum likelihood (the lme4 default)
        formula: Optional override of the fixed-effects formula

    Returns:
        statsmodels MixedLMResults

    Fit failures (singular design, too few subjects) propagate unchanged.
    """
    logger.info("=" * 60)
    logger.info("MIXED MODEL FIT")
    logger.info("=" * 60)

    data = summary.copy()
    if not isinstance(data["Method"].dtype, pd.CategoricalDtype):
        data["Method"] = pd.Categorical(data["Method"].astype(str))
    data["Method"] = data["Method"].cat.remove_unused_categories()
    method_levels = [str(level) for level in data["Method"].cat.categories]

    formula = formula or build_formula(data)
    logger.info(f"Formula: {formula} + (1 | Subject), REML={reml}")

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        model = smf.mixedlm(formula, data, groups=data["Subject"])
        # First level is the treatment-coding reference
        model.method_levels = method_levels
        result = model.fit(reml=reml)

    for w in caught:
        logger.warning(f"Mixed model fit: {w.message}")

    logger.info("\n" + str(result.summary()))
    return result


def fit_summary(result) -> Dict[str, Any]:
    """Return scalar fit information (sizes, variance components, likelihood)."""
    return {
        "n_obs": int(len(result.model.endog)),
        "n_subjects": int(len(result.model.group_labels)),
        "reml": bool(result.model.reml),
        "converged": bool(result.converged),
        "log_likelihood": float(result.llf),
        "subject_variance": float(np.asarray(result.cov_re)[0, 0]),
        "residual_variance": float(result.scale),
    }


def residual_normality(result) -> Dict[str, float]:
    """
    Shapiro-Wilk test on the conditional residuals of the fitted model.

    Informational only: no pass/fail decision is made from the result.
    """
    resid = np.asarray(result.resid, dtype=float)
    statistic, p_value = stats.shapiro(resid)
    logger.info(f"Shapiro-Wilk on residuals: W={statistic:.4f}, p={p_value:.4g} (n={len(resid)})")
    return {"statistic": float(statistic), "p_value": float(p_value), "n": int(len(resid))}


def _fixed_effects(result):
    k_fe = result.k_fe
    fe = np.asarray(result.fe_params, dtype=float)
    cov = np.asarray(result.cov_params(), dtype=float)[:k_fe, :k_fe]
    return fe, cov


def _term_columns(result) -> Dict[str, List[int]]:
    """
    Map each fixed-effect term to its column positions in the design matrix.

    Treatment-coded columns are named ``<term>[T.<level>]``.
    """
    names = list(result.model.exog_names)[:result.k_fe]
    columns = {}
    for term in FIXED_TERMS:
        idx = [i for i, name in enumerate(names) if name.startswith(f"{term}[")]
        if idx:
            columns[term] = idx
    return columns


def anova_table(result) -> pd.DataFrame:
    """
    Wald F test for each fixed-effect term of the fitted model.

    The denominator degrees of freedom are nobs - k_fe.

    Returns:
        DataFrame indexed by term with NumDF, DenDF, F_value, p_value
    """
    fe, cov = _fixed_effects(result)
    den_df = len(result.model.endog) - result.k_fe

    rows = []
    for name, idx in _term_columns(result).items():
        b = fe[idx]
        v = cov[np.ix_(idx, idx)]
        num_df = len(b)
        f_value = float(b @ np.linalg.solve(v, b)) / num_df
        rows.append({
            "Term": name,
            "NumDF": num_df,
            "DenDF": den_df,
            "F_value": f_value,
            "p_value": float(stats.f.sf(f_value, num_df, den_df)),
        })

    table = pd.DataFrame(rows, columns=["Term", "NumDF", "DenDF", "F_value", "p_value"])
    table = table.set_index("Term")
    logger.info("ANOVA (Wald F):\n" + table.to_string())
    return table


def _sphere_directions(dim: int, n_directions: int, seed: int = 0) -> np.ndarray:
    """Unit vectors covering the sphere: a uniform grid for dim <= 2, random otherwise."""
    if dim == 1:
        return np.ones((1, 1))
    if dim == 2:
        # |a . s| is symmetric under s -> -s, so half the circle suffices
        theta = (np.arange(n_directions) + 0.5) * np.pi / n_directions
        return np.column_stack([np.cos(theta), np.sin(theta)])
    rng = np.random.default_rng(seed)
    draws = rng.standard_normal((n_directions, dim))
    return draws / np.linalg.norm(draws, axis=1, keepdims=True)


def _single_step_pvalues(
    z: np.ndarray,
    corr: np.ndarray,
    n_directions: int = 20000
) -> np.ndarray:
    """
    Adjusted p-values P(max_j |Z_j| >= |z_i|) for Z ~ N(0, corr).

    corr may be singular (pairwise contrasts are linearly dependent), so Z is
    written as A u with u ~ N(0, I_d) in the d-dimensional space spanned by
    the contrasts. The joint event max_j |a_j . u| < t is integrated with the
    spherical-radial decomposition: along direction s the region ends at
    radius t / max_j |a_j . s| and the radial mass follows a chi distribution
    with d degrees of freedom.
    """
    z = np.abs(np.asarray(z, dtype=float))
    eigvals, eigvecs = np.linalg.eigh(np.asarray(corr, dtype=float))
    keep = eigvals > eigvals.max() * 1e-10
    loadings = eigvecs[:, keep] * np.sqrt(eigvals[keep])
    dim = loadings.shape[1]

    directions = _sphere_directions(dim, n_directions)
    reach = np.abs(directions @ loadings.T).max(axis=1)

    adjusted = []
    for zi in z:
        radius = zi / reach
        inside = stats.chi2.cdf(radius ** 2, dim).mean()
        adjusted.append(1.0 - inside)
    return np.clip(np.asarray(adjusted, dtype=float), 0.0, 1.0)


def method_contrasts(
    result,
    adjust: str = "single-step",
    alpha: float = 0.05
) -> pd.DataFrame:
    """
    All pairwise differences between Method levels (Tukey contrasts).

    Each pair (earlier, later) in level order is reported as "later - earlier".

    Args:
        result: Fitted MixedLMResults from fit_mixed_model()
        adjust: "single-step" for the joint normal max-|z| adjustment, or
                any method name accepted by statsmodels' multipletests
        alpha: Significance level for the Significant flag

    Returns:
        DataFrame indexed by contrast with Estimate, Std_Error, z_value,
        p_value_raw, p_value_adj, Significant
    """
    fe, cov = _fixed_effects(result)
    levels = list(result.model.method_levels)
    names = list(result.model.exog_names)[:result.k_fe]

    # Coefficient vector of each level's mean relative to the reference level
    level_vectors = []
    for idx, level in enumerate(levels):
        vec = np.zeros(len(fe))
        if idx > 0:
            vec[names.index(f"Method[T.{level}]")] = 1.0
        level_vectors.append(vec)

    labels = []
    rows = []
    for i in range(len(levels)):
        for j in range(i + 1, len(levels)):
            labels.append(f"{levels[j]} - {levels[i]}")
            rows.append(level_vectors[j] - level_vectors[i])
    contrast_matrix = np.vstack(rows)

    estimate = contrast_matrix @ fe
    vcov = contrast_matrix @ cov @ contrast_matrix.T
    std_error = np.sqrt(np.diag(vcov))
    z_value = estimate / std_error
    p_raw = 2 * stats.norm.sf(np.abs(z_value))

    if adjust == "single-step":
        corr = vcov / np.outer(std_error, std_error)
        p_adj = _single_step_pvalues(z_value, corr)
        # Integration error must not push an adjusted value below the raw one
        p_adj = np.maximum(p_adj, p_raw)
    else:
        p_adj = multipletests(p_raw, method=adjust)[1]

    table = pd.DataFrame({
        "Contrast": labels,
        "Estimate": estimate,
        "Std_Error": std_error,
        "z_value": z_value,
        "p_value_raw": p_raw,
        "p_value_adj": p_adj,
    }).set_index("Contrast")
    table["Significant"] = table["p_value_adj"] < alpha

    logger.info(f"Pairwise Method contrasts ({adjust} adjustment):\n" + table.to_string())
    return table
