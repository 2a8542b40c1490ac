"""
Core analysis pipeline for MoCo landmark displacement data.
===========================================================

This module provides the core analysis functions for comparing residual
landmark motion between motion-correction methods (Pre-MoCo, MCFLIRT,
MC-MoCo).

Key functions:
- compute_reference_points: Centroid of each (Subject, Marker, Method) key
- compute_distances: Euclidean distance of every volume to its centroid
- summarize_distances: Mean distance per key, with the subject Group
- run_pipeline: Execute the complete analysis pipeline
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd

from mixed_model import (
    anova_table,
    fit_mixed_model,
    fit_summary,
    method_contrasts,
    residual_normality,
)
from moco_config import get_analysis_params, get_config_paths, get_input_params
from moco_utils import COORD_COLUMNS, KEY_COLUMNS, add_group_column, load_positions

# Configure module logger
logger = logging.getLogger(__name__)

__all__ = [
    "compute_reference_points",
    "compute_distances",
    "summarize_distances",
    "generate_statistics",
    "save_results",
    "create_plots",
    "run_pipeline",
]

REF_COLUMNS = [f"{c}_ref" for c in COORD_COLUMNS]


def compute_reference_points(positions: pd.DataFrame) -> pd.DataFrame:
    """
    Compute the reference centroid of every (Subject, Marker, Method) key.

    Args:
        positions: Position table with Subject, Marker, Method, x, y, z

    Returns:
        DataFrame with one row per observed key and the mean coordinates
        as x_ref, y_ref, z_ref. Empty input gives an empty frame.
    """
    refs = (
        positions.groupby(KEY_COLUMNS, observed=True)[COORD_COLUMNS]
        .mean()
        .reset_index()
        .rename(columns=dict(zip(COORD_COLUMNS, REF_COLUMNS)))
    )
    logger.info(f"Computed {len(refs)} reference points")
    return refs[KEY_COLUMNS + REF_COLUMNS]


def compute_distances(
    positions: pd.DataFrame,
    references: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """
    Compute the Euclidean distance of each position to its reference point.

    Args:
        positions: Position table
        references: Reference points from compute_reference_points(); computed
                    from positions when not given

    Returns:
        Copy of positions with x_ref, y_ref, z_ref and Distance columns.

    Raises:
        ValueError: If a position has no reference point for its key
    """
    if references is None:
        references = compute_reference_points(positions)

    merged = positions.merge(
        references, on=KEY_COLUMNS, how="left", validate="many_to_one"
    )
    missing = merged[REF_COLUMNS].isna().any(axis=1)
    if missing.any():
        keys = merged.loc[missing, KEY_COLUMNS].drop_duplicates()
        raise ValueError(f"No reference point for {len(keys)} keys:\n{keys.to_string(index=False)}")

    deltas = merged[COORD_COLUMNS].to_numpy() - merged[REF_COLUMNS].to_numpy()
    merged["Distance"] = np.linalg.norm(deltas, axis=1)
    return merged


def summarize_distances(distances: pd.DataFrame, group_separator: str = "_") -> pd.DataFrame:
    """
    Average the distance per (Subject, Marker, Method).

    Args:
        distances: Output of compute_distances()
        group_separator: Separator between group prefix and subject number

    Returns:
        DataFrame with Subject, Marker, Method, Group, Distance (mean residual
        motion) and n_volumes.
    """
    summary = (
        distances.groupby(KEY_COLUMNS, observed=True)
        .agg(Distance=("Distance", "mean"), n_volumes=("Distance", "size"))
        .reset_index()
    )
    summary = add_group_column(summary, group_separator)
    return summary[KEY_COLUMNS + ["Group", "Distance", "n_volumes"]]


def generate_statistics(summary: pd.DataFrame) -> pd.DataFrame:
    """
    Generate descriptive statistics of residual motion per Method and Marker.

    Args:
        summary: Output of summarize_distances()

    Returns:
        DataFrame indexed by (Method, Marker) with Mean, Std, Median, Count.
    """
    logger.info("=" * 60)
    logger.info("DESCRIPTIVE STATISTICS")
    logger.info("=" * 60)

    stats = summary.groupby(["Method", "Marker"], observed=True).agg(
        Mean=("Distance", "mean"),
        Std=("Distance", "std"),
        Median=("Distance", "median"),
        Count=("Subject", "count"),
    )

    logger.info("\n" + stats.round(4).to_string())
    return stats


def save_results(results: Dict[str, pd.DataFrame], results_dir: Path) -> Dict[str, Path]:
    """
    Save analysis result tables to CSV files.

    Args:
        results: Mapping of table name to DataFrame (as returned by run_pipeline)
        results_dir: Directory to save output files

    Returns:
        Mapping of table name to the written file path.
    """
    logger.info("=" * 60)
    logger.info("SAVING RESULTS")
    logger.info("=" * 60)

    results_dir.mkdir(parents=True, exist_ok=True)

    file_names = {
        "distances": "landmark_distances.csv",
        "summary": "distance_summary.csv",
        "statistics": "distance_statistics.csv",
        "anova": "anova_table.csv",
        "contrasts": "method_contrasts.csv",
        "normality": "residual_normality.csv",
        "model_fit": "model_fit.csv",
    }

    written = {}
    for key, table in results.items():
        if key not in file_names:
            continue
        path = results_dir / file_names[key]
        # Tables with a meaningful index (statistics, anova, contrasts) keep it
        keep_index = not isinstance(table.index, pd.RangeIndex)
        table.to_csv(path, index=keep_index)
        logger.info(f"Saved: {path}")
        written[key] = path

    return written


def create_plots(summary: pd.DataFrame, model_result, results_dir: Path) -> Dict[str, Path]:
    """
    Create the distance boxplot and the residual diagnostic plots.

    Args:
        summary: Output of summarize_distances()
        model_result: Fitted mixed model from fit_mixed_model()
        results_dir: Directory to save the plots

    Returns:
        Mapping of plot name to the saved file path.
    """
    logger.info("=" * 60)
    logger.info("GENERATING PLOTS")
    logger.info("=" * 60)

    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from scipy import stats

    results_dir.mkdir(parents=True, exist_ok=True)

    # Boxplot of residual motion, one panel per marker
    markers = sorted(summary["Marker"].unique())
    if isinstance(summary["Method"].dtype, pd.CategoricalDtype):
        methods = [m for m in summary["Method"].cat.categories if (summary["Method"] == m).any()]
    else:
        methods = sorted(summary["Method"].unique())

    fig, axes = plt.subplots(1, len(markers), figsize=(4 * len(markers), 5), sharey=True, squeeze=False)
    colors = ["#bdbdbd", "#6baed6", "#2171b5"]

    for ax, marker in zip(axes[0], markers):
        sub = summary[summary["Marker"] == marker]
        data = [sub.loc[sub["Method"] == m, "Distance"].to_numpy() for m in methods]
        box = ax.boxplot(data, patch_artist=True)
        for i, patch in enumerate(box["boxes"]):
            patch.set_facecolor(colors[i % len(colors)])
        ax.set_xticks(range(1, len(methods) + 1))
        ax.set_xticklabels(methods, rotation=30)
        ax.set_title(marker, fontsize=12, fontweight="bold")
    axes[0][0].set_ylabel("Mean distance to reference")

    plt.tight_layout()
    boxplot_path = results_dir / "distance_boxplot.png"
    plt.savefig(boxplot_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Saved: {boxplot_path}")

    # Residual diagnostics: residuals vs fitted, normal Q-Q
    resid = np.asarray(model_result.resid, dtype=float)
    fitted = np.asarray(model_result.fittedvalues, dtype=float)

    fig, (ax_rf, ax_qq) = plt.subplots(1, 2, figsize=(10, 4.5))
    ax_rf.scatter(fitted, resid, s=14, color="#2171b5", alpha=0.8)
    ax_rf.axhline(0.0, color="black", lw=1)
    ax_rf.set_xlabel("Fitted values")
    ax_rf.set_ylabel("Residuals")
    ax_rf.set_title("Residuals vs Fitted")

    stats.probplot(resid, dist="norm", plot=ax_qq)
    ax_qq.set_title("Normal Q-Q")

    plt.tight_layout()
    diagnostics_path = results_dir / "residual_diagnostics.png"
    plt.savefig(diagnostics_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Saved: {diagnostics_path}")

    return {"boxplot": boxplot_path, "diagnostics": diagnostics_path}


def analyze_positions(positions: pd.DataFrame, params: Dict) -> Dict[str, pd.DataFrame]:
    """
    Run the computational part of the analysis on an in-memory position table.

    Args:
        positions: Position table (see moco_utils.load_positions)
        params: Analysis parameters from moco_config.get_analysis_params()

    Returns:
        Dictionary of result tables (references, distances, summary,
        statistics, anova, contrasts, normality, model_fit) and the
        fitted model under "model".
    """
    logger.info("=" * 60)
    logger.info("REFERENCE POINTS AND DISTANCES")
    logger.info("=" * 60)

    references = compute_reference_points(positions)
    distances = compute_distances(positions, references)
    summary = summarize_distances(distances, params["group_separator"])
    logger.info(
        f"{len(summary)} subject-marker-method values from "
        f"{summary['Subject'].nunique()} subjects"
    )

    statistics = generate_statistics(summary)

    model = fit_mixed_model(summary, reml=params["reml"])
    normality = residual_normality(model)
    anova = anova_table(model)
    contrasts = method_contrasts(
        model, adjust=params["contrast_adjustment"], alpha=params["alpha"]
    )

    return {
        "references": references,
        "distances": distances,
        "summary": summary,
        "statistics": statistics,
        "anova": anova,
        "contrasts": contrasts,
        "normality": pd.DataFrame([normality]),
        "model_fit": pd.DataFrame([fit_summary(model)]),
        "model": model,
    }


def run_pipeline(config: Dict, data_root: Path) -> Dict:
    """
    Run the full analysis pipeline.

    This is the main entry point that orchestrates the entire analysis:
    1. Load the landmark position table
    2. Compute reference points and distances
    3. Fit the mixed model, ANOVA and Method contrasts
    4. Save results and create plots

    Args:
        config: Configuration dictionary (from config.json)
        data_root: Root directory for data files

    Returns:
        Dictionary of result tables and the fitted model (see analyze_positions).
    """
    # Configure logging for pipeline run
    logging.basicConfig(
        level=logging.INFO,
        format='%(message)s'
    )

    logger.info("=" * 60)
    logger.info("MOCO LANDMARK DISPLACEMENT ANALYSIS")
    logger.info("=" * 60)

    paths = get_config_paths(config, data_root)
    positions_path = paths["positions_csv"]
    results_dir = paths["results_dir"]

    input_params = get_input_params(config)
    params = get_analysis_params(config)

    positions = load_positions(
        positions_path,
        delimiter=input_params["delimiter"],
        method_levels=params["method_levels"],
    )
    logger.info("\n" + positions.head().to_string())

    results = analyze_positions(positions, params)

    save_results(results, results_dir)
    create_plots(results["summary"], results["model"], results_dir)

    logger.info("=" * 60)
    logger.info("[OK] ANALYSIS COMPLETE!")
    logger.info("=" * 60)
    logger.info(f"Total records processed: {len(positions)}")
    logger.info(f"Results saved to: {results_dir}")

    return results
