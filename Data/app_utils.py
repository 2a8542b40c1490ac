"""
Utilities for the MoCo results viewer (Streamlit).
==================================================

This module provides helper functions for the Streamlit application:
configuration loading and reading of the result tables written by the
analysis pipeline.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Tuple

import pandas as pd
import streamlit as st

from moco_config import get_analysis_params, get_config_paths, load_config
from moco_utils import filter_summary

# Configure module logger
logger = logging.getLogger(__name__)

__all__ = [
    "load_app_config",
    "load_results_csv",
    "load_result_tables",
    "filter_summary",
]

RESULT_FILES = {
    "summary": ("distance_summary.csv", None),
    "statistics": ("distance_statistics.csv", None),
    "anova": ("anova_table.csv", "Term"),
    "contrasts": ("method_contrasts.csv", "Contrast"),
    "normality": ("residual_normality.csv", None),
    "model_fit": ("model_fit.csv", None),
}


@st.cache_data(show_spinner=False)
def load_app_config() -> Tuple[Dict, Dict, Dict[str, Path]]:
    """Load application configuration from config.json."""
    config, data_root, _ = load_config()
    paths = get_config_paths(config, data_root)
    return config, get_analysis_params(config), paths


@st.cache_data(show_spinner=False)
def load_results_csv(results_path: Path, index_col=None) -> pd.DataFrame:
    """Load a result table from CSV, or an empty frame if it does not exist."""
    if not results_path.exists():
        logger.warning(f"Results file not found: {results_path}")
        return pd.DataFrame()
    return pd.read_csv(results_path, index_col=index_col)


def load_result_tables(results_dir: Path) -> Dict[str, pd.DataFrame]:
    """Load every result table written by the analysis pipeline."""
    return {
        key: load_results_csv(results_dir / file_name, index_col)
        for key, (file_name, index_col) in RESULT_FILES.items()
    }
