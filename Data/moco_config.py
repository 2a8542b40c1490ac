"""
Configuration loader for the MoCo landmark analysis.
====================================================

Provides functions to load and parse the central configuration file (config.json)
that controls input/output paths, the input delimiter, and model parameters.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "config.json"

DEFAULT_METHOD_LEVELS: List[str] = ["Pre-MoCo", "MCFLIRT", "MC-MoCo"]


def get_data_root() -> Path:
    """
    Return the Data directory path.

    Returns:
        Path to the Data directory (where this module is located).
    """
    return Path(__file__).resolve().parent


def load_config(config_path: Optional[Union[str, Path]] = None) -> Tuple[Dict[str, Any], Path, Path]:
    """
    Load configuration file and return parsed config with paths.

    Args:
        config_path: Optional path to config file. Defaults to config.json
                    in the Data directory.

    Returns:
        Tuple of (config_dict, data_root_path, config_file_path)

    Raises:
        FileNotFoundError: If config file doesn't exist
        json.JSONDecodeError: If config file is invalid JSON
    """
    data_root = get_data_root()
    resolved_path = Path(config_path) if config_path else data_root / DEFAULT_CONFIG_FILENAME

    if not resolved_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {resolved_path}")

    with open(resolved_path, "r", encoding="utf-8") as f:
        config = json.load(f)

    logger.debug(f"Loaded configuration from {resolved_path}")
    return config, data_root, resolved_path


def resolve_path(path_str: str, base_dir: Path) -> Path:
    """Resolve a config path relative to base_dir."""
    return (base_dir / path_str).resolve()


def get_config_paths(config: Dict[str, Any], base_dir: Path) -> Dict[str, Path]:
    """
    Return resolved paths from config.

    Args:
        config: Configuration dictionary
        base_dir: Base directory to resolve relative paths against

    Returns:
        Dictionary mapping path names (positions_csv, results_dir) to
        resolved Path objects
    """
    paths = config.get("data_paths", {})
    return {key: resolve_path(value, base_dir) for key, value in paths.items()}


def get_input_params(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return input-file parsing options from config."""
    input_cfg = config.get("input", {})
    return {
        "delimiter": str(input_cfg.get("delimiter", ",")),
    }


def get_analysis_params(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return analysis parameters from config.

    Args:
        config: Configuration dictionary

    Returns:
        Dictionary with analysis parameters:
        - method_levels: list of Method labels, first one is the reference level
        - group_separator: str separating the group prefix in Subject ids
        - reml: bool, fit the mixed model by REML instead of ML
        - contrast_adjustment: str, "single-step" or a multipletests method
        - alpha: float significance level for flagging contrasts
    """
    analysis = config.get("analysis", {})
    method_levels = list(analysis.get("method_levels", DEFAULT_METHOD_LEVELS))
    if len(set(method_levels)) != len(method_levels):
        raise ValueError(f"Duplicate entries in method_levels: {method_levels}")

    return {
        "method_levels": method_levels,
        "group_separator": str(analysis.get("group_separator", "_")),
        "reml": bool(analysis.get("reml", True)),
        "contrast_adjustment": str(analysis.get("contrast_adjustment", "single-step")),
        "alpha": float(analysis.get("alpha", 0.05)),
    }
