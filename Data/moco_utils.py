"""
MoCo Shared Utilities
=====================
Common utilities shared across the landmark analysis pipeline.

This module consolidates subject-id parsing, input validation and loading
of the landmark position table so every component reads the data the same way.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd

from moco_config import DEFAULT_METHOD_LEVELS

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["Subject", "Marker", "Method"]
COORD_COLUMNS = ["x", "y", "z"]
REQUIRED_COLUMNS = KEY_COLUMNS + ["Volume"] + COORD_COLUMNS


# =============================================================================
# SUBJECT ID PARSING
# =============================================================================

def extract_group(subject: str, separator: str = "_") -> str:
    """
    Extract the group prefix from a subject identifier.

    Args:
        subject: Subject identifier (e.g., 'A_12')
        separator: Separator between group prefix and subject number

    Returns:
        Substring before the first separator, or the whole identifier
        if the separator does not occur.

    Example:
        >>> extract_group('A_12')
        'A'
        >>> extract_group('ctrl_3_b')
        'ctrl'
    """
    return str(subject).split(separator, 1)[0]


def add_group_column(df: pd.DataFrame, separator: str = "_") -> pd.DataFrame:
    """Return a copy of df with a Group column derived from Subject."""
    df = df.copy()
    df["Group"] = df["Subject"].map(lambda s: extract_group(s, separator))
    return df


# =============================================================================
# DATA VALIDATION
# =============================================================================

def unknown_methods(df: pd.DataFrame, method_levels: Sequence[str]) -> List[str]:
    """Return the sorted Method labels of df that are not in method_levels."""
    return sorted(set(df["Method"].dropna().astype(str)) - set(method_levels))


def validate_positions(
    df: pd.DataFrame,
    method_levels: Optional[Sequence[str]] = None
) -> List[str]:
    """
    Validate that a landmark position table has required columns and valid values.

    Args:
        df: DataFrame loaded from the landmark position file
        method_levels: Allowed Method labels (defaults to the three MoCo conditions)

    Returns:
        List of error messages. Empty list if validation passes.
    """
    errors = []
    levels = list(method_levels) if method_levels is not None else DEFAULT_METHOD_LEVELS

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        errors.append(f"Missing required columns: {', '.join(missing)}")
        return errors

    if len(df) == 0:
        errors.append("Position table is empty")
        return errors

    for col in COORD_COLUMNS:
        values = pd.to_numeric(df[col], errors="coerce")
        n_bad = int((values.isna() & df[col].notna()).sum())
        if n_bad:
            errors.append(f"Non-numeric values in column {col}: {n_bad} rows")
        n_missing = int(df[col].isna().sum())
        if n_missing:
            errors.append(f"Missing values in column {col}: {n_missing} rows")

    for col in KEY_COLUMNS:
        n_missing = int(df[col].isna().sum())
        if n_missing:
            errors.append(f"Missing values in column {col}: {n_missing} rows")

    unknown = unknown_methods(df, levels)
    if unknown:
        errors.append(f"Unknown Method labels: {', '.join(unknown)}")

    return errors


# =============================================================================
# LOADING
# =============================================================================

def load_positions(
    file_path: Union[str, Path],
    delimiter: str = ",",
    method_levels: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Load the landmark position table.

    Volume is read as a categorical label, Method as a categorical with the
    configured level order (the first level is the model's reference level).

    Args:
        file_path: Path to the delimited position file
        delimiter: Field delimiter
        method_levels: Ordered Method labels

    Returns:
        DataFrame with columns Subject, Marker, Method, Volume, x, y, z

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the table fails validation
    """
    levels = list(method_levels) if method_levels is not None else DEFAULT_METHOD_LEVELS

    df = pd.read_csv(
        file_path,
        sep=delimiter,
        dtype={"Subject": str, "Marker": str, "Method": str, "Volume": str},
    )

    errors = validate_positions(df, levels)
    if errors:
        raise ValueError(f"Invalid position table {file_path}: {'; '.join(errors)}")

    df = prepare_positions(df, levels)
    logger.info(f"Loaded {len(df)} position records from {file_path}")
    return df


def prepare_positions(df: pd.DataFrame, method_levels: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Coerce column types of an in-memory position table.

    Returns a copy with Volume categorical, Method categorical in level order
    and float coordinates.

    Raises:
        ValueError: If a Method label is not one of method_levels
    """
    levels = list(method_levels) if method_levels is not None else DEFAULT_METHOD_LEVELS
    unknown = unknown_methods(df, levels)
    if unknown:
        raise ValueError(f"Unknown Method labels: {', '.join(unknown)}")

    df = df.copy()
    df["Subject"] = df["Subject"].astype(str)
    df["Marker"] = df["Marker"].astype(str)
    df["Volume"] = df["Volume"].astype(str).astype("category")
    df["Method"] = pd.Categorical(df["Method"].astype(str), categories=levels)
    for col in COORD_COLUMNS:
        df[col] = df[col].astype(float)
    return df[REQUIRED_COLUMNS]


# =============================================================================
# FILTERING
# =============================================================================

def filter_summary(
    summary: pd.DataFrame,
    markers: Optional[Sequence[str]] = None,
    methods: Optional[Sequence[str]] = None,
    groups: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Restrict a distance summary table to the selected markers, methods and groups.

    An empty or None selection keeps all values of that column.
    """
    mask = pd.Series(True, index=summary.index)
    if markers:
        mask &= summary["Marker"].astype(str).isin(markers)
    if methods:
        mask &= summary["Method"].astype(str).isin(methods)
    if groups:
        mask &= summary["Group"].astype(str).isin(groups)
    return summary[mask]
