"""Quality control routines for multi-environment trial tables."""

from __future__ import annotations

import logging
import warnings
from typing import List, Sequence

import pandas as pd

from .exceptions import DataQualityError, MissingValuesWarning, UnsupportedDesignError

logger = logging.getLogger(__name__)


def text_in_numeric(column: pd.Series) -> List[str]:
    """Return the distinct non-numeric entries of ``column``."""
    if pd.api.types.is_numeric_dtype(column):
        return []
    coerced = pd.to_numeric(column, errors="coerce")
    offending = column[coerced.isna() & column.notna()]
    return sorted({str(value) for value in offending})


def check_numeric(frame: pd.DataFrame, traits: Sequence[str]) -> pd.DataFrame:
    """Coerce response columns to float, refusing columns that carry text."""
    checked = frame.copy()
    for trait in traits:
        offending = text_in_numeric(checked[trait])
        if offending:
            raise DataQualityError(
                f"Variable '{trait}' has non-numeric values: {', '.join(offending)}"
            )
        checked[trait] = pd.to_numeric(checked[trait]).astype(float)
    return checked


def drop_missing(frame: pd.DataFrame, columns: Sequence[str], keep_index: bool = False) -> pd.DataFrame:
    mask = frame[list(columns)].isna().any(axis=1)
    n_missing = int(mask.sum())
    if n_missing == 0:
        return frame
    warnings.warn(
        f"Row(s) with missing values were removed ({n_missing} row(s))",
        MissingValuesWarning,
        stacklevel=3,
    )
    logger.info("Removed %d row(s) with missing values", n_missing)
    kept = frame.loc[~mask]
    return kept if keep_index else kept.reset_index(drop=True)


def check_unique_keys(frame: pd.DataFrame, keys: Sequence[str]) -> None:
    duplicated = frame.duplicated(subset=list(keys), keep=False)
    if duplicated.any():
        sample = frame.loc[duplicated, list(keys)].drop_duplicates().head(5)
        combos = "; ".join("/".join(str(v) for v in row) for row in sample.itertuples(index=False))
        raise DataQualityError(
            f"Duplicated {' x '.join(keys)} combinations found: {combos}"
        )


def check_levels(frame: pd.DataFrame, column: str, minimum: int, analysis: str) -> int:
    n_levels = frame[column].nunique()
    if n_levels < minimum:
        raise UnsupportedDesignError(
            f"{analysis} requires at least {minimum} levels of {column} ({n_levels} found)"
        )
    return n_levels
