"""Numerical helpers shared by the MET analyses."""

from __future__ import annotations

import logging
import warnings
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .config import settings
from .exceptions import DataImputationWarning, DataQualityError, InvalidArgumentError

logger = logging.getLogger(__name__)


def make_mat(frame: pd.DataFrame, row: str, col: str, value: str) -> pd.DataFrame:
    """Two-way table of ``value`` means, with NaN for unobserved cells."""
    mat = frame.groupby([row, col], observed=False)[value].mean().unstack(col)
    mat.index = pd.Index(mat.index.astype(str), name=row)
    mat.columns = pd.Index(mat.columns.astype(str), name=col)
    return mat


def make_long(mat: pd.DataFrame, row: str = "GEN", col: str = "ENV", value: str = "Y") -> pd.DataFrame:
    long = mat.rename_axis(index=row, columns=None).reset_index().melt(id_vars=row, var_name=col, value_name=value)
    return long[[col, row, value]].sort_values([col, row], ignore_index=True)


def solve_svd(matrix: np.ndarray, tolerance: float = np.sqrt(np.finfo(float).eps)) -> np.ndarray:
    """Generalised inverse via SVD, dropping singular values below ``tolerance``."""
    u, d, vt = np.linalg.svd(np.asarray(matrix, dtype=float))
    keep = d > tolerance * d[0] if d.size else d.astype(bool)
    return (vt[keep].T / d[keep]) @ u[:, keep].T


def eigen_sorted(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Eigen-decomposition of a symmetric matrix, largest eigenvalue first."""
    values, vectors = np.linalg.eigh(np.asarray(matrix, dtype=float))
    order = np.argsort(values)[::-1]
    return values[order], vectors[:, order]


def varimax(loadings: np.ndarray, normalize: bool = True, eps: float = 1e-5, max_iter: int = 1000) -> Tuple[np.ndarray, np.ndarray]:
    """Kaiser varimax rotation; returns the rotated loadings and the rotation matrix."""
    x = np.asarray(loadings, dtype=float)
    n_rows, n_cols = x.shape
    if n_cols < 2:
        return x.copy(), np.eye(n_cols)
    if normalize:
        scale = np.sqrt((x**2).sum(axis=1))
        x = x / scale[:, None]
    rotation = np.eye(n_cols)
    criterion = 0.0
    for _ in range(max_iter):
        z = x @ rotation
        b = x.T @ (z**3 - z @ np.diag((z**2).sum(axis=0)) / n_rows)
        u, s, vt = np.linalg.svd(b)
        rotation = u @ vt
        previous = criterion
        criterion = s.sum()
        if criterion < previous * (1 + eps):
            break
    rotated = x @ rotation
    if normalize:
        rotated = rotated * scale[:, None]
    return rotated, rotation


def additive_residuals(mat: pd.DataFrame) -> pd.DataFrame:
    """Residuals of the additive ``Y ~ ENV + GEN`` fit to a complete two-way table."""
    values = mat.to_numpy(dtype=float)
    grand = values.mean()
    residuals = values - values.mean(axis=1, keepdims=True) - values.mean(axis=0, keepdims=True) + grand
    return pd.DataFrame(residuals, index=mat.index, columns=mat.columns)


def impute_missing_val(
    mat: pd.DataFrame,
    naxis: int = 1,
    tol: Optional[float] = None,
    max_iter: Optional[int] = None,
) -> Tuple[pd.DataFrame, int]:
    """Fill the empty cells of a two-way table with the EM-AMMI algorithm.

    Missing cells start at their additive expectation from the observed
    margins, then are repeatedly replaced by the additive plus ``naxis``
    multiplicative terms fitted to the completed table until the largest
    change falls below ``tol``. Returns the completed table and the number
    of iterations used.
    """
    tol = settings.IMPUTE_TOL if tol is None else tol
    max_iter = settings.IMPUTE_MAX_ITER if max_iter is None else max_iter
    values = mat.to_numpy(dtype=float).copy()
    missing = np.isnan(values)
    if not missing.any():
        return mat.copy(), 0
    max_axis = min(values.shape) - 1
    if naxis < 0 or naxis > max_axis:
        raise InvalidArgumentError(f"naxis must be between 0 and {max_axis}")
    if missing.all(axis=0).any() or missing.all(axis=1).any():
        raise InvalidArgumentError("Cannot impute a table with an entirely empty row or column")
    grand = np.nanmean(values)
    row_eff = np.nanmean(values, axis=1) - grand
    col_eff = np.nanmean(values, axis=0) - grand
    values[missing] = (grand + row_eff[:, None] + col_eff[None, :])[missing]
    iteration = 0
    for iteration in range(1, max_iter + 1):
        grand = values.mean()
        row_mean = values.mean(axis=1, keepdims=True)
        col_mean = values.mean(axis=0, keepdims=True)
        fitted = row_mean + col_mean - grand
        if naxis > 0:
            u, d, vt = np.linalg.svd(values - fitted)
            fitted = fitted + (u[:, :naxis] * d[:naxis]) @ vt[:naxis]
        change = np.max(np.abs(fitted[missing] - values[missing]))
        values[missing] = fitted[missing]
        if change < tol:
            break
    else:
        logger.warning("EM-AMMI imputation did not converge after %d iterations", max_iter)
    logger.info("EM-AMMI imputed %d cell(s) in %d iteration(s)", int(missing.sum()), iteration)
    return pd.DataFrame(values, index=mat.index, columns=mat.columns), iteration


def fill_ge_means(mat: pd.DataFrame, trait: str, impute: bool, **impute_options) -> Tuple[pd.DataFrame, bool]:
    """Complete a GEN x ENV means table, imputing when allowed."""
    if not mat.isna().any().any():
        return mat, False
    if not impute:
        raise DataQualityError(
            f"Variable '{trait}' has missing genotype-by-environment means; pass impute=True to fill them"
        )
    completed, _ = impute_missing_val(mat, **impute_options)
    warnings.warn(
        f"Data imputation used to fill the GxE matrix of '{trait}'",
        DataImputationWarning,
        stacklevel=3,
    )
    return completed, True


def rank_desc(values: pd.Series) -> pd.Series:
    return values.rank(ascending=False, method="first")


def cov2cor(matrix: np.ndarray) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    scale = np.sqrt(np.diag(matrix))
    return matrix / np.outer(scale, scale)


def group_means(frame: pd.DataFrame, by: str) -> pd.DataFrame:
    return frame.groupby(by, sort=True).mean(numeric_only=True)
