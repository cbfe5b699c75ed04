"""Canonical, linear and partial correlation analyses."""

from __future__ import annotations

import itertools
import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from .data import as_column_list, resolve_verbose
from .exceptions import InvalidArgumentError
from .qc import check_numeric, drop_missing
from .results import TraitResults
from .utils import cov2cor, eigen_sorted, solve_svd

logger = logging.getLogger(__name__)

Group = Union[pd.DataFrame, Sequence[str], str, None]


def _numeric_block(frame: pd.DataFrame) -> pd.DataFrame:
    columns = [column for column in frame.columns if pd.api.types.is_numeric_dtype(frame[column])]
    return frame[columns].astype(float)


@dataclass(frozen=True)
class Colindiag:
    cormat: pd.DataFrame
    eigenvalues: pd.Series
    VIF: pd.Series
    CN: float
    det: float
    largest_corr: str
    smallest_corr: str
    ncorhigh: int

    @property
    def severity(self) -> str:
        if self.CN < 100:
            return "weak"
        if self.CN < 1000:
            return "moderate to strong"
        return "severe"


def colindiag(data: pd.DataFrame) -> Colindiag:
    """Collinearity diagnostics of a set of predictors."""
    block = _numeric_block(data)
    if block.shape[1] < 2:
        raise InvalidArgumentError("Collinearity diagnostics need at least two numeric variables")
    cor = block.corr()
    values, _ = eigen_sorted(cor.to_numpy())
    try:
        vif_values = np.diag(np.linalg.inv(cor.to_numpy()))
    except np.linalg.LinAlgError:
        vif_values = np.full(cor.shape[1], np.inf)
    vif = pd.Series(vif_values, index=cor.columns, name="VIF")
    pairs = [
        (abs(cor.iloc[i, j]), f"{cor.columns[i]} x {cor.columns[j]}", cor.iloc[i, j])
        for i, j in itertools.combinations(range(cor.shape[1]), 2)
    ]
    largest = max(pairs)
    smallest = min(pairs)
    return Colindiag(
        cormat=cor,
        eigenvalues=pd.Series(values, index=[f"PC{k}" for k in range(1, len(values) + 1)], name="Eigenvalue"),
        VIF=vif,
        CN=float(values.max() / values.min()) if values.min() > 0 else float("inf"),
        det=float(np.linalg.det(cor.to_numpy())),
        largest_corr=f"{largest[1]} = {largest[2]:.3f}",
        smallest_corr=f"{smallest[1]} = {smallest[2]:.3f}",
        ncorhigh=sum(1 for value, _, _ in pairs if value >= 0.8),
    )


@dataclass(frozen=True)
class CanCorr:
    Matrix: pd.DataFrame
    MFG: pd.DataFrame
    MSG: pd.DataFrame
    MFG_SG: pd.DataFrame
    Coef_FG: pd.DataFrame
    Coef_SG: pd.DataFrame
    Loads_FG: pd.DataFrame
    Loads_SG: pd.DataFrame
    Score_FG: pd.DataFrame
    Score_SG: pd.DataFrame
    Crossload_FG: pd.DataFrame
    Crossload_SG: pd.DataFrame
    Sigtest: pd.DataFrame
    collinearity: Optional[Dict[str, Colindiag]] = None


@dataclass(frozen=True)
class GroupCanCorr(TraitResults[CanCorr]):
    pass


def _inverse_sqrt(matrix: np.ndarray) -> np.ndarray:
    values, vectors = eigen_sorted(matrix)
    return vectors @ np.diag(1 / np.sqrt(values)) @ vectors.T


def _cross_cor(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    joint = np.corrcoef(np.hstack([a, b]), rowvar=False)
    return joint[: a.shape[1], a.shape[1]:]


def _bartlett(corr: np.ndarray, n: int, p: int, q: int) -> pd.DataFrame:
    rows = []
    for i in range(len(corr)):
        wilks = float(np.prod(1 - corr[i:] ** 2))
        chisq = -((n - 1) - (p + q + 1) / 2) * np.log(wilks)
        df = (p - i) * (q - i)
        rows.append({"Lambda": wilks, "Chisq": chisq, "DF": df, "p_val": stats.chi2.sf(chisq, df)})
    return pd.DataFrame(rows)


def _rao(corr: np.ndarray, n: int, p1: int, q1: int) -> pd.DataFrame:
    rows = []
    for i in range(len(corr)):
        p = p1 - i
        q = q1 - i
        t = (n - 1) - (p + q + 1) / 2
        s = 1.0 if p**2 + q**2 <= 5 else np.sqrt((p**2 * q**2 - 4) / (p**2 + q**2 - 5))
        wilks = float(np.prod(1 - corr[i:] ** 2))
        df1 = p * q
        df2 = 1 + t * s - p * q / 2
        root = wilks ** (1 / s)
        f_value = (1 - root) / root * df2 / df1
        rows.append({"Lambda": wilks, "F": f_value, "DF1": df1, "DF2": df2, "p_val": stats.f.sf(f_value, df1, df2)})
    return pd.DataFrame(rows)


def _complete_groups(fg: pd.DataFrame, sg: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Keep the observations complete in both groups."""
    if len(fg) != len(sg):
        raise InvalidArgumentError("The number of observations of 'FG' should be equal to 'SG'.")
    joint = pd.concat([fg, sg.set_axis(fg.index)], axis=1)
    joint = drop_missing(joint, list(joint.columns), keep_index=True)
    return joint.iloc[:, : fg.shape[1]], joint.iloc[:, fg.shape[1] :]


def _can_corr_core(
    fg: pd.DataFrame,
    sg: pd.DataFrame,
    use: str,
    test: str,
    prob: float,
    center: bool,
    stdscores: bool,
    collinearity: bool,
) -> CanCorr:
    fg, sg = _complete_groups(fg, sg)
    if fg.shape[1] > sg.shape[1]:
        raise InvalidArgumentError(
            "The number of variables in 'FG' should be lesser than or equal to the number of variables in 'SG'."
        )
    joint = pd.concat([fg, sg], axis=1)
    matrix = joint.corr() if use == "cor" else joint.cov()
    p, q = fg.shape[1], sg.shape[1]
    s11 = matrix.iloc[:p, :p].to_numpy()
    s22 = matrix.iloc[p:, p:].to_numpy()
    s12 = matrix.iloc[:p, p:].to_numpy()

    s11_half = _inverse_sqrt(s11)
    s22_inv = solve_svd(s22)
    values, vectors = eigen_sorted(s11_half @ s12 @ s22_inv @ s12.T @ s11_half)
    values = np.clip(values, 0.0, 1.0)
    corr = np.sqrt(values)
    pairs = [f"U{k}V{k}" for k in range(1, p + 1)]
    u_names = [f"U{k}" for k in range(1, p + 1)]
    v_names = [f"V{k}" for k in range(1, p + 1)]

    coef_fg = s11_half @ vectors
    coef_sg = s22_inv @ s12.T @ coef_fg @ solve_svd(np.diag(corr))
    loads_fg = np.diag(1 / np.sqrt(np.diag(s11))) @ s11 @ coef_fg
    loads_sg = np.diag(1 / np.sqrt(np.diag(s22))) @ s22 @ coef_sg

    fg_a = fg.to_numpy(dtype=float)
    sg_a = sg.to_numpy(dtype=float)
    if center:
        fg_a = fg_a - fg_a.mean(axis=0)
        sg_a = sg_a - sg_a.mean(axis=0)
    fg_sc = fg_a @ coef_fg
    sg_sc = sg_a @ coef_sg
    if stdscores:
        fg_sc = fg_sc / fg_sc.std(axis=0, ddof=1)
        sg_sc = sg_sc / sg_sc.std(axis=0, ddof=1)

    n = len(fg)
    share = values / values.sum() * 100 if values.sum() > 0 else np.zeros_like(values)
    sigtest = pd.DataFrame({"Pair": pairs, "Var": values, "Percent": share, "Sum": np.cumsum(share), "Corr": corr})
    tested = _bartlett(corr, n, p, q) if test == "Bartlett" else _rao(corr, n, p, q)
    sigtest = pd.concat([sigtest, tested], axis=1)
    sigtest["significant"] = sigtest["p_val"] < prob

    index = fg.index
    return CanCorr(
        Matrix=matrix,
        MFG=matrix.iloc[:p, :p],
        MSG=matrix.iloc[p:, p:],
        MFG_SG=matrix.iloc[:p, p:],
        Coef_FG=pd.DataFrame(coef_fg, index=fg.columns, columns=u_names),
        Coef_SG=pd.DataFrame(coef_sg, index=sg.columns, columns=v_names),
        Loads_FG=pd.DataFrame(loads_fg, index=fg.columns, columns=u_names),
        Loads_SG=pd.DataFrame(loads_sg, index=sg.columns, columns=v_names),
        Score_FG=pd.DataFrame(fg_sc, index=index, columns=u_names),
        Score_SG=pd.DataFrame(sg_sc, index=index, columns=v_names),
        Crossload_FG=pd.DataFrame(_cross_cor(fg_a, sg_sc), index=fg.columns, columns=v_names),
        Crossload_SG=pd.DataFrame(_cross_cor(sg_a, fg_sc), index=sg.columns, columns=u_names),
        Sigtest=sigtest,
        collinearity={"FGc": colindiag(fg), "SGc": colindiag(sg)} if collinearity else None,
    )


def _select_group(data: pd.DataFrame, group: Group, name: str) -> pd.DataFrame:
    columns = as_column_list(group)
    unknown = [column for column in columns if column not in data.columns]
    if unknown:
        raise InvalidArgumentError(f"Variable(s) in '{name}' not found in data: {', '.join(unknown)}")
    return _numeric_block(check_numeric(data[columns], columns))


def can_corr(
    data: Optional[pd.DataFrame] = None,
    FG: Group = None,
    SG: Group = None,
    by: Optional[str] = None,
    means_by: Optional[str] = None,
    use: str = "cor",
    test: str = "Bartlett",
    prob: float = 0.05,
    center: bool = True,
    stdscores: bool = False,
    collinearity: bool = True,
    verbose: Optional[bool] = None,
) -> Union[CanCorr, GroupCanCorr]:
    """Canonical correlation between a first (FG) and a second (SG) group of variables.

    With ``data``, ``FG`` and ``SG`` name its columns; without it they are
    data frames themselves. ``by`` runs one analysis per level of a column
    and ``means_by`` first averages the data within the levels of a column.
    The canonical pairs are tested with Bartlett's chi-square or Rao's F
    approximation to Wilks' lambda.
    """
    if FG is None or SG is None:
        raise InvalidArgumentError("No valid data input for analysis; 'FG' and 'SG' must be declared.")
    if use not in ("cor", "cov"):
        raise InvalidArgumentError("The argument 'use' is incorrect, it should be 'cov' or 'cor'.")
    if test not in ("Bartlett", "Rao"):
        raise InvalidArgumentError("The argument 'test' is incorrect, it should be 'Bartlett' or 'Rao'.")
    if not isinstance(prob, (int, float)) or prob <= 0 or prob > 1:
        raise InvalidArgumentError("The argument 'prob' is incorrect. It should be numeric with values between 0 and 1.")
    options = dict(use=use, test=test, prob=prob, center=center, stdscores=stdscores, collinearity=collinearity)
    verbose = resolve_verbose(verbose)

    if data is None:
        if not isinstance(FG, pd.DataFrame) or not isinstance(SG, pd.DataFrame):
            raise InvalidArgumentError("Without 'data', 'FG' and 'SG' should be data frames.")
        if by is not None or means_by is not None:
            raise InvalidArgumentError("'by' and 'means_by' need 'data'.")
        result = _can_corr_core(_numeric_block(FG), _numeric_block(SG), **options)
        _log_can_corr(result, None, verbose)
        return result

    def analyse(frame: pd.DataFrame, level: Optional[str]) -> CanCorr:
        if means_by is not None:
            frame = frame.groupby(means_by, sort=True).mean(numeric_only=True)
            frame.index = frame.index.astype(str)
        fg = _select_group(frame, FG, "FG")
        sg = _select_group(frame, SG, "SG")
        result = _can_corr_core(fg, sg, **options)
        _log_can_corr(result, level, verbose)
        return result

    for column in (by, means_by):
        if column is not None and column not in data.columns:
            raise InvalidArgumentError(f"Column '{column}' not found in data")
    if by is None:
        return analyse(data, None)
    groups = {str(level): analyse(subset, str(level)) for level, subset in data.groupby(by, sort=True)}
    return GroupCanCorr(groups)


def _log_can_corr(result: CanCorr, level: Optional[str], verbose: bool) -> None:
    if not verbose:
        return
    title = f"Level {level}: " if level is not None else ""
    logger.info(
        "%sCorrelation of the canonical pairs and hypothesis testing\n%s",
        title,
        result.Sigtest.to_string(index=False),
    )


@dataclass(frozen=True)
class Lpcor:
    linear_mat: pd.DataFrame
    partial_mat: pd.DataFrame
    results: pd.DataFrame


@dataclass(frozen=True)
class GroupLpcor(TraitResults[Lpcor]):
    pass


def _lpcor_core(cor: pd.DataFrame, n: int) -> Lpcor:
    names = [str(name) for name in cor.columns]
    nvar = len(names)
    df = n - nvar
    if df < 0:
        warnings.warn(
            "The number of variables is higher than the number of individuals. Hypothesis testing will not be made.",
            UserWarning,
            stacklevel=3,
        )
    inverse = solve_svd(cor.to_numpy())
    partial = cov2cor(-inverse + np.diag(2 * np.diag(inverse)))
    partial = pd.DataFrame(partial, index=names, columns=names)
    rows = []
    for i, j in itertools.combinations(range(nvar), 2):
        r = partial.iat[i, j]
        if df > 0:
            t = r / np.sqrt(1 - r**2) * np.sqrt(df)
            p = 2 * stats.t.sf(abs(t), df)
        else:
            t = p = np.nan
        rows.append({"Pairs": f"{names[i]} x {names[j]}", "linear": cor.iat[i, j], "partial": r, "t": t, "prob": p})
    return Lpcor(linear_mat=cor, partial_mat=partial, results=pd.DataFrame(rows))


def lpcor(
    data: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    by: Optional[str] = None,
    n: Optional[int] = None,
    method: str = "pearson",
) -> Union[Lpcor, GroupLpcor]:
    """Linear and partial (controlling for all other variables) correlation coefficients.

    ``data`` is a trial table, or a correlation matrix when ``n`` (the
    number of observations behind it) is given. Partial correlations are
    tested with ``t = r * sqrt(n - nvar) / sqrt(1 - r^2)``.
    """
    if by is not None:
        if n is not None:
            raise InvalidArgumentError("'by' cannot be used with a correlation matrix.")
        if by not in data.columns:
            raise InvalidArgumentError(f"Column '{by}' not found in data")
        return GroupLpcor(
            {str(level): lpcor(subset.drop(columns=by), columns, method=method) for level, subset in data.groupby(by, sort=True)}
        )
    if n is not None:
        matrix = data.astype(float)
        if matrix.shape[0] != matrix.shape[1] or not np.allclose(matrix.to_numpy(), matrix.to_numpy().T):
            raise InvalidArgumentError("A correlation matrix must be square and symmetric.")
        return _lpcor_core(matrix, int(n))
    if columns is None:
        columns = [column for column in data.columns if pd.api.types.is_numeric_dtype(data[column])]
    else:
        unknown = [column for column in columns if column not in data.columns]
        if unknown:
            raise InvalidArgumentError(f"Variable(s) not found in data: {', '.join(unknown)}")
    frame = drop_missing(check_numeric(data[list(columns)], list(columns)), list(columns))
    if frame.shape[1] < 2:
        raise InvalidArgumentError("At least two numeric variables are needed.")
    return _lpcor_core(frame.corr(method=method), len(frame))
