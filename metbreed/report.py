"""Plain-text reports of analysis results, printed or exported to ``.txt`` files."""

from __future__ import annotations

import logging
import sys
from functools import singledispatch
from pathlib import Path
from typing import Callable, List, Optional

import pandas as pd

from .ammi import PerformsAmmi
from .anova import AnovaInd
from .config import settings
from .correlation import CanCorr, Colindiag, GroupCanCorr, GroupLpcor, Lpcor
from .factanal import GeFactanal
from .selection import FaiBlup
from .stability import Fox, Shukla

logger = logging.getLogger(__name__)

RULE = "-" * 75


def _fmt(digits: int) -> Callable[[float], str]:
    return lambda value: f"{value:.{digits}g}"


def _table(frame: pd.DataFrame, digits: int, index: bool = False) -> str:
    return frame.to_string(index=index, float_format=_fmt(digits))


def _section(title: str, body: str) -> List[str]:
    return [RULE, title, RULE, body]


@singledispatch
def render(result: object, digits: int = 4) -> str:
    raise TypeError(f"No report available for objects of type {type(result).__name__}")


@render.register
def _(result: AnovaInd, digits: int = 4) -> str:
    lines: List[str] = []
    for trait, values in result.items():
        lines.append(f"Variable {trait}")
        lines += _section("Within-environment ANOVA results", _table(values.individual, digits))
        lines.append(f"MSRratio: {values.MSRratio:.{digits}g}")
        lines.append("")
    return "\n".join(lines)


@render.register
def _(result: PerformsAmmi, digits: int = 4) -> str:
    lines: List[str] = []
    for trait, values in result.items():
        lines.append(f"Variable {trait}")
        lines += _section("AMMI analysis table", _table(values.ANOVA, digits))
        if values.imputed:
            lines.append("Note: missing GxE means were imputed (EM-AMMI)")
        lines.append("")
    return "\n".join(lines)


@render.register
def _(result: Fox, digits: int = 4) -> str:
    lines: List[str] = []
    for trait, table in result.items():
        lines.append(f"Variable {trait}")
        lines += _section("Fox TOP third criteria", _table(table, digits))
        lines.append("")
    return "\n".join(lines)


@render.register
def _(result: Shukla, digits: int = 4) -> str:
    lines: List[str] = []
    for trait, table in result.items():
        lines.append(f"Variable {trait}")
        lines += _section("Shukla stability variance", _table(table, digits))
        lines.append("")
    return "\n".join(lines)


@render.register
def _(result: GeFactanal, digits: int = 4) -> str:
    lines: List[str] = []
    for trait, values in result.items():
        lines.append(f"Variable {trait}")
        lines += _section("Correlation matrix among environments", _table(values.cormat, digits, index=True))
        lines += _section("Eigenvalues and explained variance", _table(values.PCA, digits))
        lines += _section("Initial loadings", _table(values.initial_loadings, digits))
        lines += _section("Loadings after varimax rotation and commonalities", _table(values.FA, digits))
        lines += _section("Environmental stratification based on factor analysis", _table(values.env_strat, digits))
        lines.append("Mean = mean; Min = minimum; Max = maximum; CV = coefficient of variation (%)")
        lines.append(f"KMO: {values.KMO:.{digits}g}; mean communality: {values.communalities_mean:.{digits}g}")
        lines.append("")
    return "\n".join(lines)


@render.register
def _(result: FaiBlup, digits: int = 4) -> str:
    lines: List[str] = []
    lines += _section("Principal Component Analysis", _table(result.eigen, digits))
    lines += _section("Factor Analysis", _table(result.FA, digits))
    lines += _section("Spatial probability of the genotypes (FAI-BLUP index)", _table(result.FAI, digits))
    if result.sel_dif_trait is not None:
        first = next(iter(result.sel_dif_trait))
        lines += _section(f"Selection differential ({first})", _table(result.sel_dif_trait[first], digits))
        lines += _section("Selected genotypes", " ".join(result.sel_gen))
    if result.total_gain is not None:
        first = next(iter(result.total_gain))
        lines += _section(f"Total gain by sense ({first})", _table(result.total_gain[first], digits))
    return "\n".join(lines)


@render.register
def _(result: Colindiag, digits: int = 4) -> str:
    vif = _table(result.VIF.to_frame(), digits, index=True)
    return "\n".join(
        [
            f"Condition number: {result.CN:.{digits}g} ({result.severity} collinearity)",
            f"Determinant: {result.det:.{digits}g}",
            f"Largest correlation: {result.largest_corr}",
            f"Smallest correlation: {result.smallest_corr}",
            f"Number of correlations >= |0.8|: {result.ncorhigh}",
            vif,
        ]
    )


@render.register
def _(result: CanCorr, digits: int = 4) -> str:
    lines: List[str] = []
    lines += _section("Matrix (correlation/covariance) between variables of first group (FG)", _table(result.MFG, digits, index=True))
    if result.collinearity is not None:
        lines += _section("Collinearity within first group", render(result.collinearity["FGc"], digits))
    lines += _section("Matrix (correlation/covariance) between variables of second group (SG)", _table(result.MSG, digits, index=True))
    if result.collinearity is not None:
        lines += _section("Collinearity within second group", render(result.collinearity["SGc"], digits))
    lines += _section("Matrix (correlation/covariance) between FG and SG", _table(result.MFG_SG, digits, index=True))
    lines += _section("Correlation of the canonical pairs and hypothesis testing", _table(result.Sigtest, digits))
    lines += _section("Canonical coefficients of the first group", _table(result.Coef_FG, digits, index=True))
    lines += _section("Canonical coefficients of the second group", _table(result.Coef_SG, digits, index=True))
    lines += _section("Canonical loads of the first group", _table(result.Loads_FG, digits, index=True))
    lines += _section("Canonical loads of the second group", _table(result.Loads_SG, digits, index=True))
    return "\n".join(lines)


@render.register
def _(result: GroupCanCorr, digits: int = 4) -> str:
    return "\n\n".join(f"Level {level}\n{render(values, digits)}" for level, values in result.items())


@render.register
def _(result: Lpcor, digits: int = 4) -> str:
    lines: List[str] = []
    lines += _section("Linear and partial correlation coefficients", _table(result.results, digits))
    return "\n".join(lines)


@render.register
def _(result: GroupLpcor, digits: int = 4) -> str:
    return "\n\n".join(f"Level {level}\n{render(values, digits)}" for level, values in result.items())


def print_report(
    result: object,
    *,
    export: bool = False,
    file_name: Optional[str] = None,
    digits: Optional[int] = None,
) -> Optional[Path]:
    """Print a result, or write it to ``<file_name>.txt`` under ``settings.EXPORT_DIR``."""
    text = render(result, digits or settings.DIGITS)
    if not export:
        sys.stdout.write(text + "\n")
        return None
    name = file_name or f"{type(result).__name__} print"
    path = Path(settings.EXPORT_DIR) / f"{name}.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text + "\n")
    logger.info("Report written to %s", path)
    return path
