"""Multi-trait genotype selection with the factor-analysis and ideotype-design index (FAI-BLUP)."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist

from .data import resolve_verbose
from .exceptions import DataQualityError, InvalidArgumentError
from .factanal import FactorSolution, factor_loadings

logger = logging.getLogger(__name__)

Ideotype = Union[str, Sequence[Union[str, float]], None]
SENSES = {"max": "increase", "min": "decrease", "mean": "keep"}


def _parse_ideotype(values: Ideotype, default: str, nvar: int, name: str) -> List[Union[str, float]]:
    if values is None:
        return [default] * nvar
    if isinstance(values, str):
        values = [value.strip() for value in values.split(",")]
    parsed: List[Union[str, float]] = []
    for value in values:
        if isinstance(value, str) and value in SENSES:
            parsed.append(value)
            continue
        try:
            parsed.append(float(value))
        except (TypeError, ValueError):
            raise InvalidArgumentError(
                f"Invalid value '{value}' in {name}; use 'max', 'min', 'mean' or a number"
            ) from None
    if len(parsed) != nvar:
        raise InvalidArgumentError("The length of DI and UI must be the same length of data.")
    return parsed


def _target(value: Union[str, float], column: pd.Series) -> float:
    if value == "max":
        return float(column.max())
    if value == "min":
        return float(column.min())
    if value == "mean":
        return float(column.mean())
    return float(value)


def _genotype_means(means: pd.DataFrame, gen: Optional[str]) -> pd.DataFrame:
    if gen is not None:
        if gen not in means.columns:
            raise InvalidArgumentError(f"Column '{gen}' not found in data")
        means = means.groupby(means[gen].astype(str), sort=False).mean(numeric_only=True)
    text = [column for column in means.columns if not pd.api.types.is_numeric_dtype(means[column])]
    if text:
        raise DataQualityError(f"All columns in data must be numeric; found {', '.join(map(str, text))}")
    means = means.astype(float)
    means.index = means.index.astype(str)
    return means


@dataclass(frozen=True)
class FaiBlup:
    data: pd.DataFrame
    cormat: pd.DataFrame
    eigen: pd.DataFrame
    FA: pd.DataFrame
    canonical_loadings: pd.DataFrame
    FAI: pd.DataFrame
    ideotype_rank: Dict[str, pd.Series]
    sel_dif_trait: Optional[Dict[str, pd.DataFrame]]
    sel_gen: List[str]
    construction_ideotypes: pd.DataFrame
    total_gain: Optional[Dict[str, pd.DataFrame]]
    solution: FactorSolution


def _selection_differential(
    means: pd.DataFrame,
    solution: FactorSolution,
    selected: Sequence[str],
    h2: Optional[Mapping[str, float]],
    senses: Optional[Dict[str, str]],
) -> pd.DataFrame:
    order = solution.factor_order
    columns = means.iloc[:, order]
    xo = columns.mean()
    xs = columns.loc[list(selected)].mean()
    table = pd.DataFrame(
        {
            "VAR": columns.columns,
            "Factor": [solution.assignment[i] + 1 for i in order],
            "Xo": xo.to_numpy(),
            "Xs": xs.to_numpy(),
            "SD": (xs - xo).to_numpy(),
            "SDperc": ((xs - xo) / xo.abs() * 100).to_numpy(),
        }
    )
    if h2 is not None:
        missing = [var for var in table["VAR"] if var not in h2]
        if missing:
            raise InvalidArgumentError(f"Heritability not given for: {', '.join(missing)}")
        table["h2"] = table["VAR"].map(h2).astype(float)
        table["SG"] = table["SD"] * table["h2"]
        table["SGperc"] = table["SG"] / table["Xo"] * 100
    if senses is not None:
        table["sense"] = table["VAR"].map(senses)
        gain = ((table["sense"] == "decrease") & (table["SDperc"] < 0)) | (
            (table["sense"] == "increase") & (table["SDperc"] > 0)
        )
        table["goal"] = np.where(gain, 100, 0)
    return table


def _total_gain(table: pd.DataFrame) -> pd.DataFrame:
    stats = [column for column in ("SDperc", "SGperc") if column in table.columns]
    long = table.melt(id_vars="sense", value_vars=stats, var_name="variable")
    summary = long.groupby(["sense", "variable"])["value"].agg(["min", "mean", "max", "sum"])
    return summary.reset_index()


def _spatial_probability(distance: np.ndarray) -> np.ndarray:
    """Row-normalised inverse distances; a genotype on an ideotype belongs to it alone."""
    on_ideotype = np.isclose(distance, 0.0, rtol=0.0, atol=1e-12)
    with np.errstate(divide="ignore"):
        inverse = np.where(on_ideotype, 0.0, 1 / distance)
    exact = on_ideotype.any(axis=1)
    inverse[exact] = on_ideotype[exact].astype(float)
    return inverse / inverse.sum(axis=1, keepdims=True)


def fai_blup(
    means: pd.DataFrame,
    gen: Optional[str] = None,
    DI: Ideotype = None,
    UI: Ideotype = None,
    SI: Optional[float] = 15,
    mineval: float = 1,
    h2: Optional[Mapping[str, float]] = None,
    verbose: Optional[bool] = None,
) -> FaiBlup:
    """Rank genotypes by their spatial probability of resembling ideotypes.

    ``means`` holds one row per genotype (index or ``gen`` column) and one
    column per trait, usually BLUPs. Traits are grouped into varimax factors;
    each factor contributes a desirable (``DI``) and an undesirable (``UI``)
    target, and every combination of targets across factors defines an
    ideotype. Genotypes are scored on canonical loadings and compared to the
    ideotypes by Euclidean distance. The ``SI`` percent best genotypes for
    the first ideotype are selected and their selection differentials
    reported per ideotype.
    """
    means = _genotype_means(means, gen)
    nvar = means.shape[1]
    if nvar < 2:
        raise InvalidArgumentError("The multitrait index cannot be computed with one single variable.")
    ideotype_d = _parse_ideotype(DI, "max", nvar, "DI")
    ideotype_u = _parse_ideotype(UI, "min", nvar, "UI")
    sd = means.std()
    constant = sd.index[(sd == 0) | sd.isna()].tolist()
    if constant:
        raise DataQualityError(
            f"The genotype effect was not significant for the variables {' '.join(constant)}. "
            "Please, remove them and try again."
        )
    ngs = None if SI is None else int(round(len(means) * SI / 100))

    normalized = means / sd
    cor = normalized.corr()
    solution = factor_loadings(cor, mineval)
    nf = solution.n_factors
    scores = normalized.to_numpy() @ solution.canonical

    order = solution.factor_order
    d_targets = np.array([_target(ideotype_d[i], normalized.iloc[:, i]) for i in order])
    u_targets = np.array([_target(ideotype_u[i], normalized.iloc[:, i]) for i in order])
    factor_of = np.array([solution.assignment[i] for i in order])
    construction = list(itertools.product(*[(f"D{k}", f"U{k}") for k in range(1, nf + 1)]))
    ids = [f"ID{k}" for k in range(1, len(construction) + 1)]
    ideotypes = np.empty((len(construction), nvar))
    for row, combo in enumerate(construction):
        desirable = np.array([combo[f].startswith("D") for f in factor_of])
        ideotypes[row] = np.where(desirable, d_targets, u_targets)
    ideotype_scores = ideotypes @ solution.canonical[order]

    stacked = np.vstack([scores, ideotype_scores])
    stacked = stacked / stacked.std(axis=0, ddof=1)
    distance = np.sqrt(cdist(stacked[: len(means)], stacked[len(means):]) ** 2 / nf)
    probability = pd.DataFrame(_spatial_probability(distance), index=means.index, columns=ids)

    ideotype_rank = {name: probability[name].sort_values(ascending=False) for name in ids}
    fai = probability.sort_values(ids[0], ascending=False).rename_axis("Genotype").reset_index()
    sel_gen = list(ideotype_rank[ids[0]].index[:ngs]) if ngs is not None else []

    sel_dif = None
    total_gain = None
    if ngs is not None:
        senses = None
        if DI is not None:
            senses = {name: SENSES.get(value, "none") if isinstance(value, str) else "none" for name, value in zip(means.columns, ideotype_d)}
        sel_dif = {
            name: _selection_differential(means, solution, list(ideotype_rank[name].index[:ngs]), h2, senses)
            for name in ids
        }
        if senses is not None:
            total_gain = {name: _total_gain(table) for name, table in sel_dif.items()}

    fa = solution.loadings_table("finish", "Variable")
    fa["Communality"] = solution.communalities
    eigen = solution.eigen_table()[["PC", "Eigenvalues", "Cumul_var"]]
    if resolve_verbose(verbose):
        logger.info("Principal Component Analysis\n%s", eigen.round(2).to_string(index=False))
        logger.info("Factor Analysis\n%s", fa.round(2).to_string(index=False))
        logger.info("Communality mean: %.4f", solution.communalities.mean())
        if sel_dif is not None:
            logger.info("Selection differential\n%s", sel_dif[ids[0]].to_string(index=False))
            logger.info("Selected genotypes: %s", " ".join(sel_gen))
    return FaiBlup(
        data=means,
        cormat=cor,
        eigen=eigen,
        FA=fa,
        canonical_loadings=solution.loadings_table("canonical", "Variable"),
        FAI=fai,
        ideotype_rank=ideotype_rank,
        sel_dif_trait=sel_dif,
        sel_gen=sel_gen,
        construction_ideotypes=pd.DataFrame(construction, index=ids, columns=[f"Factor{k}" for k in range(1, nf + 1)]),
        total_gain=total_gain,
        solution=solution,
    )
