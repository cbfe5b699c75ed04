"""Nonparametric and variance-based stability indices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .data import Columns, ProgressCallback, TrialDataset, iter_traits, resolve_verbose
from .qc import check_levels
from .results import TraitResults
from .utils import additive_residuals, fill_ge_means, make_mat, rank_desc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fox(TraitResults[pd.DataFrame]):
    pass


@dataclass(frozen=True)
class Shukla(TraitResults[pd.DataFrame]):
    pass


def fox(
    data: pd.DataFrame,
    env: str,
    gen: str,
    resp: Columns = None,
    verbose: Optional[bool] = None,
    progress: Optional[ProgressCallback] = None,
) -> Fox:
    """Fox's TOP third criterion.

    Genotype means are ranked within each environment, highest first, with
    ties broken by genotype order so that each environment has exactly
    three top slots. ``TOP`` counts the environments in which a genotype
    ranks among the three best.
    """
    dataset = TrialDataset(data, env=env, gen=gen)
    traits = dataset.resolve_traits(resp)
    results = {}
    for _, trait in iter_traits(traits, verbose=resolve_verbose(verbose), progress=progress):
        frame = dataset.trait_frame(trait)
        cells = frame.groupby(["ENV", "GEN"], observed=True)["Y"].mean().reset_index()
        cells["grank"] = cells.groupby("ENV", observed=True)["Y"].transform(rank_desc)
        top = cells.assign(top=cells["grank"] <= 3).groupby("GEN", observed=True)["top"].sum()
        overall = frame.groupby("GEN", observed=True)["Y"].mean()
        table = pd.DataFrame({"GEN": overall.index.astype(str), "Y": overall.to_numpy()})
        table["TOP"] = top.reindex(overall.index).fillna(0).astype(int).to_numpy()
        results[trait] = table
    return Fox(results)


def shukla(
    data: pd.DataFrame,
    env: str,
    gen: str,
    rep: str,
    resp: Columns = None,
    verbose: Optional[bool] = None,
    progress: Optional[ProgressCallback] = None,
    impute: bool = True,
) -> Shukla:
    """Shukla's stability variance with its simultaneous selection index.

    ``ShuklaVar`` is an unbiased estimate of each genotype's share of the
    GE interaction variance; ``ssiShukaVar`` adds the rank of the mean
    (highest first) to the rank of the stability variance (lowest first).
    """
    dataset = TrialDataset(data, env=env, gen=gen, rep=rep)
    traits = dataset.resolve_traits(resp)
    results = {}
    for _, trait in iter_traits(traits, verbose=resolve_verbose(verbose), progress=progress):
        frame = dataset.trait_frame(trait)
        g = check_levels(frame, "GEN", 3, "Shukla's stability variance")
        e = check_levels(frame, "ENV", 2, "Shukla's stability variance")
        means, _ = fill_ge_means(make_mat(frame, "GEN", "ENV", "Y"), trait, impute)
        ge_effect = additive_residuals(means).to_numpy()
        wi = (ge_effect**2).sum(axis=1)
        shukla_var = (g * (g - 1) * wi - wi.sum()) / ((e - 1) * (g - 1) * (g - 2))
        gen_means = frame.groupby("GEN", observed=True)["Y"].mean()
        gen_means.index = gen_means.index.astype(str)
        gen_means = gen_means.reindex(means.index)
        table = pd.DataFrame({"GEN": means.index.astype(str), "Y": gen_means.to_numpy(), "ShuklaVar": shukla_var})
        table["rMean"] = rank_desc(table["Y"])
        table["rShukaVar"] = table["ShuklaVar"].rank(method="first")
        table["ssiShukaVar"] = table["rMean"] + table["rShukaVar"]
        results[trait] = table
    return Shukla(results)
