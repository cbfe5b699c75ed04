"""Sequential (type I) analysis of variance and within-environment ANOVA."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.formula.api import ols
from statsmodels.regression.linear_model import RegressionResultsWrapper
from statsmodels.stats.anova import anova_lm

from .data import Columns, ProgressCallback, TrialDataset, iter_traits, resolve_verbose
from .exceptions import UnsupportedDesignError
from .results import TraitResults

logger = logging.getLogger(__name__)

ANOVA_COLUMNS = ["Source", "Df", "Sum Sq", "Mean Sq", "F value", "Pr(>F)"]


def drop_unused_levels(frame: pd.DataFrame) -> pd.DataFrame:
    frame = frame.copy()
    for column in frame.columns:
        if isinstance(frame[column].dtype, pd.CategoricalDtype):
            frame[column] = frame[column].cat.remove_unused_categories()
    return frame


def sequential_anova(
    data: pd.DataFrame,
    terms: Sequence[str],
    response: str = "Y",
) -> Tuple[pd.DataFrame, RegressionResultsWrapper]:
    """Type I ANOVA built from nested least-squares fits.

    Each term is tested against the residual mean square of the full model.
    Rank-deficient terms get zero degrees of freedom and a missing F test.
    Returns the ANOVA table (one row per term plus ``Residuals``) and the
    full-model fit.
    """
    data = drop_unused_levels(data)
    fits = [ols(f"{response} ~ 1", data=data).fit()]
    for k in range(1, len(terms) + 1):
        fits.append(ols(f"{response} ~ {' + '.join(terms[:k])}", data=data).fit())
    full = fits[-1]
    comparison = anova_lm(*fits)
    df_resid = float(full.df_resid)
    mse = float(full.ssr) / df_resid if df_resid > 0 else np.nan
    rows: List[dict] = []
    for term, (_, row) in zip(terms, comparison.iloc[1:].iterrows()):
        df = float(row["df_diff"])
        ss = max(float(row["ss_diff"]), 0.0)
        ms = ss / df if df > 0 else np.nan
        f_value = ms / mse if df > 0 and mse > 0 else np.nan
        p_value = stats.f.sf(f_value, df, df_resid) if np.isfinite(f_value) else np.nan
        rows.append(
            {"Source": term, "Df": df, "Sum Sq": ss, "Mean Sq": ms, "F value": f_value, "Pr(>F)": p_value}
        )
    rows.append(
        {"Source": "Residuals", "Df": df_resid, "Sum Sq": float(full.ssr), "Mean Sq": mse, "F value": np.nan, "Pr(>F)": np.nan}
    )
    return pd.DataFrame(rows, columns=ANOVA_COLUMNS), full


def _row(table: pd.DataFrame, source: str) -> pd.Series:
    return table.loc[table["Source"] == source].iloc[0]


def _heritability(msg: float, mse: float) -> Tuple[float, float]:
    h2 = (msg - mse) / msg
    accuracy = 0.0 if h2 < 0 else float(np.sqrt(h2))
    return h2, accuracy


def environment_anova(frame: pd.DataFrame, lattice: bool) -> dict:
    """ANOVA summary of a single environment."""
    terms = ["GEN", "REP", "REP:BLOCK"] if lattice else ["GEN", "REP"]
    table, _ = sequential_anova(frame, terms)
    gen = _row(table, "GEN")
    rep = _row(table, "REP")
    resid = _row(table, "Residuals")
    mean = float(frame["Y"].mean())
    summary = {
        "MEAN": mean,
        "DFG": gen["Df"],
        "MSG": gen["Mean Sq"],
        "FCG": gen["F value"],
        "PFG": gen["Pr(>F)"],
    }
    if lattice:
        block = _row(table, "REP:BLOCK")
        summary.update(
            {
                "DFCR": rep["Df"],
                "MSCR": rep["Mean Sq"],
                "FCR": rep["F value"],
                "PFCR": rep["Pr(>F)"],
                "DFIB_R": block["Df"],
                "MSIB_R": block["Mean Sq"],
                "FCIB_R": block["F value"],
                "PFIB_R": block["Pr(>F)"],
            }
        )
    else:
        summary.update({"DFB": rep["Df"], "MSB": rep["Mean Sq"], "FCB": rep["F value"], "PFB": rep["Pr(>F)"]})
    h2, accuracy = _heritability(gen["Mean Sq"], resid["Mean Sq"])
    summary.update(
        {
            "DFE": resid["Df"],
            "MSE": resid["Mean Sq"],
            "CV": np.sqrt(resid["Mean Sq"]) / mean * 100,
            "h2": h2,
            "AS": accuracy,
        }
    )
    return summary


@dataclass(frozen=True)
class AnovaIndTrait:
    individual: pd.DataFrame
    MSRratio: float


@dataclass(frozen=True)
class AnovaInd(TraitResults[AnovaIndTrait]):
    pass


def anova_ind(
    data: pd.DataFrame,
    env: str,
    gen: str,
    rep: str,
    resp: Columns = None,
    block: Optional[str] = None,
    verbose: Optional[bool] = None,
    progress: Optional[ProgressCallback] = None,
) -> AnovaInd:
    """Within-environment ANOVA for RCBD or alpha-lattice trials.

    Returns one table per trait with the genotype and replicate (or
    complete-replicate and block-within-replicate) tests of every
    environment, its CV, broad-sense heritability ``h2`` and selective
    accuracy ``AS``, plus the ratio between the largest and smallest
    residual mean squares.
    """
    dataset = TrialDataset(data, env=env, gen=gen, rep=rep, block=block)
    traits = dataset.resolve_traits(resp)
    verbose = resolve_verbose(verbose)
    lattice = block is not None
    results = {}
    for _, trait in iter_traits(traits, verbose=verbose, progress=progress):
        frame = dataset.trait_frame(trait)
        rows = []
        for level, subset in frame.groupby("ENV", observed=True, sort=True):
            if subset["GEN"].nunique() < 2 or subset["REP"].nunique() < 2:
                raise UnsupportedDesignError(
                    f"Environment '{level}' of '{trait}' needs at least two genotypes and two replicates"
                )
            rows.append({"ENV": str(level), **environment_anova(subset, lattice)})
        individual = pd.DataFrame(rows)
        ratio = float(individual["MSE"].max() / individual["MSE"].min())
        results[trait] = AnovaIndTrait(individual=individual, MSRratio=ratio)
        logger.debug("Within-environment ANOVA done for %s (MSRratio=%.3f)", trait, ratio)
    return AnovaInd(results)
