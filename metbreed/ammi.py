"""Additive Main effects and Multiplicative Interaction (AMMI) models."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from .anova import ANOVA_COLUMNS, sequential_anova
from .config import settings
from .data import Columns, ProgressCallback, TrialDataset, iter_traits, resolve_verbose
from .exceptions import InvalidArgumentError, UnsupportedDesignError
from .results import TraitResults
from .utils import additive_residuals, fill_ge_means, make_long, make_mat

logger = logging.getLogger(__name__)

AMMI_COLUMNS = ANOVA_COLUMNS + ["Proportion", "Accumulated"]
SOURCE_LABELS = {"ENV:REP": "REP(ENV)", "ENV:REP:BLOCK": "BLOCK(REP*ENV)"}


@dataclass(frozen=True)
class AmmiDecomposition:
    """Singular value decomposition of the GE interaction matrix."""

    interaction: pd.DataFrame
    d: np.ndarray
    u: np.ndarray
    v: np.ndarray

    @classmethod
    def from_means(cls, means: pd.DataFrame) -> "AmmiDecomposition":
        interaction = additive_residuals(means)
        u, d, vt = np.linalg.svd(interaction.to_numpy(), full_matrices=False)
        return cls(interaction=interaction, d=d, u=u, v=vt.T)

    def term(self, naxis: int) -> pd.DataFrame:
        """Interaction reconstructed from the first ``naxis`` axes."""
        values = (self.u[:, :naxis] * self.d[:naxis]) @ self.v[:, :naxis].T
        return pd.DataFrame(values, index=self.interaction.index, columns=self.interaction.columns)


@dataclass(frozen=True)
class AmmiTrait:
    ANOVA: pd.DataFrame
    PCA: pd.DataFrame
    MeansGxE: pd.DataFrame
    model: pd.DataFrame
    augment: pd.DataFrame
    probint: float
    decomposition: AmmiDecomposition
    minimo: int
    imputed: bool = False


@dataclass(frozen=True)
class PerformsAmmi(TraitResults[AmmiTrait]):
    design: str = "RCBD"

    def predict(self, naxis: Union[int, Sequence[int]] = 2) -> pd.DataFrame:
        return predict_ammi(self, naxis)


def _pc_table(decomposition: AmmiDecomposition, ngen: int, nenv: int, nrep: int, minimo: int, mse: float, dfe: float) -> pd.DataFrame:
    ss = decomposition.d[:minimo] ** 2 * nrep
    percent = ss / ss.sum() * 100
    rows: List[dict] = []
    accumulated = 0.0
    for k in range(1, minimo + 1):
        df = (ngen - 1) + (nenv - 1) - (2 * k - 1)
        if df <= 0:
            break
        accumulated += percent[k - 1]
        ms = ss[k - 1] / df
        f_value = ms / mse if mse > 0 else np.nan
        p_value = stats.f.sf(f_value, df, dfe) if dfe > 0 and np.isfinite(f_value) else np.nan
        rows.append(
            {
                "Source": f"PC{k}",
                "Df": float(df),
                "Sum Sq": ss[k - 1],
                "Mean Sq": ms,
                "F value": f_value,
                "Pr(>F)": p_value,
                "Proportion": percent[k - 1],
                "Accumulated": accumulated,
            }
        )
    return pd.DataFrame(rows, columns=AMMI_COLUMNS)


def _ammi_anova(table: pd.DataFrame, pcs: pd.DataFrame, lattice: bool) -> pd.DataFrame:
    table = table.copy()
    table["Source"] = table["Source"].replace(SOURCE_LABELS)
    order = ["ENV", "REP(ENV)"] + (["BLOCK(REP*ENV)"] if lattice else []) + ["GEN", "GEN:ENV"]
    effects = table.set_index("Source").loc[order].reset_index()
    if not lattice:
        ms_env = effects.loc[0, "Mean Sq"]
        ms_rep, df_rep = effects.loc[1, "Mean Sq"], effects.loc[1, "Df"]
        f_env = ms_env / ms_rep if ms_rep > 0 else np.nan
        effects.loc[0, "F value"] = f_env
        effects.loc[0, "Pr(>F)"] = stats.f.sf(f_env, effects.loc[0, "Df"], df_rep) if np.isfinite(f_env) else np.nan
    residuals = table.loc[table["Source"] == "Residuals"]
    observed = pd.concat([effects, residuals], ignore_index=True)
    total = pd.DataFrame(
        [
            {
                "Source": "Total",
                "Df": observed["Df"].sum(),
                "Sum Sq": observed["Sum Sq"].sum(),
                "Mean Sq": observed["Sum Sq"].sum() / observed["Df"].sum(),
            }
        ]
    )
    return pd.concat([effects, pcs, residuals, total], ignore_index=True).reindex(columns=AMMI_COLUMNS)


def _augment(frame: pd.DataFrame, fit, lattice: bool) -> pd.DataFrame:
    influence = fit.get_influence()
    augment = frame.copy()
    augment["hat"] = influence.hat_matrix_diag
    augment["sigma"] = np.sqrt(influence.sigma2_not_obsi)
    augment["fitted"] = fit.fittedvalues.to_numpy()
    augment["resid"] = fit.resid.to_numpy()
    augment["stdres"] = influence.resid_studentized_internal
    augment["se_fit"] = fit.get_prediction().se_mean
    keys = ["GEN", "REP", "BLOCK"] if lattice else ["GEN", "REP"]
    augment["factors"] = augment[keys].astype(str).agg("_".join, axis=1)
    return augment


def _score_table(means: pd.DataFrame, decomposition: AmmiDecomposition, minimo: int) -> pd.DataFrame:
    root = np.sqrt(decomposition.d[:minimo])
    labels = [f"PC{k}" for k in range(1, minimo + 1)]
    gen_scores = pd.DataFrame(decomposition.u[:, :minimo] * root, columns=labels)
    env_scores = pd.DataFrame(decomposition.v[:, :minimo] * root, columns=labels)
    gen_part = pd.concat(
        [pd.DataFrame({"type": "GEN", "Code": means.index, "Y": means.mean(axis=1).to_numpy()}), gen_scores], axis=1
    )
    env_part = pd.concat(
        [pd.DataFrame({"type": "ENV", "Code": means.columns, "Y": means.mean(axis=0).to_numpy()}), env_scores], axis=1
    )
    return pd.concat([gen_part, env_part], ignore_index=True)


def _means_gxe(means: pd.DataFrame, model: pd.DataFrame) -> pd.DataFrame:
    long = make_long(means)
    gen = model.loc[model["type"] == "GEN"].set_index("Code")
    env = model.loc[model["type"] == "ENV"].set_index("Code")
    long["envPC1"] = long["ENV"].map(env["PC1"]).to_numpy()
    long["genPC1"] = long["GEN"].map(gen["PC1"]).to_numpy()
    long["nominal"] = long["GEN"].map(gen["Y"]).to_numpy() + long["genPC1"] * long["envPC1"]
    return long


def fit_ammi_trait(frame: pd.DataFrame, trait: str, lattice: bool, impute: bool = True, **impute_options) -> AmmiTrait:
    """Fit the AMMI model to one trait in standard ENV/GEN/REP[/BLOCK]/Y form."""
    ngen = frame["GEN"].nunique()
    nenv = frame["ENV"].nunique()
    nrep = frame["REP"].nunique()
    minimo = min(ngen, nenv) - 1
    if minimo < 2:
        raise UnsupportedDesignError(
            "The AMMI analysis is not possible. Both genotypes and environments must have more than two levels."
        )
    terms = ["GEN", "ENV", "GEN:ENV", "ENV:REP"] + (["ENV:REP:BLOCK"] if lattice else [])
    table, fit = sequential_anova(frame, terms)
    dfe = float(fit.df_resid)
    mse = float(fit.ssr) / dfe if dfe > 0 else np.nan
    probint = float(table.loc[table["Source"] == "GEN:ENV", "Pr(>F)"].iloc[0])

    means, imputed = fill_ge_means(make_mat(frame, "GEN", "ENV", "Y"), trait, impute, **impute_options)
    decomposition = AmmiDecomposition.from_means(means)
    pcs = _pc_table(decomposition, ngen, nenv, nrep, minimo, mse, dfe)
    model = _score_table(means, decomposition, minimo)
    return AmmiTrait(
        ANOVA=_ammi_anova(table, pcs, lattice),
        PCA=pcs.rename(columns={"Source": "PC"}),
        MeansGxE=_means_gxe(means, model),
        model=model,
        augment=_augment(frame, fit, lattice),
        probint=probint,
        decomposition=decomposition,
        minimo=minimo,
        imputed=imputed,
    )


def performs_ammi(
    data: pd.DataFrame,
    env: str,
    gen: str,
    rep: str,
    resp: Columns = None,
    block: Optional[str] = None,
    verbose: Optional[bool] = None,
    progress: Optional[ProgressCallback] = None,
    impute: bool = True,
    **impute_options,
) -> PerformsAmmi:
    """Fit the AMMI model to every response variable.

    The joint ANOVA uses ``Y ~ GEN + ENV + GEN:ENV + ENV/REP`` (plus
    ``ENV/REP/BLOCK`` for alpha-lattice trials). The GE interaction of the
    genotype-by-environment means is then split by singular value
    decomposition into multiplicative axes, each tested against the pooled
    residual mean square. Missing GE cells are filled by EM-AMMI imputation
    (with a ``DataImputationWarning``) unless ``impute`` is False, in which
    case a ``DataQualityError`` is raised. Extra keyword arguments go to
    :func:`metbreed.utils.impute_missing_val`.
    """
    dataset = TrialDataset(data, env=env, gen=gen, rep=rep, block=block)
    traits = dataset.resolve_traits(resp)
    verbose = resolve_verbose(verbose)
    lattice = block is not None
    results = {}
    for _, trait in iter_traits(traits, verbose=verbose, progress=progress):
        results[trait] = fit_ammi_trait(dataset.trait_frame(trait), trait, lattice, impute, **impute_options)
        if verbose:
            logger.info("Variable %s\nAMMI analysis table\n%s", trait, results[trait].ANOVA.to_string(index=False))
    if verbose:
        nonsignificant = [trait for trait, result in results.items() if result.probint > settings.ALPHA]
        if nonsignificant:
            logger.info("Variables with nonsignificant GxE interaction: %s", ", ".join(nonsignificant))
        else:
            logger.info(
                "All variables with significant (p < %s) genotype-vs-environment interaction", settings.ALPHA
            )
    return PerformsAmmi(results, design="alpha-lattice" if lattice else "RCBD")


def predict_ammi(model: PerformsAmmi, naxis: Union[int, Sequence[int]] = 2) -> pd.DataFrame:
    """Predict GE means from the first ``naxis`` interaction axes of each trait.

    ``naxis`` is a single number of axes applied to every trait, or one
    value per trait. The additive (AMMI0) prediction is always returned in
    the ``AMMI0`` column.
    """
    if isinstance(naxis, (int, np.integer)):
        axes = [int(naxis)] * len(model)
    else:
        axes = [int(value) for value in naxis]
        if len(axes) != len(model):
            raise InvalidArgumentError(
                f"The argument 'naxis' must have length {len(model)}, the same number of variables in the model"
            )
    frames = []
    for (trait, result), n in zip(model.items(), axes):
        means = result.MeansGxE[["ENV", "GEN", "Y"]].copy()
        mat = make_mat(means, "GEN", "ENV", "Y")
        minimo = min(mat.shape) - 1
        if n == 0:
            raise InvalidArgumentError(
                "Invalid argument. The AMMI0 model is calculated automatically. Please, inform naxis > 0"
            )
        if n < 0 or n > minimo:
            raise InvalidArgumentError(
                f"The number of axis to be used must be lesser than or equal to min(GEN-1;ENV-1), in this case, {minimo}."
            )
        decomposition = AmmiDecomposition.from_means(mat)
        means = means.astype({"ENV": str, "GEN": str})
        means = means.merge(make_long(decomposition.interaction, value="RESIDUAL"), on=["ENV", "GEN"], how="left")
        means["Ypred"] = means["Y"] - means["RESIDUAL"]
        means = means.merge(make_long(decomposition.term(n), value="ResAMMI"), on=["ENV", "GEN"], how="left")
        means["YpredAMMI"] = means["Ypred"] + means["ResAMMI"]
        means["AMMI0"] = means["Ypred"]
        means.insert(0, "TRAIT", trait)
        frames.append(means)
    return pd.concat(frames, ignore_index=True)
