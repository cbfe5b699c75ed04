"""Factor analysis of trial means and environment stratification."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from .data import Columns, ProgressCallback, TrialDataset, iter_traits, resolve_verbose
from .exceptions import InvalidArgumentError
from .qc import check_levels
from .results import TraitResults
from .utils import eigen_sorted, fill_ge_means, make_mat, solve_svd, varimax

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FactorSolution:
    """Principal-component factor solution of a correlation matrix."""

    names: List[str]
    eigenvalues: np.ndarray
    initial: np.ndarray
    finish: np.ndarray
    canonical: np.ndarray

    @property
    def n_factors(self) -> int:
        return self.finish.shape[1]

    @property
    def labels(self) -> List[str]:
        return [f"FA{k}" for k in range(1, self.n_factors + 1)]

    @property
    def communalities(self) -> np.ndarray:
        return (self.finish**2).sum(axis=1)

    @property
    def assignment(self) -> np.ndarray:
        """0-based factor on which each variable has its largest absolute loading."""
        return np.abs(self.finish).argmax(axis=1)

    @property
    def factor_order(self) -> List[int]:
        """Variable positions ordered by assigned factor, then by original position."""
        return sorted(range(len(self.names)), key=lambda i: (self.assignment[i], i))

    def eigen_table(self) -> pd.DataFrame:
        share = self.eigenvalues / self.eigenvalues.sum() * 100
        return pd.DataFrame(
            {
                "PC": [f"PC{k}" for k in range(1, len(self.eigenvalues) + 1)],
                "Eigenvalues": self.eigenvalues,
                "Variance": share,
                "Cumul_var": np.cumsum(share),
            }
        )

    def loadings_table(self, which: str, label: str) -> pd.DataFrame:
        table = pd.DataFrame(getattr(self, which), columns=self.labels)
        table.insert(0, label, self.names)
        return table


def factor_loadings(cor: pd.DataFrame, mineval: float = 1.0) -> FactorSolution:
    """Retain factors with eigenvalue >= ``mineval`` and varimax-rotate them."""
    eigenvalues, vectors = eigen_sorted(cor.to_numpy())
    keep = eigenvalues >= mineval
    if not keep.any():
        raise InvalidArgumentError(
            f"No factor has eigenvalue >= {mineval}; use a smaller 'mineval' to retain factors"
        )
    initial = vectors[:, keep] * np.sqrt(eigenvalues[keep])
    finish = varimax(initial)[0] if initial.shape[1] > 1 else initial.copy()
    canonical = solve_svd(cor.to_numpy()) @ finish
    return FactorSolution(
        names=[str(name) for name in cor.columns],
        eigenvalues=eigenvalues,
        initial=initial,
        finish=finish,
        canonical=canonical,
    )


def sampling_adequacy(cor: pd.DataFrame) -> tuple[float, pd.Series]:
    """Kaiser-Meyer-Olkin overall index and per-variable MSA."""
    r = cor.to_numpy()
    inverse = solve_svd(r)
    scale = np.sqrt(np.outer(np.diag(inverse), np.diag(inverse)))
    partial = -inverse / scale
    off = ~np.eye(r.shape[0], dtype=bool)
    r2 = np.where(off, r**2, 0.0)
    p2 = np.where(off, partial**2, 0.0)
    kmo = r2.sum() / (r2.sum() + p2.sum())
    msa = r2.sum(axis=1) / (r2.sum(axis=1) + p2.sum(axis=1))
    return float(kmo), pd.Series(msa, index=cor.columns, name="MSA")


@dataclass(frozen=True)
class FactanalTrait:
    data: pd.DataFrame
    cormat: pd.DataFrame
    PCA: pd.DataFrame
    FA: pd.DataFrame
    env_strat: pd.DataFrame
    KMO: float
    MSA: pd.Series
    communalities: pd.Series
    communalities_mean: float
    initial_loadings: pd.DataFrame
    finish_loadings: pd.DataFrame
    canonical_loadings: pd.DataFrame
    scores_gen: pd.DataFrame


@dataclass(frozen=True)
class GeFactanal(TraitResults[FactanalTrait]):
    pass


def _env_strat(means: pd.DataFrame, solution: FactorSolution) -> pd.DataFrame:
    order = solution.factor_order
    columns = means.iloc[:, order]
    return pd.DataFrame(
        {
            "Env": [solution.names[i] for i in order],
            "Factor": [f"FA{solution.assignment[i] + 1}" for i in order],
            "Mean": columns.mean().to_numpy(),
            "Min": columns.min().to_numpy(),
            "Max": columns.max().to_numpy(),
            "CV": (columns.std() / columns.mean() * 100).to_numpy(),
        }
    )


def factanal_trait(frame: pd.DataFrame, trait: str, mineval: float, impute: bool = True) -> FactanalTrait:
    check_levels(frame, "ENV", 2, "Environment stratification")
    check_levels(frame, "GEN", 3, "Environment stratification")
    means, _ = fill_ge_means(make_mat(frame, "GEN", "ENV", "Y"), trait, impute)
    cor = means.corr()
    solution = factor_loadings(cor, mineval)
    kmo, msa = sampling_adequacy(cor)
    communalities = pd.Series(solution.communalities, index=cor.columns, name="Communality")
    fa = solution.loadings_table("finish", "Env")
    fa["Communality"] = communalities.to_numpy()
    fa["Uniquenesses"] = 1 - communalities.to_numpy()
    z = means / means.std()
    scores = pd.DataFrame(z.to_numpy() @ solution.canonical, columns=solution.labels)
    scores.insert(0, "Gen", means.index)
    if solution.n_factors < 2:
        warnings.warn(
            f"The number of retained factors for '{trait}' is {solution.n_factors}. "
            "A plot with the scores cannot be obtained. Use 'mineval' to increase the number of factors retained",
            UserWarning,
            stacklevel=3,
        )
    return FactanalTrait(
        data=frame,
        cormat=cor,
        PCA=solution.eigen_table().rename(columns={"PC": "PCA"}),
        FA=fa,
        env_strat=_env_strat(means, solution),
        KMO=kmo,
        MSA=msa,
        communalities=communalities,
        communalities_mean=float(communalities.mean()),
        initial_loadings=solution.loadings_table("initial", "Env"),
        finish_loadings=solution.loadings_table("finish", "Env"),
        canonical_loadings=solution.loadings_table("canonical", "Env"),
        scores_gen=scores,
    )


def ge_factanal(
    data: pd.DataFrame,
    env: str,
    gen: str,
    rep: str,
    resp: Columns = None,
    mineval: float = 1,
    verbose: Optional[bool] = None,
    progress: Optional[ProgressCallback] = None,
    impute: bool = True,
) -> GeFactanal:
    """Stratify environments by factor analysis of the GE means.

    Environments are correlated through the genotype means, factors with
    eigenvalue >= ``mineval`` are retained and varimax-rotated, and each
    environment is assigned to the factor on which it loads most.
    """
    dataset = TrialDataset(data, env=env, gen=gen, rep=rep)
    traits = dataset.resolve_traits(resp)
    verbose = resolve_verbose(verbose)
    results = {}
    for _, trait in iter_traits(traits, verbose=verbose, progress=progress):
        results[trait] = factanal_trait(dataset.trait_frame(trait), trait, mineval, impute)
        if verbose:
            logger.info(
                "Variable %s: %d factor(s) retained, KMO = %.3f",
                trait,
                results[trait].scores_gen.shape[1] - 1,
                results[trait].KMO,
            )
    return GeFactanal(results)
