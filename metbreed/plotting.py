"""Matplotlib/seaborn figures for AMMI, factor analysis and FAI-BLUP results."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence, Union

import matplotlib

matplotlib.use("Agg")  # Use non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy import stats
from statsmodels.nonparametric.smoothers_lowess import lowess

from .ammi import PerformsAmmi
from .exceptions import InvalidArgumentError
from .factanal import GeFactanal
from .selection import FaiBlup

RESIDUAL_PANELS = {
    1: "Residuals vs fitted",
    2: "Normal Q-Q",
    3: "Scale-location",
    4: "Residuals vs factor-levels",
    5: "Histogram of residuals",
    6: "Residuals vs order",
    7: "1:1 line plot",
}


def save_figure(fig: plt.Figure, output: Union[str, Path]) -> None:
    """Write a figure to disk as PNG and release it."""
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output, format="png", bbox_inches="tight")
    plt.close(fig)


def _smooth(ax: plt.Axes, x: np.ndarray, y: np.ndarray) -> None:
    if len(np.unique(x)) > 3:
        fitted = lowess(y, x, return_sorted=True)
        ax.plot(fitted[:, 0], fitted[:, 1], color="red")


def _qq_panel(ax: plt.Axes, stdres: np.ndarray, conf: float) -> None:
    sample = np.sort(stdres)
    n = len(sample)
    a = 3 / 8 if n <= 10 else 0.5
    probs = (np.arange(1, n + 1) - a) / (n + 1 - 2 * a)
    z = stats.norm.ppf(probs)
    q_x = np.quantile(sample, [0.25, 0.75])
    q_z = stats.norm.ppf([0.25, 0.75])
    slope = np.diff(q_x)[0] / np.diff(q_z)[0]
    intercept = q_x[0] - slope * q_z[0]
    line = intercept + slope * z
    se = slope / stats.norm.pdf(z) * np.sqrt(probs * (1 - probs) / n)
    half = stats.norm.ppf(1 - (1 - conf) / 2) * se
    ax.fill_between(z, line - half, line + half, color="gray", alpha=0.2)
    ax.plot(z, line, color="red")
    outside = (sample > line + half) | (sample < line - half)
    ax.scatter(z[~outside], sample[~outside], color="black", s=12)
    ax.scatter(z[outside], sample[outside], color="red", s=12)
    ax.set_xlabel("Theoretical quantiles")
    ax.set_ylabel("Sample quantiles")


def residual_plots(
    model: PerformsAmmi,
    trait: Union[int, str] = 0,
    which: Sequence[int] = (1, 2, 3, 4),
    conf: float = 0.95,
    bins: int = 30,
) -> plt.Figure:
    """Diagnostic residual plots of a fitted AMMI model."""
    unknown = [panel for panel in which if panel not in RESIDUAL_PANELS]
    if unknown:
        raise InvalidArgumentError(f"Invalid panel(s) {unknown}; choose among {sorted(RESIDUAL_PANELS)}")
    augment = model[trait].augment.reset_index(drop=True)
    ncols = 2 if len(which) > 1 else 1
    nrows = int(np.ceil(len(which) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(6 * ncols, 4.5 * nrows), squeeze=False)
    for ax, panel in zip(axes.flat, which):
        if panel == 1:
            ax.scatter(augment["fitted"], augment["resid"], color="black", s=12, alpha=0.8)
            _smooth(ax, augment["fitted"].to_numpy(), augment["resid"].to_numpy())
            ax.axhline(0, linestyle="--", color="gray")
            ax.set_xlabel("Fitted values")
            ax.set_ylabel("Residual")
        elif panel == 2:
            _qq_panel(ax, augment["stdres"].to_numpy(dtype=float), conf)
        elif panel == 3:
            root = np.sqrt(np.abs(augment["stdres"].to_numpy(dtype=float)))
            ax.scatter(augment["fitted"], root, color="black", s=12, alpha=0.8)
            _smooth(ax, augment["fitted"].to_numpy(), root)
            ax.set_xlabel("Fitted Values")
            ax.set_ylabel(r"$\sqrt{|Standardized\ residuals|}$")
        elif panel == 4:
            sns.stripplot(data=augment, x="factors", y="stdres", color="black", size=3, ax=ax)
            ax.axhline(0, linestyle="--", color="gray")
            ax.tick_params(axis="x", labelrotation=90, labelsize=6)
            ax.set_xlabel("Factor levels")
            ax.set_ylabel("Standardized residuals")
        elif panel == 5:
            sns.histplot(augment["resid"], bins=bins, stat="density", color="gray", ax=ax)
            grid = np.linspace(augment["resid"].min(), augment["resid"].max(), 200)
            ax.plot(grid, stats.norm.pdf(grid, augment["resid"].mean(), augment["resid"].std()), color="red")
            ax.set_xlabel("Residuals")
            ax.set_ylabel("Density")
        elif panel == 6:
            ax.plot(augment.index + 1, augment["resid"], color="black", marker="o", markersize=3)
            ax.axhline(0, linestyle="--", color="gray")
            ax.set_xlabel("Observation order")
            ax.set_ylabel("Residuals")
        else:
            ax.scatter(augment["fitted"], augment["Y"], color="black", s=12, alpha=0.8)
            lims = [min(augment["fitted"].min(), augment["Y"].min()), max(augment["fitted"].max(), augment["Y"].max())]
            ax.plot(lims, lims, color="red")
            ax.set_xlabel("Fitted values")
            ax.set_ylabel("Observed values")
        ax.set_title(RESIDUAL_PANELS[panel])
    for ax in list(axes.flat)[len(which):]:
        ax.set_visible(False)
    fig.tight_layout()
    return fig


def plot_scores(model: PerformsAmmi, trait: Union[int, str] = 0, kind: str = "biplot") -> plt.Figure:
    """AMMI1 biplot (mean vs PC1), PC1 x PC2 biplot, or nominal yield plot."""
    result = model[trait]
    name = trait if isinstance(trait, str) else model.names[trait]
    scores = result.model
    fig, ax = plt.subplots(figsize=(8, 6))
    palette = {"GEN": "#2c3e50", "ENV": "#16a085"}
    if kind == "biplot":
        sns.scatterplot(data=scores, x="Y", y="PC1", hue="type", palette=palette, ax=ax)
        ax.axhline(0, linestyle="--", color="gray")
        ax.axvline(scores["Y"].mean(), linestyle="--", color="gray")
        ax.set_xlabel("Mean")
        ax.set_ylabel(f"PC1 ({result.PCA['Proportion'].iloc[0]:.1f}%)")
        for _, row in scores.iterrows():
            ax.annotate(row["Code"], (row["Y"], row["PC1"]), fontsize=8)
    elif kind == "pc2":
        sns.scatterplot(data=scores, x="PC1", y="PC2", hue="type", palette=palette, ax=ax)
        for _, row in scores.loc[scores["type"] == "ENV"].iterrows():
            ax.plot([0, row["PC1"]], [0, row["PC2"]], color=palette["ENV"], linewidth=0.8)
        for _, row in scores.iterrows():
            ax.annotate(row["Code"], (row["PC1"], row["PC2"]), fontsize=8)
        ax.axhline(0, linestyle="--", color="gray")
        ax.axvline(0, linestyle="--", color="gray")
        ax.set_xlabel(f"PC1 ({result.PCA['Proportion'].iloc[0]:.1f}%)")
        ax.set_ylabel(f"PC2 ({result.PCA['Proportion'].iloc[1]:.1f}%)")
    elif kind == "nominal":
        nominal = result.MeansGxE.sort_values("envPC1")
        sns.lineplot(data=nominal, x="envPC1", y="nominal", hue="GEN", ax=ax)
        ax.set_xlabel("Environment PC1 [(dB)^0.5]")
        ax.set_ylabel(f"Nominal {name}")
    else:
        raise InvalidArgumentError("kind must be 'biplot', 'pc2' or 'nominal'")
    ax.set_title(f"AMMI {kind}")
    return fig


def plot_factanal(model: GeFactanal, trait: Union[int, str] = 0) -> plt.Figure:
    """Genotype scores on the first two factors."""
    result = model[trait]
    scores = result.scores_gen
    if scores.shape[1] < 3:
        raise InvalidArgumentError(
            "A plot cannot be generated with only one factor. Use 'mineval' to increase the number of factors retained."
        )
    fig, ax = plt.subplots(figsize=(8, 6))
    sns.scatterplot(data=scores, x="FA1", y="FA2", color="#2c3e50", ax=ax)
    for _, row in scores.iterrows():
        ax.annotate(row["Gen"], (row["FA1"], row["FA2"]), fontsize=8)
    ax.axhline(scores["FA2"].mean(), linestyle="--", color="black")
    ax.axvline(scores["FA1"].mean(), linestyle="--", color="black")
    ax.set_xlabel(f"Factor 1 ({result.PCA['Variance'].iloc[0]:.2f}%)")
    ax.set_ylabel(f"Factor 2 ({result.PCA['Variance'].iloc[1]:.2f}%)")
    return fig


def plot_fai(model: FaiBlup, ideotype: int = 1, SI: float = 15) -> plt.Figure:
    """Genotypes ranked by spatial probability for one ideotype; selected ones highlighted."""
    name = f"ID{ideotype}"
    if name not in model.ideotype_rank:
        raise InvalidArgumentError(f"Ideotype {ideotype} not found; there are {len(model.ideotype_rank)}")
    ranking = model.ideotype_rank[name]
    ngs = int(round(len(ranking) * SI / 100))
    frame = pd.DataFrame({"Genotype": ranking.index, "Probability": ranking.to_numpy()})
    frame["Status"] = np.where(np.arange(len(frame)) < ngs, "Selected", "Not selected")
    fig, ax = plt.subplots(figsize=(8, max(4, 0.25 * len(frame))))
    sns.barplot(
        data=frame,
        y="Genotype",
        x="Probability",
        hue="Status",
        palette={"Selected": "red", "Not selected": "gray"},
        dodge=False,
        ax=ax,
    )
    ax.set_title(f"FAI-BLUP spatial probability ({name})")
    return fig
