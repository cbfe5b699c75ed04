import pytest

from metbreed.ammi import performs_ammi
from metbreed.exceptions import InvalidArgumentError
from metbreed.plotting import plot_fai, plot_scores, residual_plots, save_figure
from metbreed.selection import fai_blup


@pytest.fixture
def ammi_model(make_trial):
    return performs_ammi(make_trial(n_env=4, n_gen=6, traits=("GY",)), "ENV", "GEN", "REP", "GY", verbose=False)


def test_residual_plots_draws_requested_panels(ammi_model):
    fig = residual_plots(ammi_model, which=(1, 2, 3, 4, 5, 6, 7))
    visible = [ax for ax in fig.axes if ax.get_visible()]
    assert len(visible) == 7
    assert visible[0].get_title() == "Residuals vs fitted"


def test_residual_plots_rejects_unknown_panel(ammi_model):
    with pytest.raises(InvalidArgumentError):
        residual_plots(ammi_model, which=(1, 9))


@pytest.mark.parametrize("kind", ["biplot", "pc2", "nominal"])
def test_plot_scores(ammi_model, kind, tmp_path):
    fig = plot_scores(ammi_model, kind=kind)
    output = tmp_path / f"{kind}.png"
    save_figure(fig, output)
    assert output.exists()
    assert output.stat().st_size > 0


def test_plot_scores_labels_nominal_axis_with_trait(ammi_model):
    fig = plot_scores(ammi_model, kind="nominal")
    assert fig.axes[0].get_ylabel() == "Nominal GY"
    assert "Mg/ha" not in fig.axes[0].get_ylabel()

def test_plot_fai(genotype_means, tmp_path):
    result = fai_blup(genotype_means, verbose=False)
    fig = plot_fai(result, ideotype=1)
    save_figure(fig, tmp_path / "fai.png")
    assert (tmp_path / "fai.png").exists()
    with pytest.raises(InvalidArgumentError):
        plot_fai(result, ideotype=9)
