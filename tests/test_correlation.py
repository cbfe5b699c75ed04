import numpy as np
import pandas as pd
import pytest

from metbreed.correlation import GroupCanCorr, can_corr, colindiag, lpcor
from metbreed.exceptions import InvalidArgumentError, MissingValuesWarning


@pytest.fixture
def traits():
    rng = np.random.default_rng(5)
    n = 60
    x1 = rng.normal(0, 1, n)
    x2 = rng.normal(0, 1, n)
    return pd.DataFrame(
        {
            "site": np.repeat(["A", "B"], n // 2),
            "x1": x1,
            "x2": x2,
            "y1": x1 + rng.normal(0, 0.5, n),
            "y2": x2 - 0.5 * x1 + rng.normal(0, 0.5, n),
            "y3": rng.normal(0, 1, n),
        }
    )


def test_can_corr_canonical_correlations_are_bounded(traits):
    result = can_corr(traits, FG=["x1", "x2"], SG=["y1", "y2", "y3"], verbose=False, collinearity=False)
    sig = result.Sigtest
    assert list(sig["Pair"]) == ["U1V1", "U2V2"]
    assert sig["Corr"].between(0, 1).all()
    assert sig["Corr"].is_monotonic_decreasing
    assert sig["Lambda"].between(0, 1).all()
    assert list(sig["DF"]) == [6, 2]
    assert sig["Lambda"].iloc[0] == pytest.approx(np.prod(1 - sig["Corr"] ** 2))
    assert sig["significant"].iloc[0]
    assert result.Coef_FG.shape == (2, 2)
    assert result.Coef_SG.shape == (3, 2)
    assert result.Score_FG.shape == (60, 2)


def test_can_corr_scores_reproduce_canonical_correlation(traits):
    result = can_corr(traits, FG=["x1", "x2"], SG=["y1", "y2", "y3"], use="cov", verbose=False, collinearity=False)
    r = np.corrcoef(result.Score_FG["U1"], result.Score_SG["V1"])[0, 1]
    assert abs(r) == pytest.approx(result.Sigtest["Corr"].iloc[0], rel=1e-6)


def test_can_corr_identical_groups_are_perfectly_correlated(traits):
    result = can_corr(traits, FG=["x1", "x2"], SG=["x1", "x2", "y3"], verbose=False, collinearity=False)
    assert result.Sigtest["Corr"].iloc[0] == pytest.approx(1.0, abs=1e-6)


def test_can_corr_rao_test(traits):
    result = can_corr(traits, FG=["x1", "x2"], SG=["y1", "y2", "y3"], test="Rao", verbose=False)
    assert {"F", "DF1", "DF2", "p_val"} <= set(result.Sigtest.columns)
    assert result.Sigtest["DF1"].iloc[0] == 6
    assert set(result.collinearity) == {"FGc", "SGc"}


def test_can_corr_by_group(traits):
    grouped = can_corr(traits, FG=["x1", "x2"], SG=["y1", "y2", "y3"], by="site", verbose=False)
    assert isinstance(grouped, GroupCanCorr)
    assert grouped.names == ["A", "B"]
    assert grouped["A"].Score_FG.shape == (30, 2)


def test_can_corr_accepts_group_frames(traits):
    direct = can_corr(FG=traits[["x1", "x2"]], SG=traits[["y1", "y2", "y3"]], verbose=False)
    named = can_corr(traits, FG=["x1", "x2"], SG=["y1", "y2", "y3"], verbose=False)
    assert direct.Sigtest["Corr"].to_numpy() == pytest.approx(named.Sigtest["Corr"].to_numpy())


def test_can_corr_on_group_means(traits):
    frame = traits.assign(plot=np.tile(np.arange(10), 6))
    result = can_corr(frame, FG=["x1", "x2"], SG=["y1", "y2", "y3"], means_by="plot", verbose=False, collinearity=False)
    assert result.Score_FG.shape == (10, 2)
    assert list(result.Score_FG.index) == [str(i) for i in range(10)]


def test_can_corr_drops_incomplete_observations(traits):
    frame = traits.copy()
    frame.loc[[3, 17, 41], "y1"] = np.nan
    with pytest.warns(MissingValuesWarning):
        result = can_corr(frame, FG=["x1", "x2"], SG=["y1", "y2", "y3"], verbose=False, collinearity=False)
    complete = can_corr(
        traits.drop(index=[3, 17, 41]), FG=["x1", "x2"], SG=["y1", "y2", "y3"], verbose=False, collinearity=False
    )
    assert result.Score_FG.shape == (57, 2)
    assert 3 not in result.Score_FG.index
    assert np.isfinite(result.Score_SG.to_numpy()).all()
    assert result.Sigtest["Chisq"].to_numpy() == pytest.approx(complete.Sigtest["Chisq"].to_numpy())


def test_can_corr_validates_arguments(traits):
    fg, sg = ["x1", "x2"], ["y1", "y2", "y3"]
    with pytest.raises(InvalidArgumentError):
        can_corr(traits, FG=fg, SG=sg, use="spearman")
    with pytest.raises(InvalidArgumentError):
        can_corr(traits, FG=fg, SG=sg, test="Wilks")
    with pytest.raises(InvalidArgumentError):
        can_corr(traits, FG=fg, SG=sg, prob=0)
    with pytest.raises(InvalidArgumentError):
        can_corr(traits, FG=sg, SG=fg)
    with pytest.raises(InvalidArgumentError):
        can_corr(FG=traits[fg], SG=traits[sg].iloc[:10])


def test_colindiag_flags_collinear_predictors(traits):
    frame = traits[["x1", "x2"]].assign(x3=traits["x1"] * 2 + 1e-3 * traits["x2"])
    diag = colindiag(frame)
    assert diag.CN > 1000
    assert diag.severity == "severe"
    assert diag.ncorhigh >= 1
    assert diag.VIF["x3"] > 10
    assert (diag.VIF >= 1).all()


def test_lpcor_matches_first_order_partial_correlation(traits):
    result = lpcor(traits, columns=["x1", "y1", "y2"])
    r = traits[["x1", "y1", "y2"]].corr()
    r12, r13, r23 = r.loc["x1", "y1"], r.loc["x1", "y2"], r.loc["y1", "y2"]
    expected = (r12 - r13 * r23) / np.sqrt((1 - r13**2) * (1 - r23**2))
    table = result.results
    assert list(table["Pairs"]) == ["x1 x y1", "x1 x y2", "y1 x y2"]
    assert table.loc[0, "partial"] == pytest.approx(expected)
    assert table.loc[0, "linear"] == pytest.approx(r12)
    assert np.diag(result.partial_mat) == pytest.approx(np.ones(3))
    assert table["prob"].between(0, 1).all()


def test_lpcor_from_correlation_matrix_and_groups(traits):
    cor = traits[["x1", "y1", "y2"]].corr()
    from_matrix = lpcor(cor, n=60)
    from_data = lpcor(traits, columns=["x1", "y1", "y2"])
    assert from_matrix.results["t"].to_numpy() == pytest.approx(from_data.results["t"].to_numpy())
    grouped = lpcor(traits, columns=["x1", "y1", "y2"], by="site")
    assert grouped.names == ["A", "B"]


def test_lpcor_warns_with_more_variables_than_observations(traits):
    with pytest.warns(UserWarning):
        lpcor(traits[["x1", "x2", "y1", "y2"]].corr(), n=3)
