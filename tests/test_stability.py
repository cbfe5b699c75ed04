import numpy as np
import pandas as pd
import pytest

from metbreed.exceptions import UnsupportedDesignError
from metbreed.stability import fox, shukla
from metbreed.utils import additive_residuals, make_mat


def test_fox_top_counts_three_genotypes_per_environment(make_trial):
    data = make_trial(n_env=5, n_gen=6)
    result = fox(data, "ENV", "GEN", ["GY", "HM"], verbose=False)
    for table in result.values():
        assert list(table.columns) == ["GEN", "Y", "TOP"]
        assert table["TOP"].sum() == 3 * 5
        assert table["TOP"].between(0, 5).all()


def test_fox_breaks_ties_within_an_environment(trial):
    tied = trial.copy()
    tied.loc[tied["ENV"] == "E1", "GY"] = 5.0
    table = fox(tied, "ENV", "GEN", "GY", verbose=False)["GY"]
    assert table["TOP"].sum() == 3 * 3
    assert table["TOP"].between(0, 3).all()


def test_fox_mean_is_overall_genotype_mean(trial):
    table = fox(trial, "ENV", "GEN", "GY", verbose=False)["GY"]
    expected = trial.groupby("GEN")["GY"].mean()
    assert table.set_index("GEN")["Y"].to_numpy() == pytest.approx(expected.to_numpy())


def test_shukla_selection_index_is_sum_of_ranks(make_trial):
    data = make_trial(n_env=4, n_gen=6)
    table = shukla(data, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    assert list(table.columns) == ["GEN", "Y", "ShuklaVar", "rMean", "rShukaVar", "ssiShukaVar"]
    assert table["ssiShukaVar"].to_numpy() == pytest.approx((table["rMean"] + table["rShukaVar"]).to_numpy())
    assert sorted(table["rMean"]) == [1, 2, 3, 4, 5, 6]
    assert table.loc[table["Y"].idxmax(), "rMean"] == 1
    assert table.loc[table["ShuklaVar"].idxmin(), "rShukaVar"] == 1


def test_shukla_variances_sum_to_scaled_interaction(make_trial):
    data = make_trial(n_env=4, n_gen=6)
    table = shukla(data, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    frame = data.rename(columns={"GY": "Y"})
    wi = (additive_residuals(make_mat(frame, "GEN", "ENV", "Y")) ** 2).sum(axis=1)
    g, e = 6, 4
    assert table["ShuklaVar"].sum() == pytest.approx(g * wi.sum() / ((e - 1) * (g - 1)))


def test_shukla_additive_trial_has_no_instability():
    gen = np.array([1.0, 2.5, -0.5, 0.3])
    env = np.array([3.0, -1.0, 0.0])
    rows = [
        {"ENV": f"E{e}", "GEN": f"G{g}", "REP": r, "Y": 10 + gen[g] + env[e]}
        for e in range(3)
        for g in range(4)
        for r in (1, 2)
    ]
    table = shukla(pd.DataFrame(rows), "ENV", "GEN", "REP", "Y", verbose=False)["Y"]
    assert table["ShuklaVar"].to_numpy() == pytest.approx(np.zeros(4), abs=1e-9)
    assert sorted(table["rShukaVar"]) == [1, 2, 3, 4]
    assert sorted(table["rMean"]) == [1, 2, 3, 4]


def test_shukla_requires_three_genotypes(make_trial):
    data = make_trial(n_gen=2)
    with pytest.raises(UnsupportedDesignError):
        shukla(data, "ENV", "GEN", "REP", "GY", verbose=False)


def test_shukla_ranks_are_permutations_under_tied_means():
    rows = [
        {"ENV": f"E{e}", "GEN": f"G{g}", "REP": r, "Y": 10.0 + e + (g % 2) * ((-1) ** e)}
        for e in range(3)
        for g in range(4)
        for r in (1, 2)
    ]
    table = shukla(pd.DataFrame(rows), "ENV", "GEN", "REP", "Y", verbose=False)["Y"]
    assert sorted(table["rMean"]) == [1, 2, 3, 4]
    assert sorted(table["rShukaVar"]) == [1, 2, 3, 4]
    assert table["ssiShukaVar"].to_numpy() == pytest.approx((table["rMean"] + table["rShukaVar"]).to_numpy())


def test_shukla_constant_environment_adds_no_instability(trial):
    low = trial.copy()
    low.loc[low["ENV"] == "E1", "GY"] = 5.0
    high = trial.copy()
    high.loc[high["ENV"] == "E1", "GY"] = 50.0
    first = shukla(low, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    second = shukla(high, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    assert first["ShuklaVar"].to_numpy() == pytest.approx(second["ShuklaVar"].to_numpy())
    shifted = low.copy()
    shifted.loc[(shifted["ENV"] == "E2") & (shifted["GEN"] == "G1"), "GY"] += 3.0
    third = shukla(shifted, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    assert third["ShuklaVar"].to_numpy() != pytest.approx(first["ShuklaVar"].to_numpy())
