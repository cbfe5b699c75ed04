import numpy as np
import pandas as pd
import pytest

from metbreed.exceptions import InvalidArgumentError
from metbreed.factanal import factor_loadings, ge_factanal, sampling_adequacy


@pytest.fixture
def stratified_trial():
    rng = np.random.default_rng(11)
    n_gen = 15
    f1 = rng.normal(0, 1, n_gen)
    f2 = rng.normal(0, 1, n_gen)
    f1 = f1 - f1.mean()
    f2 = f2 - f2.mean()
    f2 = f2 - f1 * (f1 @ f2) / (f1 @ f1)
    rows = []
    for e in range(6):
        driver = f1 if e < 4 else f2
        for g in range(n_gen):
            for r in (1, 2):
                rows.append(
                    {
                        "ENV": f"E{e + 1}",
                        "GEN": f"G{g + 1:02d}",
                        "REP": r,
                        "GY": 5 + e + 2 * driver[g] + rng.normal(0, 0.1),
                    }
                )
    return pd.DataFrame(rows)


def test_ge_factanal_groups_environments_by_factor(stratified_trial):
    result = ge_factanal(stratified_trial, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    strat = result.env_strat.set_index("Env")
    assert strat.loc["E1", "Factor"] == strat.loc["E2", "Factor"] == strat.loc["E3", "Factor"] == strat.loc["E4", "Factor"]
    assert strat.loc["E5", "Factor"] == strat.loc["E6", "Factor"]
    assert strat.loc["E1", "Factor"] != strat.loc["E5", "Factor"]
    assert list(result.scores_gen.columns) == ["Gen", "FA1", "FA2"]
    assert len(result.scores_gen) == 15


def test_ge_factanal_tables_are_consistent(stratified_trial):
    result = ge_factanal(stratified_trial, "ENV", "GEN", "REP", "GY", verbose=False)["GY"]
    assert result.PCA["Cumul_var"].iloc[-1] == pytest.approx(100.0)
    assert result.PCA["Eigenvalues"].sum() == pytest.approx(6.0)
    fa = result.FA
    assert (fa["Communality"] + fa["Uniquenesses"]).to_numpy() == pytest.approx(np.ones(6))
    assert fa["Communality"].between(0, 1 + 1e-9).all()
    assert 0 < result.KMO <= 1
    assert result.MSA.between(0, 1).all()
    assert result.cormat.shape == (6, 6)


def test_ge_factanal_warns_with_a_single_factor(stratified_trial):
    with pytest.warns(UserWarning):
        ge_factanal(stratified_trial, "ENV", "GEN", "REP", "GY", mineval=3, verbose=False)


def test_factor_loadings_rejects_too_high_mineval():
    cor = pd.DataFrame(np.eye(3), columns=list("abc"), index=list("abc"))
    with pytest.raises(InvalidArgumentError):
        factor_loadings(cor, mineval=5)


def test_sampling_adequacy_is_bounded():
    cor = pd.DataFrame([[1.0, 0.6, 0.5], [0.6, 1.0, 0.4], [0.5, 0.4, 1.0]], columns=list("abc"), index=list("abc"))
    kmo, msa = sampling_adequacy(cor)
    assert 0 < kmo < 1
    assert list(msa.index) == ["a", "b", "c"]
