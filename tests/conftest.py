import numpy as np
import pandas as pd
import pytest


def build_trial(
    n_env: int = 3,
    n_gen: int = 4,
    n_rep: int = 2,
    traits=("GY", "HM"),
    seed: int = 1,
    ge_scale: float = 1.0,
    noise: float = 0.3,
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = []
    effects = {}
    for trait in traits:
        effects[trait] = {
            "gen": rng.normal(0, 1.5, n_gen),
            "env": rng.normal(0, 2.0, n_env),
            "ge": rng.normal(0, ge_scale, (n_gen, n_env)),
            "rep": rng.normal(0, 0.5, (n_env, n_rep)),
        }
    for e in range(n_env):
        for r in range(n_rep):
            for g in range(n_gen):
                row = {"ENV": f"E{e + 1}", "GEN": f"G{g + 1}", "REP": r + 1}
                for offset, trait in enumerate(traits):
                    eff = effects[trait]
                    row[trait] = (
                        10 * (offset + 1)
                        + eff["gen"][g]
                        + eff["env"][e]
                        + eff["ge"][g, e]
                        + eff["rep"][e, r]
                        + rng.normal(0, noise)
                    )
                rows.append(row)
    return pd.DataFrame(rows)


@pytest.fixture
def trial():
    return build_trial()


@pytest.fixture
def make_trial():
    return build_trial


@pytest.fixture
def lattice_trial():
    data = build_trial(n_env=3, n_gen=4, n_rep=2, traits=("GY",), seed=7)
    layout = {1: {"G1": 1, "G2": 1, "G3": 2, "G4": 2}, 2: {"G1": 1, "G3": 1, "G2": 2, "G4": 2}}
    data["BLOCK"] = [layout[rep][gen] for rep, gen in zip(data["REP"], data["GEN"])]
    return data


@pytest.fixture
def genotype_means():
    rng = np.random.default_rng(3)
    n = 20
    f1 = rng.normal(0, 1, n)
    f2 = rng.normal(0, 1, n)
    f1 = f1 - f1.mean()
    f2 = f2 - f2.mean()
    f2 = f2 - f1 * (f1 @ f2) / (f1 @ f1)
    frame = pd.DataFrame(
        {
            "t1": 50 + 5 * f1 + rng.normal(0, 0.2, n),
            "t2": 30 + 3 * f1 + rng.normal(0, 0.2, n),
            "t3": 80 + 6 * f2 + rng.normal(0, 0.2, n),
            "t4": 20 + 2 * f2 + rng.normal(0, 0.1, n),
        },
        index=[f"H{i + 1}" for i in range(n)],
    )
    return frame
