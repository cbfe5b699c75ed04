import numpy as np
import pytest

from metbreed.data import TrialDataset, iter_traits
from metbreed.exceptions import DataQualityError, InvalidArgumentError, MissingValuesWarning


def test_trial_dataset_resolves_numeric_traits(trial):
    dataset = TrialDataset(trial, env="ENV", gen="GEN", rep="REP")
    assert dataset.resolve_traits() == ["GY", "HM"]
    assert dataset.resolve_traits("HM") == ["HM"]
    with pytest.raises(InvalidArgumentError):
        dataset.resolve_traits(["GY", "PH"])
    with pytest.raises(InvalidArgumentError):
        dataset.resolve_traits("REP")


def test_trial_dataset_checks_design_columns(trial):
    with pytest.raises(InvalidArgumentError):
        TrialDataset(trial, env="LOCAL", gen="GEN", rep="REP")


def test_trait_frame_standardises_columns(trial):
    frame = TrialDataset(trial, env="ENV", gen="GEN", rep="REP").trait_frame("GY")
    assert list(frame.columns) == ["ENV", "GEN", "REP", "Y"]
    assert list(frame["REP"].cat.categories) == ["1", "2"]
    assert frame["Y"].to_numpy() == pytest.approx(trial["GY"].to_numpy())


def test_trait_frame_drops_missing_rows_with_warning(trial):
    trial.loc[[0, 5], "GY"] = np.nan
    dataset = TrialDataset(trial, env="ENV", gen="GEN", rep="REP")
    with pytest.warns(MissingValuesWarning):
        frame = dataset.trait_frame("GY")
    assert len(frame) == len(trial) - 2


def test_trait_frame_rejects_text_in_numeric_column(trial):
    trial["GY"] = trial["GY"].astype(object)
    trial.loc[3, "GY"] = "lost plot"
    dataset = TrialDataset(trial, env="ENV", gen="GEN", rep="REP")
    with pytest.raises(DataQualityError, match="GY.*lost plot"):
        dataset.trait_frame("GY")


def test_trait_frame_rejects_duplicated_plots(trial):
    duplicated = trial.copy()
    duplicated.loc[1, ["ENV", "GEN", "REP"]] = duplicated.loc[0, ["ENV", "GEN", "REP"]].to_numpy()
    dataset = TrialDataset(duplicated, env="ENV", gen="GEN", rep="REP")
    with pytest.raises(DataQualityError, match="Duplicated"):
        dataset.trait_frame("GY")


def test_trial_dataset_from_csv(tmp_path, trial):
    path = tmp_path / "trial.csv"
    trial.to_csv(path, index=False)
    dataset = TrialDataset.from_csv(path, env="ENV", gen="GEN", rep="REP")
    assert dataset.resolve_traits() == ["GY", "HM"]


def test_iter_traits_calls_progress_after_each_trait():
    seen = []
    out = list(iter_traits(["a", "b", "c"], progress=lambda i, n, t: seen.append((i, n, t))))
    assert out == [(0, "a"), (1, "b"), (2, "c")]
    assert seen == [(1, 3, "a"), (2, 3, "b"), (3, 3, "c")]
