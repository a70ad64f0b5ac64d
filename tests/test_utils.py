"""Tests for saving and loading model artifacts."""

from pathlib import Path

import joblib
import numpy as np
import pandas as pd
import pytest

from lfmrec.exceptions import ModelLoadError
from lfmrec.recommender.corpus import CorpusIndex
from lfmrec.recommender.model import LatentFactorModel
from lfmrec.recommender.train import EpochStats
from lfmrec.recommender.utils import (
    HISTORY_FILENAME,
    MODEL_FILENAME,
    check_model_exists,
    get_model_paths,
    load_model_artifacts,
    save_model_artifacts,
    save_training_history,
)


@pytest.fixture
def model() -> LatentFactorModel:
    index = CorpusIndex(
        global_mean=2.5,
        uid_index={11: 0, 12: 1, 13: 2},
        item_index={-4: 0, 2**40: 1},
        n_ratings=5,
    )
    model = LatentFactorModel.initialize(index, n_factors=3, random_state=1)
    model.user_bias[:] = [0.1, -0.2, 0.3]
    model.item_bias[:] = [1.5, -1.5]
    return model


def test_save_and_load_round_trip(model, tmp_path: Path):
    path = save_model_artifacts(model, str(tmp_path / "out"))
    assert path == tmp_path / "out" / MODEL_FILENAME

    loaded = load_model_artifacts(str(tmp_path / "out"))

    assert loaded.n_factors == 3
    assert loaded.global_mean == model.global_mean
    assert loaded.uid_index == model.uid_index
    assert loaded.item_index == model.item_index
    np.testing.assert_array_equal(loaded.user_factors, model.user_factors)
    np.testing.assert_array_equal(loaded.item_factors, model.item_factors)
    np.testing.assert_array_equal(loaded.user_bias, model.user_bias)
    np.testing.assert_array_equal(loaded.item_bias, model.item_bias)
    assert loaded.predict(12, 2**40) == model.predict(12, 2**40)


def test_missing_directory_and_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_model_artifacts(str(tmp_path / "nowhere"))
    with pytest.raises(FileNotFoundError):
        load_model_artifacts(str(tmp_path))


def test_truncated_file_raises_load_error(model, tmp_path: Path):
    path = save_model_artifacts(model, str(tmp_path))
    data = path.read_bytes()
    path.write_bytes(data[: len(data) // 2])

    with pytest.raises(ModelLoadError):
        load_model_artifacts(str(tmp_path))


def test_garbage_file_raises_load_error(tmp_path: Path):
    (tmp_path / MODEL_FILENAME).write_bytes(b"definitely not a model")
    with pytest.raises(ModelLoadError):
        load_model_artifacts(str(tmp_path))


def test_foreign_payload_raises_load_error(tmp_path: Path):
    joblib.dump({"weights": [1, 2, 3]}, tmp_path / MODEL_FILENAME)
    with pytest.raises(ModelLoadError) as exc_info:
        load_model_artifacts(str(tmp_path))
    assert exc_info.value.status_code == 500


def test_inconsistent_state_raises_load_error(model, tmp_path: Path):
    state = model.to_state()
    state["item_bias"] = np.zeros(7, dtype=np.float32)
    joblib.dump(
        {"format": "lfmrec.latent_factor_model", "version": 1, "state": state},
        tmp_path / MODEL_FILENAME,
    )
    with pytest.raises(ModelLoadError):
        load_model_artifacts(str(tmp_path))


def test_check_model_exists(model, tmp_path: Path):
    assert not check_model_exists(str(tmp_path))
    save_model_artifacts(model, str(tmp_path))
    assert check_model_exists(str(tmp_path))

    model_file, history_file = get_model_paths(str(tmp_path))
    assert model_file.name == MODEL_FILENAME
    assert history_file.name == HISTORY_FILENAME


def test_save_training_history(tmp_path: Path):
    history = [
        EpochStats(iteration=0, learning_rate=0.009, train_samples=10, train_mse=2.0),
        EpochStats(
            iteration=1,
            learning_rate=0.0081,
            train_samples=8,
            train_mse=1.5,
            test_samples=4,
            test_auc=0.75,
            test_mse=1.75,
            failed_files=("a", "b"),
        ),
    ]

    path = save_training_history(history, str(tmp_path))
    df = pd.read_csv(path)

    assert list(df.columns) == [
        "iteration",
        "learning_rate",
        "train_samples",
        "train_mse",
        "test_samples",
        "test_auc",
        "test_mse",
        "failed_files",
    ]
    assert list(df["train_samples"]) == [10, 8]
    assert df.loc[1, "test_auc"] == 0.75
    assert df.loc[1, "failed_files"] == "a;b"
