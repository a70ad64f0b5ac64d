"""Tests for the parallel SGD trainer and the training entry point."""

import math
import threading

import numpy as np
import pandas as pd
import pytest

from lfmrec.exceptions import ConfigurationError, DivergenceError
from lfmrec.recommender.corpus import Rating, index_corpus
from lfmrec.recommender.model import LatentFactorModel
from lfmrec.recommender.train import (
    MIN_LEARNING_RATE,
    Trainer,
    TrainingConfig,
    train_with_config,
)
from lfmrec.recommender.utils import HISTORY_FILENAME, check_model_exists, load_model_artifacts


def make_trainer(paths, n_factors=4, **kwargs):
    paths = [str(p) for p in paths]
    model = LatentFactorModel.initialize(index_corpus(paths), n_factors=n_factors, random_state=7)
    kwargs.setdefault("random_state", 7)
    return Trainer(model, paths, **kwargs)


def sgd_workers_alive():
    return [t for t in threading.enumerate() if t.name.startswith("sgd-worker")]


@pytest.mark.parametrize("parallelism", [1, 4, 16])
def test_epoch_processes_every_event(random_corpus, parallelism):
    """Every indexed event yields exactly one update, whatever the pool size."""
    trainer = make_trainer(random_corpus, parallelism=parallelism, learning_rate=0.005)

    samples, mse, failed = trainer.train_epoch()

    assert samples == 400
    assert math.isfinite(mse)
    assert failed == ()
    assert not sgd_workers_alive()


def test_parallel_mse_close_to_serial(random_corpus):
    serial = make_trainer(random_corpus, parallelism=1, learning_rate=0.005)
    parallel = make_trainer(random_corpus, parallelism=8, learning_rate=0.005)

    _, serial_mse, _ = serial.train_epoch()
    _, parallel_mse, _ = parallel.train_epoch()

    assert parallel_mse == pytest.approx(serial_mse, rel=0.25)


def test_small_queue_does_not_deadlock(random_corpus):
    trainer = make_trainer(random_corpus, parallelism=3, queue_size=1, chunk_size=7)
    samples, _, _ = trainer.train_epoch()
    assert samples == 400


def test_training_reduces_error(tiny_corpus):
    trainer = make_trainer(
        [tiny_corpus], n_factors=2, parallelism=1, learning_rate=0.05, regularization=0.0
    )
    history = trainer.train(50)

    assert len(history) == 50
    assert history[-1].train_mse < history[0].train_mse
    assert all(stats.train_samples == 9 for stats in history)


def test_locked_mode_trains(random_corpus):
    trainer = make_trainer(random_corpus, parallelism=4, update_mode="locked")
    samples, mse, _ = trainer.train_epoch()
    history = trainer.train(3)

    assert samples == 400
    assert math.isfinite(mse)
    assert [stats.iteration for stats in history] == [0, 1, 2]
    assert all(stats.train_samples == 400 for stats in history)
    assert not sgd_workers_alive()


def test_unknown_update_mode_rejected(tiny_corpus):
    with pytest.raises(ConfigurationError):
        make_trainer([tiny_corpus], update_mode="optimistic")


def test_update_unknown_ids_is_dropped(tiny_corpus):
    trainer = make_trainer([tiny_corpus])
    before = trainer.model.user_factors.copy()

    assert trainer.update(Rating(uid=999, item_id=10, weight=1.0)) is False
    assert trainer.update(Rating(uid=1, item_id=999, weight=1.0)) is False
    np.testing.assert_array_equal(trainer.model.user_factors, before)
    assert trainer.errors.samples == 0


def test_update_moves_toward_target(tiny_corpus):
    trainer = make_trainer([tiny_corpus], learning_rate=0.1, regularization=0.0)
    model = trainer.model
    before, _, _ = model.predict(1, 10)

    assert trainer.update(Rating(uid=1, item_id=10, weight=before + 1.0)) is True
    after, _, _ = model.predict(1, 10)
    assert after > before
    assert trainer.errors.samples == 1


def test_learning_rate_decay_and_floor(tiny_corpus):
    trainer = make_trainer([tiny_corpus], learning_rate=0.01)
    assert trainer.decay_learning_rate() == pytest.approx(0.009)

    trainer.learning_rate = 1.1e-5
    assert trainer.decay_learning_rate() == MIN_LEARNING_RATE
    assert trainer.decay_learning_rate() == MIN_LEARNING_RATE


def test_history_learning_rate_is_decayed(tiny_corpus):
    trainer = make_trainer([tiny_corpus], learning_rate=0.1, parallelism=2)
    history = trainer.train(2)
    assert history[0].learning_rate == pytest.approx(0.09)
    assert history[1].learning_rate == pytest.approx(0.081)


def test_divergence_stops_all_workers(random_corpus):
    trainer = make_trainer(random_corpus, parallelism=6, queue_size=5)
    trainer.model.user_factors[:] = np.nan

    with pytest.raises(DivergenceError) as exc_info:
        trainer.train_epoch()

    assert math.isnan(exc_info.value.score)
    assert not sgd_workers_alive()


def test_divergence_propagates_from_train(tiny_corpus):
    trainer = make_trainer([tiny_corpus], parallelism=2)
    trainer.model.item_bias[:] = np.inf

    with pytest.raises(DivergenceError):
        trainer.train(3)


def test_unreadable_train_file_is_reported(write_corpus, tiny_corpus):
    extra = write_corpus("extra", ["4 10:2.0"])
    trainer = make_trainer([tiny_corpus, extra], parallelism=2)
    extra.unlink()

    samples, _, failed = trainer.train_epoch()

    assert samples == 9
    assert failed == (str(extra),)


def test_decay_requires_dated_file_names(write_corpus):
    path = str(write_corpus("undated", ["1 2:1.0"]))
    model = LatentFactorModel.initialize(index_corpus([path]), n_factors=2)
    with pytest.raises(ConfigurationError):
        Trainer(model, [path], time_decay=0.1)


def test_training_config_validation(tiny_corpus):
    with pytest.raises(ConfigurationError):
        TrainingConfig(train_files=[])
    with pytest.raises(ConfigurationError):
        TrainingConfig(train_files=[tiny_corpus], learning_rate=0)
    with pytest.raises(ConfigurationError):
        TrainingConfig(train_files=[tiny_corpus], parallelism=0)
    with pytest.raises(ConfigurationError):
        TrainingConfig(train_files=[tiny_corpus], update_mode="other")

    config = TrainingConfig(train_files=[tiny_corpus])
    assert config.train_files == [str(tiny_corpus)]
    assert config.n_factors == 10 and config.parallelism == 10


def test_train_with_config_saves_artifacts(random_corpus, tmp_path):
    output_dir = tmp_path / "models"
    config = TrainingConfig(
        train_files=random_corpus[:1],
        test_files=random_corpus[1:],
        n_factors=3,
        epochs=2,
        parallelism=2,
        output_dir=str(output_dir),
    )

    model, history = train_with_config(config)

    assert len(history) == 2
    assert check_model_exists(str(output_dir))
    loaded = load_model_artifacts(str(output_dir))
    np.testing.assert_array_equal(loaded.item_factors, model.item_factors)

    df = pd.read_csv(output_dir / HISTORY_FILENAME)
    assert list(df["iteration"]) == [0, 1]
    assert list(df["train_samples"]) == [200, 200]


def test_train_with_config_evaluates_held_out(write_corpus, tiny_corpus):
    held_out = write_corpus("held_20240101", ["1 10:4.0 11:-1.0", "3 12:5.0", "77 10:1.0"])
    config = TrainingConfig(
        train_files=[tiny_corpus], test_files=[held_out], n_factors=2, epochs=1, parallelism=1
    )

    _, history = train_with_config(config)

    assert history[0].test_samples == 3
    assert math.isfinite(history[0].test_mse)
    assert 0.0 <= history[0].test_auc <= 1.0


def test_undecodable_bytes_do_not_abort_training(tmp_path):
    path = tmp_path / "binary_20240101"
    path.write_bytes(b"1 10:5.0 11:3.0\n2 10:4.0 \xff\xfe:1.0\n3 11:2.0\n")

    model, history = train_with_config(
        TrainingConfig(train_files=[path], n_factors=2, epochs=1, parallelism=2)
    )

    assert model.n_users == 3
    assert history[0].train_samples == 4
    assert history[0].failed_files == ()


def test_aborted_epoch_closes_train_files(random_corpus, monkeypatch):
    import lfmrec.recommender.corpus as corpus

    handles = []

    def tracking_open(*args, **kwargs):
        handle = open(*args, **kwargs)
        handles.append(handle)
        return handle

    trainer = make_trainer(random_corpus, parallelism=2, queue_size=1, chunk_size=2)
    trainer.model.user_factors[:] = np.nan
    monkeypatch.setattr(corpus, "open", tracking_open, raising=False)

    with pytest.raises(DivergenceError):
        trainer.train_epoch()

    assert handles
    assert all(handle.closed for handle in handles)
