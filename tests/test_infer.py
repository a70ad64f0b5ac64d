"""Tests for the inference module."""

import pytest

from lfmrec.exceptions import UnknownIdError
from lfmrec.recommender.infer import batch_predict, predict_rating, recommend_items_for_user
from lfmrec.recommender.train import TrainingConfig, train_with_config


@pytest.fixture
def trained_model(tiny_corpus, tmp_path):
    """Train and save a small model."""
    model_dir = tmp_path / "model"
    model, _ = train_with_config(
        TrainingConfig(
            train_files=[tiny_corpus],
            n_factors=2,
            epochs=3,
            parallelism=1,
            output_dir=str(model_dir),
        )
    )
    return model_dir, model


def test_predict_rating_matches_in_memory_model(trained_model):
    model_dir, model = trained_model
    assert predict_rating(1, 10, model_path=str(model_dir)) == pytest.approx(model.score(1, 10))


def test_predict_rating_unknown_user_raises(trained_model):
    model_dir, _ = trained_model
    with pytest.raises(UnknownIdError):
        predict_rating(999, 10, model_path=str(model_dir))


def test_recommend_items_for_known_user_returns_n_items(trained_model):
    model_dir, _ = trained_model
    recommendations = recommend_items_for_user(3, model_path=str(model_dir), top_n=2)

    assert len(recommendations) == 2
    assert all(isinstance(item_id, int) for item_id, _ in recommendations)
    assert recommendations[0][1] >= recommendations[1][1]


def test_recommend_items_exclude(trained_model):
    _, model = trained_model
    recommendations = recommend_items_for_user(3, model=model, top_n=5, exclude=[10, 11])
    assert [item_id for item_id, _ in recommendations] == [12]


def test_missing_model_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        recommend_items_for_user(1, model_path=str(tmp_path / "nothing"))


def test_batch_predict_maps_unknown_to_none(trained_model):
    model_dir, model = trained_model
    results = batch_predict([(1, 10), (2, 12), (5, 10), (1, 99)], model_path=str(model_dir))

    assert results[(1, 10)] == pytest.approx(model.score(1, 10))
    assert results[(2, 12)] == pytest.approx(model.score(2, 12))
    assert results[(5, 10)] is None
    assert results[(1, 99)] is None
