"""Scoring endpoints for the lfmrec API.

This module provides endpoints that predict ratings for (user, item) pairs
and rank items for a user with the persisted latent-factor model.
"""

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from lfmrec import __version__
from lfmrec.api.metrics import metrics_service
from lfmrec.exceptions import ModelNotFoundError, UnknownIdError
from lfmrec.recommender.model import LatentFactorModel
from lfmrec.recommender.utils import check_model_exists, load_model_artifacts

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["predictions"])

MODEL_DIR_ENV = "LFMREC_MODEL_DIR"
DEFAULT_MODEL_DIR = "models"

# Cache for the loaded model
_model_cache: Optional[LatentFactorModel] = None
_model_loaded_at: Optional[str] = None
_cache_lock = threading.Lock()


class PredictionResponse(BaseModel):
    """Predicted rating for one (user, item) pair."""

    user_id: int = Field(..., description="External user id")
    item_id: int = Field(..., description="External item id")
    score: float = Field(..., description="Predicted rating")


class ScoredItem(BaseModel):
    """One ranked item and its predicted rating."""

    item_id: int
    score: float


class RecommendationResponse(BaseModel):
    """Top-N items for a user.

    Attributes:
        user_id: The user ID for which items were ranked.
        recommendations: Items sorted by descending predicted rating.
        model_version: Package version that served the response.
    """

    user_id: int = Field(..., description="User ID for recommendations")
    recommendations: List[ScoredItem] = Field(
        ..., description="Items sorted by descending predicted rating"
    )
    model_version: str = Field(default=__version__, description="Model version")


class StatusResponse(BaseModel):
    """Whether a model is cached, when it was loaded and its dimensions."""

    model_loaded: bool
    timestamp_last_loaded: Optional[str] = None
    n_factors: int = 0
    num_users: int = 0
    num_items: int = 0


def get_model_dir() -> str:
    """Model directory from the environment, defaulting to ``models``."""
    return os.environ.get(MODEL_DIR_ENV, DEFAULT_MODEL_DIR)


def reset_model_cache() -> None:
    """Forget the cached model so the next request loads it again."""
    global _model_cache, _model_loaded_at

    with _cache_lock:
        _model_cache = None
        _model_loaded_at = None


def load_model_if_needed() -> LatentFactorModel:
    """Load the model from disk unless it is already cached.

    Raises:
        ModelNotFoundError: If no model artifact exists.
        ModelLoadError: If the artifact cannot be decoded.
    """
    global _model_cache, _model_loaded_at

    with _cache_lock:
        if _model_cache is not None:
            return _model_cache

        model_dir = get_model_dir()
        if not check_model_exists(model_dir):
            logger.error(f"Model not found in {model_dir}")
            raise ModelNotFoundError(model_dir)

        _model_cache = load_model_artifacts(model_dir)
        _model_loaded_at = datetime.now(timezone.utc).isoformat()
        logger.info("Model loaded successfully", extra={"model_dir": model_dir})
        return _model_cache


@router.get("/status", response_model=StatusResponse)
def get_status() -> StatusResponse:
    """Report whether a model is loaded and its size."""
    model = _model_cache
    if model is None:
        return StatusResponse(model_loaded=False)
    return StatusResponse(
        model_loaded=True,
        timestamp_last_loaded=_model_loaded_at,
        n_factors=model.n_factors,
        num_users=model.n_users,
        num_items=model.n_items,
    )


@router.get("/predict/{user_id}/{item_id}", response_model=PredictionResponse)
def predict(user_id: int, item_id: int) -> PredictionResponse:
    """Predict the rating a user would give an item.

    Example:
        GET /predict/42/1001
    """
    model = load_model_if_needed()

    start_time = time.time()
    try:
        score = model.score(user_id, item_id)
    except UnknownIdError:
        metrics_service.record_prediction((time.time() - start_time) * 1000, known=False)
        raise
    metrics_service.record_prediction((time.time() - start_time) * 1000)

    return PredictionResponse(user_id=user_id, item_id=item_id, score=score)


@router.get("/recommend/{user_id}", response_model=RecommendationResponse)
def recommend(
    user_id: int,
    top_n: int = Query(default=10, ge=1, le=1000),
) -> RecommendationResponse:
    """Rank all items for a user by predicted rating.

    Example:
        GET /recommend/42?top_n=5
    """
    model = load_model_if_needed()

    logger.info(f"Generating recommendations for user {user_id}, top_n={top_n}")
    ranked = model.recommend(user_id, top_n=top_n)

    return RecommendationResponse(
        user_id=user_id,
        recommendations=[ScoredItem(item_id=item_id, score=score) for item_id, score in ranked],
    )


@router.post("/reload-model")
def reload_model() -> Dict[str, str]:
    """Drop the cached model and load it again from disk."""
    logger.info("Reloading model...")
    reset_model_cache()
    load_model_if_needed()
    return {"status": "Model reloaded successfully"}


@router.get("/metrics")
def get_metrics() -> Dict:
    """Prediction counters and latency."""
    return metrics_service.get_metrics()
