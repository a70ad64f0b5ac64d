"""Module for scoring with a saved model.

Loads persisted model artifacts and predicts ratings or top-N item lists.
"""

import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

from lfmrec.recommender.model import DEFAULT_TOP_N, LatentFactorModel
from lfmrec.recommender.utils import load_model_artifacts

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = "models"


def predict_rating(
    uid: int,
    item_id: int,
    model_path: str = DEFAULT_MODEL_DIR,
    model: Optional[LatentFactorModel] = None,
) -> float:
    """Predict the rating of one (user, item) pair.

    Args:
        uid: External user id.
        item_id: External item id.
        model_path: Directory containing the model artifact.
        model: Already loaded model; skips loading when given.

    Raises:
        FileNotFoundError: If the model is not found at model_path.
        UnknownIdError: If the user or the item was not seen in training.
        DivergenceError: If the model produces a non-finite score.
    """
    if model is None:
        model = load_model_artifacts(model_path)
    return model.score(uid, item_id)


def recommend_items_for_user(
    uid: int,
    model_path: str = DEFAULT_MODEL_DIR,
    top_n: int = DEFAULT_TOP_N,
    exclude: Optional[Iterable[int]] = None,
    model: Optional[LatentFactorModel] = None,
) -> List[Tuple[int, float]]:
    """Get the top-N items for a user.

    Loads the model (unless one is passed) and returns the highest scoring
    ``(item_id, score)`` pairs.

    Raises:
        FileNotFoundError: If the model is not found at model_path.
        UnknownIdError: If the user was not seen in training.
    """
    start_time = time.time()

    if model is None:
        load_start = time.time()
        model = load_model_artifacts(model_path)
        logger.info(
            "Model loaded",
            extra={
                "uid": uid,
                "load_time_ms": round((time.time() - load_start) * 1000, 2),
                "num_users": model.n_users,
                "num_items": model.n_items,
            },
        )

    recommendations = model.recommend(uid, top_n=top_n, exclude=exclude)

    logger.info(
        "Recommendations generated",
        extra={
            "uid": uid,
            "num_recommendations": len(recommendations),
            "total_time_ms": round((time.time() - start_time) * 1000, 2),
        },
    )
    return recommendations


def batch_predict(
    pairs: Iterable[Tuple[int, int]],
    model_path: str = DEFAULT_MODEL_DIR,
) -> Dict[Tuple[int, int], Optional[float]]:
    """Predict many pairs with a single model load.

    Pairs with an unknown user or item map to None.
    """
    model = load_model_artifacts(model_path)

    results: Dict[Tuple[int, int], Optional[float]] = {}
    for uid, item_id in pairs:
        score, user_idx, item_idx = model.predict(uid, item_id)
        results[(uid, item_id)] = score if user_idx >= 0 and item_idx >= 0 else None

    logger.info(f"Batch prediction completed for {len(results)} pairs")
    return results
