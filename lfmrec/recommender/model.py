"""Biased matrix-factorization model.

The model predicts ``dot(P[u], Q[i]) + mu + bu[u] + bi[i]``. External 64-bit
user and item ids are mapped to dense rows of fixed-size ``float32`` arrays;
the arrays are allocated once and then updated in place by training.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from lfmrec.exceptions import DivergenceError, UnknownIdError
from lfmrec.recommender.corpus import CorpusIndex

# Configure module logger
logger = logging.getLogger(__name__)

DTYPE = np.float32
DEFAULT_N_FACTORS = 10
DEFAULT_TOP_N = 10
UNKNOWN_INDEX = -1


class LatentFactorModel:
    """Model state shared by the trainer, the evaluator and the API.

    Attributes:
        n_factors: Embedding dimensionality F.
        user_factors: ``(n_users, F)`` user embeddings (P).
        item_factors: ``(n_items, F)`` item embeddings (Q).
        global_mean: Mean training rating (mu).
        user_bias: Per-user bias (bu).
        item_bias: Per-item bias (bi).
        uid_index: External user id to row of ``user_factors``.
        item_index: External item id to row of ``item_factors``.
    """

    def __init__(
        self,
        n_factors: int,
        user_factors: np.ndarray,
        item_factors: np.ndarray,
        global_mean: float,
        user_bias: np.ndarray,
        item_bias: np.ndarray,
        uid_index: Dict[int, int],
        item_index: Dict[int, int],
    ):
        self.n_factors = n_factors
        self.user_factors = user_factors
        self.item_factors = item_factors
        self.global_mean = global_mean
        self.user_bias = user_bias
        self.item_bias = item_bias
        self.uid_index = uid_index
        self.item_index = item_index
        self.validate()

    @classmethod
    def initialize(
        cls,
        corpus_index: CorpusIndex,
        n_factors: int = DEFAULT_N_FACTORS,
        random_state: Optional[int] = None,
    ) -> "LatentFactorModel":
        """Allocate parameters for the id spaces found by the indexer.

        Factors are drawn uniformly from ``[0, 1)`` and divided by
        ``sqrt(n_factors)`` so initial dot products stay small; biases
        start at zero.
        """
        if n_factors <= 0:
            raise ValueError(f"n_factors must be positive, got {n_factors}")

        rng = np.random.default_rng(random_state)
        n_users = len(corpus_index.uid_index)
        n_items = len(corpus_index.item_index)
        scale = 1.0 / math.sqrt(n_factors)

        user_factors = rng.random((n_users, n_factors), dtype=DTYPE) * DTYPE(scale)
        item_factors = rng.random((n_items, n_factors), dtype=DTYPE) * DTYPE(scale)

        logger.info(
            f"uid count {n_users}, itemid count {n_items}",
            extra={"n_users": n_users, "n_items": n_items, "n_factors": n_factors},
        )

        return cls(
            n_factors=n_factors,
            user_factors=user_factors,
            item_factors=item_factors,
            global_mean=float(corpus_index.global_mean),
            user_bias=np.zeros(n_users, dtype=DTYPE),
            item_bias=np.zeros(n_items, dtype=DTYPE),
            uid_index=dict(corpus_index.uid_index),
            item_index=dict(corpus_index.item_index),
        )

    @property
    def n_users(self) -> int:
        return len(self.uid_index)

    @property
    def n_items(self) -> int:
        return len(self.item_index)

    def validate(self) -> None:
        """Check the shape and index invariants.

        Raises:
            ValueError: If any invariant does not hold.
        """
        if not isinstance(self.n_factors, (int, np.integer)) or self.n_factors <= 0:
            raise ValueError(f"n_factors must be a positive integer, got {self.n_factors!r}")
        if not math.isfinite(self.global_mean):
            raise ValueError(f"global_mean must be finite, got {self.global_mean}")

        _check_block("user", self.user_factors, self.user_bias, self.uid_index, self.n_factors)
        _check_block("item", self.item_factors, self.item_bias, self.item_index, self.n_factors)

    def predict(self, uid: int, item_id: int) -> Tuple[float, int, int]:
        """Score one (user, item) pair.

        Returns:
            ``(score, user_index, item_index)``. If either id is unknown its
            index is -1 and the score is meaningless; check the indices first.

        Raises:
            DivergenceError: If the score is not a finite number.
        """
        user_idx = self.uid_index.get(uid, UNKNOWN_INDEX)
        item_idx = self.item_index.get(item_id, UNKNOWN_INDEX)
        if user_idx == UNKNOWN_INDEX or item_idx == UNKNOWN_INDEX:
            return 0.0, user_idx, item_idx

        dot = float(np.dot(self.user_factors[user_idx], self.item_factors[item_idx]))
        user_bias = float(self.user_bias[user_idx])
        item_bias = float(self.item_bias[item_idx])
        score = dot + self.global_mean + user_bias + item_bias

        if not math.isfinite(score):
            logger.critical(
                f"score {score} dot {dot} Mu {self.global_mean} Bu {user_bias} Bi {item_bias}",
                extra={"uid": uid, "item_id": item_id},
            )
            raise DivergenceError(
                uid,
                item_id,
                score,
                details={
                    "uid": uid,
                    "item_id": item_id,
                    "score": score,
                    "dot": dot,
                    "global_mean": self.global_mean,
                    "user_bias": user_bias,
                    "item_bias": item_bias,
                },
            )

        return score, user_idx, item_idx

    def score(self, uid: int, item_id: int) -> float:
        """Predicted rating, raising instead of returning a sentinel.

        Raises:
            UnknownIdError: If the user or the item was not seen in training.
            DivergenceError: If the score is not finite.
        """
        score, user_idx, item_idx = self.predict(uid, item_id)
        if user_idx == UNKNOWN_INDEX:
            raise UnknownIdError("user", uid)
        if item_idx == UNKNOWN_INDEX:
            raise UnknownIdError("item", item_id)
        return score

    def recommend(
        self,
        uid: int,
        top_n: int = DEFAULT_TOP_N,
        exclude: Optional[Iterable[int]] = None,
    ) -> List[Tuple[int, float]]:
        """Highest-scoring items for a known user.

        Args:
            uid: External user id.
            top_n: Maximum number of items to return.
            exclude: Item ids never to return, e.g. already rated ones.

        Returns:
            ``(item_id, score)`` pairs sorted by descending score.

        Raises:
            UnknownIdError: If the user was not seen in training.
        """
        if uid not in self.uid_index:
            raise UnknownIdError("user", uid)
        if top_n <= 0 or self.n_items == 0:
            return []

        user_idx = self.uid_index[uid]
        scores = (
            self.item_factors @ self.user_factors[user_idx]
            + self.item_bias
            + self.user_bias[user_idx]
            + self.global_mean
        ).astype(np.float64)

        for item_id in exclude or ():
            item_idx = self.item_index.get(item_id)
            if item_idx is not None:
                scores[item_idx] = -np.inf

        valid = np.flatnonzero(np.isfinite(scores))
        if len(valid) == 0:
            return []

        n_available = min(top_n, len(valid))
        order = np.argsort(scores[valid], kind="stable")[::-1][:n_available]
        idx_to_item_id = {idx: item_id for item_id, idx in self.item_index.items()}

        return [
            (int(idx_to_item_id[int(valid[j])]), float(scores[valid[j]])) for j in order
        ]

    def to_state(self) -> Dict[str, Any]:
        """Plain-data snapshot of the model parameters."""
        return {
            "n_factors": int(self.n_factors),
            "user_factors": self.user_factors,
            "item_factors": self.item_factors,
            "global_mean": float(self.global_mean),
            "user_bias": self.user_bias,
            "item_bias": self.item_bias,
            "uid_index": dict(self.uid_index),
            "item_index": dict(self.item_index),
        }

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "LatentFactorModel":
        """Rebuild a model from :meth:`to_state` output, re-checking invariants.

        Raises:
            ValueError: If a field is missing or the invariants do not hold.
        """
        missing = {
            "n_factors",
            "user_factors",
            "item_factors",
            "global_mean",
            "user_bias",
            "item_bias",
            "uid_index",
            "item_index",
        } - set(state)
        if missing:
            raise ValueError(f"Model state missing fields: {sorted(missing)}")

        return cls(
            n_factors=state["n_factors"],
            user_factors=np.ascontiguousarray(state["user_factors"], dtype=DTYPE),
            item_factors=np.ascontiguousarray(state["item_factors"], dtype=DTYPE),
            global_mean=float(state["global_mean"]),
            user_bias=np.ascontiguousarray(state["user_bias"], dtype=DTYPE),
            item_bias=np.ascontiguousarray(state["item_bias"], dtype=DTYPE),
            uid_index={int(k): int(v) for k, v in dict(state["uid_index"]).items()},
            item_index={int(k): int(v) for k, v in dict(state["item_index"]).items()},
        )

    def __repr__(self) -> str:
        return (
            f"LatentFactorModel(n_factors={self.n_factors}, n_users={self.n_users}, "
            f"n_items={self.n_items}, global_mean={self.global_mean:.4f})"
        )


def _check_block(
    kind: str,
    factors: np.ndarray,
    bias: np.ndarray,
    index: Dict[int, int],
    n_factors: int,
) -> None:
    n_rows = len(index)
    if not isinstance(factors, np.ndarray) or factors.ndim != 2:
        raise ValueError(f"{kind} factors must be a 2-d array")
    if factors.shape != (n_rows, n_factors):
        raise ValueError(
            f"{kind} factors have shape {factors.shape}, expected {(n_rows, n_factors)}"
        )
    if not isinstance(bias, np.ndarray) or bias.shape != (n_rows,):
        raise ValueError(f"{kind} bias must have shape {(n_rows,)}")
    if sorted(index.values()) != list(range(n_rows)):
        raise ValueError(f"{kind} index is not dense and zero-based")
