"""Held-out evaluation of a latent-factor model.

Every held-out rating whose user and item were seen in training is scored.
The pass reports the mean squared error against the (time-decayed) rating
and the area under a weighted ROC curve, where a rating is a positive
example when it is greater than zero. Positive examples weigh as much as
their rating; the rest weigh 1.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import auc

from lfmrec.recommender.corpus import DEFAULT_TIMEZONE, Rating, read_corpus_file
from lfmrec.recommender.model import LatentFactorModel

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult:
    """Metrics of one evaluation pass.

    Attributes:
        count: Number of scored examples.
        auc: Area under the weighted ROC curve (NaN if one class is missing).
        mse: Mean squared error (NaN if nothing was scored).
        failed_files: Held-out files that could not be read.
    """

    count: int
    auc: float
    mse: float
    failed_files: Tuple[str, ...] = field(default_factory=tuple)


def example_weight(weight: float) -> float:
    """ROC weight of a held-out rating."""
    return weight if weight > 0 else 1.0


def weighted_roc_curve(
    scores: Sequence[float],
    labels: Sequence[bool],
    weights: Sequence[float],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Weighted ROC curve of scored examples.

    Examples are sorted by ascending score and the decision threshold is then
    swept from the highest score down. Tied scores form one point.

    Returns:
        ``(fpr, tpr, thresholds)``; both rates start at 0 and end at 1.

    Raises:
        ValueError: If there is no positive or no negative weight.
    """
    scores = np.asarray(scores, dtype=np.float64)
    labels = np.asarray(labels, dtype=bool)
    weights = np.asarray(weights, dtype=np.float64)
    if not (len(scores) == len(labels) == len(weights)):
        raise ValueError("scores, labels and weights must have the same length")

    ascending = np.argsort(scores, kind="mergesort")
    descending = ascending[::-1]
    scores = scores[descending]
    labels = labels[descending]
    weights = weights[descending]

    true_pos = np.cumsum(np.where(labels, weights, 0.0))
    false_pos = np.cumsum(np.where(labels, 0.0, weights))

    # last position of every run of equal scores
    cut = np.r_[np.flatnonzero(np.diff(scores)), len(scores) - 1]

    tps = np.r_[0.0, true_pos[cut]]
    fps = np.r_[0.0, false_pos[cut]]
    thresholds = np.r_[np.inf, scores[cut]]

    if tps[-1] <= 0:
        raise ValueError("ROC curve needs at least one positive example")
    if fps[-1] <= 0:
        raise ValueError("ROC curve needs at least one negative example")

    return fps / fps[-1], tps / tps[-1], thresholds


def roc_auc(
    scores: Sequence[float],
    labels: Sequence[bool],
    weights: Sequence[float],
) -> float:
    """Trapezoidal area under the weighted ROC curve."""
    fpr, tpr, _ = weighted_roc_curve(scores, labels, weights)
    return float(auc(fpr, tpr))


class _ScoredExamples:
    """Scores, labels and weights collected over one evaluation pass."""

    def __init__(self):
        self.scores: List[float] = []
        self.labels: List[bool] = []
        self.weights: List[float] = []
        self.squared_error = 0.0

    def collect(self, model: LatentFactorModel, ratings: Iterable[Rating]) -> None:
        for rating in ratings:
            score, user_idx, item_idx = model.predict(rating.uid, rating.item_id)
            if user_idx < 0 or item_idx < 0:
                continue
            residual = rating.weight - score
            self.squared_error += residual * residual
            self.scores.append(score)
            self.labels.append(rating.weight > 0)
            self.weights.append(example_weight(rating.weight))

    def summarize(self, failed_files: Sequence[str] = ()) -> EvaluationResult:
        count = len(self.scores)
        if count == 0:
            logger.warning("No held-out example could be scored")
            return EvaluationResult(
                count=0, auc=float("nan"), mse=float("nan"), failed_files=tuple(failed_files)
            )

        try:
            area = roc_auc(self.scores, self.labels, self.weights)
        except ValueError as e:
            logger.warning(f"AUC undefined: {e}", extra={"count": count})
            area = float("nan")

        return EvaluationResult(
            count=count,
            auc=area,
            mse=self.squared_error / count,
            failed_files=tuple(failed_files),
        )


def evaluate_ratings(model: LatentFactorModel, ratings: Iterable[Rating]) -> EvaluationResult:
    """Score in-memory ratings; unknown ids are left out.

    Raises:
        DivergenceError: If the model produces a non-finite score.
    """
    examples = _ScoredExamples()
    examples.collect(model, ratings)
    return examples.summarize()


def evaluate_files(
    model: LatentFactorModel,
    paths: Sequence[str],
    decay_exponent: float = 0.0,
    timezone: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None,
) -> EvaluationResult:
    """Evaluate ``model`` on held-out corpus files.

    A file that cannot be read is logged and listed in
    ``EvaluationResult.failed_files``; the other files are still scored.

    Raises:
        ConfigurationError: If decay is enabled and a file name has no date.
        DivergenceError: If the model produces a non-finite score.
    """
    examples = _ScoredExamples()
    failed: List[str] = []

    for path in paths:
        ratings = read_corpus_file(path, decay_exponent=decay_exponent, timezone=timezone, now=now)
        try:
            examples.collect(model, ratings)
        except OSError as e:
            logger.error(
                f"read test file {path} failed: {e}",
                extra={"path": str(path), "error": str(e)},
            )
            failed.append(str(path))

    return examples.summarize(failed)
