"""Parallel SGD training of the latent-factor model.

Each epoch runs a fresh pool of worker threads that drain a bounded queue of
rating events and apply SGD updates straight to the model's shared arrays.
In the default ``hogwild`` mode no lock is taken around parameter rows: two
workers touching the same row at once may overwrite part of each other's
update. That relaxed consistency is intentional; with sparse ratings such
collisions are rare and SGD still converges. ``locked`` mode takes striped
row locks around each update for callers that need every update applied.
"""

import logging
import queue
import threading
from contextlib import closing
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from lfmrec.exceptions import ConfigurationError, DivergenceError
from lfmrec.recommender.accumulator import ErrorAccumulator
from lfmrec.recommender.corpus import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_TIMEZONE,
    Rating,
    index_corpus,
    read_corpus_file,
    shuffle_files,
    validate_corpus_files,
)
from lfmrec.recommender.evaluate import EvaluationResult, evaluate_files
from lfmrec.recommender.model import DEFAULT_N_FACTORS, UNKNOWN_INDEX, LatentFactorModel
from lfmrec.recommender.utils import save_model_artifacts, save_training_history

# Configure module logger
logger = logging.getLogger(__name__)

# Training configuration constants
DEFAULT_LEARNING_RATE = 0.01
DEFAULT_REGULARIZATION = 0.01
DEFAULT_EPOCHS = 10
DEFAULT_PARALLELISM = 10
DEFAULT_QUEUE_SIZE = 10000
DEFAULT_RANDOM_STATE = 42
LEARNING_RATE_DECAY = 0.9
MIN_LEARNING_RATE = 1e-5
LOCK_STRIPES = 1024
WORKER_POLL_SECONDS = 0.05

UPDATE_MODES = ("hogwild", "locked")


@dataclass
class TrainingConfig:
    """Settings for one training run.

    Attributes:
        train_files: Corpus files used for indexing and training.
        test_files: Held-out corpus files evaluated after every epoch.
        n_factors: Embedding dimensionality.
        learning_rate: Initial SGD step size.
        regularization: L2 coefficient (lambda).
        epochs: Number of passes over the training files.
        parallelism: Number of worker threads.
        time_decay: Decay exponent; 0 disables decay and the file-name date.
        update_mode: ``"hogwild"`` for lock-free updates, ``"locked"`` for
            striped per-row locks.
        queue_size: Capacity of the event queue between reader and workers.
        chunk_size: Number of events shuffled together by the reader.
        timezone: Zone of the ``YYYYMMDD`` file-name dates.
        random_state: Seed for initialization and shuffling; None for random.
        output_dir: Where to save the model and history; None to skip saving.
    """

    train_files: List[str]
    test_files: List[str] = field(default_factory=list)
    n_factors: int = DEFAULT_N_FACTORS
    learning_rate: float = DEFAULT_LEARNING_RATE
    regularization: float = DEFAULT_REGULARIZATION
    epochs: int = DEFAULT_EPOCHS
    parallelism: int = DEFAULT_PARALLELISM
    time_decay: float = 0.0
    update_mode: str = "hogwild"
    queue_size: int = DEFAULT_QUEUE_SIZE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    timezone: str = DEFAULT_TIMEZONE
    random_state: Optional[int] = DEFAULT_RANDOM_STATE
    output_dir: Optional[str] = None

    def __post_init__(self) -> None:
        self.train_files = [str(p) for p in self.train_files]
        self.test_files = [str(p) for p in self.test_files]

        if not self.train_files:
            raise ConfigurationError("At least one training file is required")
        if self.n_factors <= 0:
            raise ConfigurationError(f"n_factors must be positive, got {self.n_factors}")
        if self.learning_rate <= 0:
            raise ConfigurationError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )
        if self.regularization < 0:
            raise ConfigurationError(
                f"regularization must be non-negative, got {self.regularization}"
            )
        if self.epochs < 0:
            raise ConfigurationError(f"epochs must be non-negative, got {self.epochs}")
        if self.parallelism <= 0:
            raise ConfigurationError(f"parallelism must be positive, got {self.parallelism}")
        if self.time_decay < 0:
            raise ConfigurationError(f"time_decay must be non-negative, got {self.time_decay}")
        if self.update_mode not in UPDATE_MODES:
            raise ConfigurationError(
                f"update_mode must be one of {UPDATE_MODES}, got {self.update_mode!r}"
            )
        if self.queue_size <= 0 or self.chunk_size <= 0:
            raise ConfigurationError("queue_size and chunk_size must be positive")


@dataclass(frozen=True)
class EpochStats:
    """Signals emitted after every epoch."""

    iteration: int
    learning_rate: float
    train_samples: int
    train_mse: float
    test_samples: int = 0
    test_auc: float = float("nan")
    test_mse: float = float("nan")
    failed_files: Tuple[str, ...] = ()


class Trainer:
    """Runs SGD epochs over a set of corpus files against one model.

    The trainer owns the hyperparameters and the error accumulator; the
    model owns only parameters, so a trained model can be saved and served
    without any of this state.
    """

    def __init__(
        self,
        model: LatentFactorModel,
        train_files: Sequence[str],
        learning_rate: float = DEFAULT_LEARNING_RATE,
        regularization: float = DEFAULT_REGULARIZATION,
        parallelism: int = DEFAULT_PARALLELISM,
        time_decay: float = 0.0,
        update_mode: str = "hogwild",
        queue_size: int = DEFAULT_QUEUE_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timezone: str = DEFAULT_TIMEZONE,
        random_state: Optional[int] = None,
    ):
        if update_mode not in UPDATE_MODES:
            raise ConfigurationError(
                f"update_mode must be one of {UPDATE_MODES}, got {update_mode!r}"
            )
        if parallelism <= 0:
            raise ConfigurationError(f"parallelism must be positive, got {parallelism}")

        self.model = model
        self.train_files = [str(p) for p in train_files]
        self.learning_rate = learning_rate
        self.regularization = regularization
        self.parallelism = parallelism
        self.time_decay = time_decay
        self.update_mode = update_mode
        self.queue_size = queue_size
        self.chunk_size = chunk_size
        self.timezone = timezone
        self.errors = ErrorAccumulator()
        self._rng = np.random.default_rng(random_state)

        if update_mode == "locked":
            self._user_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
            self._item_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

        # fail before the first epoch, not halfway through it
        validate_corpus_files(self.train_files, time_decay, timezone=timezone)

    def update(self, rating: Rating) -> bool:
        """Apply one SGD step for ``rating``.

        Returns:
            False if the user or item is unknown and the event was dropped.

        Raises:
            DivergenceError: If the current prediction is not finite.
        """
        if self.update_mode == "hogwild":
            return self._step(rating)

        user_idx = self.model.uid_index.get(rating.uid)
        item_idx = self.model.item_index.get(rating.item_id)
        if user_idx is None or item_idx is None:
            return False
        # users before items, always
        with self._user_locks[user_idx % LOCK_STRIPES]:
            with self._item_locks[item_idx % LOCK_STRIPES]:
                return self._step(rating)

    def _step(self, rating: Rating) -> bool:
        model = self.model
        score, user_idx, item_idx = model.predict(rating.uid, rating.item_id)
        if user_idx == UNKNOWN_INDEX or item_idx == UNKNOWN_INDEX:
            return False

        err = rating.weight - score
        self.errors.add(err)

        lr = self.learning_rate
        lam = self.regularization
        p = model.user_factors[user_idx]
        q = model.item_factors[item_idx]

        p += lr * (err * q - lam * p)
        # Q reads the already updated P row
        q += lr * (err * p - lam * q)
        model.user_bias[user_idx] += lr * (err - lam * model.user_bias[user_idx])
        model.item_bias[item_idx] += lr * (err - lam * model.item_bias[item_idx])
        return True

    def _worker(
        self,
        events: "queue.Queue[Rating]",
        stop: threading.Event,
        abort: threading.Event,
        failures: List[BaseException],
    ) -> None:
        while not abort.is_set():
            try:
                rating = events.get(timeout=WORKER_POLL_SECONDS)
            except queue.Empty:
                if stop.is_set():
                    return
                continue
            try:
                self.update(rating)
            except Exception as e:
                failures.append(e)
                abort.set()
                return

    def _enqueue(self, events: "queue.Queue[Rating]", rating: Rating, abort: threading.Event) -> bool:
        # blocks while the queue is full unless the pool has given up
        while not abort.is_set():
            try:
                events.put(rating, timeout=WORKER_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def train_epoch(self) -> Tuple[int, float, Tuple[str, ...]]:
        """Run one pass over every training file.

        Returns:
            ``(samples, mse, failed_files)`` where samples counts the events
            that produced an update.

        Raises:
            DivergenceError: If any worker saw a non-finite prediction. The
                worker pool has fully stopped when this is raised.
        """
        self.errors.reset()

        events: "queue.Queue[Rating]" = queue.Queue(maxsize=self.queue_size)
        stop = threading.Event()
        abort = threading.Event()
        failures: List[BaseException] = []
        workers = [
            threading.Thread(
                target=self._worker,
                args=(events, stop, abort, failures),
                name=f"sgd-worker-{i}",
                daemon=True,
            )
            for i in range(self.parallelism)
        ]
        for worker in workers:
            worker.start()

        failed_files: List[str] = []
        try:
            for path in shuffle_files(self.train_files, self._rng):
                if abort.is_set():
                    break
                ratings = read_corpus_file(
                    path,
                    decay_exponent=self.time_decay,
                    chunk_size=self.chunk_size,
                    rng=self._rng,
                    timezone=self.timezone,
                )
                try:
                    with closing(ratings):
                        for rating in ratings:
                            if not self._enqueue(events, rating, abort):
                                break
                except OSError as e:
                    logger.error(
                        f"read train file {path} failed {e}",
                        extra={"path": path, "error": str(e)},
                    )
                    failed_files.append(path)
                    continue
                logger.debug(f"read train file {path} finish")
        finally:
            stop.set()
            for worker in workers:
                worker.join()

        if failures:
            raise failures[0]

        # workers are gone; whatever is still queued is applied here
        drained = 0
        while True:
            try:
                rating = events.get_nowait()
            except queue.Empty:
                break
            self.update(rating)
            drained += 1
        if drained:
            logger.debug(f"Applied {drained} residual events after worker shutdown")

        return self.errors.samples, self.errors.mean(), tuple(failed_files)

    def decay_learning_rate(self) -> float:
        """Shrink the learning rate by 0.9, never going under the floor."""
        if self.learning_rate > MIN_LEARNING_RATE:
            self.learning_rate = max(self.learning_rate * LEARNING_RATE_DECAY, MIN_LEARNING_RATE)
        return self.learning_rate

    def train(self, epochs: int, test_files: Sequence[str] = ()) -> List[EpochStats]:
        """Run ``epochs`` epochs, evaluating on ``test_files`` after each one.

        Raises:
            DivergenceError: If training diverges; the caller decides whether
                to retry with a smaller learning rate.
        """
        test_files = [str(p) for p in test_files]
        validate_corpus_files(test_files, self.time_decay, timezone=self.timezone)

        history: List[EpochStats] = []
        for iteration in range(epochs):
            try:
                samples, mse, failed_files = self.train_epoch()
                learning_rate = self.decay_learning_rate()
                result = (
                    evaluate_files(
                        self.model,
                        test_files,
                        decay_exponent=self.time_decay,
                        timezone=self.timezone,
                    )
                    if test_files
                    else EvaluationResult(count=0, auc=float("nan"), mse=float("nan"))
                )
            except DivergenceError as e:
                logger.critical(
                    "Training diverged",
                    extra={
                        "iteration": iteration,
                        "learning_rate": self.learning_rate,
                        **e.details,
                    },
                )
                raise

            stats = EpochStats(
                iteration=iteration,
                learning_rate=learning_rate,
                train_samples=samples,
                train_mse=mse,
                test_samples=result.count,
                test_auc=result.auc,
                test_mse=result.mse,
                failed_files=failed_files + result.failed_files,
            )
            history.append(stats)
            logger.info(
                f"iteration {iteration} train finish, learning rate is {learning_rate:.6f}, "
                f"train mse is {mse:.6f}, test auc is {result.auc:.4f}, "
                f"test mse is {result.mse:.6f}",
                extra={
                    "iteration": iteration,
                    "learning_rate": learning_rate,
                    "train_samples": samples,
                    "train_mse": mse,
                    "test_samples": result.count,
                    "test_auc": result.auc,
                    "test_mse": result.mse,
                },
            )

        logger.info("train over")
        return history


def train_with_config(config: TrainingConfig) -> Tuple[LatentFactorModel, List[EpochStats]]:
    """Index the corpus, initialize a model, train it and optionally save it.

    This is the main entry point for training.

    Args:
        config: Training settings.

    Returns:
        The trained model and the per-epoch statistics.

    Raises:
        ConfigurationError: If settings or file names are invalid.
        OSError: If a training file cannot be read while indexing.
        DivergenceError: If training diverges.

    Example:
        >>> config = TrainingConfig(train_files=["data/ratings_20240101"], epochs=5)
        >>> model, history = train_with_config(config)
        >>> print(history[-1].train_mse)
    """
    logger.info("=" * 60)
    logger.info("Starting latent factor model training")
    logger.info("=" * 60)

    try:
        validate_corpus_files(config.test_files, config.time_decay, timezone=config.timezone)

        # Step 1: Index users, items and the global mean
        corpus_index = index_corpus(
            config.train_files, decay_exponent=config.time_decay, timezone=config.timezone
        )

        # Step 2: Allocate parameters
        model = LatentFactorModel.initialize(
            corpus_index, n_factors=config.n_factors, random_state=config.random_state
        )
        logger.info("init param finish")

        # Step 3: SGD epochs
        trainer = Trainer(
            model,
            config.train_files,
            learning_rate=config.learning_rate,
            regularization=config.regularization,
            parallelism=config.parallelism,
            time_decay=config.time_decay,
            update_mode=config.update_mode,
            queue_size=config.queue_size,
            chunk_size=config.chunk_size,
            timezone=config.timezone,
            random_state=config.random_state,
        )
        history = trainer.train(config.epochs, test_files=config.test_files)

        # Step 4: Save artifacts
        if config.output_dir is not None:
            save_model_artifacts(model, config.output_dir)
            save_training_history(history, config.output_dir)

        logger.info("=" * 60)
        logger.info("Training completed successfully!")
        logger.info("=" * 60)

        return model, history

    except Exception as e:
        logger.error(f"Training failed: {e}", exc_info=True)
        raise
