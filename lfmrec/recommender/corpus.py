"""Corpus reading for latent-factor training.

A corpus file holds one user per line::

    <uid> <itemid>:<rating> [<itemid>:<rating> ...]

Files are read as a stream of :class:`Rating` events. When time decay is
enabled the file name must end with a ``YYYYMMDD`` date and every rating in
the file is scaled by ``exp(-decay * days_since_that_date)``. Events leave
the reader in fixed-size chunks, each chunk shuffled, so that consecutive
SGD updates rarely hit the same user or item.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence
from zoneinfo import ZoneInfo

import numpy as np

from lfmrec.exceptions import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10000
DEFAULT_TIMEZONE = "Asia/Shanghai"
DATE_SUFFIX_LENGTH = 8
DATE_SUFFIX_FORMAT = "%Y%m%d"
SECONDS_PER_DAY = 86400

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_INTEGER_RE = re.compile(r"^[+-]?[0-9]+$")
_DECIMAL_RE = re.compile(r"^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?$")


@dataclass(frozen=True)
class Rating:
    """A single weighted (user, item) observation."""

    uid: int
    item_id: int
    weight: float


@dataclass
class CorpusIndex:
    """Result of the indexing pass over the training corpus.

    Attributes:
        global_mean: Mean of every rating weight in the corpus.
        uid_index: External user id to dense row index.
        item_index: External item id to dense row index.
        n_ratings: Number of valid rating events seen.
    """

    global_mean: float
    uid_index: Dict[int, int]
    item_index: Dict[int, int]
    n_ratings: int


def file_date(path: str, timezone: str = DEFAULT_TIMEZONE) -> datetime:
    """Parse the ``YYYYMMDD`` suffix of a corpus file name.

    Args:
        path: Corpus file path. Only the base name is inspected.
        timezone: IANA zone the date is interpreted in.

    Returns:
        Midnight of that day in ``timezone``.

    Raises:
        ConfigurationError: If the name is too short or the suffix is not a
            valid date.
    """
    name = Path(path).name
    if len(name) < DATE_SUFFIX_LENGTH:
        raise ConfigurationError(
            f"Corpus file name must end with a {DATE_SUFFIX_FORMAT} date "
            f"when time decay is enabled: {path}",
            details={"path": str(path)},
        )

    suffix = name[-DATE_SUFFIX_LENGTH:]
    if not suffix.isdigit():
        raise ConfigurationError(
            f"Corpus file name suffix '{suffix}' is not a date: {path}",
            details={"path": str(path), "suffix": suffix},
        )
    try:
        day = datetime.strptime(suffix, DATE_SUFFIX_FORMAT)
    except ValueError as e:
        raise ConfigurationError(
            f"Corpus file name suffix '{suffix}' is not a date: {path}",
            details={"path": str(path), "suffix": suffix},
        ) from e

    return day.replace(tzinfo=ZoneInfo(timezone))


def time_decay(day: datetime, decay_exponent: float, now: Optional[datetime] = None) -> float:
    """Decay coefficient for ratings observed on ``day``.

    Elapsed time is truncated to whole days before the exponent is applied.
    """
    if decay_exponent == 0:
        return 1.0
    if now is None:
        now = datetime.now(day.tzinfo)
    elapsed_days = math.floor((now - day).total_seconds() / SECONDS_PER_DAY)
    return math.exp(-decay_exponent * elapsed_days)


def decay_coefficient(
    path: str,
    decay_exponent: float,
    timezone: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None,
) -> float:
    """Weight multiplier for every rating in ``path``.

    With a zero exponent the file name is not inspected and the result is
    exactly 1.0.

    Raises:
        ConfigurationError: If decay is enabled and the file name carries no
            valid date suffix.
    """
    if decay_exponent < 0:
        raise ConfigurationError(
            f"time decay exponent must be non-negative, got {decay_exponent}"
        )
    if decay_exponent == 0:
        return 1.0
    return time_decay(file_date(path, timezone), decay_exponent, now=now)


def validate_corpus_files(
    paths: Sequence[str],
    decay_exponent: float,
    timezone: str = DEFAULT_TIMEZONE,
) -> Dict[str, float]:
    """Resolve the decay coefficient of every file before any work starts.

    Returns:
        Mapping of path to decay coefficient.

    Raises:
        ConfigurationError: On the first file with an invalid date suffix.
    """
    return {
        str(path): decay_coefficient(path, decay_exponent, timezone=timezone)
        for path in paths
    }


def _parse_int64(text: str) -> Optional[int]:
    if not _INTEGER_RE.match(text):
        return None
    value = int(text)
    if value < INT64_MIN or value > INT64_MAX:
        return None
    return value


def _parse_rating(text: str) -> Optional[float]:
    if not _DECIMAL_RE.match(text):
        return None
    value = float(text)
    if not math.isfinite(value):
        return None
    return value


def parse_line(
    line: str,
    decay_coef: float = 1.0,
    source: Optional[str] = None,
    line_number: Optional[int] = None,
) -> List[Rating]:
    """Parse one corpus line into rating events.

    Malformed tokens are logged and skipped; a malformed uid drops the
    whole line. Parsing never raises on bad input.

    Args:
        line: Raw line, with or without its newline.
        decay_coef: Multiplier applied to every rating on the line.
        source: File the line came from, for log context.
        line_number: 1-based line number, for log context.

    Returns:
        One Rating per valid ``itemid:rating`` pair.

    Example:
        >>> parse_line("1 2:3.5 3:-1.0")
        [Rating(uid=1, item_id=2, weight=3.5), Rating(uid=1, item_id=3, weight=-1.0)]
    """
    tokens = line.split()
    if not tokens:
        return []

    log_context = {"source_file": source, "line_number": line_number}

    if len(tokens) < 2:
        logger.warning(
            "Skipping line without ratings",
            extra={**log_context, "token": tokens[0]},
        )
        return []

    uid = _parse_int64(tokens[0])
    if uid is None:
        logger.warning(
            f"parse uid failed: {tokens[0]}",
            extra={**log_context, "token": tokens[0]},
        )
        return []

    ratings = []
    for token in tokens[1:]:
        item_text, sep, rate_text = token.partition(":")
        item_id = _parse_int64(item_text) if sep else None
        if item_id is None:
            logger.warning(
                f"parse itemid failed: {token}",
                extra={**log_context, "token": token},
            )
            continue

        rate = _parse_rating(rate_text)
        if rate is None:
            logger.warning(
                f"parse rating failed: {token}",
                extra={**log_context, "token": token},
            )
            continue

        ratings.append(Rating(uid=uid, item_id=item_id, weight=rate * decay_coef))

    return ratings


def iter_file_ratings(path: str, decay_coef: float = 1.0) -> Iterator[Rating]:
    """Yield every valid rating of ``path`` in file order.

    Undecodable bytes become U+FFFD, so the token holding them fails to parse
    and is skipped like any other malformed token.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    with open(path, "r", encoding="utf-8", errors="replace") as handle:
        for line_number, line in enumerate(handle, start=1):
            yield from parse_line(
                line, decay_coef=decay_coef, source=str(path), line_number=line_number
            )


def shuffle_chunks(
    ratings: Iterable[Rating],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    rng: Optional[np.random.Generator] = None,
) -> Iterator[Rating]:
    """Buffer ``chunk_size`` events at a time and emit each chunk permuted.

    The last, possibly shorter, chunk is permuted as well. Every input event
    is emitted exactly once. Closing the returned iterator closes ``ratings``
    too when it is a generator.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if rng is None:
        rng = np.random.default_rng()

    chunk: List[Rating] = []
    source = iter(ratings)
    try:
        for rating in source:
            chunk.append(rating)
            if len(chunk) >= chunk_size:
                for j in rng.permutation(len(chunk)):
                    yield chunk[j]
                chunk = []
    finally:
        close = getattr(source, "close", None)
        if close is not None:
            close()

    if chunk:
        for j in rng.permutation(len(chunk)):
            yield chunk[j]


def read_corpus_file(
    path: str,
    decay_exponent: float = 0.0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    rng: Optional[np.random.Generator] = None,
    timezone: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None,
) -> Iterator[Rating]:
    """Stream the time-decayed, chunk-shuffled ratings of one corpus file.

    The decay coefficient is resolved immediately, so a bad file name fails
    on the call rather than on first iteration. File errors surface while
    iterating.

    Raises:
        ConfigurationError: If decay is enabled and the file name has no date.
    """
    coef = decay_coefficient(path, decay_exponent, timezone=timezone, now=now)
    return shuffle_chunks(iter_file_ratings(path, coef), chunk_size=chunk_size, rng=rng)


def shuffle_files(paths: Sequence[str], rng: Optional[np.random.Generator] = None) -> List[str]:
    """Return a shuffled copy of ``paths``."""
    if rng is None:
        rng = np.random.default_rng()
    paths = list(paths)
    return [paths[j] for j in rng.permutation(len(paths))]


def index_corpus(
    paths: Sequence[str],
    decay_exponent: float = 0.0,
    timezone: str = DEFAULT_TIMEZONE,
) -> CorpusIndex:
    """Single pass over the training corpus collecting the mean and id spaces.

    Ids receive dense indices in the order they are first encountered.

    Raises:
        ConfigurationError: If a file name is invalid or the corpus holds no
            valid rating.
        OSError: If a file cannot be read.
    """
    coefficients = validate_corpus_files(paths, decay_exponent, timezone=timezone)

    weight_sum = 0.0
    n_ratings = 0
    uid_index: Dict[int, int] = {}
    item_index: Dict[int, int] = {}

    for path in paths:
        for rating in iter_file_ratings(path, coefficients[str(path)]):
            weight_sum += rating.weight
            n_ratings += 1
            if rating.uid not in uid_index:
                uid_index[rating.uid] = len(uid_index)
            if rating.item_id not in item_index:
                item_index[rating.item_id] = len(item_index)
        logger.debug(f"Indexed corpus file {path}")

    if n_ratings == 0:
        raise ConfigurationError(
            "Training corpus contains no valid ratings",
            details={"files": [str(p) for p in paths]},
        )

    global_mean = weight_sum / n_ratings
    logger.info(
        f"total {n_ratings} rate, average is {global_mean:.6f}",
        extra={
            "n_ratings": n_ratings,
            "global_mean": global_mean,
            "n_users": len(uid_index),
            "n_items": len(item_index),
        },
    )

    return CorpusIndex(
        global_mean=global_mean,
        uid_index=uid_index,
        item_index=item_index,
        n_ratings=n_ratings,
    )
