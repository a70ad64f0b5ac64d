"""Shared fixtures: small corpora written in the ``uid itemid:rating`` format."""

from pathlib import Path
from typing import Callable, Iterable, List

import numpy as np
import pytest


@pytest.fixture
def write_corpus(tmp_path: Path) -> Callable[[str, Iterable[str]], Path]:
    """Return a helper writing corpus lines to ``tmp_path / name``."""

    def _write(name: str, lines: Iterable[str]) -> Path:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n")
        return path

    return _write


@pytest.fixture
def tiny_corpus(write_corpus) -> Path:
    """3 users x 3 items with fixed ratings."""
    return write_corpus(
        "tiny_20240101",
        [
            "1 10:5.0 11:3.0 12:1.0",
            "2 10:4.0 11:2.0 12:1.0",
            "3 10:1.0 11:2.0 12:5.0",
        ],
    )


@pytest.fixture
def random_corpus(write_corpus) -> List[Path]:
    """Two files, 40 users, 25 items, 10 ratings per user line (400 events)."""
    rng = np.random.default_rng(0)
    paths = []
    for part, users in enumerate((range(1, 21), range(21, 41))):
        lines = []
        for uid in users:
            items = rng.choice(np.arange(100, 125), size=10, replace=False)
            ratings = rng.uniform(1.0, 5.0, size=10)
            lines.append(
                f"{uid} " + " ".join(f"{item}:{rating:.3f}" for item, rating in zip(items, ratings))
            )
        paths.append(write_corpus(f"random_part{part}_2024010{part + 1}", lines))
    return paths
