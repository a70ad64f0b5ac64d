"""Generate a synthetic rating corpus for testing and development.

Ratings come from hidden user and item factors plus noise, so a trained
model has real structure to recover. One file is written per day, named
``<prefix>_YYYYMMDD`` so time decay can be enabled, plus a held-out file.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_ratings
        lines = generate_ratings(num_users=100, num_items=200)
"""

import sys
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

# Default configuration constants
DEFAULT_NUM_USERS = 200
DEFAULT_NUM_ITEMS = 300
DEFAULT_RATINGS_PER_USER = 20
DEFAULT_NUM_DAYS = 7
DEFAULT_HIDDEN_FACTORS = 4
DEFAULT_SEED = 42
NEGATIVE_RATE = 0.2


def hidden_population(
    num_users: int, num_items: int, hidden_factors: int, rng: np.random.Generator
) -> Tuple[np.ndarray, np.ndarray]:
    """Draw the hidden user and item factors ratings are generated from."""
    return (
        rng.normal(0.0, 1.0, (num_users, hidden_factors)),
        rng.normal(0.0, 1.0, (num_items, hidden_factors)),
    )


def generate_ratings(
    num_users: int = DEFAULT_NUM_USERS,
    num_items: int = DEFAULT_NUM_ITEMS,
    ratings_per_user: int = DEFAULT_RATINGS_PER_USER,
    hidden_factors: int = DEFAULT_HIDDEN_FACTORS,
    rng: Optional[np.random.Generator] = None,
    factors: Optional[Tuple[np.ndarray, np.ndarray]] = None,
) -> List[str]:
    """Generate corpus lines ``uid itemid:rating ...``.

    About a fifth of the ratings are negative feedback (-1.0); the rest are
    positive scores between 1 and 5. Pass the same ``factors`` pair to get
    several files drawn from one population.

    Raises:
        ValueError: If any count is non-positive or ratings_per_user
            exceeds num_items.
    """
    if num_users <= 0 or num_items <= 0 or ratings_per_user <= 0:
        raise ValueError("num_users, num_items and ratings_per_user must be positive")
    if ratings_per_user > num_items:
        raise ValueError("ratings_per_user cannot exceed num_items")
    if rng is None:
        rng = np.random.default_rng(DEFAULT_SEED)

    if factors is None:
        factors = hidden_population(num_users, num_items, hidden_factors, rng)
    user_factors, item_factors = factors

    lines = []
    for user in range(num_users):
        items = rng.choice(num_items, size=ratings_per_user, replace=False)
        affinity = item_factors[items] @ user_factors[user] + rng.normal(0.0, 0.5, len(items))
        cutoff = np.quantile(affinity, NEGATIVE_RATE)
        pairs = []
        for item, value in zip(items, affinity):
            if value < cutoff:
                rating = -1.0
            else:
                rating = float(np.clip(3.0 + value, 1.0, 5.0))
            pairs.append(f"{item + 1}:{rating:.2f}")
        lines.append(f"{user + 1} " + " ".join(pairs))

    return lines


def write_corpus(
    output_dir: Path,
    num_days: int = DEFAULT_NUM_DAYS,
    prefix: str = "ratings",
    end_date: Optional[date] = None,
    seed: int = DEFAULT_SEED,
) -> List[Path]:
    """Write ``num_days`` dated training files and one held-out file.

    Returns:
        Paths of the training files; the held-out file is ``test_<date>``.
    """
    if end_date is None:
        end_date = date.today()
    rng = np.random.default_rng(seed)
    factors = hidden_population(DEFAULT_NUM_USERS, DEFAULT_NUM_ITEMS, DEFAULT_HIDDEN_FACTORS, rng)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for offset in range(num_days, 0, -1):
        day = end_date - timedelta(days=offset)
        path = output_dir / f"{prefix}_{day:%Y%m%d}"
        path.write_text("\n".join(generate_ratings(rng=rng, factors=factors)) + "\n")
        paths.append(path)

    test_path = output_dir / f"test_{end_date:%Y%m%d}"
    test_lines = generate_ratings(ratings_per_user=5, rng=rng, factors=factors)
    test_path.write_text("\n".join(test_lines) + "\n")
    return paths


def main() -> None:
    """Write the default synthetic corpus to ``data/``."""
    data_dir = Path(__file__).parent.parent / "data"

    try:
        paths = write_corpus(data_dir)
    except ValueError as e:
        print(f"Error generating data: {e}")
        sys.exit(1)

    print("Data generated successfully!")
    for path in paths:
        print(f"  train: {path}")
    print(f"  test files: {sorted(str(p) for p in data_dir.glob('test_*'))}")


if __name__ == "__main__":
    main()
