"""CLI script for scoring with a trained model.

Predicts a rating for one (user, item) pair, or prints the top-N items of a
user when no item is given.

Example:
    $ python scripts/predict_cli.py 42 1001 --model-dir models
    $ python scripts/predict_cli.py 42 --top-n 5
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lfmrec.exceptions import LFMRecException
from lfmrec.recommender.infer import predict_rating, recommend_items_for_user

# Setup logging
logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Score users and items with a trained model")
    parser.add_argument("user_id", type=int, help="External user id")
    parser.add_argument("item_id", type=int, nargs="?", help="External item id")
    parser.add_argument("--model-dir", default="models", help="Directory with model files")
    parser.add_argument("--top-n", type=int, default=10, help="Items to list without item_id")
    args = parser.parse_args(argv)

    try:
        if args.item_id is not None:
            score = predict_rating(args.user_id, args.item_id, model_path=args.model_dir)
            print(f"user {args.user_id} item {args.item_id}: {score:.4f}")
            return 0

        ranked = recommend_items_for_user(args.user_id, model_path=args.model_dir, top_n=args.top_n)
        print(f"Top {len(ranked)} items for user {args.user_id}:")
        for rank, (item_id, score) in enumerate(ranked, start=1):
            print(f"  {rank:2d}. item {item_id:<12d} {score:.4f}")
        return 0

    except FileNotFoundError as e:
        logger.error(f"Model files not found: {e}")
        return 1
    except LFMRecException as e:
        logger.error(e.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
