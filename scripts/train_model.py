"""Command-line interface for training the latent-factor model.

Example:
    Train with default settings:
        $ python scripts/train_model.py data/ratings_20240101 data/ratings_20240102

    Train with held-out evaluation and time decay:
        $ python scripts/train_model.py data/train_* \\
            --test-files data/test_20240103 \\
            --factors 32 --epochs 20 --time-decay 0.05 --parallelism 8
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lfmrec.api.logging_config import setup_logging as setup_json_logging
from lfmrec.exceptions import ConfigurationError, DivergenceError
from lfmrec.recommender.corpus import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEZONE
from lfmrec.recommender.model import DEFAULT_N_FACTORS
from lfmrec.recommender.train import (
    DEFAULT_EPOCHS,
    DEFAULT_LEARNING_RATE,
    DEFAULT_PARALLELISM,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RANDOM_STATE,
    DEFAULT_REGULARIZATION,
    UPDATE_MODES,
    TrainingConfig,
    train_with_config,
)

EXIT_DIVERGED = 2


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging for the script.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        json_logs: If True, emit one JSON object per log line.
    """
    if json_logs:
        setup_json_logging("DEBUG" if verbose else "INFO")
        return
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Train a latent-factor rating model with parallel SGD.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "train_files",
        nargs="+",
        help="Corpus files, one 'uid itemid:rating ...' line per user",
    )
    parser.add_argument(
        "--test-files",
        nargs="*",
        default=[],
        help="Held-out corpus files evaluated after every epoch",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="models",
        help="Directory where model artifacts will be saved (default: models)",
    )
    parser.add_argument(
        "--factors",
        type=int,
        default=DEFAULT_N_FACTORS,
        help=f"Embedding dimensionality (default: {DEFAULT_N_FACTORS})",
    )
    parser.add_argument(
        "--learning-rate",
        type=float,
        default=DEFAULT_LEARNING_RATE,
        help=f"Initial SGD learning rate (default: {DEFAULT_LEARNING_RATE})",
    )
    parser.add_argument(
        "--regularization",
        type=float,
        default=DEFAULT_REGULARIZATION,
        help=f"L2 regularization coefficient (default: {DEFAULT_REGULARIZATION})",
    )
    parser.add_argument(
        "--epochs",
        type=int,
        default=DEFAULT_EPOCHS,
        help=f"Number of training epochs (default: {DEFAULT_EPOCHS})",
    )
    parser.add_argument(
        "--parallelism",
        type=int,
        default=DEFAULT_PARALLELISM,
        help=f"Training worker threads (default: {DEFAULT_PARALLELISM})",
    )
    parser.add_argument(
        "--time-decay",
        type=float,
        default=0.0,
        help="Time decay exponent; files must end with YYYYMMDD when > 0 (default: 0)",
    )
    parser.add_argument(
        "--update-mode",
        choices=UPDATE_MODES,
        default="hogwild",
        help="'hogwild' for lock-free updates, 'locked' for per-row locks",
    )
    parser.add_argument("--queue-size", type=int, default=DEFAULT_QUEUE_SIZE)
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    parser.add_argument("--timezone", type=str, default=DEFAULT_TIMEZONE)
    parser.add_argument(
        "--random-state",
        type=int,
        default=DEFAULT_RANDOM_STATE,
        help=f"Random seed for reproducibility (default: {DEFAULT_RANDOM_STATE})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON log lines",
    )

    return parser.parse_args()


def main() -> int:
    """Main entry point for the training script.

    Returns:
        Exit code: 0 on success, 2 if training diverged, 1 on other errors.
    """
    args = parse_arguments()
    setup_logging(verbose=args.verbose, json_logs=args.json_logs)
    logger = logging.getLogger(__name__)

    try:
        config = TrainingConfig(
            train_files=args.train_files,
            test_files=args.test_files,
            n_factors=args.factors,
            learning_rate=args.learning_rate,
            regularization=args.regularization,
            epochs=args.epochs,
            parallelism=args.parallelism,
            time_decay=args.time_decay,
            update_mode=args.update_mode,
            queue_size=args.queue_size,
            chunk_size=args.chunk_size,
            timezone=args.timezone,
            random_state=args.random_state,
            output_dir=args.output_dir,
        )

        logger.info("=" * 70)
        logger.info("Training Configuration")
        logger.info("=" * 70)
        logger.info(f"Train files:    {len(config.train_files)}")
        logger.info(f"Test files:     {len(config.test_files)}")
        logger.info(f"Factors:        {config.n_factors}")
        logger.info(f"Learning rate:  {config.learning_rate}")
        logger.info(f"Regularization: {config.regularization}")
        logger.info(f"Epochs:         {config.epochs}")
        logger.info(f"Parallelism:    {config.parallelism} ({config.update_mode})")
        logger.info(f"Time decay:     {config.time_decay}")
        logger.info("=" * 70)

        model, history = train_with_config(config)

        logger.info("=" * 70)
        logger.info("Training Summary")
        logger.info("=" * 70)
        logger.info(f"Model: {model}")
        if history:
            last = history[-1]
            logger.info(f"Final train MSE: {last.train_mse:.6f}")
            logger.info(f"Final test AUC:  {last.test_auc:.4f}")
            logger.info(f"Final test MSE:  {last.test_mse:.6f}")
        logger.info(f"Model saved to: {Path(args.output_dir).absolute()}")
        logger.info("=" * 70)
        return 0

    except DivergenceError as e:
        logger.error(f"{e.message} Try a smaller --learning-rate.")
        return EXIT_DIVERGED
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        return 1
    except OSError as e:
        logger.error(f"File error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Training interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
