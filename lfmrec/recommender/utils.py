"""Utility functions for model artifacts.

This module saves and loads trained latent-factor models and writes the
per-epoch training history.
"""

import logging
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Sequence, Tuple

import joblib
import pandas as pd

from lfmrec.exceptions import ModelLoadError
from lfmrec.recommender.model import LatentFactorModel

# Configure module logger
logger = logging.getLogger(__name__)

# Model artifact filenames
MODEL_FILENAME = "lfm_model.joblib"
HISTORY_FILENAME = "training_history.csv"
MODEL_FORMAT = "lfmrec.latent_factor_model"
MODEL_FORMAT_VERSION = 1


def save_model_artifacts(
    model: LatentFactorModel,
    output_dir: str,
    model_filename: str = MODEL_FILENAME,
) -> Path:
    """Save a trained model to disk.

    Only model state is written (factors, biases, global mean and id
    indices); training hyperparameters are not part of the artifact.
    Creates the directory if it doesn't exist.

    Args:
        model: Trained model to save.
        output_dir: Directory path where the artifact will be saved.
        model_filename: Filename for the model (default: "lfm_model.joblib").

    Returns:
        Path of the written file.

    Raises:
        OSError: If unable to create output directory or save the file.

    Example:
        >>> save_model_artifacts(model, "models")
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    model_path = output_path / model_filename
    payload = {
        "format": MODEL_FORMAT,
        "version": MODEL_FORMAT_VERSION,
        "state": model.to_state(),
    }
    joblib.dump(payload, model_path)
    logger.info(
        f"Saved model to {model_path}",
        extra={"n_users": model.n_users, "n_items": model.n_items},
    )
    return model_path


def load_model_artifacts(
    model_dir: str,
    model_filename: str = MODEL_FILENAME,
) -> LatentFactorModel:
    """Load a trained model from disk.

    Args:
        model_dir: Directory path where artifacts are stored.
        model_filename: Filename for the model (default: "lfm_model.joblib").

    Returns:
        The loaded model, with its invariants re-checked.

    Raises:
        FileNotFoundError: If the directory or the model file is missing.
        ModelLoadError: If the file is corrupt, truncated or inconsistent.

    Example:
        >>> model = load_model_artifacts("models")
        >>> print(f"Model has {model.n_factors} factors")
    """
    model_path = Path(model_dir)

    if not model_path.exists():
        raise FileNotFoundError(f"Model directory does not exist: {model_dir}")

    model_file = model_path / model_filename
    if not model_file.exists():
        raise FileNotFoundError(f"Model file not found: {model_file}")

    logger.info(f"Loading model artifacts from {model_dir}")

    try:
        payload = joblib.load(model_file)
        model = _model_from_payload(payload)
    except Exception as e:
        logger.error(f"decode model failed {e}", extra={"model_path": str(model_file)})
        raise ModelLoadError(str(model_file), e) from e

    logger.info(
        f"load model from file {model_file}",
        extra={
            "n_factors": model.n_factors,
            "n_users": model.n_users,
            "n_items": model.n_items,
        },
    )
    return model


def _model_from_payload(payload: Any) -> LatentFactorModel:
    if not isinstance(payload, dict) or payload.get("format") != MODEL_FORMAT:
        raise ValueError("file is not an lfmrec model")
    if payload.get("version") != MODEL_FORMAT_VERSION:
        raise ValueError(f"unsupported model format version {payload.get('version')!r}")
    if not isinstance(payload.get("state"), dict):
        raise ValueError("model state is missing")
    return LatentFactorModel.from_state(payload["state"])


def get_model_paths(
    model_dir: str,
    model_filename: str = MODEL_FILENAME,
    history_filename: str = HISTORY_FILENAME,
) -> Tuple[Path, Path]:
    """Get file paths for model artifacts without loading them.

    Returns:
        A tuple containing Path objects for the model file and the history file.
    """
    model_path = Path(model_dir)
    return model_path / model_filename, model_path / history_filename


def check_model_exists(model_dir: str) -> bool:
    """Check if the model artifact exists.

    Args:
        model_dir: Directory path where artifacts should be stored.

    Returns:
        True if the model file exists, False otherwise.
    """
    model_file, _ = get_model_paths(model_dir)
    return model_file.is_file()


def save_training_history(
    history: Sequence[Any],
    output_dir: str,
    history_filename: str = HISTORY_FILENAME,
) -> Path:
    """Write per-epoch statistics as CSV.

    Args:
        history: Epoch statistics dataclasses, in epoch order.
        output_dir: Directory where the CSV is written.
        history_filename: Filename for the CSV (default: "training_history.csv").

    Returns:
        Path of the written file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    rows = [asdict(stats) if is_dataclass(stats) else dict(stats) for stats in history]
    for row in rows:
        row["failed_files"] = ";".join(row.get("failed_files", ()))

    df = pd.DataFrame(
        rows,
        columns=[
            "iteration",
            "learning_rate",
            "train_samples",
            "train_mse",
            "test_samples",
            "test_auc",
            "test_mse",
            "failed_files",
        ],
    )
    history_path = output_path / history_filename
    df.to_csv(history_path, index=False)
    logger.info(f"Saved training history to {history_path}")
    return history_path
