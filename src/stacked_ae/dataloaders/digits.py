"""Loader for the synthetic handwritten-digit corpus."""

import zipfile
from pathlib import Path
from typing import NamedTuple

import numpy as np
import torch

from stacked_ae.errors import ConfigurationError, DataUnavailable
from stacked_ae.logger import logger

SPLITS = ("train", "test")

# Label column k stands for DIGIT_CLASSES[k]; the tenth column is the digit zero.
DIGIT_CLASSES = ("1", "2", "3", "4", "5", "6", "7", "8", "9", "0")
IMAGE_SHAPE = (28, 28)


class DigitSplit(NamedTuple):
    """Index-aligned images ``(N, 28, 28)`` and one-hot labels ``(N, 10)``."""

    images: torch.Tensor
    labels: torch.Tensor


def split_path(split: str, data_dir: str | Path) -> Path:
    if split not in SPLITS:
        raise ConfigurationError(f"Unknown split '{split}'. Available: {list(SPLITS)}")
    return Path(data_dir) / f"digit{split}_dataset.npz"


def _validate(images: np.ndarray, labels: np.ndarray, source: Path) -> None:
    if images.ndim != 3:
        raise DataUnavailable(f"{source}: expected images of shape (N, H, W), got {images.shape}")
    if labels.ndim != 2:
        raise DataUnavailable(f"{source}: expected labels of shape (N, C), got {labels.shape}")
    if images.shape[0] != labels.shape[0]:
        raise DataUnavailable(
            f"{source}: {images.shape[0]} images but {labels.shape[0]} labels"
        )

    is_binary = np.isin(labels, (0, 1)).all()
    if not is_binary or not (labels.sum(axis=1) == 1).all():
        raise DataUnavailable(f"{source}: labels are not one-hot encoded")


def load_digits(split: str, data_dir: str | Path) -> DigitSplit:
    """
    Load one split of the digit corpus.

    The split is read from ``<data_dir>/digit<split>_dataset.npz`` which must
    hold an ``images`` array ``(N, 28, 28)`` with intensities in [0, 1] and a
    ``labels`` array ``(N, 10)`` of one-hot rows.

    Args:
        split: ``"train"`` or ``"test"``.
        data_dir: Directory containing the ``.npz`` files.

    Returns:
        DigitSplit with float32 tensors.

    Raises:
        DataUnavailable: If the file is missing, unreadable or malformed.
    """
    path = split_path(split, data_dir)
    if not path.is_file():
        raise DataUnavailable(f"Dataset file not found: {path}")

    try:
        with np.load(path) as archive:
            images = np.asarray(archive["images"], dtype=np.float32)
            labels = np.asarray(archive["labels"], dtype=np.float32)
    except KeyError as e:
        raise DataUnavailable(f"{path} does not contain the expected key: {e}") from e
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise DataUnavailable(f"Could not read {path}: {e}") from e

    _validate(images, labels, path)
    logger.info(f"Loaded {split} split: {images.shape[0]} images of shape {images.shape[1:]} from {path}")

    return DigitSplit(torch.from_numpy(images), torch.from_numpy(labels))


def save_digits(split: str, data_dir: str | Path, images, labels) -> Path:
    """Writes a split in the format read by :func:`load_digits`."""
    path = split_path(split, data_dir)
    images = np.asarray(images, dtype=np.float32)
    labels = np.asarray(labels, dtype=np.float32)
    _validate(images, labels, path)

    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, images=images, labels=labels)
    logger.info(f"Saved {split} split ({images.shape[0]} examples) to {path}")
    return path
