"""Confusion matrix and accuracy of a classifier on a labelled split."""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np
import torch

from stacked_ae.errors import DimensionMismatch
from stacked_ae.utils.tensor_ops import as_float_tensor, as_matrix


@dataclass(frozen=True, eq=False)
class EvaluationReport:
    """Outcome of :func:`evaluate`.

    Attributes:
        confusion: ``(C, C)`` counts; row = true class, column = predicted class.
        accuracy: ``trace(confusion) / total``; 0.0 for an empty split.
        total: Number of evaluated examples.
        class_names: Display name of each class index.
    """

    confusion: np.ndarray
    accuracy: float
    total: int
    class_names: tuple[str, ...] = field(default=())

    @property
    def num_classes(self) -> int:
        return self.confusion.shape[0]

    @property
    def per_class_recall(self) -> np.ndarray:
        """Fraction of each true class predicted correctly (NaN when the class is absent)."""
        support = self.confusion.sum(axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.diag(self.confusion) / support

    @property
    def per_class_precision(self) -> np.ndarray:
        """Fraction of each predicted class that is correct (NaN when never predicted)."""
        predicted = self.confusion.sum(axis=0)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.diag(self.confusion) / predicted

    def to_dict(self) -> dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "total": self.total,
            "class_names": list(self.class_names),
            "confusion": self.confusion.tolist(),
        }


def confusion_matrix(true_idx: torch.Tensor, pred_idx: torch.Tensor, num_classes: int) -> np.ndarray:
    """Counts of (true, predicted) index pairs as a ``(C, C)`` int64 matrix."""
    flat = true_idx.to(torch.int64) * num_classes + pred_idx.to(torch.int64)
    counts = torch.bincount(flat, minlength=num_classes * num_classes)
    return counts.reshape(num_classes, num_classes).numpy()


@torch.no_grad()
def evaluate(
    network: torch.nn.Module,
    inputs: np.ndarray | torch.Tensor,
    labels: np.ndarray | torch.Tensor,
    class_names: Optional[Sequence[str]] = None,
) -> EvaluationReport:
    """
    Run `network` on `inputs` and compare arg-max predictions with the labels.

    Args:
        network: Any module mapping ``(N, D)`` inputs to ``(N, C)`` scores,
            typically a :class:`StackedNetwork`.
        inputs: Image Set ``(N, H, W)`` or matrix ``(N, D)``.
        labels: One-hot labels ``(N, C)``; the active index is the true class.
        class_names: Optional display names, one per class.

    Returns:
        EvaluationReport with the confusion matrix and overall accuracy.
    """
    x = as_matrix(inputs)
    t = as_float_tensor(labels)

    if t.ndim != 2:
        raise DimensionMismatch(f"Labels must be (N, C), got shape {tuple(t.shape)}")
    if x.shape[0] != t.shape[0]:
        raise DimensionMismatch(f"{x.shape[0]} inputs but {t.shape[0]} labels")

    expected_size = getattr(network, "input_size", x.shape[1])
    if x.shape[1] != expected_size:
        raise DimensionMismatch(f"Network expects {expected_size} input features, got {x.shape[1]}")

    num_classes = t.shape[1]
    if class_names is not None and len(class_names) != num_classes:
        raise DimensionMismatch(f"{len(class_names)} class names for {num_classes} classes")

    was_training = network.training
    network.eval()
    try:
        device = next(network.parameters()).device
        scores = network(x.to(device)).cpu()
    finally:
        network.train(was_training)

    if scores.shape != (x.shape[0], num_classes):
        raise DimensionMismatch(
            f"Network produced outputs of shape {tuple(scores.shape)}, "
            f"expected {(x.shape[0], num_classes)}"
        )

    confusion = confusion_matrix(t.argmax(dim=1), scores.argmax(dim=1), num_classes)
    total = int(x.shape[0])
    accuracy = float(np.trace(confusion) / total) if total else 0.0

    names = tuple(class_names) if class_names is not None else tuple(str(i) for i in range(num_classes))
    return EvaluationReport(confusion=confusion, accuracy=accuracy, total=total, class_names=names)
