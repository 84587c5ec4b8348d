from typing import Dict, Optional, Tuple

import numpy as np
import torch

from stacked_ae.callbacks import Callback
from stacked_ae.configs import SoftmaxConfig
from stacked_ae.errors import DimensionMismatch
from stacked_ae.models import SoftmaxLayer
from stacked_ae.utils.tensor_ops import as_float_tensor, as_matrix
from .base_pipeline import BaseTrainer


def accuracy(logits: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
    return (logits.argmax(dim=1) == targets.argmax(dim=1)).float().mean()


def check_supervised_inputs(inputs, labels) -> Tuple[torch.Tensor, torch.Tensor]:
    """Converts features and labels, checking they are non-empty and aligned."""
    x = as_matrix(inputs)
    t = as_float_tensor(labels)

    if t.ndim != 2:
        raise DimensionMismatch(f"Labels must be (N, C), got shape {tuple(t.shape)}")
    if x.shape[0] != t.shape[0]:
        raise DimensionMismatch(f"{x.shape[0]} feature vectors but {t.shape[0]} labels")
    if x.shape[0] == 0:
        raise DimensionMismatch("Cannot train on an empty set")
    return x, t


class SoftmaxTrainer(BaseTrainer):
    """
    Supervised training of a softmax layer on feature vectors.
    """

    loss_name = "cross_entropy"

    def build_model(self, train_tensors: Tuple[torch.Tensor, ...]) -> SoftmaxLayer:
        x, t = train_tensors
        return SoftmaxLayer(x.shape[1], t.shape[1], config=self.config)

    def training_step(self, batch: Tuple[torch.Tensor, torch.Tensor], batch_idx: int) -> Dict[str, torch.Tensor]:
        x, t = batch
        logits = self.model.logits(x)
        loss = self.criterion(logits, t)
        return {"loss": loss, "accuracy": accuracy(logits, t)}


def train_softmax_layer(
    features: np.ndarray | torch.Tensor,
    labels: np.ndarray | torch.Tensor,
    config: Optional[SoftmaxConfig] = None,
    *,
    name: str = "softmax",
    device: str = "cpu",
    callbacks: Optional[list[Callback]] = None,
    progress: bool = False,
) -> SoftmaxLayer:
    """
    Train a softmax classifier with cross-entropy against `labels`.

    Args:
        features: Feature matrix ``(N, D)``.
        labels: One-hot labels ``(N, C)``.
        config: Hyperparameters. Defaults to ``SoftmaxConfig()``.

    Raises:
        DimensionMismatch: If features and labels differ in length. Nothing
            is truncated.
    """
    config = config if config is not None else SoftmaxConfig()
    config.validate()

    x, t = check_supervised_inputs(features, labels)

    trainer = SoftmaxTrainer(config, name=name, device=device, callbacks=callbacks, progress=progress)
    return trainer.fit((x, t))
