import copy
from typing import Dict, Optional, Tuple

import numpy as np
import torch

from stacked_ae.callbacks import Callback, EarlyStopping
from stacked_ae.configs import FineTuneConfig
from stacked_ae.errors import DimensionMismatch
from stacked_ae.logger import logger
from stacked_ae.models import StackedNetwork
from stacked_ae.utils.tensor_ops import seeded_generator
from .base_pipeline import BaseTrainer
from .softmax_pipeline import accuracy, check_supervised_inputs


class FineTuneTrainer(BaseTrainer):
    """
    Joint supervised training of every layer of a stacked network.

    The network passed in is deep-copied before training, so neither it nor
    the autoencoders and softmax layer it references are modified.
    """

    loss_name = "cross_entropy"

    def __init__(self, config: FineTuneConfig, network: StackedNetwork, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.initial_network = network

    def build_model(self, train_tensors: Tuple[torch.Tensor, ...]) -> StackedNetwork:
        return copy.deepcopy(self.initial_network)

    def init_callbacks(self) -> list[Callback]:
        if self.val_loader is None:
            return []
        return [EarlyStopping(monitor="val_loss", mode="min", patience=self.config.patience,
                              restore_best_weights=True)]

    def training_step(self, batch: Tuple[torch.Tensor, torch.Tensor], batch_idx: int) -> Dict[str, torch.Tensor]:
        x, t = batch
        logits = self.model.logits(x)
        loss = self.criterion(logits, t)
        return {"loss": loss, "accuracy": accuracy(logits, t)}


def holdout_split(
    x: torch.Tensor, t: torch.Tensor, fraction: float, seed: int
) -> Tuple[Tuple[torch.Tensor, torch.Tensor], Optional[Tuple[torch.Tensor, torch.Tensor]]]:
    """
    Seeded random split into training and validation tensors.

    Returns the full set and ``None`` when the fraction rounds to no
    validation example, or leaves no training example.
    """
    n = x.shape[0]
    n_val = int(round(n * fraction))
    if n_val == 0 or n_val >= n:
        if fraction > 0:
            logger.warning(f"validation_fraction={fraction} leaves no usable split of {n} examples; "
                           f"fine-tuning without validation")
        return (x, t), None

    perm = torch.randperm(n, generator=seeded_generator(seed))
    val_idx, train_idx = perm[:n_val], perm[n_val:]
    return (x[train_idx], t[train_idx]), (x[val_idx], t[val_idx])


def fine_tune(
    network: StackedNetwork,
    inputs: np.ndarray | torch.Tensor,
    labels: np.ndarray | torch.Tensor,
    config: Optional[FineTuneConfig] = None,
    *,
    name: str = "fine_tune",
    device: str = "cpu",
    callbacks: Optional[list[Callback]] = None,
    progress: bool = False,
) -> StackedNetwork:
    """
    Retrain all parameters of `network` end-to-end on raw inputs and labels.

    Training starts from the current (layer-wise pretrained) parameters of
    a copy of `network`; the copy is returned and `network` is left as-is.
    With ``config.validation_fraction > 0`` a seeded hold-out set is split off,
    training stops after ``config.patience`` epochs without a lower
    validation loss, and the returned network carries the weights of the
    epoch with the lowest validation loss.

    Args:
        network: Stacked network to start from.
        inputs: Image Set ``(N, H, W)`` or flat matrix ``(N, D)``.
        labels: One-hot labels ``(N, C)``.
        config: Hyperparameters. Defaults to ``FineTuneConfig()``.

    Returns:
        A new, fine-tuned :class:`StackedNetwork`.

    Raises:
        DimensionMismatch: Misaligned inputs and labels, or shapes that do
            not fit the network.
    """
    config = config if config is not None else FineTuneConfig()
    config.validate()

    x, t = check_supervised_inputs(inputs, labels)
    if x.shape[1] != network.input_size:
        raise DimensionMismatch(f"Network expects {network.input_size} input features, got {x.shape[1]}")
    if t.shape[1] != network.num_classes:
        raise DimensionMismatch(f"Network predicts {network.num_classes} classes, labels have {t.shape[1]}")

    train_tensors, val_tensors = holdout_split(x, t, config.validation_fraction, config.seed)

    trainer = FineTuneTrainer(config, network, name=name, device=device, callbacks=callbacks, progress=progress)
    return trainer.fit(train_tensors, val_tensors)
