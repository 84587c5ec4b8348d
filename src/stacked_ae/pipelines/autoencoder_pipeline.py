from typing import Dict, Optional, Tuple

import numpy as np
import torch

from stacked_ae.callbacks import Callback
from stacked_ae.configs import AutoencoderConfig
from stacked_ae.errors import ConfigurationError, DimensionMismatch
from stacked_ae.losses import SparseAutoencoderLoss
from stacked_ae.models import SparseAutoencoder
from stacked_ae.utils.tensor_ops import as_matrix
from .base_pipeline import BaseTrainer


class AutoencoderTrainer(BaseTrainer):
    """
    Unsupervised training of one sparse autoencoder layer.
    """

    def __init__(self, config: AutoencoderConfig, hidden_size: int, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.hidden_size = hidden_size

    # ---- model ----
    def build_model(self, train_tensors: Tuple[torch.Tensor, ...]) -> SparseAutoencoder:
        (x,) = train_tensors
        model = SparseAutoencoder(x.shape[1], self.hidden_size, config=self.config)
        model.fit_scaling(x)
        return model

    def build_loss(self) -> torch.nn.Module:
        return SparseAutoencoderLoss(
            l2_weight=self.config.l2_weight,
            sparsity_weight=self.config.sparsity_weight,
            sparsity_target=self.config.sparsity_target,
        )

    # ---- training ----
    def training_step(self, batch: Tuple[torch.Tensor], batch_idx: int) -> Dict[str, torch.Tensor]:
        (x,) = batch
        out = self.model(x)
        loss, components = self.criterion(out["target"], out["output"], out["z"], self.model.weights())
        return {"loss": loss, **components}


def train_autoencoder(
    inputs: np.ndarray | torch.Tensor,
    hidden_size: int,
    config: Optional[AutoencoderConfig] = None,
    *,
    name: str = "autoencoder",
    device: str = "cpu",
    callbacks: Optional[list[Callback]] = None,
    progress: bool = False,
) -> SparseAutoencoder:
    """
    Train a sparse autoencoder on `inputs` without labels.

    The objective is the summed squared reconstruction error plus
    ``config.l2_weight`` times the weight penalty plus
    ``config.sparsity_weight`` times the KL sparsity penalty.

    Args:
        inputs: Image Set ``(N, H, W)`` (flattened column by column) or
            feature matrix ``(N, D)``.
        hidden_size: Number of hidden units.
        config: Hyperparameters, including the seed. Defaults to
            ``AutoencoderConfig()``.
        name: Stage name used for logging and metric prefixes.
        device: Training device.
        callbacks: Extra trainer callbacks.
        progress: Show a progress bar.

    Returns:
        The trained autoencoder.

    Raises:
        ConfigurationError: Invalid hyperparameters or hidden size.
        DimensionMismatch: No training examples.
        OptimizationFailure: Training produced non-finite values.
    """
    config = config if config is not None else AutoencoderConfig()
    config.validate()

    x = as_matrix(inputs)
    if x.shape[0] == 0:
        raise DimensionMismatch("Cannot train an autoencoder on an empty input set")

    input_size = x.shape[1]
    if isinstance(hidden_size, bool) or not isinstance(hidden_size, int) or hidden_size < 1:
        raise ConfigurationError(f"hidden_size must be a positive integer, got {hidden_size!r}")
    if hidden_size >= input_size and not config.allow_overcomplete:
        raise ConfigurationError(
            f"hidden_size ({hidden_size}) must be smaller than the input dimensionality ({input_size}); "
            f"set allow_overcomplete to train an overcomplete autoencoder"
        )

    trainer = AutoencoderTrainer(config, hidden_size, name=name, device=device,
                                 callbacks=callbacks, progress=progress)
    return trainer.fit((x,))
