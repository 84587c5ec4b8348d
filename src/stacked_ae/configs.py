"""Hyperparameters of each training stage.

Hydra sections (``autoencoders[i]``, ``softmax``, ``fine_tune``) are unpacked
directly into these dataclasses; invalid values raise ConfigurationError at
construction time.
"""

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from stacked_ae.errors import ConfigurationError

ACTIVATIONS = ("sigmoid", "satlin", "linear")
OPTIMIZERS = ("adam", "adamw", "sgd", "rmsprop")


def _default_optimizer() -> dict[str, Any]:
    return {"name": "adam", "lr": 0.01}


def _check_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


def _check_non_negative(name: str, value: Any) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be a finite non-negative number, got {value!r}")


def _check_optimizer(optimizer: Any) -> None:
    if not isinstance(optimizer, Mapping) or "name" not in optimizer:
        raise ConfigurationError(f"optimizer must be a mapping with a 'name' key, got {optimizer!r}")
    if str(optimizer["name"]).lower() not in OPTIMIZERS:
        raise ConfigurationError(f"Unknown optimizer: {optimizer['name']}. Available: {list(OPTIMIZERS)}")


def _check_batch_size(batch_size: Optional[int]) -> None:
    if batch_size is not None:
        _check_positive_int("batch_size", batch_size)


@dataclass
class StageConfig:
    """Options shared by every gradient-based stage.

    ``batch_size=None`` trains on the full batch every epoch.
    """

    max_epochs: int = 1000
    batch_size: Optional[int] = None
    optimizer: dict[str, Any] = field(default_factory=_default_optimizer)
    seed: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.optimizer, Mapping):
            self.optimizer = dict(self.optimizer)
        self.validate()

    def validate(self) -> None:
        _check_positive_int("max_epochs", self.max_epochs)
        _check_batch_size(self.batch_size)
        _check_optimizer(self.optimizer)
        if isinstance(self.seed, bool) or not isinstance(self.seed, int):
            raise ConfigurationError(f"seed must be an integer, got {self.seed!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AutoencoderConfig(StageConfig):
    """Sparse autoencoder hyperparameters.

    Attributes:
        l2_weight: Coefficient of the L2 penalty on encoder and decoder weights.
        sparsity_weight: Coefficient of the sparsity penalty.
        sparsity_target: Desired average activation of each hidden unit.
        scale_inputs: Rescale every input feature to [0, 1] before training.
            Disable when the inputs are already encoded features.
        allow_overcomplete: Accept a hidden layer at least as wide as the input.
    """

    l2_weight: float = 0.001
    sparsity_weight: float = 1.0
    sparsity_target: float = 0.05
    scale_inputs: bool = True
    encoder_activation: str = "sigmoid"
    decoder_activation: str = "sigmoid"
    allow_overcomplete: bool = False

    def validate(self) -> None:
        super().validate()
        _check_non_negative("l2_weight", self.l2_weight)
        _check_non_negative("sparsity_weight", self.sparsity_weight)

        if not isinstance(self.sparsity_target, (int, float)) or not 0.0 < self.sparsity_target < 1.0:
            raise ConfigurationError(f"sparsity_target must lie in (0, 1), got {self.sparsity_target!r}")

        if self.encoder_activation not in ("sigmoid", "satlin"):
            raise ConfigurationError(
                f"encoder_activation must be 'sigmoid' or 'satlin', got {self.encoder_activation!r}"
            )
        if self.decoder_activation not in ACTIVATIONS:
            raise ConfigurationError(
                f"decoder_activation must be one of {list(ACTIVATIONS)}, got {self.decoder_activation!r}"
            )


@dataclass
class SoftmaxConfig(StageConfig):
    """Softmax classifier hyperparameters."""


@dataclass
class FineTuneConfig(StageConfig):
    """End-to-end fine-tuning hyperparameters.

    Attributes:
        validation_fraction: Share of the training examples held out to
            monitor ``val_loss``. ``0`` trains on every example.
        patience: Epochs without ``val_loss`` improvement before stopping.
    """

    validation_fraction: float = 0.0
    patience: int = 6

    def validate(self) -> None:
        super().validate()
        if not isinstance(self.validation_fraction, (int, float)) or not 0.0 <= self.validation_fraction < 1.0:
            raise ConfigurationError(
                f"validation_fraction must lie in [0, 1), got {self.validation_fraction!r}"
            )
        _check_positive_int("patience", self.patience)
