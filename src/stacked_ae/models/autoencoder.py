"""Single-hidden-layer sparse autoencoder."""

from typing import Any, Optional

import numpy as np
import torch
import torch.nn as nn

from stacked_ae.errors import DimensionMismatch
from stacked_ae.configs import AutoencoderConfig
from stacked_ae.utils.tensor_ops import as_matrix
from .common import build_activation, layer_summary


class SparseEncoder(nn.Module):
    """Maps inputs to the hidden representation.

    When ``scale_inputs`` is set, every input feature is min-max rescaled to
    [0, 1] with statistics stored in buffers (see :meth:`fit_scaling`), so the
    encoder can be reused on raw inputs once it is stacked.

    Args:
        input_size: Number of input features.
        hidden_size: Number of hidden units.
        activation: ``'sigmoid'`` or ``'satlin'``.
        scale_inputs: Whether to rescale inputs before the linear map.
    """

    def __init__(self, input_size: int, hidden_size: int, activation: str = "sigmoid",
                 scale_inputs: bool = False) -> None:
        super().__init__()
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.activation_name = activation
        self.scale_inputs = scale_inputs

        self.linear = nn.Linear(input_size, hidden_size)
        self.activation = build_activation(activation)

        self.register_buffer("input_min", torch.zeros(input_size))
        self.register_buffer("input_range", torch.ones(input_size))

    def scale(self, x: torch.Tensor) -> torch.Tensor:
        if not self.scale_inputs:
            return x
        return (x - self.input_min) / self.input_range

    def project(self, x_scaled: torch.Tensor) -> torch.Tensor:
        """Hidden activations for inputs that are already scaled."""
        return self.activation(self.linear(x_scaled))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.project(self.scale(x))


class SparseDecoder(nn.Module):
    """Maps hidden representations back to (scaled) input space."""

    def __init__(self, hidden_size: int, output_size: int, activation: str = "sigmoid",
                 scale_inputs: bool = False) -> None:
        super().__init__()
        self.activation_name = activation
        self.scale_inputs = scale_inputs

        self.linear = nn.Linear(hidden_size, output_size)
        self.activation = build_activation(activation)

        self.register_buffer("output_min", torch.zeros(output_size))
        self.register_buffer("output_range", torch.ones(output_size))

    def unscale(self, y: torch.Tensor) -> torch.Tensor:
        if not self.scale_inputs:
            return y
        return y * self.output_range + self.output_min

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        """Reconstruction in the scaled space the autoencoder is trained in."""
        return self.activation(self.linear(z))


class SparseAutoencoder(nn.Module):
    """Encoder/decoder pair trained to reconstruct its input.

    The model also keeps the :class:`AutoencoderConfig` it was trained with.

    Args:
        input_size: Dimensionality of the inputs.
        hidden_size: Dimensionality of the hidden representation.
        config: Training hyperparameters; activations and input scaling are
            read from it.
    """

    def __init__(self, input_size: int, hidden_size: int, config: Optional[AutoencoderConfig] = None) -> None:
        super().__init__()
        self.config = config if config is not None else AutoencoderConfig()
        self.input_size = input_size
        self.hidden_size = hidden_size

        self.encoder = SparseEncoder(
            input_size, hidden_size,
            activation=self.config.encoder_activation,
            scale_inputs=self.config.scale_inputs,
        )
        self.decoder = SparseDecoder(
            hidden_size, input_size,
            activation=self.config.decoder_activation,
            scale_inputs=self.config.scale_inputs,
        )

    @torch.no_grad()
    def fit_scaling(self, x: torch.Tensor) -> None:
        """Stores per-feature min and range of the training inputs."""
        if not self.config.scale_inputs:
            return

        x_min = x.min(dim=0).values
        x_range = x.max(dim=0).values - x_min
        # Constant features would divide by zero; leave them unscaled.
        x_range = torch.where(x_range > 0, x_range, torch.ones_like(x_range))

        self.encoder.input_min.copy_(x_min)
        self.encoder.input_range.copy_(x_range)
        self.decoder.output_min.copy_(x_min)
        self.decoder.output_range.copy_(x_range)

    def weights(self) -> list[torch.Tensor]:
        """Weight matrices (no biases) subject to the L2 penalty."""
        return [self.encoder.linear.weight, self.decoder.linear.weight]

    def forward(self, x: torch.Tensor) -> dict[str, torch.Tensor]:
        """Full autoencoder forward pass.

        Returns:
            Dict with ``"z"`` (hidden activations), ``"recon"``
            (reconstruction in input units), and ``"target"`` / ``"output"``,
            the scaled input and reconstruction the loss compares.
        """
        target = self.encoder.scale(x)
        z = self.encoder.project(target)
        output = self.decoder(z)
        return {"z": z, "recon": self.decoder.unscale(output), "target": target, "output": output}

    def summary(self) -> dict[str, Any]:
        return {
            "kind": "autoencoder",
            "input_size": self.input_size,
            "hidden_size": self.hidden_size,
            "scale_inputs": self.config.scale_inputs,
            "layers": [
                layer_summary("encoder", self.encoder.linear, self.encoder.activation_name),
                layer_summary("decoder", self.decoder.linear, self.decoder.activation_name),
            ],
            "config": self.config.to_dict(),
        }


def _checked_inputs(autoencoder: SparseAutoencoder, inputs) -> torch.Tensor:
    x = as_matrix(inputs)
    if x.shape[1] != autoencoder.input_size:
        raise DimensionMismatch(
            f"Autoencoder expects {autoencoder.input_size} input features, got {x.shape[1]}"
        )
    return x


@torch.no_grad()
def encode(autoencoder: SparseAutoencoder, inputs: np.ndarray | torch.Tensor) -> torch.Tensor:
    """
    Apply the trained encoder to every example.

    Args:
        autoencoder: Trained autoencoder.
        inputs: Image Set ``(N, H, W)`` or feature matrix ``(N, D)``.

    Returns:
        Feature matrix ``(N, hidden_size)``, index-aligned with `inputs`.
    """
    x = _checked_inputs(autoencoder, inputs)
    device = next(autoencoder.parameters()).device
    return autoencoder.encoder(x.to(device)).cpu()


@torch.no_grad()
def reconstruct(autoencoder: SparseAutoencoder, inputs: np.ndarray | torch.Tensor) -> torch.Tensor:
    """Decode the encoded inputs; returns ``(N, input_size)`` in input units."""
    x = _checked_inputs(autoencoder, inputs)
    device = next(autoencoder.parameters()).device
    return autoencoder(x.to(device))["recon"].cpu()
