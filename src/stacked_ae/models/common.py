"""Shared building blocks for the autoencoder, softmax and stacked models."""

from typing import Any

import torch.nn as nn

from stacked_ae.errors import ConfigurationError


def build_activation(name: str) -> nn.Module:
    """
    Transfer function by name.

    Args:
        name: ``'sigmoid'`` (logistic), ``'satlin'`` (linear clipped to
            [0, 1]) or ``'linear'`` (identity).
    """
    if name == "sigmoid":
        return nn.Sigmoid()
    elif name == "satlin":
        return nn.Hardtanh(min_val=0.0, max_val=1.0)
    elif name == "linear":
        return nn.Identity()
    raise ConfigurationError(f"Unknown activation: {name}")


def layer_summary(name: str, linear: nn.Linear, activation: str) -> dict[str, Any]:
    """Structural description of one fully-connected layer."""
    return {
        "name": name,
        "input_size": linear.in_features,
        "output_size": linear.out_features,
        "weight_shape": tuple(linear.weight.shape),
        "bias_shape": tuple(linear.bias.shape) if linear.bias is not None else None,
        "activation": activation,
    }
