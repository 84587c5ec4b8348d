"""Deep network assembled from pretrained encoders and a softmax layer."""

from typing import Any, Sequence

import torch
import torch.nn as nn

from stacked_ae.errors import ConfigurationError, DimensionMismatch
from .autoencoder import SparseAutoencoder, SparseEncoder
from .softmax import SoftmaxLayer


class StackedNetwork(nn.Module):
    """Encoders applied in order, followed by a softmax classifier.

    The modules passed in are registered as-is (not copied), so the network
    shares its parameters with the autoencoders it was stacked from until it
    is fine-tuned.

    Args:
        encoders: Encoders in application order; may be empty.
        classifier: Final softmax layer.
    """

    def __init__(self, encoders: Sequence[SparseEncoder], classifier: SoftmaxLayer) -> None:
        super().__init__()
        self.encoders = nn.ModuleList(encoders)
        self.classifier = classifier

    @property
    def input_size(self) -> int:
        if len(self.encoders):
            return self.encoders[0].input_size
        return self.classifier.input_size

    @property
    def num_classes(self) -> int:
        return self.classifier.num_classes

    def features(self, x: torch.Tensor) -> torch.Tensor:
        for encoder in self.encoders:
            x = encoder(x)
        return x

    def logits(self, x: torch.Tensor) -> torch.Tensor:
        return self.classifier.logits(self.features(x))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Class probabilities ``(N, num_classes)`` for flat inputs ``(N, input_size)``."""
        return torch.softmax(self.logits(x), dim=-1)

    def summary(self) -> dict[str, Any]:
        """Layer sizes and weight shapes, in application order."""
        stages = [
            {
                "kind": "encoder",
                "input_size": encoder.input_size,
                "output_size": encoder.hidden_size,
                "weight_shape": tuple(encoder.linear.weight.shape),
                "activation": encoder.activation_name,
                "scale_inputs": encoder.scale_inputs,
            }
            for encoder in self.encoders
        ]
        stages.append({
            "kind": "softmax",
            "input_size": self.classifier.input_size,
            "output_size": self.classifier.num_classes,
            "weight_shape": tuple(self.classifier.linear.weight.shape),
            "activation": "softmax",
        })
        return {
            "kind": "stacked",
            "input_size": self.input_size,
            "num_classes": self.num_classes,
            "stages": stages,
        }


def stack(*stages: SparseAutoencoder | SoftmaxLayer) -> StackedNetwork:
    """
    Compose trained autoencoders and a softmax layer into one network.

    Only the encoder half of each autoencoder is used. Stages are referenced,
    not copied.

    Args:
        *stages: Zero or more :class:`SparseAutoencoder` followed by exactly
            one :class:`SoftmaxLayer`.

    Raises:
        ConfigurationError: If the stage types are not autoencoders followed
            by a softmax layer.
        DimensionMismatch: If the output size of a stage differs from the
            input size of the next one.
    """
    if not stages or not isinstance(stages[-1], SoftmaxLayer):
        raise ConfigurationError("stack() needs a SoftmaxLayer as its last stage")

    *autoencoders, classifier = stages
    for i, autoencoder in enumerate(autoencoders):
        if not isinstance(autoencoder, SparseAutoencoder):
            raise ConfigurationError(
                f"Stage {i} must be a SparseAutoencoder, got {type(autoencoder).__name__}"
            )

    sizes = [(ae.input_size, ae.hidden_size) for ae in autoencoders]
    sizes.append((classifier.input_size, classifier.num_classes))
    for i in range(1, len(sizes)):
        produced, expected = sizes[i - 1][1], sizes[i][0]
        if produced != expected:
            raise DimensionMismatch(
                f"Stage {i - 1} outputs {produced} features but stage {i} expects {expected}"
            )

    return StackedNetwork([ae.encoder for ae in autoencoders], classifier)
