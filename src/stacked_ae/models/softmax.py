"""Softmax classification layer."""

from typing import Any, Optional

import torch
import torch.nn as nn

from stacked_ae.configs import SoftmaxConfig
from .common import layer_summary


class SoftmaxLayer(nn.Module):
    """Single linear layer followed by a softmax over the classes.

    ``forward`` returns class probabilities; :meth:`logits` exposes the
    pre-softmax scores used by the cross-entropy loss.
    """

    def __init__(self, input_size: int, num_classes: int, config: Optional[SoftmaxConfig] = None) -> None:
        super().__init__()
        self.config = config if config is not None else SoftmaxConfig()
        self.input_size = input_size
        self.num_classes = num_classes
        self.linear = nn.Linear(input_size, num_classes)

    def logits(self, x: torch.Tensor) -> torch.Tensor:
        return self.linear(x)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.softmax(self.logits(x), dim=-1)

    def summary(self) -> dict[str, Any]:
        return {
            "kind": "softmax",
            "input_size": self.input_size,
            "num_classes": self.num_classes,
            "layers": [layer_summary("softmax", self.linear, "softmax")],
            "config": self.config.to_dict(),
        }
