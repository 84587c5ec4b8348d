"""Sparse autoencoder loss: reconstruction + L2 weight penalty + sparsity penalty."""

from typing import Sequence

import torch
import torch.nn as nn

_EPS = 1e-8


def kl_sparsity(hidden: torch.Tensor, target: float) -> torch.Tensor:
    """Summed KL divergence between ``target`` and each unit's mean activation.

        KL(rho || rho_hat_j) = rho * log(rho / rho_hat_j)
                               + (1 - rho) * log((1 - rho) / (1 - rho_hat_j))

    Args:
        hidden: Hidden activations ``(B, H)`` in [0, 1].
        target: Desired average activation ``rho`` in (0, 1).
    """
    rho_hat = hidden.mean(dim=0).clamp(_EPS, 1.0 - _EPS)
    rho = torch.full_like(rho_hat, target)
    kl = rho * torch.log(rho / rho_hat) + (1 - rho) * torch.log((1 - rho) / (1 - rho_hat))
    return kl.sum()


class SparseAutoencoderLoss(nn.Module):
    """Training objective of a sparse autoencoder.

    The reconstruction term is the squared error summed over the features of
    each example and averaged across the batch. The weight penalty is half the
    sum of squared weights (biases excluded) of the encoder and decoder. The
    total loss is:

        L = recon_loss + l2_weight * weight_loss + sparsity_weight * sparsity_loss

    Args:
        l2_weight: Coefficient of the weight penalty.
        sparsity_weight: Coefficient of the sparsity penalty.
        sparsity_target: Desired average hidden activation.
    """

    def __init__(self, l2_weight: float = 0.001, sparsity_weight: float = 1.0,
                 sparsity_target: float = 0.05) -> None:
        super().__init__()
        self.l2_weight = l2_weight
        self.sparsity_weight = sparsity_weight
        self.sparsity_target = sparsity_target

    def forward(
        self,
        x: torch.Tensor,
        x_hat: torch.Tensor,
        hidden: torch.Tensor,
        weights: Sequence[torch.Tensor],
    ) -> tuple[torch.Tensor, dict[str, torch.Tensor]]:
        """Compute the loss.

        Args:
            x: Targets ``(B, D)``.
            x_hat: Reconstructions ``(B, D)``.
            hidden: Hidden activations ``(B, H)``.
            weights: Weight matrices entering the L2 penalty.

        Returns:
            ``(total_loss, components)``; components are detached and meant
            for logging.
        """
        reconstruction_loss = ((x - x_hat) ** 2).sum(dim=-1).mean()
        weight_loss = 0.5 * sum((w ** 2).sum() for w in weights)
        sparsity_loss = kl_sparsity(hidden, self.sparsity_target)

        total = (reconstruction_loss
                 + self.l2_weight * weight_loss
                 + self.sparsity_weight * sparsity_loss)

        components = {
            "reconstruction_loss": reconstruction_loss.detach(),
            "weight_loss": weight_loss.detach(),
            "sparsity_loss": sparsity_loss.detach(),
        }
        return total, components
