import contextlib
from typing import Iterator, Sequence

import numpy as np
import torch

from stacked_ae.errors import DimensionMismatch, OptimizationFailure


def as_float_tensor(x: np.ndarray | torch.Tensor) -> torch.Tensor:
    """Converts numpy arrays or tensors to a detached float32 CPU tensor."""
    if isinstance(x, torch.Tensor):
        return x.detach().to(dtype=torch.float32, device="cpu")
    return torch.as_tensor(np.asarray(x), dtype=torch.float32)


def flatten(images: np.ndarray | torch.Tensor) -> torch.Tensor:
    """
    Turn an Image Set into a matrix with one row per image.

    Each image is vectorised by stacking its columns: pixel ``(row, col)`` of
    an ``H x W`` image lands at position ``col * H + row``. Encoder weights
    trained on this layout can be reshaped back with :func:`unflatten`.

    Args:
        images: Tensor or array of shape ``(N, H, W)``.

    Returns:
        Float tensor of shape ``(N, H * W)``.
    """
    images = as_float_tensor(images)
    if images.ndim != 3:
        raise DimensionMismatch(f"flatten expects (N, H, W) images, got shape {tuple(images.shape)}")

    n, h, w = images.shape
    return images.transpose(1, 2).reshape(n, h * w).contiguous()


def unflatten(matrix: np.ndarray | torch.Tensor, image_shape: Sequence[int] = (28, 28)) -> torch.Tensor:
    """
    Inverse of :func:`flatten`.

    Args:
        matrix: ``(N, H * W)`` rows produced by :func:`flatten`.
        image_shape: ``(H, W)`` of a single image.

    Returns:
        Tensor of shape ``(N, H, W)``.
    """
    matrix = as_float_tensor(matrix)
    h, w = image_shape
    if matrix.ndim != 2 or matrix.shape[1] != h * w:
        raise DimensionMismatch(
            f"Cannot unflatten shape {tuple(matrix.shape)} into images of shape {(h, w)}"
        )
    return matrix.reshape(matrix.shape[0], w, h).transpose(1, 2).contiguous()


def as_matrix(inputs: np.ndarray | torch.Tensor) -> torch.Tensor:
    """
    Accepts an Image Set ``(N, H, W)`` or an already flat ``(N, D)`` matrix
    and returns the ``(N, D)`` float matrix used by every training stage.
    """
    x = as_float_tensor(inputs)
    if x.ndim == 3:
        return flatten(x)
    if x.ndim == 2:
        return x
    raise DimensionMismatch(f"Expected (N, H, W) or (N, D) inputs, got shape {tuple(x.shape)}")


def seeded_generator(seed: int) -> torch.Generator:
    """Fresh CPU generator for shuffling and splitting."""
    generator = torch.Generator()
    generator.manual_seed(int(seed))
    return generator


@contextlib.contextmanager
def fork_seed(seed: int) -> Iterator[None]:
    """
    Seeds torch's default generator inside the block only.

    Layer constructors draw their initial weights from the default generator;
    forking keeps the caller's RNG state unchanged after the block.
    """
    with torch.random.fork_rng(devices=[]):
        torch.manual_seed(int(seed))
        yield


def check_finite_parameters(model: torch.nn.Module, stage: str) -> None:
    """Raises OptimizationFailure if any parameter of `model` is NaN or inf."""
    for name, param in model.named_parameters():
        if not torch.isfinite(param).all():
            raise OptimizationFailure(f"[{stage}] Parameter '{name}' contains non-finite values.")
