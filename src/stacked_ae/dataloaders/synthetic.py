"""Synthetic digit images: font-rendered glyphs under random affine transforms."""

import math
from functools import lru_cache

import numpy as np
import torch
import torch.nn.functional as F
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from stacked_ae.errors import ConfigurationError
from stacked_ae.utils.tensor_ops import seeded_generator
from .digits import DIGIT_CLASSES, IMAGE_SHAPE, SPLITS, DigitSplit

# Fonts bundled with matplotlib, so rendering does not depend on the host system.
FONTS = (
    {"family": "DejaVu Sans", "weight": "normal", "style": "normal"},
    {"family": "DejaVu Sans", "weight": "bold", "style": "normal"},
    {"family": "DejaVu Sans", "weight": "normal", "style": "oblique"},
    {"family": "DejaVu Serif", "weight": "normal", "style": "normal"},
    {"family": "DejaVu Serif", "weight": "bold", "style": "italic"},
    {"family": "DejaVu Sans Mono", "weight": "normal", "style": "normal"},
)

_OVERSAMPLE = 4


@lru_cache(maxsize=None)
def render_glyph(char: str, font_index: int) -> np.ndarray:
    """
    Render a single character, white on black, centred in a 28x28 frame.

    The glyph is drawn at 4x resolution and average-pooled down to reduce
    aliasing. Pixel intensities are in [0, 1].
    """
    height, width = IMAGE_SHAPE
    fig = Figure(figsize=(width / height, 1), dpi=height * _OVERSAMPLE, facecolor="black")
    canvas = FigureCanvasAgg(fig)
    fig.text(0.5, 0.5, char, ha="center", va="center", color="white", fontsize=64, **FONTS[font_index])
    canvas.draw()

    rgba = np.asarray(canvas.buffer_rgba())
    gray = torch.from_numpy(rgba[..., 0].astype(np.float32) / 255.0)
    small = F.avg_pool2d(gray[None, None], kernel_size=_OVERSAMPLE)
    return small[0, 0].numpy()


def split_seed(seed: int, split: str) -> int:
    """Seed used to generate `split` from the base `seed`; train and test never share one."""
    if split not in SPLITS:
        raise ConfigurationError(f"Unknown split '{split}'. Available: {list(SPLITS)}")
    return int(seed) + SPLITS.index(split)


def _uniform(n: int, low: float, high: float, generator: torch.Generator) -> torch.Tensor:
    return low + (high - low) * torch.rand(n, generator=generator)


def generate_synthetic_digits(
    n: int,
    seed: int = 0,
    max_rotation: float = 15.0,
    scale_range: tuple[float, float] = (0.85, 1.15),
    max_shear: float = 0.25,
    max_translation: float = 0.12,
) -> DigitSplit:
    """
    Generate ``n`` labelled digit images.

    Every example picks a class and a font uniformly at random, then warps
    the rendered glyph with a random rotation, scale, shear and translation.

    Args:
        n: Number of examples.
        seed: Seed for every random draw; equal seeds give identical splits.
        max_rotation: Maximum absolute rotation in degrees.
        scale_range: Range of the isotropic scale factor.
        max_shear: Maximum absolute horizontal shear.
        max_translation: Maximum absolute shift, as a fraction of half the
            image side.

    Returns:
        DigitSplit with images ``(n, 28, 28)`` and one-hot labels ``(n, 10)``.
    """
    if n < 0:
        raise ConfigurationError(f"Number of examples must be non-negative, got {n}")
    if not 0 < scale_range[0] <= scale_range[1]:
        raise ConfigurationError(f"Invalid scale range: {scale_range}")

    generator = seeded_generator(seed)
    num_classes = len(DIGIT_CLASSES)

    classes = torch.randint(num_classes, (n,), generator=generator)
    fonts = torch.randint(len(FONTS), (n,), generator=generator)

    if n == 0:
        return DigitSplit(torch.zeros(0, *IMAGE_SHAPE), torch.zeros(0, num_classes))

    templates = torch.stack([
        torch.from_numpy(render_glyph(DIGIT_CLASSES[int(c)], int(f)))
        for c, f in zip(classes, fonts)
    ])

    angle = _uniform(n, -max_rotation, max_rotation, generator) * math.pi / 180.0
    scale = _uniform(n, *scale_range, generator)
    shear = _uniform(n, -max_shear, max_shear, generator)
    shift = _uniform(2 * n, -max_translation, max_translation, generator).reshape(n, 2)

    cos, sin = torch.cos(angle), torch.sin(angle)
    rotation = torch.stack([torch.stack([cos, -sin], -1), torch.stack([sin, cos], -1)], 1)
    shearing = torch.eye(2).repeat(n, 1, 1)
    shearing[:, 0, 1] = shear

    # affine_grid maps output coordinates to sampling positions in the input,
    # so a scale factor s enlarges the glyph when sampled with 1/s.
    linear = rotation @ shearing / scale[:, None, None]
    theta = torch.cat([linear, shift[:, :, None]], dim=2)

    grid = F.affine_grid(theta, size=(n, 1, *IMAGE_SHAPE), align_corners=False)
    warped = F.grid_sample(templates[:, None], grid, mode="bilinear", padding_mode="zeros", align_corners=False)
    images = warped[:, 0].clamp(0.0, 1.0)

    labels = F.one_hot(classes, num_classes).to(torch.float32)
    return DigitSplit(images.contiguous(), labels)
