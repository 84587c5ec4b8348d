import math
from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.backends.backend_pdf import PdfPages
from matplotlib.figure import Figure

from stacked_ae.errors import DimensionMismatch
from stacked_ae.evaluation import EvaluationReport
from stacked_ae.models import SparseAutoencoder
from stacked_ae.utils.tensor_ops import as_float_tensor, unflatten


def _grid(n: int, ncols: int) -> tuple[int, int]:
    ncols = max(1, min(ncols, n))
    return math.ceil(n / ncols), ncols


def plot_images(images, n_images: int = 20, ncols: int = 5, title: str | None = None) -> Figure:
    """
    Shows the first `n_images` of an Image Set ``(N, H, W)`` in a grid.
    """
    images = as_float_tensor(images)
    n = min(n_images, images.shape[0])
    if n == 0:
        raise DimensionMismatch("No images to plot")

    nrows, ncols = _grid(n, ncols)
    fig, axes = plt.subplots(nrows, ncols, figsize=(1.6 * ncols, 1.6 * nrows), squeeze=False)
    for i, ax in enumerate(axes.flat):
        ax.axis("off")
        if i < n:
            ax.imshow(images[i].numpy(), cmap="gray", vmin=0.0, vmax=1.0)
    if title:
        fig.suptitle(title)
    fig.tight_layout()
    return fig


def plot_weights(autoencoder: SparseAutoencoder, image_shape: Sequence[int] = (28, 28),
                 max_units: int | None = None) -> Figure:
    """
    Draws the incoming weights of every hidden unit as an image.

    Each row of the encoder weight matrix is reshaped with the same
    column-major layout used to flatten the inputs, so the tiles show the
    visual feature each unit responds to.
    """
    weights = autoencoder.encoder.linear.weight.detach().cpu()
    if max_units is not None:
        weights = weights[:max_units]

    tiles = unflatten(weights, image_shape)
    n = tiles.shape[0]
    nrows, ncols = _grid(n, int(math.ceil(math.sqrt(n))))

    fig, axes = plt.subplots(nrows, ncols, figsize=(0.9 * ncols, 0.9 * nrows), squeeze=False)
    for i, ax in enumerate(axes.flat):
        ax.axis("off")
        if i < n:
            ax.imshow(tiles[i].numpy(), cmap="gray")
    fig.suptitle(f"Encoder weights ({autoencoder.input_size} -> {autoencoder.hidden_size})")
    fig.tight_layout()
    return fig


def plot_confusion(report: EvaluationReport, title: str = "Confusion matrix") -> Figure:
    """
    Heat map of the confusion matrix with counts, true class on the y axis.
    """
    confusion = report.confusion
    c = report.num_classes

    fig, ax = plt.subplots(figsize=(0.6 * c + 2, 0.6 * c + 1.5))
    im = ax.imshow(confusion, cmap="Blues")
    fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04)

    threshold = confusion.max() / 2 if confusion.size and confusion.max() > 0 else 0
    for i in range(c):
        for j in range(c):
            ax.text(j, i, int(confusion[i, j]), ha="center", va="center", fontsize=7,
                    color="white" if confusion[i, j] > threshold else "black")

    names = report.class_names or tuple(str(i) for i in range(c))
    ax.set_xticks(np.arange(c), labels=names)
    ax.set_yticks(np.arange(c), labels=names)
    ax.set_xlabel("Predicted class")
    ax.set_ylabel("True class")
    ax.set_title(f"{title} (accuracy {100 * report.accuracy:.1f}%, n={report.total})")
    fig.tight_layout()
    return fig


def save_figures_pdf(figs: list[Figure], pdf_path: Path) -> Path:
    """
    Saves figures into a single multi-page PDF and closes them.
    """
    pdf_path = Path(pdf_path)
    pdf_path.parent.mkdir(parents=True, exist_ok=True)

    with PdfPages(pdf_path) as pdf:
        for fig in figs:
            pdf.savefig(fig)
            plt.close(fig)

    return pdf_path
