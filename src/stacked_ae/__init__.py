"""Stacked sparse autoencoders for synthetic digit classification."""

__version__ = "0.1.0"

from stacked_ae.configs import AutoencoderConfig, FineTuneConfig, SoftmaxConfig
from stacked_ae.dataloaders import DigitSplit, generate_synthetic_digits, load_digits, save_digits
from stacked_ae.errors import (
    ConfigurationError,
    DataUnavailable,
    DimensionMismatch,
    OptimizationFailure,
    StackedAEError,
)
from stacked_ae.evaluation import EvaluationReport, evaluate
from stacked_ae.models import SoftmaxLayer, SparseAutoencoder, StackedNetwork, encode, reconstruct, stack
from stacked_ae.pipelines import (
    StackedAutoencoderPipeline,
    create_pipeline,
    fine_tune,
    train_autoencoder,
    train_softmax_layer,
)
from stacked_ae.utils import flatten, unflatten
