"""Error kinds raised by the stacked autoencoder pipeline.

Every error is fatal for a pipeline run: stages either return a fully trained
model or raise one of these and the run aborts.
"""


class StackedAEError(Exception):
    """Base class for all pipeline errors."""


class DataUnavailable(StackedAEError, FileNotFoundError):
    """The backing dataset is missing, unreadable or corrupt."""


class ConfigurationError(StackedAEError, ValueError):
    """A hyperparameter or option is outside of its valid range."""


class DimensionMismatch(StackedAEError, ValueError):
    """Shapes of consecutive stages (or of paired inputs) disagree."""


class OptimizationFailure(StackedAEError, RuntimeError):
    """The optimizer diverged or produced non-finite values."""
