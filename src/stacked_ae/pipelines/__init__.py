from stacked_ae.errors import ConfigurationError

PIPELINE_REGISTRY: dict[str, type] = {}


def register_pipeline(name: str):
    """Decorator to register pipeline classes dynamically."""
    def decorator(cls):
        PIPELINE_REGISTRY[name] = cls
        return cls
    return decorator


def create_pipeline(cfg):
    name = str(cfg.pipeline.name).lower()
    cls = PIPELINE_REGISTRY.get(name)

    if cls is None:
        raise ConfigurationError(
            f"No pipeline registered under '{name}'. "
            f"Available: {list(PIPELINE_REGISTRY.keys())}"
        )

    return cls(cfg)


import pkgutil
import importlib

for _, module_name, _ in pkgutil.iter_modules(__path__):
    importlib.import_module(f"{__name__}.{module_name}")


from .base_pipeline import BaseTrainer
from .autoencoder_pipeline import AutoencoderTrainer, train_autoencoder
from .softmax_pipeline import SoftmaxTrainer, train_softmax_layer
from .finetune_pipeline import FineTuneTrainer, fine_tune
from .stacked_pipeline import PipelineResult, StackedAutoencoderPipeline
