from abc import ABC, abstractmethod
import math
import sys
from collections.abc import Mapping, Sequence
from typing import Any, Dict, Optional, Tuple

import mlflow
import torch
from torch.utils.data import DataLoader, TensorDataset
from tqdm import tqdm

from stacked_ae.callbacks import Callback
from stacked_ae.configs import StageConfig
from stacked_ae.errors import ConfigurationError, OptimizationFailure
from stacked_ae.logger import logger
from stacked_ae.utils.config_utils import fast_dev_run_enabled
from stacked_ae.utils.color_utils import cyan, orange
from stacked_ae.utils.tensor_ops import check_finite_parameters, fork_seed, seeded_generator


class BaseTrainer(ABC):
    """
    Abstract single-stage trainer using PyTorch.

    Handles device placement, data loaders, optimizer, the epoch loop,
    metric logging and callbacks. Subclasses define the model and one
    optimisation step. Every random draw (weight initialisation, shuffling)
    is derived from ``config.seed``.

    Args:
        config: Stage hyperparameters.
        name: Stage name, used as metric prefix (``<name>_train_loss``).
        device: Requested device ("cpu", "cuda", "mps").
        callbacks: Extra callbacks, run after the ones from :meth:`init_callbacks`.
        progress: Show a tqdm bar per epoch.
    """

    loss_name: str = "cross_entropy"

    def __init__(self, config: StageConfig, name: str, device: str = "cpu",
                 callbacks: Optional[list[Callback]] = None, progress: bool = False) -> None:
        self.config = config
        self.name = name
        self.device = self._set_device(device)
        self.progress = progress
        self.extra_callbacks = list(callbacks or [])

        # Populated by setup()
        self.model: torch.nn.Module | None = None
        self.optimizer: torch.optim.Optimizer | None = None
        self.criterion: torch.nn.Module | None = None
        self.callbacks: list[Callback] = []
        self.train_loader: DataLoader | None = None
        self.val_loader: DataLoader | None = None

        self.stop_training = False
        self.last_epoch = 0
        self.history: list[dict[str, float]] = []

    def _set_device(self, requested: str) -> torch.device:
        """
        Selects the requested device if available, falling back to CPU.
        """
        req = str(requested).lower()

        if req == "cuda":
            if torch.cuda.is_available():
                return torch.device("cuda")
            logger.warning("Requested 'cuda' but CUDA is not available. Falling back to CPU.")
            return torch.device("cpu")

        if req == "mps":
            if torch.backends.mps.is_available():
                return torch.device("mps")
            logger.warning("Requested 'mps' but MPS is not available. Falling back to CPU.")
            return torch.device("cpu")

        if req != "cpu":
            logger.warning(f"Unknown device '{requested}'. Falling back to CPU.")
        return torch.device("cpu")

    # ---------- user extension points ----------
    @abstractmethod
    def build_model(self, train_tensors: Tuple[torch.Tensor, ...]) -> torch.nn.Module: ...

    @abstractmethod
    def training_step(self, batch: Any, batch_idx: int) -> Dict[str, torch.Tensor]: ...

    def validation_step(self, batch: Any, batch_idx: int) -> Dict[str, torch.Tensor]:
        return self.training_step(batch, batch_idx)

    def init_callbacks(self) -> list[Callback]:
        return []

    def build_loss(self) -> torch.nn.Module:
        loss_classes = {
            "mse": torch.nn.MSELoss,
            "cross_entropy": torch.nn.CrossEntropyLoss,
        }

        if self.loss_name not in loss_classes:
            raise ConfigurationError(f"Unknown loss: {self.loss_name}")

        return loss_classes[self.loss_name]()

    def build_optimizer(self, model: torch.nn.Module) -> torch.optim.Optimizer:
        params = dict(self.config.optimizer)
        name = str(params.pop("name")).lower()

        optimizer_classes = {
            "adam": torch.optim.Adam,
            "adamw": torch.optim.AdamW,
            "sgd": torch.optim.SGD,
            "rmsprop": torch.optim.RMSprop,
        }

        if name not in optimizer_classes:
            raise ConfigurationError(f"Unknown optimizer: {name}")

        try:
            return optimizer_classes[name](model.parameters(), **params)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid parameters for optimizer '{name}': {e}") from e

    # ---------- orchestration ----------
    def _make_loader(self, tensors: Tuple[torch.Tensor, ...], shuffle: bool) -> DataLoader:
        dataset = TensorDataset(*tensors)
        batch_size = self.config.batch_size or len(dataset)
        return DataLoader(
            dataset,
            batch_size=batch_size,
            shuffle=shuffle,
            generator=seeded_generator(self.config.seed) if shuffle else None,
        )

    def setup(self, train_tensors: Tuple[torch.Tensor, ...],
              val_tensors: Optional[Tuple[torch.Tensor, ...]] = None) -> None:
        """Initializes model, optimizer, loss, loaders and callbacks."""

        self.train_loader = self._make_loader(train_tensors, shuffle=self.config.batch_size is not None)
        self.val_loader = self._make_loader(val_tensors, shuffle=False) if val_tensors is not None else None

        with fork_seed(self.config.seed):
            model = self.build_model(train_tensors)

        self.model = model.to(self.device)
        self.optimizer = self.build_optimizer(self.model)
        self.criterion = self.build_loss().to(self.device)
        self.callbacks = self.init_callbacks() + self.extra_callbacks

        self.stop_training = False
        self.last_epoch = 0
        self.history = []

        logger.debug(f"[{self.name}] Setup completed on {self.device}.")

    def _apply_prefix(self, metrics: dict[str, float], prefix: str) -> dict[str, float]:
        """
        Returns a new metrics dict where each key has the prefix applied
        (e.g. 'loss' -> 'autoencoder_1_train_loss').
        """
        return {f"{prefix}_{name}": value for name, value in metrics.items()}

    def log_metrics(self, metrics: dict[str, float], step: int | None = None) -> None:
        """
        Logs metrics to MLflow when a run is active; no-op otherwise.
        """
        if not mlflow.active_run():
            return

        for name, value in metrics.items():
            try:
                mlflow.log_metric(name, float(value), step=step)
            except Exception as e:
                logger.warning(f"Failed to log metric '{name}': {e}")

    def _move_to_device(self, batch: Any) -> Any:
        """
        Recursively moves tensors in `batch` to `self.device`.
        """
        if isinstance(batch, torch.Tensor):
            return batch.to(self.device)

        if isinstance(batch, Mapping):
            return {k: self._move_to_device(v) for k, v in batch.items()}

        if isinstance(batch, Sequence) and not isinstance(batch, (str, bytes)):
            return type(batch)(self._move_to_device(v) for v in batch)

        return batch

    def _run_callbacks(self, hook_name: str, **kwargs: Any) -> None:
        for cb in self.callbacks:
            hook = getattr(cb, hook_name, None)
            if hook is not None:
                hook(trainer=self, **kwargs)

    @staticmethod
    def _accumulate(metrics_accum: dict[str, float], out: Dict[str, torch.Tensor], batch: Any) -> int:
        """
        Adds the batch metrics to `metrics_accum`, weighted by the number of
        examples in the batch, and returns that number.
        """
        n = len(batch[0])
        for key, val in out.items():
            metrics_accum[key] = metrics_accum.get(key, 0.0) + float(val.detach().item()) * n
        return n

    def _check_finite(self, metrics: dict[str, float], epoch: int) -> None:
        for name, value in metrics.items():
            if not math.isfinite(value):
                raise OptimizationFailure(
                    f"[{self.name}] Non-finite {name} ({value}) at epoch {epoch + 1}"
                )

    def _progress(self, loader: DataLoader, desc: str, colour: str):
        return tqdm(
            loader,
            desc=desc,
            dynamic_ncols=True,
            leave=False,
            file=sys.stdout,
            colour=colour,
            disable=not self.progress,
        )

    def _train_epoch(self, epoch: int) -> dict[str, float]:
        """Runs one full training epoch and returns averaged metrics."""
        self.model.train()
        metrics_accum: dict[str, float] = {}
        n_examples = 0

        batches = self._progress(self.train_loader, f"[{self.name} train {epoch+1}]", "green")
        for i, batch in enumerate(batches):

            batch = self._move_to_device(batch)
            out = self.training_step(batch, i)

            loss = out["loss"]
            if not torch.isfinite(loss):
                raise OptimizationFailure(
                    f"[{self.name}] Non-finite loss ({loss.item()}) at epoch {epoch + 1}, batch {i}"
                )

            self.optimizer.zero_grad()
            loss.backward()
            self.optimizer.step()

            n_examples += self._accumulate(metrics_accum, out, batch)

        metrics_mean = {k: total / n_examples for k, total in metrics_accum.items()}
        return self._apply_prefix(metrics_mean, f"{self.name}_train")

    def _validate_epoch(self, epoch: int) -> dict[str, float]:
        """Runs one full validation epoch and returns averaged metrics."""
        self.model.eval()
        metrics_accum: dict[str, float] = {}
        n_examples = 0

        batches = self._progress(self.val_loader, f"[{self.name} val   {epoch+1}]", "magenta")
        with torch.no_grad():
            for i, batch in enumerate(batches):
                batch = self._move_to_device(batch)
                out = self.validation_step(batch, i)

                n_examples += self._accumulate(metrics_accum, out, batch)

        metrics_mean = {k: total / n_examples for k, total in metrics_accum.items()}
        return self._apply_prefix(metrics_mean, f"{self.name}_val")

    def fit(self, train_tensors: Tuple[torch.Tensor, ...],
            val_tensors: Optional[Tuple[torch.Tensor, ...]] = None) -> torch.nn.Module:
        """
        Trains a fresh model on `train_tensors` and returns it.

        Runs at most ``config.max_epochs`` epochs (one when FAST_DEV_RUN=1),
        stopping earlier if a callback sets `stop_training`.

        Raises:
            OptimizationFailure: If a loss or parameter becomes non-finite.
        """
        self.setup(train_tensors, val_tensors)

        epochs = int(self.config.max_epochs)
        if fast_dev_run_enabled():
            epochs = 1
            logger.info(orange(f"[{self.name}] Fast dev run enabled. Running for 1 epoch"))

        logger.info(cyan(f"[{self.name}] Training for up to {epochs} epochs "
                         f"on {len(self.train_loader.dataset)} examples"))

        self._run_callbacks("on_fit_start")

        all_metrics: dict[str, float] = {}
        for epoch in range(epochs):

            train_metrics = self._train_epoch(epoch)
            val_metrics = self._validate_epoch(epoch) if self.val_loader is not None else {}

            all_metrics = {**train_metrics, **val_metrics}
            self._check_finite(all_metrics, epoch)
            self.history.append(all_metrics)
            self.log_metrics(all_metrics, step=epoch)

            metrics_str = ", ".join(f"{k}: {v:.4f}" for k, v in all_metrics.items())
            logger.debug(f"[Epoch {epoch+1}/{epochs}] -> {metrics_str}")

            self.last_epoch = epoch + 1

            self._run_callbacks("on_epoch_end", epoch=epoch, logs=all_metrics)

            if self.stop_training:
                break

        self._run_callbacks("on_fit_end")
        check_finite_parameters(self.model, self.name)

        final = ", ".join(f"{k}: {v:.4f}" for k, v in all_metrics.items())
        logger.info(f"[{self.name}] Finished after {self.last_epoch} epochs ({final})")
        return self.model
