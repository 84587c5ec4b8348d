from __future__ import annotations

from abc import ABC
from typing import Dict, Optional, TYPE_CHECKING

import torch

from stacked_ae.errors import ConfigurationError
from stacked_ae.logger import logger

if TYPE_CHECKING:
    from stacked_ae.pipelines.base_pipeline import BaseTrainer


class Callback(ABC):
    """
    Minimal callback interface for BaseTrainer.
    All methods are optional; override only what you need.
    """

    def on_fit_start(self, trainer: BaseTrainer) -> None:
        pass

    def on_fit_end(self, trainer: BaseTrainer) -> None:
        pass

    def on_epoch_end(self, trainer: BaseTrainer, epoch: int, logs: Dict[str, float]) -> None:
        pass


class MetricCallback(Callback, ABC):
    """
    Base class for callbacks that follow one logged metric.

    Keeps track of the best value seen so far (`best`) and of the number of
    epochs since it last improved (`wait`).
    """

    def __init__(self, monitor: str = "val_loss", mode: str = "min", min_delta: float = 0.0,
                 patience: int = 0, start_from_epoch: int = 0) -> None:
        if mode not in ("min", "max"):
            raise ConfigurationError(f"mode must be 'min' or 'max', got {mode!r}")

        self.monitor = monitor
        self.mode = mode
        self.min_delta = min_delta
        self.patience = patience
        self.start_from_epoch = start_from_epoch

        self.best: Optional[float] = None
        self.wait = 0

    def on_fit_start(self, trainer: BaseTrainer) -> None:
        self.best = None
        self.wait = 0

    def should_skip(self, epoch: int) -> bool:
        return epoch < self.start_from_epoch

    def _is_improvement(self, metric: float) -> bool:
        if self.best is None:
            return True

        if self.mode == "min":
            return metric < self.best - self.min_delta

        return metric > self.best + self.min_delta

    def update_best(self, metric: float) -> bool:
        """
        Updates internal state and returns True if improved.
        """
        improved = self._is_improvement(metric)

        if improved:
            self.best = metric
            self.wait = 0
        else:
            self.wait += 1

        return improved

    def exceeded_patience(self) -> bool:
        return self.wait >= self.patience


class EarlyStopping(MetricCallback):
    """Stops training once `monitor` has not improved for `patience` epochs.

    Metric names are matched on suffix, so ``monitor="val_loss"`` follows
    ``fine_tune_val_loss`` as well. With `restore_best_weights`, the model
    state of the best epoch is kept in memory and loaded back when training
    ends, whether or not training stopped early.
    """

    def __init__(self, monitor: str = "val_loss", mode: str = "min", patience: int = 6,
                 min_delta: float = 0.0, start_from_epoch: int = 0, restore_best_weights: bool = False):
        super().__init__(
            monitor=monitor,
            mode=mode,
            min_delta=min_delta,
            patience=patience,
            start_from_epoch=start_from_epoch,
        )
        self.restore_best_weights = restore_best_weights
        self.stopped_epoch: Optional[int] = None
        self.best_epoch: Optional[int] = None
        self.best_state: Optional[Dict[str, torch.Tensor]] = None

    def _lookup(self, logs: Dict[str, float]) -> Optional[float]:
        if self.monitor in logs:
            return logs[self.monitor]
        for name, value in logs.items():
            if name.endswith(f"_{self.monitor}"):
                return value
        return None

    def on_fit_start(self, trainer: BaseTrainer) -> None:
        super().on_fit_start(trainer)
        self.stopped_epoch = None
        self.best_epoch = None
        self.best_state = None

    def on_epoch_end(self, trainer: BaseTrainer, epoch: int, logs: Dict[str, float]) -> None:

        if self.should_skip(epoch):
            return

        metric = self._lookup(logs)
        if metric is None:
            return

        if self.update_best(metric):
            self.best_epoch = epoch
            if self.restore_best_weights:
                self.best_state = {k: v.detach().clone() for k, v in trainer.model.state_dict().items()}

        if self.exceeded_patience():
            self.stopped_epoch = epoch
            trainer.stop_training = True
            logger.info(
                f"[EarlyStopping] Stopping {trainer.name} at epoch {epoch+1}: "
                f"no improvement on {self.monitor} for {self.patience} epochs"
            )

    def on_fit_end(self, trainer: BaseTrainer) -> None:
        if not self.restore_best_weights or self.best_state is None:
            return
        trainer.model.load_state_dict(self.best_state)
        logger.info(
            f"[EarlyStopping] Restored {trainer.name} weights from epoch {self.best_epoch+1} "
            f"({self.monitor}={self.best:.4f})"
        )
