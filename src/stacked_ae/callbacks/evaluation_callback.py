from __future__ import annotations

from typing import Dict, Optional, Sequence, TYPE_CHECKING

import torch

from stacked_ae.evaluation import EvaluationReport, evaluate
from stacked_ae.logger import logger
from stacked_ae.utils.tensor_ops import as_float_tensor, as_matrix
from .callbacks import Callback

if TYPE_CHECKING:
    from stacked_ae.pipelines.base_pipeline import BaseTrainer


class EvaluationCallback(Callback):
    """
    Evaluates the model under training on a held-out split.

    Runs at the first epoch, every `every_n_epochs` epochs and once more at
    the end of training if the last epoch was not covered. The accuracy is
    logged as ``<stage>_heldout_accuracy`` and every report is kept in
    `history` as ``(epoch, report)`` pairs (1-indexed epochs).

    Args:
        inputs: Held-out Image Set or matrix.
        labels: Matching one-hot labels.
        every_n_epochs: Evaluation interval.
        class_names: Optional display names for the reports.
    """

    def __init__(self, inputs, labels, every_n_epochs: int = 10,
                 class_names: Optional[Sequence[str]] = None) -> None:
        super().__init__()
        self.inputs = as_matrix(inputs)
        self.labels = as_float_tensor(labels)
        self.every_n_epochs = max(1, int(every_n_epochs))
        self.class_names = class_names
        self.history: list[tuple[int, EvaluationReport]] = []

    def on_fit_start(self, trainer: BaseTrainer) -> None:
        self.history = []

    def _run(self, trainer: BaseTrainer, epoch_1: int) -> EvaluationReport:
        report = evaluate(trainer.model, self.inputs, self.labels, class_names=self.class_names)
        self.history.append((epoch_1, report))

        trainer.log_metrics({f"{trainer.name}_heldout_accuracy": report.accuracy}, step=epoch_1 - 1)
        logger.info(f"[{trainer.name}] Held-out accuracy after epoch {epoch_1}: {report.accuracy:.4f}")
        return report

    def on_epoch_end(self, trainer: BaseTrainer, epoch: int, logs: Dict[str, float]) -> None:
        epoch_1 = epoch + 1
        if epoch_1 != 1 and epoch_1 % self.every_n_epochs != 0:
            return
        with torch.no_grad():
            self._run(trainer, epoch_1)

    def on_fit_end(self, trainer: BaseTrainer) -> None:
        last = trainer.last_epoch
        if last == 0 or (self.history and self.history[-1][0] == last):
            return
        self._run(trainer, last)
