from types import SimpleNamespace

import pytest
import torch

from stacked_ae.callbacks import EarlyStopping, EvaluationCallback
from stacked_ae.errors import ConfigurationError
from stacked_ae.models import SoftmaxLayer


def _trainer(model=None, name="fine_tune"):
    return SimpleNamespace(name=name, model=model, stop_training=False, last_epoch=0,
                           log_metrics=lambda metrics, step=None: None)


def test_early_stopping_after_patience():
    trainer = _trainer()
    callback = EarlyStopping(monitor="val_loss", patience=2)
    callback.on_fit_start(trainer)

    for epoch, loss in enumerate([1.0, 0.9, 0.95, 0.95]):
        callback.on_epoch_end(trainer, epoch, {"fine_tune_val_loss": loss})
        if trainer.stop_training:
            break

    assert trainer.stop_training
    assert callback.stopped_epoch == 3
    assert callback.best == 0.9


def test_early_stopping_ignores_missing_metric():
    trainer = _trainer()
    callback = EarlyStopping(patience=1)
    callback.on_fit_start(trainer)
    for epoch in range(5):
        callback.on_epoch_end(trainer, epoch, {"fine_tune_train_loss": 1.0})
    assert not trainer.stop_training


def test_metric_callback_rejects_unknown_mode():
    with pytest.raises(ConfigurationError):
        EarlyStopping(mode="sideways")


def test_evaluation_callback_schedule():
    model = SoftmaxLayer(10, 10)
    trainer = _trainer(model)
    callback = EvaluationCallback(torch.eye(10), torch.eye(10), every_n_epochs=3)
    callback.on_fit_start(trainer)

    for epoch in range(7):
        callback.on_epoch_end(trainer, epoch, {})
        trainer.last_epoch = epoch + 1
    callback.on_fit_end(trainer)

    assert [epoch for epoch, _ in callback.history] == [1, 3, 6, 7]
    assert all(report.total == 10 for _, report in callback.history)


def test_evaluation_callback_skips_final_when_already_covered():
    trainer = _trainer(SoftmaxLayer(10, 10))
    callback = EvaluationCallback(torch.eye(10), torch.eye(10), every_n_epochs=2)
    callback.on_fit_start(trainer)

    for epoch in range(4):
        callback.on_epoch_end(trainer, epoch, {})
        trainer.last_epoch = epoch + 1
    callback.on_fit_end(trainer)

    assert [epoch for epoch, _ in callback.history] == [1, 2, 4]


def test_early_stopping_restores_best_weights():
    model = torch.nn.Linear(2, 1)
    trainer = _trainer(model)
    callback = EarlyStopping(patience=5, restore_best_weights=True)
    callback.on_fit_start(trainer)

    weights = []
    for epoch, loss in enumerate([1.0, 0.5, 0.7, 0.9]):
        with torch.no_grad():
            model.weight.fill_(float(epoch))
        weights.append(model.weight.detach().clone())
        callback.on_epoch_end(trainer, epoch, {"fine_tune_val_loss": loss})
    callback.on_fit_end(trainer)

    assert callback.best_epoch == 1
    assert torch.equal(model.weight, weights[1])


def test_early_stopping_keeps_last_weights_by_default():
    model = torch.nn.Linear(2, 1)
    trainer = _trainer(model)
    callback = EarlyStopping(patience=5)
    callback.on_fit_start(trainer)

    for epoch, loss in enumerate([1.0, 2.0]):
        with torch.no_grad():
            model.weight.fill_(float(epoch))
        callback.on_epoch_end(trainer, epoch, {"val_loss": loss})
    callback.on_fit_end(trainer)

    assert callback.best_state is None
    assert torch.equal(model.weight, torch.ones(1, 2))
