import pytest
import torch

from stacked_ae.callbacks import Callback
from stacked_ae.configs import AutoencoderConfig, FineTuneConfig, SoftmaxConfig
from stacked_ae.errors import ConfigurationError, DimensionMismatch, OptimizationFailure
from stacked_ae.evaluation import evaluate
from stacked_ae.models import SoftmaxLayer, encode, stack
from stacked_ae.pipelines import fine_tune, train_autoencoder, train_softmax_layer
from stacked_ae.pipelines.finetune_pipeline import FineTuneTrainer, holdout_split


class RecordingCallback(Callback):
    def __init__(self):
        self.logs = []

    def on_epoch_end(self, trainer, epoch, logs):
        self.logs.append(dict(logs))


def _ae_config(**kwargs):
    params = {"max_epochs": 5, "scale_inputs": False, "seed": 0}
    params.update(kwargs)
    return AutoencoderConfig(**params)


def test_autoencoder_training_produces_requested_sizes(digits):
    ae = train_autoencoder(digits.images, 20, _ae_config())
    assert ae.input_size == 784
    assert ae.hidden_size == 20
    assert encode(ae, digits.images).shape == (100, 20)


def test_autoencoder_training_is_deterministic(digits):
    a = train_autoencoder(digits.images, 10, _ae_config(seed=3))
    b = train_autoencoder(digits.images, 10, _ae_config(seed=3))
    c = train_autoencoder(digits.images, 10, _ae_config(seed=4))

    assert torch.equal(a.encoder.linear.weight, b.encoder.linear.weight)
    assert torch.equal(encode(a, digits.images), encode(b, digits.images))
    assert not torch.equal(a.encoder.linear.weight, c.encoder.linear.weight)


def test_autoencoder_training_reduces_loss(digits):
    recorder = RecordingCallback()
    train_autoencoder(digits.images, 20, _ae_config(max_epochs=30), callbacks=[recorder])

    losses = [logs["autoencoder_train_loss"] for logs in recorder.logs]
    assert len(losses) == 30
    assert losses[-1] < losses[0]


def test_autoencoder_rejects_bad_hidden_sizes(digits):
    with pytest.raises(ConfigurationError):
        train_autoencoder(digits.images, 0, _ae_config())
    with pytest.raises(ConfigurationError):
        train_autoencoder(digits.images, 784, _ae_config())


def test_overcomplete_autoencoder_when_allowed():
    x = torch.rand(20, 6)
    ae = train_autoencoder(x, 8, _ae_config(max_epochs=2, allow_overcomplete=True))
    assert ae.hidden_size == 8


def test_autoencoder_rejects_empty_input():
    with pytest.raises(DimensionMismatch):
        train_autoencoder(torch.zeros(0, 784), 10, _ae_config())


def test_fast_dev_run_caps_epochs(monkeypatch, digits):
    monkeypatch.setenv("FAST_DEV_RUN", "1")
    recorder = RecordingCallback()
    train_autoencoder(digits.images, 10, _ae_config(max_epochs=50), callbacks=[recorder])
    assert len(recorder.logs) == 1


def test_mini_batches_use_seeded_shuffling(digits):
    config = _ae_config(max_epochs=2, batch_size=32, seed=5)
    a = train_autoencoder(digits.images, 10, config)
    b = train_autoencoder(digits.images, 10, config)
    assert torch.equal(a.decoder.linear.weight, b.decoder.linear.weight)


def test_softmax_learns_separable_features(one_hot_features):
    features, labels = one_hot_features
    classifier = train_softmax_layer(features, labels, SoftmaxConfig(max_epochs=200, seed=0))

    report = evaluate(classifier, features, labels)
    assert report.accuracy == 1.0


def test_softmax_rejects_misaligned_labels(one_hot_features):
    features, labels = one_hot_features
    with pytest.raises(DimensionMismatch):
        train_softmax_layer(features, labels[:-1], SoftmaxConfig(max_epochs=1))


def test_softmax_accepts_soft_targets(one_hot_features):
    features, labels = one_hot_features
    soft = 0.9 * labels + 0.01
    classifier = train_softmax_layer(features, soft, SoftmaxConfig(max_epochs=3))
    assert classifier.num_classes == 10


@pytest.fixture
def pretrained(digits):
    ae1 = train_autoencoder(digits.images, 20, _ae_config(seed=0))
    features = encode(ae1, digits.images)
    ae2 = train_autoencoder(features, 10, _ae_config(seed=1))
    features = encode(ae2, features)
    classifier = train_softmax_layer(features, digits.labels, SoftmaxConfig(max_epochs=20, seed=2))
    return ae1, ae2, classifier


def test_fine_tune_returns_a_new_network(digits, pretrained):
    ae1, ae2, classifier = pretrained
    network = stack(ae1, ae2, classifier)
    before = {k: v.clone() for k, v in network.state_dict().items()}

    tuned = fine_tune(network, digits.images, digits.labels, FineTuneConfig(max_epochs=5, seed=3))

    assert tuned is not network
    assert tuned.encoders[0] is not ae1.encoder
    for key, value in network.state_dict().items():
        assert torch.equal(value, before[key]), key
    assert any(not torch.equal(v, before[k]) for k, v in tuned.state_dict().items())


def test_fine_tune_reduces_training_loss(digits, pretrained):
    network = stack(*pretrained)
    recorder = RecordingCallback()
    fine_tune(network, digits.images, digits.labels,
              FineTuneConfig(max_epochs=20, seed=3, optimizer={"name": "adam", "lr": 0.001}),
              callbacks=[recorder])

    losses = [logs["fine_tune_train_loss"] for logs in recorder.logs]
    assert losses[-1] < losses[0]


def test_fine_tune_with_holdout_logs_validation_loss(digits, pretrained):
    network = stack(*pretrained)
    recorder = RecordingCallback()
    fine_tune(network, digits.images, digits.labels,
              FineTuneConfig(max_epochs=3, validation_fraction=0.2, seed=3),
              callbacks=[recorder])

    assert "fine_tune_val_loss" in recorder.logs[0]


def test_fine_tune_checks_dimensions(digits, pretrained):
    network = stack(*pretrained)
    with pytest.raises(DimensionMismatch):
        fine_tune(network, torch.rand(100, 100), digits.labels, FineTuneConfig(max_epochs=1))
    with pytest.raises(DimensionMismatch):
        fine_tune(network, digits.images, digits.labels[:, :5], FineTuneConfig(max_epochs=1))


def test_holdout_split_is_seeded_and_disjoint():
    x = torch.arange(20, dtype=torch.float32)[:, None]
    t = torch.eye(2).repeat(10, 1)

    (x_train, _), (x_val, _) = holdout_split(x, t, 0.25, seed=0)
    (x_train_again, _), _ = holdout_split(x, t, 0.25, seed=0)

    assert x_val.shape[0] == 5
    assert x_train.shape[0] == 15
    assert torch.equal(x_train, x_train_again)
    assert not set(x_train[:, 0].tolist()) & set(x_val[:, 0].tolist())


def test_holdout_split_without_fraction():
    x, t = torch.rand(4, 3), torch.eye(2).repeat(2, 1)
    train, val = holdout_split(x, t, 0.0, seed=0)
    assert val is None
    assert train[0] is x


class StateRecorder(Callback):
    def __init__(self):
        self.val_losses = []
        self.states = []

    def on_epoch_end(self, trainer, epoch, logs):
        self.val_losses.append(logs["fine_tune_val_loss"])
        self.states.append({k: v.detach().clone() for k, v in trainer.model.state_dict().items()})


def test_fine_tune_returns_best_validation_weights(digits, pretrained):
    network = stack(*pretrained)
    recorder = StateRecorder()
    config = FineTuneConfig(max_epochs=30, validation_fraction=0.3, patience=2, seed=3,
                            optimizer={"name": "adam", "lr": 0.05})

    tuned = fine_tune(network, digits.images, digits.labels, config, callbacks=[recorder])

    best_epoch = recorder.val_losses.index(min(recorder.val_losses))
    for key, value in tuned.state_dict().items():
        assert torch.equal(value, recorder.states[best_epoch][key]), key


def test_fine_tune_keeps_training_accuracy(digits, pretrained):
    network = stack(*pretrained)
    before = evaluate(network, digits.images, digits.labels)

    tuned = fine_tune(network, digits.images, digits.labels,
                      FineTuneConfig(max_epochs=50, seed=3, optimizer={"name": "adam", "lr": 0.01}))
    after = evaluate(tuned, digits.images, digits.labels)

    assert after.total == before.total == 100
    assert after.accuracy >= before.accuracy - 0.02


def test_non_finite_inputs_raise_optimization_failure(digits, pretrained):
    x = torch.rand(20, 30)
    x[3, 4] = float("nan")
    with pytest.raises(OptimizationFailure):
        train_autoencoder(x, 5, _ae_config(max_epochs=2))

    images = digits.images.clone()
    images[0, 0, 0] = float("nan")
    with pytest.raises(OptimizationFailure):
        fine_tune(stack(*pretrained), images, digits.labels, FineTuneConfig(max_epochs=2))


def test_epoch_metrics_are_weighted_by_batch_size(one_hot_features):
    features, labels = one_hot_features
    network = stack(SoftmaxLayer(10, 10))
    trainer = FineTuneTrainer(FineTuneConfig(max_epochs=1, batch_size=4, seed=0), network, name="fine_tune")

    # 10 validation examples are split into batches of 4, 4 and 2
    x_val, t_val = features[:10], labels[:10]
    model = trainer.fit((features, labels), (x_val, t_val))

    with torch.no_grad():
        expected = torch.nn.functional.cross_entropy(model.logits(x_val), t_val).item()
    assert trainer.history[-1]["fine_tune_val_loss"] == pytest.approx(expected, rel=1e-5)
