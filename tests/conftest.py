import matplotlib

matplotlib.use("Agg")

import pytest
import torch

from stacked_ae.dataloaders import generate_synthetic_digits, save_digits


@pytest.fixture(autouse=True)
def _no_fast_dev_run(monkeypatch):
    monkeypatch.delenv("FAST_DEV_RUN", raising=False)


@pytest.fixture(scope="session")
def digits():
    """100 synthetic training digits."""
    return generate_synthetic_digits(100, seed=0)


@pytest.fixture(scope="session")
def test_digits():
    return generate_synthetic_digits(40, seed=1)


@pytest.fixture
def data_dir(tmp_path, digits, test_digits):
    out = tmp_path / "data"
    save_digits("train", out, digits.images, digits.labels)
    save_digits("test", out, test_digits.images, test_digits.labels)
    return out


@pytest.fixture
def one_hot_features():
    """Linearly separable features: a scaled copy of the one-hot labels plus noise."""
    generator = torch.Generator().manual_seed(0)
    classes = torch.arange(60) % 10
    labels = torch.nn.functional.one_hot(classes, 10).float()
    features = 3.0 * labels + 0.1 * torch.randn(60, 10, generator=generator)
    return features, labels
