import pytest
import torch

from stacked_ae.cli import make_dataset, train
from stacked_ae.dataloaders import generate_synthetic_digits, load_digits, split_seed
from stacked_ae.utils.color_utils import bold_red, color


def test_make_dataset_writes_both_splits(tmp_path):
    assert make_dataset.main(["--out", str(tmp_path), "--n-train", "12", "--n-test", "8", "--seed", "2"]) == 0

    assert load_digits("train", tmp_path).images.shape == (12, 28, 28)
    assert load_digits("test", tmp_path).labels.shape == (8, 10)

    expected = generate_synthetic_digits(12, seed=split_seed(2, "train"))
    assert torch.equal(load_digits("train", tmp_path).images, expected.images)


def test_train_fast_dev_run(tmp_path, monkeypatch):
    # main() exports FAST_DEV_RUN; setting it here lets monkeypatch restore it
    monkeypatch.setenv("FAST_DEV_RUN", "0")
    data_dir = tmp_path / "data"
    make_dataset.main(["--out", str(data_dir), "--n-train", "30", "--n-test", "10"])

    code = train.main([
        "--fast_dev_run",
        f"data.data_dir={data_dir}",
        f"artifacts.dir={tmp_path / 'outputs'}",
        "mlflow.enabled=false",
        "training.progress=false",
    ])

    assert code == 0
    assert list((tmp_path / "outputs").glob("digits_sae_*/report.json"))


def test_train_exits_on_failure(tmp_path, monkeypatch):
    monkeypatch.setenv("FAST_DEV_RUN", "0")
    with pytest.raises(SystemExit) as excinfo:
        train.main([f"data.data_dir={tmp_path / 'missing'}", "mlflow.enabled=false",
                    "artifacts.enabled=false"])
    assert excinfo.value.code == 1


def test_failure_highlight():
    assert bold_red("boom") == "\033[1m\033[31mboom\033[0m"
    assert color("plain", "yellow") == "plain"
