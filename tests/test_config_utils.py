import logging
import os

from stacked_ae.logger import add_file_handler, logger, remove_file_handlers
from stacked_ae.utils import ConfigNamespace, flatten_dict, to_namespace
from stacked_ae.utils.config_utils import load_environment, load_hydra_config, parse_args


def test_flatten_dict_indexes_lists_of_sections():
    flat = flatten_dict({
        "seed": 0,
        "data": {"image_shape": [28, 28]},
        "autoencoders": [{"hidden_size": 100}, {"hidden_size": 50}],
    })
    assert flat == {
        "seed": 0,
        "data.image_shape": "28,28",
        "autoencoders.0.hidden_size": 100,
        "autoencoders.1.hidden_size": 50,
    }


def test_namespace_sections_unpack_as_kwargs():
    cfg = to_namespace({"softmax": {"max_epochs": 3, "optimizer": {"name": "adam"}}, "layers": [{"a": 1}]})

    assert cfg.softmax.max_epochs == 3
    assert dict(cfg.softmax)["max_epochs"] == 3
    assert isinstance(cfg.layers[0], ConfigNamespace)
    assert ConfigNamespace.to_builtin(cfg) == {
        "softmax": {"max_epochs": 3, "optimizer": {"name": "adam"}},
        "layers": [{"a": 1}],
    }


def test_load_hydra_config_with_overrides():
    cfg = load_hydra_config(["fine_tune.max_epochs=3", "mlflow.enabled=false"])

    assert cfg.pipeline.name == "stacked_autoencoder"
    assert cfg.fine_tune.max_epochs == 3
    assert cfg.mlflow.enabled is False
    assert [section.hidden_size for section in cfg.autoencoders] == [100, 50]


def test_parse_args_forwards_unknown_arguments():
    args, overrides = parse_args(["--fast_dev_run", "seed=4"])
    assert args.fast_dev_run
    assert overrides == ["seed=4"]


def test_load_environment_reads_dotenv(tmp_path, monkeypatch):
    monkeypatch.delenv("STACKED_AE_TEST_VALUE", raising=False)
    assert load_environment(tmp_path / "missing.env") is False

    env_file = tmp_path / ".env"
    env_file.write_text("STACKED_AE_TEST_VALUE=42\n")
    assert load_environment(env_file) is True

    assert os.environ["STACKED_AE_TEST_VALUE"] == "42"
    monkeypatch.delenv("STACKED_AE_TEST_VALUE")


def test_file_handler_lifecycle(tmp_path):
    log_file = add_file_handler(tmp_path)
    logger.info("hello from the test")
    remove_file_handlers()

    assert "hello from the test" in log_file.read_text()
    assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)
