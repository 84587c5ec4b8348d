from omegaconf import DictConfig, OmegaConf
from hydra import compose, initialize
from typing import List, Optional, Tuple
from pathlib import Path
import os
from dotenv import load_dotenv
import argparse

from types import SimpleNamespace
from collections.abc import MutableMapping

from stacked_ae.logger import logger

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class ConfigNamespace(SimpleNamespace, MutableMapping):
    """SimpleNamespace that also behaves like a dict, so sections unpack as kwargs."""

    def __getitem__(self, key):
        return getattr(self, key)

    def __setitem__(self, key, value):
        setattr(self, key, value)

    def __delitem__(self, key):
        delattr(self, key)

    def __iter__(self):
        return iter(self.__dict__)

    def __len__(self):
        return len(self.__dict__)

    def __repr__(self):
        return f"ConfigNamespace({self.__dict__})"

    @classmethod
    def from_dict(cls, obj):
        """Recursively build ConfigNamespace from nested dicts (and lists of dicts)."""
        if isinstance(obj, dict):
            return cls(**{k: cls.from_dict(v) for k, v in obj.items()})
        if isinstance(obj, list):
            return [cls.from_dict(v) for v in obj]
        return obj

    @classmethod
    def to_builtin(cls, obj):
        """
        Recursively convert a ConfigNamespace or nested structures into
        plain Python types (dicts, lists, primitives).
        """
        if isinstance(obj, cls):
            return {k: cls.to_builtin(v) for k, v in vars(obj).items()}
        elif isinstance(obj, dict):
            return {k: cls.to_builtin(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [cls.to_builtin(v) for v in obj]
        else:
            return obj


def to_namespace(cfg: DictConfig | dict) -> ConfigNamespace:
    """Resolves an OmegaConf tree (or plain dict) into nested ConfigNamespace objects."""
    if isinstance(cfg, DictConfig):
        cfg = OmegaConf.to_container(cfg, resolve=True)
    return ConfigNamespace.from_dict(cfg)


def load_hydra_config(hydra_overrides: Optional[List[str]] = None, config_name: str = "config") -> DictConfig:
    """
    Compose the Hydra config tree:
      - Base config: conf/config.yaml at the project root
      - Additional CLI overrides passed through (e.g., fine_tune.max_epochs=50)
    """
    abs_conf_dir = PROJECT_ROOT / "conf"
    rel_conf_dir = os.path.relpath(abs_conf_dir, start=Path(__file__).resolve().parent)

    with initialize(version_base="1.3", config_path=str(rel_conf_dir)):
        cfg = compose(config_name=config_name, overrides=list(hydra_overrides or []))

    return cfg


def flatten_dict(d: dict, parent_key: str = "", sep: str = ".") -> dict:
    """
    Recursively flattens a nested dictionary into dot notation.
    Lists of dicts are indexed: {"a": [{"b": 1}]} -> {"a.0.b": 1}
    """
    items = []
    for k, v in d.items():
        new_key = f"{parent_key}{sep}{k}" if parent_key else str(k)
        if isinstance(v, dict):
            items.extend(flatten_dict(v, new_key, sep=sep).items())
        elif isinstance(v, (list, tuple)) and any(isinstance(e, dict) for e in v):
            indexed = {str(i): e for i, e in enumerate(v)}
            items.extend(flatten_dict(indexed, new_key, sep=sep).items())
        else:
            if isinstance(v, (list, tuple)):
                v = ",".join(map(str, v))
            elif not isinstance(v, (str, int, float, bool)) and v is not None:
                v = str(v)
            items.append((new_key, v))
    return dict(items)


def load_environment(env_path: Optional[Path] = None) -> bool:
    """
    Loads environment variables from the project's .env file, independent of
    Hydra's working directory.

    Returns:
        bool: True if a .env file was found and loaded.
    """
    env_path = Path(env_path) if env_path is not None else PROJECT_ROOT / ".env"

    if not env_path.is_file():
        logger.debug(f".env file not found at expected path: {env_path}")
        return False

    load_dotenv(dotenv_path=env_path, override=True)
    logger.info(f"Loaded environment variables from: {env_path}")
    return True


def parse_args(argv: Optional[List[str]] = None) -> Tuple[argparse.Namespace, List[str]]:
    """
    Parse CLI flags that must remain independent from Hydra.

    Returns:
        The parsed flags and the remaining arguments, which are Hydra overrides.
    """
    parser = argparse.ArgumentParser(
        description="Train a stacked autoencoder digit classifier. "
                    "Unrecognised arguments are forwarded to Hydra as overrides."
    )

    parser.add_argument(
        "--fast_dev_run",
        action="store_true",
        help="Cap every training stage at a single epoch."
    )

    args, unknown = parser.parse_known_args(args=argv)
    return args, unknown


def export_args_to_env(args: argparse.Namespace) -> None:
    """
    Export parsed CLI arguments into environment variables so Hydra remains
    clean and unaffected while the pipeline can still inspect them.
    """
    os.environ["FAST_DEV_RUN"] = "1" if args.fast_dev_run else "0"


def fast_dev_run_enabled() -> bool:
    return os.getenv("FAST_DEV_RUN") == "1"
