"""End-to-end pipeline: layer-wise pretraining, stacking, fine-tuning, evaluation."""

import contextlib
import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import mlflow
import torch
from omegaconf import DictConfig

from stacked_ae.callbacks import EvaluationCallback
from stacked_ae.configs import AutoencoderConfig, FineTuneConfig, SoftmaxConfig
from stacked_ae.dataloaders import (
    DIGIT_CLASSES,
    DigitSplit,
    generate_synthetic_digits,
    load_digits,
    save_digits,
    split_seed,
)
from stacked_ae.errors import ConfigurationError, DataUnavailable, DimensionMismatch
from stacked_ae.evaluation import EvaluationReport, evaluate
from stacked_ae.logger import add_file_handler, logger, remove_file_handlers
from stacked_ae.models import SoftmaxLayer, SparseAutoencoder, StackedNetwork, encode, stack
from stacked_ae.pipelines import register_pipeline
from stacked_ae.utils import ConfigNamespace, flatten, flatten_dict, to_namespace
from stacked_ae.utils.color_utils import bold_green
from stacked_ae.visualizations import plot_confusion, plot_images, plot_weights, save_figures_pdf
from .autoencoder_pipeline import train_autoencoder
from .finetune_pipeline import fine_tune
from .softmax_pipeline import train_softmax_layer


@dataclass
class PipelineResult:
    """Every artifact produced by one run, in stage order."""

    autoencoders: list[SparseAutoencoder]
    classifier: SoftmaxLayer
    network: StackedNetwork
    fine_tuned: StackedNetwork
    pre_tune_report: EvaluationReport
    post_tune_report: EvaluationReport
    artifacts_dir: Path | None = None
    heldout_history: list[tuple[int, float]] = field(default_factory=list)


@register_pipeline("stacked_autoencoder")
class StackedAutoencoderPipeline:
    """
    Trains a digit classifier from stacked sparse autoencoders.

    Stages run strictly in order:

        load -> train AE 1 -> encode -> ... -> train AE k -> encode
             -> train softmax -> stack -> evaluate -> fine-tune -> evaluate

    Each autoencoder section of the config may override the stage seed; by
    default stage ``i`` uses ``seed + i`` so the whole run is reproducible
    from the single top-level seed.
    """

    def __init__(self, cfg: DictConfig | dict) -> None:
        self.cfg = to_namespace(cfg)
        self.seed = int(getattr(self.cfg, "seed", 0))
        self.device = self.cfg.training.device
        self.progress = bool(getattr(self.cfg.training, "progress", False))
        self.class_names = DIGIT_CLASSES
        self.image_shape = tuple(self.cfg.data.image_shape)

    # ------------------------------------------------------------------ data
    def load_data(self) -> tuple[DigitSplit, DigitSplit]:
        data_dir = Path(self.cfg.data.data_dir)
        return self._load_split("train", data_dir), self._load_split("test", data_dir)

    def _load_split(self, split: str, data_dir: Path) -> DigitSplit:
        """Loads one split; with `generate_if_missing`, only an unreadable split is regenerated."""
        try:
            return load_digits(split, data_dir)
        except DataUnavailable as e:
            if not getattr(self.cfg.data, "generate_if_missing", False):
                raise
            logger.warning(f"{e}; generating a synthetic {split} split.")

        n = int(getattr(self.cfg.data, f"n_{split}", 5000))
        generated = generate_synthetic_digits(n, seed=split_seed(self.seed, split))
        save_digits(split, data_dir, generated.images, generated.labels)
        return load_digits(split, data_dir)

    # -------------------------------------------------------------- configs
    def _stage_config(self, cls, section: ConfigNamespace, offset: int, exclude: tuple[str, ...] = ()):
        params = {k: v for k, v in dict(section).items() if k not in exclude}
        params.setdefault("seed", self.seed + offset)
        try:
            return cls(**params)
        except TypeError as e:
            raise ConfigurationError(f"Invalid options for {cls.__name__}: {e}") from e

    def autoencoder_configs(self) -> list[tuple[int, AutoencoderConfig]]:
        return [
            (int(section.hidden_size),
             self._stage_config(AutoencoderConfig, section, offset=i, exclude=("hidden_size",)))
            for i, section in enumerate(self.cfg.autoencoders)
        ]

    # ------------------------------------------------------------- artifacts
    def _make_artifacts_dir(self) -> Path | None:
        if not getattr(self.cfg.artifacts, "enabled", True):
            return None
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        run_dir = Path(self.cfg.artifacts.dir) / f"{self.cfg.pipeline.run_name}_{stamp}"
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir

    def _mlflow_context(self):
        if not getattr(self.cfg.mlflow, "enabled", False):
            return contextlib.nullcontext()

        mlflow.set_tracking_uri(self.cfg.mlflow.tracking_uri)
        experiment_name = getattr(self.cfg.mlflow, "experiment_name", None)
        if experiment_name:
            mlflow.set_experiment(experiment_name)
            logger.info(f"MLflow experiment set: {experiment_name}, run: {self.cfg.pipeline.run_name}")
        return mlflow.start_run(run_name=self.cfg.pipeline.run_name)

    def _log_config_to_mlflow(self) -> None:
        flat_cfg = flatten_dict(ConfigNamespace.to_builtin(self.cfg))
        mlflow.log_params(flat_cfg)
        logger.info(f"Logged {len(flat_cfg)} configuration parameters to MLflow.")

    def _save_artifacts(self, run_dir: Path, train: DigitSplit, result: PipelineResult) -> None:
        if getattr(self.cfg.artifacts, "save_figures", True):
            figs = [plot_images(train.images, n_images=20, title="Training images")]
            if result.autoencoders:
                # Deeper layers do not map to image space.
                figs.append(plot_weights(result.autoencoders[0], self.image_shape))
            figs.append(plot_confusion(result.pre_tune_report, title="Stacked network"))
            figs.append(plot_confusion(result.post_tune_report, title="Fine-tuned network"))
            pdf_path = save_figures_pdf(figs, run_dir / "figures.pdf")
            logger.info(f"Saved figures: {pdf_path}")

        torch.save(result.fine_tuned.state_dict(), run_dir / "fine_tuned_network.pt")

        report = {
            "network": result.fine_tuned.summary(),
            "pre_tune": result.pre_tune_report.to_dict(),
            "post_tune": result.post_tune_report.to_dict(),
            "heldout_history": result.heldout_history,
        }
        with open(run_dir / "report.json", "w") as f:
            json.dump(report, f, indent=2, default=str)

    # ------------------------------------------------------------ pipeline
    def _train_layers(self, train: DigitSplit) -> tuple[list[SparseAutoencoder], torch.Tensor, torch.Tensor]:
        x_train = flatten(train.images)
        expected = math.prod(self.image_shape)
        if x_train.shape[1] != expected:
            raise DimensionMismatch(f"Images flatten to {x_train.shape[1]} values, expected {expected}")

        autoencoders: list[SparseAutoencoder] = []
        features = x_train
        for i, (hidden_size, ae_cfg) in enumerate(self.autoencoder_configs(), start=1):
            autoencoder = train_autoencoder(
                features, hidden_size, ae_cfg,
                name=f"autoencoder_{i}", device=self.device, progress=self.progress,
            )
            features = encode(autoencoder, features)
            autoencoders.append(autoencoder)
            logger.info(f"Encoded training set with autoencoder {i}: {tuple(features.shape)}")

        return autoencoders, x_train, features

    def run(self) -> PipelineResult:
        """Runs every stage once and returns the trained models and reports."""
        run_dir = self._make_artifacts_dir()
        if run_dir is not None:
            add_file_handler(run_dir)

        try:
            with self._mlflow_context():
                if mlflow.active_run():
                    self._log_config_to_mlflow()

                result = self._run_stages(run_dir)

                if mlflow.active_run():
                    mlflow.log_metrics({
                        "pre_tune_test_accuracy": result.pre_tune_report.accuracy,
                        "post_tune_test_accuracy": result.post_tune_report.accuracy,
                    })
                    if run_dir is not None:
                        mlflow.log_artifacts(str(run_dir))
        finally:
            remove_file_handlers()

        logger.info(bold_green("Pipeline finished successfully"))
        return result

    def _run_stages(self, run_dir: Path | None) -> PipelineResult:
        train, test = self.load_data()

        autoencoders, x_train, features = self._train_layers(train)

        softmax_cfg = self._stage_config(SoftmaxConfig, self.cfg.softmax, offset=len(autoencoders))
        classifier = train_softmax_layer(
            features, train.labels, softmax_cfg,
            device=self.device, progress=self.progress,
        )

        network = stack(*autoencoders, classifier)
        logger.info(f"Stacked network: {[s['output_size'] for s in network.summary()['stages']]}")

        x_test = flatten(test.images)
        pre_tune = evaluate(network, x_test, test.labels, class_names=self.class_names)
        logger.info(f"Test accuracy before fine-tuning: {pre_tune.accuracy:.4f}")

        tune_cfg = self._stage_config(FineTuneConfig, self.cfg.fine_tune, offset=len(autoencoders) + 1)
        heldout = EvaluationCallback(
            x_test, test.labels,
            every_n_epochs=int(getattr(self.cfg.evaluation, "every_n_epochs", 10)),
            class_names=self.class_names,
        )
        fine_tuned = fine_tune(
            network, x_train, train.labels, tune_cfg,
            device=self.device, callbacks=[heldout], progress=self.progress,
        )

        post_tune = evaluate(fine_tuned, x_test, test.labels, class_names=self.class_names)
        logger.info(f"Test accuracy after fine-tuning: {post_tune.accuracy:.4f}")

        result = PipelineResult(
            autoencoders=autoencoders,
            classifier=classifier,
            network=network,
            fine_tuned=fine_tuned,
            pre_tune_report=pre_tune,
            post_tune_report=post_tune,
            artifacts_dir=run_dir,
            heldout_history=[(epoch, report.accuracy) for epoch, report in heldout.history],
        )

        if run_dir is not None:
            self._save_artifacts(run_dir, train, result)
        return result

