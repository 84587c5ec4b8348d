from typing import List, Optional

from omegaconf import DictConfig

from stacked_ae.logger import logger
from stacked_ae.pipelines import PipelineResult, create_pipeline
from stacked_ae.utils.color_utils import bold_red
from stacked_ae.utils.config_utils import load_environment, parse_args, export_args_to_env, load_hydra_config


def run_training_pipeline(cfg: DictConfig) -> PipelineResult:
    pipeline = create_pipeline(cfg)
    return pipeline.run()


def main(argv: Optional[List[str]] = None) -> int:
    # 1. Parse CLI args, leaving the rest to Hydra
    args, hydra_overrides = parse_args(argv)

    # 2. Export CLI args to env
    export_args_to_env(args)

    # 3. Load .env environment
    load_environment()

    # 4. Compose config and run
    cfg = load_hydra_config(hydra_overrides=hydra_overrides)
    try:
        result = run_training_pipeline(cfg=cfg)
    except Exception as ex:
        logger.error(bold_red(f"Training pipeline failed: {ex}"), exc_info=True)
        raise SystemExit(1) from ex

    logger.info(
        f"Test accuracy: {result.pre_tune_report.accuracy:.4f} (stacked) -> "
        f"{result.post_tune_report.accuracy:.4f} (fine-tuned)"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
