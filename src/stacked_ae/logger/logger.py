import logging
from pathlib import Path
from datetime import datetime

LOGGER_NAME = "stacked_ae"

_FORMAT = "[%(asctime)s] - %(levelname)s (%(filename)s:%(lineno)d) - %(message)s"

logger = logging.getLogger(LOGGER_NAME)

# Console only by default
if not logger.hasHandlers():
    logger.setLevel(logging.INFO)
    logger.propagate = False

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(_FORMAT))

    logger.addHandler(stream_handler)


def add_file_handler(log_dir: Path) -> Path:
    """
    Adds a FileHandler writing into a timestamped file inside `log_dir`.

    Returns:
        Path: The log file being written.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{datetime.now().strftime('%m_%d_%Y_%H_%M_%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(_FORMAT))

    logger.addHandler(file_handler)
    return log_file


def remove_file_handlers() -> None:
    """Detaches and closes every FileHandler previously added to the logger."""
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
