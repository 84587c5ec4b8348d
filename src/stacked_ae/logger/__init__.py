from .logger import logger, add_file_handler, remove_file_handlers, LOGGER_NAME
