import logging
from faceattend.config.paths import LOG_DIR

LOGGER_NAME = "AttendanceSystem"


def setup_logger():
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    # Every component calls this; attach the file handler only once.
    if not logger.handlers:
        file_handler = logging.FileHandler(LOG_DIR / "system.log")
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger
