"""
Logging helpers shared by the coda_tools scripts.
"""

import logging


def setup_logger(log_file=None, log_level=logging.INFO, name='coda_tools'):
    """Setup logging."""
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Avoid stacking handlers when a script calls this more than once
    if logger.handlers:
        logger.handlers.clear()

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
