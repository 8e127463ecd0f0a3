"""
Logging utilities for the server provisioner.
"""

import logging
import sys


def setup_logging(
    verbose: bool = False, log_file: str = "server-provisioner.log"
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging, including every API request
        log_file: Path to log file

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(threadName)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )

    # urllib3 logs every connection at DEBUG; keep it out of verbose runs.
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logging.getLogger(__name__)
