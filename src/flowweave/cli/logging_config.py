"""Logging configuration for the flowweave CLI."""

import logging
import os


def configure_logging(verbose: bool) -> None:
    """Configure logging levels based on the verbose flag.

    Called once per command before any work is done.

    Args:
        verbose: If True, show DEBUG+ logs from flowweave. If False, only WARNING+.
    """
    # Tests manage their own logging
    if os.getenv("PYTEST_CURRENT_TEST"):
        return

    level = logging.DEBUG if verbose else logging.WARNING
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(levelname)s: %(name)s: %(message)s")
    else:
        logging.getLogger().setLevel(level)

    logging.getLogger("flowweave").setLevel(level)
