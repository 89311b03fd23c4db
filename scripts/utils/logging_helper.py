"""Shared logging setup for the delay report entry points."""
import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_logging(level: int | str = logging.INFO, fmt: str = LOG_FORMAT) -> None:
    """Send log records at ``level`` and above to stdout.

    ``level`` may be a logging constant or a name such as ``"DEBUG"``.
    Existing root handlers are replaced so repeated runs in one process
    (tests, notebooks) do not stack handlers.
    """
    if isinstance(level, str):
        name = level
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
