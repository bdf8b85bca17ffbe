"""Utility functions for PhenoEvo.

General-purpose helpers: logging setup, directory scans, hashing, timing.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, TextIO, Union

logger = logging.getLogger(__name__)

LOG_ENV_VAR = "PHENOEVO_LOG"
LOG_DATE_FORMAT = "%d/%m/%y %H:%M:%S"

_HANDLER_NAME = "phenoevo-console"


def setup_logging(
    level: Union[str, int] = "INFO",
    show_location: bool = True,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """Configure the root logger with a single console handler.

    Records look like ``18/10/26 14:02:11.123 [INFO ] [engine.py:212] msg``.
    The PHENOEVO_LOG environment variable, when set to a known level name,
    overrides ``level``; an unrecognized value is ignored with a warning.
    Calling this again replaces the previously installed handler.

    Returns:
        The installed handler.
    """
    if isinstance(level, str):
        level = level.upper()
    ignored_env = None
    env_level = os.environ.get(LOG_ENV_VAR, "").strip()
    if env_level:
        if isinstance(logging.getLevelName(env_level.upper()), int):
            level = env_level.upper()
        else:
            ignored_env = env_level

    fmt = "%(asctime)s.%(msecs)03d [%(levelname)-5s]"
    if show_location:
        fmt += " [%(filename)s:%(lineno)d]"
    fmt += " %(message)s"

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(fmt, datefmt=LOG_DATE_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    if ignored_env is not None:
        logger.warning("ignoring unrecognized %s=%r, using level %s",
                       LOG_ENV_VAR, ignored_env, logging.getLevelName(root.level))
    return handler


def regex_count(directory: Union[str, Path], pattern: str) -> int:
    """Count entries of ``directory`` whose name matches ``pattern``.

    The pattern is applied with ``re.search``; anchor it (``^...$``) to
    match whole names.

    Raises:
        FileNotFoundError: If the directory doesn't exist.
        NotADirectoryError: If the path is not a directory.
        re.error: If the pattern is invalid.
    """
    regex = re.compile(pattern)
    directory = Path(directory)
    if not directory.exists():
        raise FileNotFoundError(f"Failed to read {directory}: no such directory")
    if not directory.is_dir():
        raise NotADirectoryError(f"Failed to read {directory}: not a directory")
    return sum(1 for entry in directory.iterdir() if regex.search(entry.name))


def file_sha256(path: Union[str, Path]) -> str:
    """Compute SHA-256 hex digest of a file."""
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            h.update(chunk)
    return h.hexdigest()


def config_hash(yaml_text: str) -> str:
    """SHA-256 of a YAML config string (for tagging trajectories)."""
    return hashlib.sha256(yaml_text.encode('utf-8')).hexdigest()


@contextmanager
def timer(label: str = "") -> Generator[None, None, None]:
    """Context-manager timer. Logs elapsed time at INFO on exit."""
    start = time.perf_counter()
    yield
    elapsed = time.perf_counter() - start
    logger.info("[%s] %.3fs", label or "elapsed", elapsed)
