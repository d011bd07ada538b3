import logging
import os
import sys


class _StderrHandler(logging.StreamHandler):
    """StreamHandler bound to whatever sys.stderr is at emit time."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


def setup_logger(level: int = logging.INFO, name: str = "photoconv") -> logging.Logger:
    """Create or update the project logger.

    - Respects the PHOTOCONV_LOG_LEVEL env override on every call.
    - Ensures there is exactly one stderr handler on the base logger and
      updates its formatter instead of adding another one.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("PHOTOCONV_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(env_level, level)
    logger.setLevel(level)

    stream_handler = next((h for h in logger.handlers if isinstance(h, _StderrHandler)), None)
    if stream_handler is None:
        stream_handler = _StderrHandler()
        logger.addHandler(stream_handler)

    fmt = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    stream_handler.setFormatter(fmt)

    # Do not propagate beyond the project logger
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = setup_logger()
    if not name:
        return base
    # "photoconv_backend.store" -> "photoconv.store"
    return base.getChild(name.rsplit(".", 1)[-1])
