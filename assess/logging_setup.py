from __future__ import annotations
import logging

# Chatty third-party loggers kept at WARNING unless asked otherwise
_NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine", "multipart")


def setup_console_logging(level: int | str = logging.DEBUG) -> None:
    """
    Call once at app start. Prints detailed logs to console.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    if root.handlers:
        # already configured (avoid duplicates)
        root.setLevel(level)
        return

    root.setLevel(level)
    h = logging.StreamHandler()
    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    h.setFormatter(fmt)
    root.addHandler(h)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
