from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, TextIO

from .config import RelayRuntimeConfig

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"
    if text.isdigit():
        return int(text)

    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default


def _optional(value: Any) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(value)


def _file_handler(path: str) -> logging.Handler:
    p = Path(os.path.expanduser(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        # Logs carry usernames and message text.
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Install root handlers for the relay or the client.

    Console output goes to ``stream`` (stderr by default) so it never mixes
    with chat lines the client prints to stdout. Calling this again replaces
    the handlers installed by the previous call.
    """

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler(stream or sys.stderr))

    log_file = _optional(override_file) or _optional(cfg.log_file)
    if log_file:
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=_optional(cfg.log_format) or _DEFAULT_FORMAT,
        datefmt=_optional(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)

    root.setLevel(_parse_level(override_level or cfg.log_level, logging.INFO))
    logging.captureWarnings(True)
