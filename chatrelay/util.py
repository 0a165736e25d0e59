from __future__ import annotations

import os
from pathlib import Path

from .constants import USERNAME_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def default_config_path() -> Path:
    """``$CHATRELAY_HOME/chatrelay.toml``, falling back to ``~/.chatrelay``."""
    home = os.environ.get("CHATRELAY_HOME") or os.path.join("~", ".chatrelay")
    return Path(expand_path(home)) / "chatrelay.toml"


def make_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        pass


def normalize_username(value, max_chars: int = USERNAME_MAX_CHARS) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    # Names are printed on terminals and in logs; reject control characters.
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in s):
        return None

    return s
