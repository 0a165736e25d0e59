from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import DEFAULT_HOST, DEFAULT_PORT, MAX_RECORD_BYTES, USERNAME_MAX_CHARS


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backlog: int = 50
    username_max_chars: int = USERNAME_MAX_CHARS
    max_record_bytes: int = MAX_RECORD_BYTES
    console: bool = True
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


class ConfigManager:
    """Loads the TOML config file and folds it into a RelayRuntimeConfig."""

    _LOGGING_KEYS = {
        "level": "log_level",
        "console": "log_console",
        "file": "log_file",
        "format": "log_format",
        "datefmt": "log_datefmt",
    }

    _INT_KEYS = ("port", "backlog", "username_max_chars", "max_record_bytes")

    def load_toml(self, path: str) -> dict[str, Any]:
        from tomlkit import parse

        with open(path, encoding="utf-8") as f:
            doc = parse(f.read())
        data = doc.unwrap()
        return data if isinstance(data, dict) else {}

    def apply_config_data(
        self, base: RelayRuntimeConfig, data: dict[str, Any]
    ) -> RelayRuntimeConfig:
        relay = data.get("relay") if isinstance(data, dict) else None
        if isinstance(relay, dict):
            data = {**data, **relay}

        log_table = data.get("logging") if isinstance(data, dict) else None
        if isinstance(log_table, dict):
            mapped = {
                field: log_table[key]
                for key, field in self._LOGGING_KEYS.items()
                if key in log_table
            }
            data = {**data, **mapped}

        allowed = set(asdict(base).keys())
        # This identifies where the config came from; do not let the file override it.
        allowed.discard("config_path")
        updates = {k: v for k, v in data.items() if k in allowed}

        for key in self._INT_KEYS:
            if key in updates:
                try:
                    updates[key] = int(updates[key])
                except (TypeError, ValueError) as e:
                    raise ValueError(f"config key {key!r} must be an integer") from e

        for key in ("log_file", "log_datefmt"):
            if key in updates and updates[key] == "":
                updates[key] = None

        return replace(base, **updates) if updates else base
