from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import ConfigManager, RelayRuntimeConfig
from .constants import DEFAULT_HOST, DEFAULT_PORT, MAX_RECORD_BYTES, USERNAME_MAX_CHARS
from .logging_config import configure_logging
from .service import RelayService
from .util import default_config_path, expand_path, make_private_dir


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        make_private_dir(Path(cfg_dir))

    content = f"""# chatrelay configuration (TOML)
#
# This file was created on first run. Command line flags override it.

[relay]

# Address and port to listen on. The default only accepts local clients;
# use "0.0.0.0" to accept connections from other hosts.
host = {DEFAULT_HOST!r}
port = {DEFAULT_PORT}
backlog = 50

# Username policy.
# Maximum accepted username length (Unicode characters). 0 disables the limit.
username_max_chars = {USERNAME_MAX_CHARS}

# Longest accepted record (one JSON line) in bytes. Longer lines are
# discarded and answered with an error.
max_record_bytes = {MAX_RECORD_BYTES}

# Read operator commands (/list, /pm, /stats, /quit) from standard input.
console = true

# Note: idle participants are never disconnected; there is no heartbeat.

[logging]

# Log level for chatrelay itself.
level = "INFO"

# Log to stderr.
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatrelay", description="Run a chat relay server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 5000)")
    p.add_argument(
        "--no-console",
        action="store_true",
        help="Do not read operator commands from standard input",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def load_config(config_path: str) -> RelayRuntimeConfig:
    cfg = RelayRuntimeConfig(config_path=config_path)
    if config_path and os.path.exists(config_path):
        mgr = ConfigManager()
        cfg = mgr.apply_config_data(cfg, mgr.load_toml(config_path))
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = expand_path(str(args.config))
    created = False
    if config_path and not os.path.exists(config_path):
        _write_default_config(config_path)
        created = True

    cfg = load_config(config_path)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.no_console:
        cfg = replace(cfg, console=False)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    log = logging.getLogger("chatrelay.cli")
    if created:
        log.info("Created default config at %s", config_path)

    svc = RelayService(cfg)
    try:
        svc.start()
    except OSError as e:
        log.error("The relay can't start on %s:%s: %s", cfg.host, cfg.port, e)
        raise SystemExit(1) from e
    svc.run_forever()


if __name__ == "__main__":
    main()
