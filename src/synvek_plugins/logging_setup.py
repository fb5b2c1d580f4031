# src/synvek_plugins/logging_setup.py
"""
Host-side logging.

All handlers write to stderr or a file: stdout carries CLI output on the host
and the frame channel inside guests.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Guest stderr lines are relayed through this logger at DEBUG.
GUEST_LOGGER = "synvek_plugins.guest"

# Held at WARNING unless the runtime itself logs at DEBUG.
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def setup_logging(config):
    """
    Configures the root logger from `config.logging`.

    Handlers carry no level of their own, so `guest_level` can open up guest
    output while the host stays at INFO.
    """
    log_settings = config.logging
    level = log_settings.level.upper()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_settings.log_to_file:
        log_file_path = Path(log_settings.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file_path,
                maxBytes=log_settings.rotation_size_mb * 1024 * 1024,
                backupCount=log_settings.rotation_backup_count,
            )
        )

    formatter = logging.Formatter(log_settings.format)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    guest_level = log_settings.guest_level.upper() if log_settings.guest_level else logging.NOTSET
    logging.getLogger(GUEST_LOGGER).setLevel(guest_level)

    third_party_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    root.debug(f"Logging configured (level={level}, guest_level={log_settings.guest_level})")
