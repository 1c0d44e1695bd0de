"""Centralized default configuration values for the inbound guard."""

from __future__ import annotations

import configparser

SECTION_DATABASE = "database"
SECTION_PROXY = "proxy"
SECTION_ENFORCEMENT = "enforcement"
SECTION_LOGGING = "logging"

ENV_CONFIG_PATH = "INBOUND_GUARD_CONFIG"
ENV_PREFIX = "INBOUND_GUARD"

DEFAULT_CONFIG_FILE = "config/inbound_guard.conf"
DEFAULT_DB_PATH = "db/x-ui.db"  # panel database shared with the dashboard
DEFAULT_DB_BUSY_TIMEOUT_MS = 5000  # wait for the dashboard's write lock
DEFAULT_PROXY_CONFIG_PATH = "bin/config.json"  # proxy core JSON document
DEFAULT_INTERVAL_SECONDS = 30  # scheduler cadence
DEFAULT_GRACE_CYCLES = 5  # penalty length in nominal intervals
DEFAULT_TICKS_PER_CYCLE = 2  # ticks per nominal interval (legacy doubling)
DEFAULT_SHUTDOWN_TIMEOUT = 10.0  # seconds to wait for an in-flight run
DEFAULT_EXCLUDED_IPS = "127.0.0.1,1.1.1.1"  # loopback and liveness probe
DEFAULT_LOG_LEVEL = "INFO"

DEFAULTS: dict[str, dict[str, str]] = {
    SECTION_DATABASE: {
        "path": DEFAULT_DB_PATH,
        "busy_timeout_ms": str(DEFAULT_DB_BUSY_TIMEOUT_MS),
    },
    SECTION_PROXY: {"config_path": DEFAULT_PROXY_CONFIG_PATH},
    SECTION_ENFORCEMENT: {
        "interval_seconds": str(DEFAULT_INTERVAL_SECONDS),
        "grace_cycles": str(DEFAULT_GRACE_CYCLES),
        "ticks_per_cycle": str(DEFAULT_TICKS_PER_CYCLE),
        "shutdown_timeout_seconds": str(DEFAULT_SHUTDOWN_TIMEOUT),
        "excluded_ips": DEFAULT_EXCLUDED_IPS,
    },
    SECTION_LOGGING: {"level": DEFAULT_LOG_LEVEL},
}


def populate_defaults(config: configparser.ConfigParser) -> None:
    """Fill in every default section and key that ``config`` does not already set."""
    for section, values in DEFAULTS.items():
        if not config.has_section(section):
            config.add_section(section)
        for key, value in values.items():
            if not config.has_option(section, key):
                config.set(section, key, value)
