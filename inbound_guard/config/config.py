"""
Configuration management for the inbound guard.

Load order: config file, then environment variables for keys the file does
not set, then built-in defaults. The merged result is validated with the
pydantic schema before anything else is constructed from it.
"""

import configparser
import os
from typing import Any

from pydantic import ValidationError

from inbound_guard.exceptions import ConfigValidationError
from inbound_guard.utils.logger import get_logger

from .defaults import (
    DEFAULT_CONFIG_FILE,
    DEFAULTS,
    ENV_CONFIG_PATH,
    ENV_PREFIX,
    SECTION_DATABASE,
    SECTION_ENFORCEMENT,
    SECTION_LOGGING,
    SECTION_PROXY,
    populate_defaults,
)
from .schema import DatabaseConfigSchema, EnforcementConfigSchema, GuardConfigSchema

logger = get_logger(__name__)


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"


def apply_env_overrides(config: configparser.ConfigParser) -> None:
    """Copy ``INBOUND_GUARD_<SECTION>_<KEY>`` values for keys the file leaves unset."""
    for section, keys in DEFAULTS.items():
        for key in keys:
            value = os.environ.get(env_var_name(section, key))
            if value is None:
                continue
            if not config.has_section(section):
                config.add_section(section)
            if config.has_option(section, key):
                logger.debug(
                    "Skipping environment override because config already defines the value",
                    event="guard.config.env_override_skipped",
                    section=section,
                    key=key,
                )
                continue
            config.set(section, key, value)
            logger.debug(
                "Applied environment override for config key",
                event="guard.config.env_override_applied",
                section=section,
                key=key,
            )


class GuardConfig:
    """Inbound guard configuration manager."""

    def __init__(self, config_file: str = DEFAULT_CONFIG_FILE):
        self.config_file = os.environ.get(ENV_CONFIG_PATH) or config_file
        self.config = configparser.ConfigParser(interpolation=None)
        self._load_config()
        self.schema = self.validate()

    def _load_config(self) -> None:
        loaded = self.config.read(self.config_file, encoding="utf-8")
        apply_env_overrides(self.config)
        populate_defaults(self.config)
        if not loaded:
            logger.warning(
                "Configuration file not found, using defaults",
                event="guard.config.file_missing",
                path=self.config_file,
            )
            try:
                self.save_config()
            except OSError as e:
                logger.error(
                    "Failed to save initial config",
                    event="guard.config.save.error",
                    path=self.config_file,
                    error=str(e),
                )
        else:
            logger.info(
                "Configuration loaded successfully",
                event="guard.config.loaded",
                path=self.config_file,
            )

    def save_config(self) -> None:
        cfg_dir = os.path.dirname(self.config_file)
        if cfg_dir:
            os.makedirs(cfg_dir, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as fh:
            self.config.write(fh)

    def as_dict(self) -> dict[str, dict[str, str]]:
        return {section: dict(self.config.items(section)) for section in self.config.sections()}

    def validate(self) -> GuardConfigSchema:
        """Validate the merged configuration, raising ``ConfigValidationError``."""
        try:
            return GuardConfigSchema.model_validate(self.as_dict())
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigValidationError(
                f"Invalid configuration: {first.get('msg')}",
                field=field or None,
                value=first.get("input"),
                error_count=e.error_count(),
            ) from e

    # Getters
    def get_database_path(self) -> str:
        return os.path.expandvars(self.config.get(SECTION_DATABASE, "path"))

    def get_database_config(self) -> DatabaseConfigSchema:
        return self.schema.database

    def get_proxy_config_path(self) -> str:
        return os.path.expandvars(self.config.get(SECTION_PROXY, "config_path"))

    def get_enforcement_config(self) -> EnforcementConfigSchema:
        return self.schema.enforcement

    def get_log_level(self) -> str:
        return self.schema.logging.level

    def get_config_summary(self) -> dict[str, Any]:
        enforcement = self.get_enforcement_config()
        return {
            SECTION_DATABASE: {
                "path": self.get_database_path(),
                "busy_timeout_ms": self.get_database_config().busy_timeout_ms,
            },
            SECTION_PROXY: {"config_path": self.get_proxy_config_path()},
            SECTION_ENFORCEMENT: {
                **enforcement.model_dump(),
                "penalty_threshold": enforcement.penalty_threshold,
            },
            SECTION_LOGGING: {"level": self.get_log_level()},
        }
