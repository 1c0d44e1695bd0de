# inbound_guard/exceptions.py
"""
Custom exceptions for the inbound IP-limit guard.
"""

from typing import Any


class InboundGuardError(Exception):
    """Base exception for all inbound guard errors."""

    error_code = "guard_error"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# Config exceptions
class ConfigError(InboundGuardError):
    """Base exception for configuration-related errors."""

    error_code = "config_error"


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    error_code = "config_validation_error"

    def __init__(
        self, message: str, field: str | None = None, value: Any = None, **kwargs: Any
    ):
        details = {"field": field, "value": value, **kwargs}
        super().__init__(message, details)
        self.field = field
        self.value = value


# Inbound settings documents
class SettingsParseError(InboundGuardError):
    """Raised when an inbound's settings document cannot be interpreted."""

    error_code = "settings_parse_error"

    def __init__(self, message: str, inbound_id: int | None = None, **kwargs: Any):
        super().__init__(message, {"inbound_id": inbound_id, **kwargs})
        self.inbound_id = inbound_id


# Enforcement run
class LogHarvestError(InboundGuardError):
    """Raised when the access log cannot be read or cleared."""

    error_code = "log_harvest_error"


class SnapshotPersistError(InboundGuardError):
    """Raised when the per-identity IP snapshot cannot be written."""

    error_code = "snapshot_persist_error"
