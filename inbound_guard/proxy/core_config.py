"""Read-only view of the proxy core's JSON configuration document."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)

# Values the proxy core accepts for "access log disabled".
_DISABLED_LOG_VALUES = frozenset({"", "none"})


class LogConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    access: str | None = None
    error: str | None = None
    loglevel: str | None = None


class ProxyCoreConfig(BaseModel):
    """Only the sections the guard reads are modeled; the rest is kept as extras."""

    model_config = ConfigDict(extra="allow")
    log: LogConfig | None = None

    @property
    def access_log_path(self) -> str:
        if self.log is None or self.log.access is None:
            return ""
        path = self.log.access.strip()
        return "" if path.lower() in _DISABLED_LOG_VALUES else path


def load_proxy_core_config(config_path: str | Path) -> ProxyCoreConfig | None:
    """Parse the proxy core document, returning None when it is missing or invalid."""
    path = Path(config_path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(
            "Proxy core config unreadable",
            event="guard.proxy_config.unreadable",
            path=str(path),
            error=str(e),
        )
        return None
    try:
        return ProxyCoreConfig.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(
            "Proxy core config is not a valid document",
            event="guard.proxy_config.invalid",
            path=str(path),
            error=str(e),
        )
        return None


def get_access_log_path(config_path: str | Path) -> str:
    """Return the ``log.access`` path, or an empty string when logging is off."""
    config = load_proxy_core_config(config_path)
    if config is None:
        return ""
    return config.access_log_path
