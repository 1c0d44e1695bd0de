"""Collaborators on the proxy side: core config, inbound settings, restart flag."""

from .core_config import ProxyCoreConfig, get_access_log_path, load_proxy_core_config
from .service import ProxyService, RestartSignal
from .settings import ClientSettings, InboundSettings, parse_inbound_settings

__all__ = [
    "ClientSettings",
    "InboundSettings",
    "ProxyCoreConfig",
    "ProxyService",
    "RestartSignal",
    "get_access_log_path",
    "load_proxy_core_config",
    "parse_inbound_settings",
]
