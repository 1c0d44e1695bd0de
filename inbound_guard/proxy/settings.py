"""Typed view of an inbound's ``settings`` JSON document.

The dashboard stores protocol settings as free-form JSON. Only the client
list and each client's ``email``/``limitIp`` matter for IP limiting; every
other field is preserved untouched in the model's extras.
"""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbound_guard.exceptions import SettingsParseError
from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)


class ClientSettings(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    email: str = ""
    limit_ip: int = Field(default=0, ge=0, alias="limitIp")


class InboundSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    clients: list[ClientSettings] = Field(default_factory=list)

    def emails(self) -> list[str]:
        return [client.email for client in self.clients if client.email]


def parse_inbound_settings(raw: str | None, inbound_id: int | None = None) -> InboundSettings:
    """Parse a settings document.

    A document that is not a JSON object, or whose ``clients`` is not a list,
    raises ``SettingsParseError``. Individual malformed clients are dropped
    with a warning so the remaining clients stay enforceable.
    """
    try:
        doc = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise SettingsParseError(
            f"settings is not valid JSON: {e.msg}", inbound_id=inbound_id
        ) from e
    if not isinstance(doc, dict):
        raise SettingsParseError("settings must be a JSON object", inbound_id=inbound_id)

    raw_clients = doc.pop("clients", None) or []
    if not isinstance(raw_clients, list):
        raise SettingsParseError("settings.clients must be a list", inbound_id=inbound_id)

    clients: list[ClientSettings] = []
    for index, entry in enumerate(raw_clients):
        try:
            clients.append(ClientSettings.model_validate(entry))
        except ValidationError as e:
            logger.warning(
                "Skipping malformed client entry",
                event="guard.settings.client_invalid",
                inbound_id=inbound_id,
                index=index,
                error=str(e),
            )
    return InboundSettings(clients=clients, **doc)
