"""Identity to (inbound, IP limit) resolution.

An index is built once per run from every inbound's typed client list.
Inbounds are visited in ascending id order, so when the same identity is
listed by several inbounds the first-registered inbound owns it.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from inbound_guard.db.models import PENALTY_EXEMPT, InboundModel
from inbound_guard.exceptions import SettingsParseError
from inbound_guard.proxy.settings import parse_inbound_settings
from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedIdentity:
    identity: str
    inbound_id: int
    limit_ip: int
    enabled: bool
    penalty: int

    @property
    def unlimited(self) -> bool:
        return self.limit_ip == 0

    @property
    def reactivated(self) -> bool:
        """Enabled with the -1 marker: re-opened by this run's tick, not yet settled."""
        return self.enabled and self.penalty == PENALTY_EXEMPT

    def is_breached(self, ip_count: int) -> bool:
        """True when ``ip_count`` distinct IPs exceed a non-zero limit."""
        return not self.unlimited and ip_count > self.limit_ip


class IdentityLimitResolver:
    """Maps each client identity to its owning inbound and ``limitIp``."""

    def __init__(self) -> None:
        self._index: dict[str, ResolvedIdentity] = {}
        self.skipped_inbounds: list[int] = []

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, identity: object) -> bool:
        return identity in self._index

    @classmethod
    def from_inbounds(cls, inbounds: Iterable[InboundModel]) -> IdentityLimitResolver:
        resolver = cls()
        for inbound in sorted(inbounds, key=lambda row: row.id):
            resolver._add_inbound(inbound)
        return resolver

    @classmethod
    def load(cls, session: Session) -> IdentityLimitResolver:
        rows = session.execute(select(InboundModel).order_by(InboundModel.id)).scalars()
        return cls.from_inbounds(rows)

    def _add_inbound(self, inbound: InboundModel) -> None:
        try:
            settings = parse_inbound_settings(inbound.settings, inbound_id=inbound.id)
        except SettingsParseError as e:
            self.skipped_inbounds.append(inbound.id)
            logger.warning(
                "Skipping inbound with unparseable settings",
                event="guard.resolver.settings_invalid",
                inbound_id=inbound.id,
                error=e.message,
            )
            return

        for client in settings.clients:
            if not client.email:
                continue
            owner = self._index.get(client.email)
            if owner is not None:
                if owner.inbound_id != inbound.id:
                    logger.debug(
                        "Identity already owned by an earlier inbound",
                        event="guard.resolver.duplicate_identity",
                        identity=client.email,
                        owner_inbound_id=owner.inbound_id,
                        ignored_inbound_id=inbound.id,
                    )
                continue
            self._index[client.email] = ResolvedIdentity(
                identity=client.email,
                inbound_id=inbound.id,
                limit_ip=client.limit_ip,
                enabled=bool(inbound.enabled),
                penalty=inbound.penalty,
            )

    def resolve(self, identity: str) -> ResolvedIdentity | None:
        return self._index.get(identity)
