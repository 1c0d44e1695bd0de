"""Persisted per-identity IP snapshot.

Only the latest harvesting window is kept: each run deletes every row and
inserts the new set inside a single transaction, so dashboard readers see
either the previous snapshot or the new one.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from inbound_guard.db.engine import session_scope
from inbound_guard.db.models import InboundClientIpsModel
from inbound_guard.exceptions import SnapshotPersistError
from inbound_guard.utils import metrics
from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)


def _decode_ips(raw: str | None) -> list[str]:
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    return [str(ip) for ip in value] if isinstance(value, list) else []


class IPSnapshotStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def replace_all(self, snapshot: Mapping[str, Sequence[str]]) -> bool:
        """Swap the stored snapshot for ``snapshot``.

        Returns False on failure. Enforcement that already happened this run
        is not undone; the next run writes a fresh snapshot.
        """
        try:
            self._write(snapshot)
        except SnapshotPersistError as e:
            metrics.snapshot_failures_total.inc()
            logger.error(e.message, event="guard.snapshot.persist_failed", **e.details)
            return False
        return True

    def _write(self, snapshot: Mapping[str, Sequence[str]]) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.execute(delete(InboundClientIpsModel))
                session.add_all(
                    InboundClientIpsModel(client_email=identity, ips=json.dumps(list(ips)))
                    for identity, ips in snapshot.items()
                )
        except SQLAlchemyError as e:
            raise SnapshotPersistError(
                "Could not persist client IP snapshot",
                {"identities": len(snapshot), "error": str(e)},
            ) from e

    def get_ips(self, identity: str) -> list[str]:
        with session_scope(self._session_factory) as session:
            raw = session.execute(
                select(InboundClientIpsModel.ips).where(
                    InboundClientIpsModel.client_email == identity
                )
            ).scalar_one_or_none()
        return _decode_ips(raw)

    def list_all(self) -> dict[str, list[str]]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(InboundClientIpsModel.client_email, InboundClientIpsModel.ips).order_by(
                    InboundClientIpsModel.client_email
                )
            ).all()
        return {email: _decode_ips(ips) for email, ips in rows}

    def clear(self, identity: str) -> bool:
        """Drop one identity's snapshot (the dashboard's "reset IP log" action)."""
        with session_scope(self._session_factory) as session:
            rowcount = session.execute(
                delete(InboundClientIpsModel).where(
                    InboundClientIpsModel.client_email == identity
                )
            ).rowcount
        return rowcount > 0
