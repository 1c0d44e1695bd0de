"""
Shared fixtures: a throwaway panel database, inbound factories, a recording
restart signal and an access log file.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from inbound_guard.db.engine import (
    dispose_session_factory,
    get_session_factory,
    init_schema,
    session_scope,
)
from inbound_guard.db.models import InboundModel
from inbound_guard.enforcement.harvester import LogHarvester
from inbound_guard.enforcement.job import CheckClientIpJob
from tests.utils.factories import client, clients_settings


class RecordingRestartSignal:
    def __init__(self) -> None:
        self.calls = 0

    def set_to_need_restart(self) -> None:
        self.calls += 1


@pytest.fixture
def session_factory(tmp_path):
    factory = get_session_factory(str(tmp_path / "x-ui.db"))
    init_schema(factory)
    yield factory
    dispose_session_factory(factory)


@pytest.fixture
def restart_signal() -> RecordingRestartSignal:
    return RecordingRestartSignal()


@pytest.fixture
def add_inbound(session_factory):
    """Insert an inbound; ``clients`` are (email, limitIp) pairs."""

    def _add(
        clients: list[tuple[str, int | None]] | None = None,
        *,
        enabled: bool = True,
        penalty: int = 0,
        settings: str | None = None,
        remark: str | None = None,
    ) -> int:
        if settings is None:
            settings = clients_settings(*(client(e, limit) for e, limit in clients or []))
        with session_scope(session_factory) as session:
            row = InboundModel(
                remark=remark,
                protocol="vless",
                port=443,
                settings=settings,
                enabled=enabled,
                penalty=penalty,
            )
            session.add(row)
            session.flush()
            return row.id

    return _add


@pytest.fixture
def get_inbound(session_factory):
    def _get(inbound_id: int) -> InboundModel:
        with session_scope(session_factory) as session:
            return session.get(InboundModel, inbound_id)

    return _get


@pytest.fixture
def set_inbound(session_factory):
    """Simulate an operator edit from the dashboard."""

    def _set(inbound_id: int, **values) -> None:
        with session_scope(session_factory) as session:
            row = session.get(InboundModel, inbound_id)
            for key, value in values.items():
                setattr(row, key, value)

    return _set


@pytest.fixture
def access_log(tmp_path) -> Path:
    path = tmp_path / "access.log"
    path.write_text("", encoding="utf-8")
    return path


@pytest.fixture
def make_job(session_factory, restart_signal, access_log):
    def _make(threshold: int = 10, **harvester_kwargs) -> CheckClientIpJob:
        harvester_kwargs.setdefault("access_log_path", str(access_log))
        return CheckClientIpJob(
            session_factory,
            restart_signal,
            LogHarvester(**harvester_kwargs),
            penalty_threshold=threshold,
        )

    return _make
