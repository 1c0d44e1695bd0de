"""End-to-end runs of the client IP check against a real SQLite database."""

import json

import pytest

from inbound_guard.enforcement.snapshots import IPSnapshotStore
from inbound_guard.exceptions import SnapshotPersistError
from tests.utils.factories import access_line, write_access_log

pytestmark = pytest.mark.integration


def test_breach_disables_inbound_and_records_snapshot(
    make_job, add_inbound, get_inbound, restart_signal, access_log, session_factory
):
    inbound_id = add_inbound([("a@x", 2)])
    write_access_log(
        access_log,
        [
            access_line("10.0.0.1", "a@x"),
            access_line("10.0.0.2", "a@x"),
            access_line("127.0.0.1", "a@x"),
            access_line("10.0.0.3", "a@x"),
            access_line("10.0.0.1", "a@x", port=40000),
        ],
    )

    report = make_job().run()

    row = get_inbound(inbound_id)
    assert (row.enabled, row.penalty) == (False, 0)
    assert restart_signal.calls == 1
    assert report.breached == [inbound_id]
    assert IPSnapshotStore(session_factory).get_ips("a@x") == [
        "10.0.0.1",
        "10.0.0.2",
        "10.0.0.3",
    ]
    assert access_log.read_text() == ""


def test_within_limit_is_left_alone(make_job, add_inbound, get_inbound, restart_signal, access_log):
    inbound_id = add_inbound([("a@x", 2)])
    write_access_log(access_log, [access_line("10.0.0.1", "a@x"), access_line("10.0.0.2", "a@x")])

    report = make_job().run()

    assert get_inbound(inbound_id).enabled is True
    assert report.breached == []
    assert restart_signal.calls == 0


def test_unlimited_client_is_never_disabled(make_job, add_inbound, get_inbound, access_log):
    inbound_id = add_inbound([("a@x", None)])
    write_access_log(access_log, [access_line(f"10.0.{i}.1", "a@x") for i in range(50)])

    make_job().run()

    assert get_inbound(inbound_id).enabled is True


def test_only_one_breach_per_inbound_per_run(make_job, add_inbound, restart_signal, access_log):
    inbound_id = add_inbound([("a@x", 1), ("b@x", 1)])
    write_access_log(
        access_log,
        [
            access_line("10.0.0.1", "a@x"),
            access_line("10.0.0.2", "a@x"),
            access_line("10.0.1.1", "b@x"),
            access_line("10.0.1.2", "b@x"),
        ],
    )

    report = make_job().run()

    assert report.breached == [inbound_id]
    assert restart_signal.calls == 1


def test_grace_period_then_reactivation(make_job, add_inbound, get_inbound, restart_signal):
    """With a 10-tick threshold the inbound re-opens on the 11th run, signalling once."""
    inbound_id = add_inbound([("a@x", 2)], enabled=False, penalty=0)
    job = make_job(threshold=10)

    for expected in range(1, 11):
        report = job.run()
        row = get_inbound(inbound_id)
        assert (row.enabled, row.penalty) == (False, expected)
        assert report.reactivated == []
    assert restart_signal.calls == 0

    report = job.run()
    row = get_inbound(inbound_id)
    assert report.reactivated == [inbound_id]
    assert (row.enabled, row.penalty) == (True, -1)
    assert restart_signal.calls == 1

    job.run()
    assert get_inbound(inbound_id).penalty == 0
    assert restart_signal.calls == 1


def test_reactivated_inbound_is_not_rebreached_in_same_run(
    make_job, add_inbound, get_inbound, restart_signal, access_log
):
    inbound_id = add_inbound([("a@x", 1)], enabled=False, penalty=10)
    write_access_log(access_log, [access_line("10.0.0.1", "a@x"), access_line("10.0.0.2", "a@x")])
    job = make_job(threshold=10)

    report = job.run()

    assert report.reactivated == [inbound_id]
    assert report.breached == []
    assert report.snapshot == {"a@x": ["10.0.0.1", "10.0.0.2"]}
    row = get_inbound(inbound_id)
    assert (row.enabled, row.penalty) == (True, -1)
    assert restart_signal.calls == 1

    # Settled on the next run, after which the limit applies again
    write_access_log(access_log, [access_line("10.0.0.1", "a@x"), access_line("10.0.0.2", "a@x")])
    report = job.run()

    assert report.settled == 1
    assert report.breached == [inbound_id]
    row = get_inbound(inbound_id)
    assert (row.enabled, row.penalty) == (False, 0)
    assert restart_signal.calls == 2


def test_clients_of_penalized_inbound_are_not_counted(
    make_job, add_inbound, get_inbound, access_log, session_factory
):
    penalized = add_inbound([("a@x", 1)], enabled=False, penalty=3)
    write_access_log(access_log, [access_line(f"10.0.0.{i}", "a@x") for i in range(1, 6)])

    report = make_job().run()

    assert report.excluded_identities == ["a@x"]
    assert "a@x" not in report.snapshot
    assert IPSnapshotStore(session_factory).list_all() == {}
    assert get_inbound(penalized).penalty == 4


def test_snapshot_holds_only_current_window(make_job, add_inbound, access_log, session_factory):
    add_inbound([("a@x", 5), ("b@x", 5)])
    job = make_job()

    write_access_log(access_log, [access_line("10.0.0.1", "a@x"), access_line("10.0.0.2", "b@x")])
    job.run()
    write_access_log(access_log, [access_line("10.0.0.3", "b@x")])
    job.run()

    assert IPSnapshotStore(session_factory).list_all() == {"b@x": ["10.0.0.3"]}


def test_unresolved_identities_are_recorded_but_cannot_breach(
    make_job, access_log, session_factory, restart_signal
):
    write_access_log(access_log, [access_line(f"10.0.0.{i}", "ghost@x") for i in range(1, 4)])

    report = make_job().run()

    assert report.unresolved_identities == ["ghost@x"]
    assert IPSnapshotStore(session_factory).get_ips("ghost@x") == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    assert restart_signal.calls == 0


def test_missing_log_path_still_ticks_and_keeps_snapshot(
    make_job, add_inbound, get_inbound, session_factory, tmp_path
):
    IPSnapshotStore(session_factory).replace_all({"old@x": ["10.0.0.1"]})
    penalized = add_inbound([("a@x", 1)], enabled=False, penalty=0)
    job = make_job(access_log_path=None, proxy_config_path=tmp_path / "config.json")

    report = job.run()

    assert report.harvested is False
    assert report.outcome == "no_log"
    assert get_inbound(penalized).penalty == 1
    assert IPSnapshotStore(session_factory).list_all() == {"old@x": ["10.0.0.1"]}


def test_log_path_taken_from_proxy_config(make_job, add_inbound, get_inbound, tmp_path, access_log):
    proxy_config = tmp_path / "config.json"
    proxy_config.write_text(json.dumps({"log": {"access": str(access_log)}}))
    inbound_id = add_inbound([("a@x", 1)])
    write_access_log(access_log, [access_line("10.0.0.1", "a@x"), access_line("10.0.0.2", "a@x")])

    make_job(access_log_path=None, proxy_config_path=proxy_config).run()

    assert get_inbound(inbound_id).enabled is False


def test_undecodable_proxy_config_is_a_noop_not_a_failure(
    make_job, add_inbound, get_inbound, tmp_path
):
    proxy_config = tmp_path / "config.json"
    proxy_config.write_bytes(b"\xff\xfe{}")
    penalized = add_inbound([("a@x", 1)], enabled=False, penalty=0)

    report = make_job(access_log_path=None, proxy_config_path=proxy_config).run()

    assert report.failed is False
    assert report.outcome == "no_log"
    assert get_inbound(penalized).penalty == 1


def test_snapshot_failure_does_not_undo_breach(
    make_job, add_inbound, get_inbound, access_log, monkeypatch
):
    inbound_id = add_inbound([("a@x", 1)])
    write_access_log(access_log, [access_line("10.0.0.1", "a@x"), access_line("10.0.0.2", "a@x")])
    job = make_job()

    def _boom(snapshot):
        raise SnapshotPersistError("Could not persist client IP snapshot", {"identities": 1})

    monkeypatch.setattr(job.snapshots, "_write", _boom)
    report = job.run()

    assert report.snapshot_persisted is False
    assert report.failed is False
    assert get_inbound(inbound_id).enabled is False


def test_unexpected_error_is_contained(make_job, monkeypatch):
    job = make_job()

    def _explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(job.penalty, "tick", _explode)
    report = job.run()

    assert report.failed is True
    assert report.error == "boom"
    # Lock was released; the next run proceeds.
    monkeypatch.undo()
    assert job.run().failed is False


def test_overlapping_run_is_skipped(make_job):
    job = make_job()
    job._run_lock.acquire()
    try:
        report = job.run()
        assert report.skipped is True
        assert job.wait_idle(0.05) is False
    finally:
        job._run_lock.release()
    assert job.wait_idle(0.05) is True


def test_manual_reenable_with_exempt_counter_is_respected(
    make_job, add_inbound, get_inbound, restart_signal
):
    inbound_id = add_inbound([("a@x", 1)], enabled=False, penalty=-1)
    job = make_job(threshold=0)
    for _ in range(3):
        job.run()
    row = get_inbound(inbound_id)
    assert (row.enabled, row.penalty) == (False, -1)
    assert restart_signal.calls == 0
