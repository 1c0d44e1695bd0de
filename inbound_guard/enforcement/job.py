"""The periodic client-IP check.

One run:

1. tick the penalty state machine (grace counters, reactivation);
2. harvest and clear the access log;
3. group observations per identity, dropping identities whose inbound is
   still serving a penalty;
4. disable the inbound of every identity above its IP limit;
5. replace the stored snapshot with this run's groups.

Runs are serialized by a lock. A run that finds another in flight returns
immediately with ``skipped`` set.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session, sessionmaker

from inbound_guard.config.config import GuardConfig
from inbound_guard.db.engine import session_scope
from inbound_guard.proxy.service import RestartSignal
from inbound_guard.utils import metrics
from inbound_guard.utils.logger import get_logger, logging_context

from .harvester import LogHarvester, aggregate
from .penalty import InboundPenaltyStateMachine
from .resolver import IdentityLimitResolver
from .snapshots import IPSnapshotStore

logger = get_logger(__name__)


@dataclass
class RunReport:
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    failed: bool = False
    error: str | None = None
    harvested: bool = False
    settled: int = 0
    ticked: list[int] = field(default_factory=list)
    reactivated: list[int] = field(default_factory=list)
    breached: list[int] = field(default_factory=list)
    excluded_identities: list[str] = field(default_factory=list)
    unresolved_identities: list[str] = field(default_factory=list)
    observations: int = 0
    snapshot: dict[str, list[str]] = field(default_factory=dict)
    snapshot_persisted: bool = False

    @property
    def outcome(self) -> str:
        if self.skipped:
            return "skipped"
        if self.failed:
            return "failed"
        return "ok" if self.harvested else "no_log"


class CheckClientIpJob:
    """Limits distinct source IPs per client by toggling its inbound."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        proxy_service: RestartSignal,
        harvester: LogHarvester,
        *,
        penalty_threshold: int,
    ) -> None:
        self._session_factory = session_factory
        self.proxy_service = proxy_service
        self.harvester = harvester
        self.penalty = InboundPenaltyStateMachine(
            session_factory, proxy_service, penalty_threshold
        )
        self.snapshots = IPSnapshotStore(session_factory)
        self._run_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: GuardConfig,
        session_factory: sessionmaker[Session],
        proxy_service: RestartSignal,
    ) -> CheckClientIpJob:
        enforcement = config.get_enforcement_config()
        harvester = LogHarvester(
            config.get_proxy_config_path(), excluded_ips=enforcement.excluded_ips
        )
        return cls(
            session_factory,
            proxy_service,
            harvester,
            penalty_threshold=enforcement.penalty_threshold,
        )

    def run(self) -> RunReport:
        report = RunReport(run_id=uuid.uuid4().hex[:12], started_at=datetime.now(UTC))
        if not self._run_lock.acquire(blocking=False):
            report.skipped = True
            logger.debug("Previous client IP check still running", event="guard.job.skipped")
            metrics.runs_total.labels(outcome=report.outcome).inc()
            return report
        try:
            with logging_context(run_id=report.run_id):
                logger.debug("Check client IP job...", event="guard.job.started")
                try:
                    self._run(report)
                except Exception as e:
                    report.failed = True
                    report.error = str(e)
                    logger.error(
                        "Client IP check failed; retrying next cycle",
                        event="guard.job.failed",
                        exc_info=True,
                    )
                report.finished_at = datetime.now(UTC)
                self._log_summary(report)
        finally:
            self._run_lock.release()
        metrics.runs_total.labels(outcome=report.outcome).inc()
        return report

    def wait_idle(self, timeout: float) -> bool:
        """Block until no run is in flight, up to ``timeout`` seconds."""
        if not self._run_lock.acquire(timeout=max(timeout, 0)):
            return False
        self._run_lock.release()
        return True

    def _run(self, report: RunReport) -> None:
        tick = self.penalty.tick()
        report.settled = tick.settled
        report.ticked = tick.ticked
        report.reactivated = tick.reactivated
        report.excluded_identities = sorted(tick.excluded_identities)

        harvest = self.harvester.harvest()
        if harvest is None:
            return
        report.harvested = True

        grouped = aggregate(harvest.observations, tick.excluded_identities)
        report.snapshot = grouped
        report.observations = sum(len(ips) for ips in grouped.values())
        metrics.observations_total.inc(report.observations)
        metrics.observed_identities.set(len(grouped))

        with session_scope(self._session_factory) as session:
            resolver = IdentityLimitResolver.load(session)

        for identity, ips in grouped.items():
            owner = resolver.resolve(identity)
            if owner is None:
                report.unresolved_identities.append(identity)
                continue
            if owner.inbound_id in report.breached:
                continue
            if owner.reactivated or owner.inbound_id in report.reactivated:
                logger.debug(
                    "Skipping limit check for inbound reactivated this run",
                    event="guard.job.reactivated_skip",
                    identity=identity,
                    inbound_id=owner.inbound_id,
                )
                continue
            if owner.enabled and owner.is_breached(len(ips)):
                logger.info(
                    "Client exceeded its IP limit",
                    event="guard.job.limit_exceeded",
                    identity=identity,
                    inbound_id=owner.inbound_id,
                    limit_ip=owner.limit_ip,
                    ip_count=len(ips),
                )
                if self.penalty.breach(owner.inbound_id):
                    report.breached.append(owner.inbound_id)

        report.snapshot_persisted = self.snapshots.replace_all(grouped)

    @staticmethod
    def _log_summary(report: RunReport) -> None:
        logger.info(
            "Client IP check finished",
            event="guard.job.finished",
            outcome=report.outcome,
            identities=len(report.snapshot),
            observations=report.observations,
            ticked=len(report.ticked),
            reactivated=report.reactivated,
            breached=report.breached,
            unresolved=len(report.unresolved_identities),
            snapshot_persisted=report.snapshot_persisted,
        )
