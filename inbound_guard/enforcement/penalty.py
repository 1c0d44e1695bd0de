"""Grace-period state machine over inbound ``enable``/``penalty``.

States, per inbound:

* ACTIVE: enabled, penalty 0 (or -1 right after a reactivation)
* EXEMPT: disabled, penalty -1; an operator owns it, never touched here
* PENALIZED: disabled, 0 <= penalty < threshold; one tick added per run
* READY: disabled, penalty >= threshold; re-enabled on the next tick

Every write is an ``UPDATE ... WHERE`` on the expected prior state. The
dashboard edits the same rows, and a zero rowcount means the operator got
there first, in which case the row is left alone.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from inbound_guard.db.engine import session_scope
from inbound_guard.db.models import PENALTY_BASELINE, PENALTY_EXEMPT, InboundModel
from inbound_guard.exceptions import SettingsParseError
from inbound_guard.proxy.service import RestartSignal
from inbound_guard.proxy.settings import parse_inbound_settings
from inbound_guard.utils import metrics
from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)


class InboundState(enum.Enum):
    ACTIVE = "active"
    EXEMPT = "exempt"
    PENALIZED = "penalized"
    READY = "ready_to_reactivate"


def classify(enabled: bool, penalty: int, threshold: int) -> InboundState:
    if enabled:
        return InboundState.ACTIVE
    if penalty <= PENALTY_EXEMPT:
        return InboundState.EXEMPT
    if penalty < threshold:
        return InboundState.PENALIZED
    return InboundState.READY


@dataclass
class TickResult:
    settled: int = 0
    ticked: list[int] = field(default_factory=list)
    reactivated: list[int] = field(default_factory=list)
    conflicts: list[int] = field(default_factory=list)
    excluded_identities: set[str] = field(default_factory=set)


class InboundPenaltyStateMachine:
    """Owns automatic disable, grace counting and re-enable of inbounds.

    ``threshold`` is the grace length in ticks; one tick happens per run.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        restart_signal: RestartSignal,
        threshold: int,
    ) -> None:
        if threshold < 0:
            raise ValueError("penalty threshold must be >= 0")
        self._session_factory = session_factory
        self._restart_signal = restart_signal
        self.threshold = threshold

    def tick(self) -> TickResult:
        """Advance grace counters; run once per cycle, before harvesting."""
        result = TickResult()
        result.settled = self._settle_reactivated()

        with session_scope(self._session_factory) as session:
            candidates = [
                (row.id, row.penalty, row.settings)
                for row in session.execute(
                    select(InboundModel)
                    .where(
                        InboundModel.enabled.is_(False),
                        InboundModel.penalty > PENALTY_EXEMPT,
                    )
                    .order_by(InboundModel.id)
                ).scalars()
            ]

        for inbound_id, penalty, settings in candidates:
            state = classify(False, penalty, self.threshold)
            try:
                if state is InboundState.PENALIZED:
                    changed = self._increment(inbound_id, penalty)
                    if changed:
                        result.ticked.append(inbound_id)
                        result.excluded_identities.update(
                            self._identities(inbound_id, settings)
                        )
                else:
                    changed = self._reactivate(inbound_id, penalty)
                    if changed:
                        result.reactivated.append(inbound_id)
            except SQLAlchemyError as e:
                logger.error(
                    "Penalty update failed",
                    event="guard.penalty.update_failed",
                    inbound_id=inbound_id,
                    error=str(e),
                )
                continue
            if not changed:
                result.conflicts.append(inbound_id)
                logger.info(
                    "Inbound changed concurrently, skipping penalty update",
                    event="guard.penalty.conflict",
                    inbound_id=inbound_id,
                    expected_penalty=penalty,
                )
        return result

    def breach(self, inbound_id: int) -> bool:
        """Disable an enabled inbound and restart its grace period at 0."""
        try:
            with session_scope(self._session_factory) as session:
                rowcount = session.execute(
                    update(InboundModel)
                    .where(InboundModel.id == inbound_id, InboundModel.enabled.is_(True))
                    .values(enabled=False, penalty=PENALTY_BASELINE)
                ).rowcount
        except SQLAlchemyError as e:
            logger.error(
                "Could not disable inbound",
                event="guard.penalty.disable_failed",
                inbound_id=inbound_id,
                error=str(e),
            )
            return False
        if rowcount != 1:
            logger.info(
                "Inbound no longer enabled, breach not applied",
                event="guard.penalty.breach_skipped",
                inbound_id=inbound_id,
            )
            return False
        metrics.breaches_total.inc()
        logger.warning(
            "Disabled inbound after IP limit breach",
            event="guard.penalty.disabled",
            inbound_id=inbound_id,
        )
        self._restart_signal.set_to_need_restart()
        return True

    def _settle_reactivated(self) -> int:
        """Return reactivated inbounds (enabled, -1) to the baseline counter."""
        try:
            with session_scope(self._session_factory) as session:
                return session.execute(
                    update(InboundModel)
                    .where(
                        InboundModel.enabled.is_(True),
                        InboundModel.penalty == PENALTY_EXEMPT,
                    )
                    .values(penalty=PENALTY_BASELINE)
                ).rowcount
        except SQLAlchemyError as e:
            logger.error(
                "Could not reset counters of reactivated inbounds",
                event="guard.penalty.settle_failed",
                error=str(e),
            )
            return 0

    def _increment(self, inbound_id: int, current: int) -> bool:
        with session_scope(self._session_factory) as session:
            rowcount = session.execute(
                update(InboundModel)
                .where(
                    InboundModel.id == inbound_id,
                    InboundModel.enabled.is_(False),
                    InboundModel.penalty == current,
                )
                .values(penalty=current + 1)
            ).rowcount
        return rowcount == 1

    def _reactivate(self, inbound_id: int, current: int) -> bool:
        with session_scope(self._session_factory) as session:
            rowcount = session.execute(
                update(InboundModel)
                .where(
                    InboundModel.id == inbound_id,
                    InboundModel.enabled.is_(False),
                    InboundModel.penalty == current,
                )
                .values(enabled=True, penalty=PENALTY_EXEMPT)
            ).rowcount
        if rowcount != 1:
            return False
        metrics.reactivations_total.inc()
        logger.warning(
            "Enabled inbound after finished penalty",
            event="guard.penalty.reactivated",
            inbound_id=inbound_id,
        )
        self._restart_signal.set_to_need_restart()
        return True

    @staticmethod
    def _identities(inbound_id: int, settings: str | None) -> list[str]:
        try:
            return parse_inbound_settings(settings, inbound_id=inbound_id).emails()
        except SettingsParseError as e:
            logger.warning(
                "Penalized inbound has unparseable settings; its clients stay countable",
                event="guard.penalty.settings_invalid",
                inbound_id=inbound_id,
                error=e.message,
            )
            return []
