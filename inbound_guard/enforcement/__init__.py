"""Per-client IP limit enforcement."""

from .harvester import HarvestResult, IPObservation, LogHarvester, aggregate, parse_line
from .job import CheckClientIpJob, RunReport
from .penalty import InboundPenaltyStateMachine, InboundState, TickResult, classify
from .resolver import IdentityLimitResolver, ResolvedIdentity
from .scheduler import EnforcementScheduler
from .snapshots import IPSnapshotStore

__all__ = [
    "CheckClientIpJob",
    "EnforcementScheduler",
    "HarvestResult",
    "IPObservation",
    "IPSnapshotStore",
    "IdentityLimitResolver",
    "InboundPenaltyStateMachine",
    "InboundState",
    "LogHarvester",
    "ResolvedIdentity",
    "RunReport",
    "TickResult",
    "aggregate",
    "classify",
    "parse_line",
]
