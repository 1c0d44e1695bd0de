"""Access-log harvesting.

The proxy core appends one line per accepted connection to its access log,
e.g.::

    2024/01/01 10:00:00 203.0.113.7:51234 accepted tcp:example.com:443 [in-1 >> direct] email: alice@example

Each harvest reads the whole file and then truncates it to empty. Lines the
proxy writes between the read and the truncate are lost; the log is never
rotated or tracked by offset, so that window is an accepted gap in evidence.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from inbound_guard.config.defaults import DEFAULT_EXCLUDED_IPS
from inbound_guard.exceptions import LogHarvestError
from inbound_guard.proxy.core_config import get_access_log_path
from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)

IPV4_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+")
IDENTITY_PATTERN = re.compile(r"email:\s*(.*)")

DEFAULT_EXCLUDED = frozenset(DEFAULT_EXCLUDED_IPS.split(","))


@dataclass(frozen=True)
class IPObservation:
    identity: str
    ip: str


@dataclass
class HarvestResult:
    path: str
    line_count: int = 0
    observations: list[IPObservation] = field(default_factory=list)
    truncated: bool = True


def parse_line(line: str, excluded_ips: frozenset[str] = DEFAULT_EXCLUDED) -> IPObservation | None:
    """Extract an observation from one log line, or None if it carries none."""
    ip_match = IPV4_PATTERN.search(line)
    if ip_match is None:
        return None
    ip = ip_match.group(0)
    if ip in excluded_ips:
        return None
    identity_match = IDENTITY_PATTERN.search(line)
    if identity_match is None:
        return None
    identity = identity_match.group(1).strip()
    if not identity:
        return None
    return IPObservation(identity=identity, ip=ip)


def parse_lines(
    lines: Iterable[str], excluded_ips: frozenset[str] = DEFAULT_EXCLUDED
) -> Iterator[IPObservation]:
    for line in lines:
        observation = parse_line(line, excluded_ips)
        if observation is not None:
            yield observation


def aggregate(
    observations: Iterable[IPObservation], excluded_identities: Iterable[str] = ()
) -> dict[str, list[str]]:
    """Group observations into identity -> distinct IPs, in first-seen order."""
    skip = set(excluded_identities)
    grouped: dict[str, list[str]] = {}
    for obs in observations:
        if obs.identity in skip:
            continue
        ips = grouped.setdefault(obs.identity, [])
        if obs.ip not in ips:
            ips.append(obs.ip)
    return grouped


class LogHarvester:
    """Destructively reads the access log and turns it into observations.

    The log path is looked up in the proxy core config on every harvest so a
    config change takes effect on the next run. ``access_log_path`` pins it
    instead.
    """

    def __init__(
        self,
        proxy_config_path: str | Path | None = None,
        *,
        access_log_path: str | None = None,
        excluded_ips: Iterable[str] | None = None,
        path_resolver: Callable[[str | Path], str] = get_access_log_path,
    ) -> None:
        self.proxy_config_path = proxy_config_path
        self.access_log_path = access_log_path
        self.excluded_ips = (
            frozenset(excluded_ips) if excluded_ips is not None else DEFAULT_EXCLUDED
        )
        self._path_resolver = path_resolver

    def resolve_log_path(self) -> str:
        if self.access_log_path:
            return self.access_log_path
        if self.proxy_config_path is None:
            return ""
        return self._path_resolver(self.proxy_config_path)

    def harvest(self) -> HarvestResult | None:
        """Read and clear the log; None means nothing could be harvested this run."""
        path = self.resolve_log_path()
        if not path:
            logger.warning(
                "Access log not configured in proxy config",
                event="guard.harvest.no_log_path",
                proxy_config=str(self.proxy_config_path),
            )
            return None
        try:
            data = self._read(path)
        except LogHarvestError as e:
            logger.warning(e.message, event="guard.harvest.read_failed", **e.details)
            return None

        result = HarvestResult(path=path)
        try:
            self._truncate(path)
        except LogHarvestError as e:
            result.truncated = False
            logger.warning(e.message, event="guard.harvest.truncate_failed", **e.details)

        # Records are newline-terminated; other Unicode line breaks belong to the record
        lines = data.split("\n")
        if lines[-1] == "":
            lines.pop()
        result.line_count = len(lines)
        result.observations = list(parse_lines(lines, self.excluded_ips))
        logger.debug(
            "Access log harvested",
            event="guard.harvest.done",
            path=path,
            lines=result.line_count,
            observations=len(result.observations),
        )
        return result

    @staticmethod
    def _read(path: str) -> str:
        try:
            with open(path, encoding="utf-8", errors="replace") as fh:
                return fh.read()
        except OSError as e:
            raise LogHarvestError(
                "Access log unreadable", {"path": path, "error": str(e)}
            ) from e

    @staticmethod
    def _truncate(path: str) -> None:
        try:
            os.truncate(path, 0)
        except OSError as e:
            raise LogHarvestError(
                "Access log could not be cleared", {"path": path, "error": str(e)}
            ) from e
