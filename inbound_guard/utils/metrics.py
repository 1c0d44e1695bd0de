"""Prometheus collectors for the IP-limit enforcement job."""

from __future__ import annotations

from prometheus_client import REGISTRY, Counter, Gauge

NAMESPACE = "inbound_guard"


def _fullname(name: str, namespace: str | None) -> str:
    return f"{namespace}_{name}" if namespace else name


def _get_existing(fullname: str):
    # Collectors register under their base name; counters drop "_total".
    names = getattr(REGISTRY, "_names_to_collectors", {})
    return names.get(fullname) or names.get(fullname.removesuffix("_total"))


def safe_counter(
    name: str,
    documentation: str,
    labelnames: list[str] | None = None,
    namespace: str | None = None,
) -> Counter:
    """Create a counter, or return the one already registered under this name."""
    existing = _get_existing(_fullname(name, namespace))
    if existing is not None:
        return existing
    return Counter(name, documentation, labelnames or [], namespace=namespace or "")


def safe_gauge(
    name: str,
    documentation: str,
    labelnames: list[str] | None = None,
    namespace: str | None = None,
) -> Gauge:
    existing = _get_existing(_fullname(name, namespace))
    if existing is not None:
        return existing
    return Gauge(name, documentation, labelnames or [], namespace=namespace or "")


runs_total = safe_counter(
    "runs_total",
    "Enforcement runs by outcome",
    ["outcome"],
    namespace=NAMESPACE,
)
observations_total = safe_counter(
    "observations_total",
    "Distinct (identity, ip) observations harvested from the access log",
    namespace=NAMESPACE,
)
breaches_total = safe_counter(
    "breaches_total",
    "Inbounds disabled because a client exceeded its IP limit",
    namespace=NAMESPACE,
)
reactivations_total = safe_counter(
    "reactivations_total",
    "Inbounds re-enabled after serving their penalty",
    namespace=NAMESPACE,
)
snapshot_failures_total = safe_counter(
    "snapshot_failures_total",
    "Failed attempts to persist the per-identity IP snapshot",
    namespace=NAMESPACE,
)
observed_identities = safe_gauge(
    "observed_identities",
    "Identities seen in the most recent harvesting window",
    namespace=NAMESPACE,
)
