"""Per-client source IP limiting for proxy inbounds."""

__version__ = "1.0.0"
