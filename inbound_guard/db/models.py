"""SQLAlchemy models for inbounds and the per-client IP snapshot."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, String, Text

from inbound_guard.db.engine import Base

# Penalty counter sentinels
PENALTY_EXEMPT = -1
PENALTY_BASELINE = 0


class InboundModel(Base):
    """Proxy listener row, created and edited by the dashboard.

    ``enabled`` and ``penalty`` are driven by the IP-limit job once a client
    on this inbound breaches its limit; ``penalty == -1`` on a disabled
    inbound marks it as manually controlled.
    """

    __tablename__ = "inbounds"
    __table_args__ = {"extend_existing": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    remark = Column(String, nullable=True)
    port = Column(Integer, nullable=True)
    protocol = Column(String, nullable=True)
    tag = Column(String, nullable=True)
    settings = Column(Text, nullable=False, default="{}")
    enabled = Column("enable", Boolean, nullable=False, default=True)
    penalty = Column(Integer, nullable=False, default=PENALTY_BASELINE)

    def __repr__(self) -> str:
        return (
            f"<Inbound id={self.id} remark={self.remark!r} "
            f"enabled={self.enabled} penalty={self.penalty}>"
        )


class InboundClientIpsModel(Base):
    """Distinct source IPs seen for one client during the last harvest."""

    __tablename__ = "inbound_client_ips"
    __table_args__ = {"extend_existing": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_email = Column(String, nullable=False, unique=True)
    ips = Column(Text, nullable=False, default="[]")

    def __repr__(self) -> str:
        return f"<InboundClientIps email={self.client_email!r} ips={self.ips}>"
