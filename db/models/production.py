"""Floor Monitor — Production Accounting ORM Models."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from db.base import Base, TimestampMixin


class ProductionCounter(TimestampMixin, Base):
    """Products counted per machine per calendar day."""
    __tablename__ = "production_counters"
    __table_args__ = (UniqueConstraint("machine_id", "day", name="uq_production_counters_machine_day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False)
    day = Column(Date, nullable=False)
    count = Column(Integer, nullable=False, default=0)


class ProductionPopup(TimestampMixin, Base):
    """Operator quality-check popup. One active row per machine per day."""
    __tablename__ = "production_popups"
    __table_args__ = (
        Index(
            "uq_production_popups_active",
            "machine_id",
            "day",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False)
    day = Column(Date, nullable=False)
    production_count = Column(Integer, nullable=False)
    threshold = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_by = Column(String(100), nullable=True)


class ProductionAlert(TimestampMixin, Base):
    """Manager alert for an exceeded production limit. One active row per machine per day."""
    __tablename__ = "production_alerts"
    __table_args__ = (
        Index(
            "uq_production_alerts_active",
            "machine_id",
            "day",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False)
    day = Column(Date, nullable=False)
    production_count = Column(Integer, nullable=False)
    threshold = Column(Integer, nullable=False)
    alert_type = Column(String(50), nullable=False, default="PRODUCTION_THRESHOLD_EXCEEDED")
    severity = Column(String(20), nullable=False, default="HIGH")
    message = Column(Text, nullable=False)
    target_roles = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    # "metadata" is reserved on declarative classes
    alert_metadata = Column("metadata", JSON, nullable=False, default=dict)
