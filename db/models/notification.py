"""Floor Monitor — Alert and Notification ORM Models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from db.base import Base


class Alert(Base):
    """Dispatched alert, the in-app record every channel send refers to."""
    __tablename__ = "alerts"
    __table_args__ = (
        Index("idx_alerts_dedup", "machine_id", "type", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(100), nullable=False)
    priority = Column(String(10), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    alert_metadata = Column("metadata", JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.now)


class AlertChannel(Base):
    """Per-user delivery preferences."""
    __tablename__ = "alert_channels"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email = Column(Boolean, nullable=False, default=True)
    sms = Column(Boolean, nullable=False, default=False)
    whatsapp = Column(Boolean, nullable=False, default=False)
    sound = Column(Boolean, nullable=False, default=True)
    min_priority = Column(String(10), nullable=False, default="LOW")


class NotificationLog(Base):
    """Append-only delivery log, one row per user per alert."""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(Integer, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    channels = Column(JSON, nullable=False, default=list)
    status = Column(String(10), nullable=False)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=datetime.now)
