"""Floor Monitor — Machine and User ORM Models.

Read-mostly directory tables: machines with their production speed and
threshold config, the status history used for shift summaries, and users
with their contact details.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String

from db.base import Base


class Machine(Base):
    """A production machine on the floor."""
    __tablename__ = "machines"
    __table_args__ = (Index("idx_machines_name", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default="STOPPED")
    production_speed = Column(Float, nullable=True)  # units per minute
    # {"popup_threshold": int, "alert_threshold": int, "enable_popups": bool, "enable_alerts": bool}
    production_config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.now)


class MachineStatusHistory(Base):
    __tablename__ = "machine_status_history"
    __table_args__ = (
        Index("idx_machine_status_history_machine_time", "machine_id", "changed_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=datetime.now)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="OPERATOR")
    is_active = Column(Boolean, default=True)
