"""Floor Monitor — Database Declarative Base.

Shared SQLAlchemy declarative base and the created/updated timestamp
columns carried by popups, alerts and counters.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class TimestampMixin:
    @declared_attr
    def created_at(cls):
        return Column(DateTime(timezone=True), nullable=False, default=datetime.now, server_default=func.now())

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            default=datetime.now,
            onupdate=datetime.now,
            server_default=func.now(),
        )
