"""
SQLAlchemy ORM models for the local store.

Tables
------
* ``kv_store`` -- one JSON document per key (offline queue, trip cache,
  dead letter).
"""

from sqlalchemy import Column, DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


class KeyValueModel(Base):
    __tablename__ = "kv_store"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
