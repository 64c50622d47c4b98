"""SQLAlchemy ORM models for the cook_property aggregator."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


def _new_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Enums
# =============================================================================


class ImportJobStatus(str, enum.Enum):
    """Bulk import job statuses."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ImportPinStatus(str, enum.Enum):
    """Per-PIN statuses within an import job."""
    PENDING = "pending"
    FETCHING = "fetching"
    COMPLETE = "complete"
    ERROR = "error"


# =============================================================================
# PropertyCache Model
# =============================================================================


class PropertyCache(Base):
    """
    Last known extraction result for one (PIN, source) pair.

    ``data`` is the serialized SourceRecord, or NULL when the last attempt
    produced nothing usable. ``error`` keeps the source-reported error
    alongside the data for partial extractions.
    """
    __tablename__ = "property_cache"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    pin: Mapped[str] = mapped_column(String(18), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ux_property_cache_pin_source", "pin", "source", unique=True),
        Index("ix_property_cache_fetched_at", "fetched_at"),
    )

    def __repr__(self) -> str:
        return f"<PropertyCache(pin={self.pin!r}, source={self.source!r})>"


# =============================================================================
# PinBid Model
# =============================================================================


class PinBid(Base):
    """User-entered bid and overbid for a PIN. Never expires."""
    __tablename__ = "pin_bids"

    pin: Mapped[str] = mapped_column(String(18), primary_key=True)
    bid: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    overbid: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pin": self.pin,
            "bid": self.bid,
            "overbid": self.overbid,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


# =============================================================================
# Import Models
# =============================================================================


class ImportJob(Base):
    """A bulk PIN import submitted as a file upload."""
    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    total_pins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_pins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_pins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), default=ImportJobStatus.PENDING.value, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    pins: Mapped[List["ImportPin"]] = relationship(
        "ImportPin", back_populates="job", cascade="all, delete-orphan", order_by="ImportPin.id"
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "totalPins": self.total_pins,
            "completedPins": self.completed_pins,
            "failedPins": self.failed_pins,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ImportPin(Base):
    """One PIN inside an import job; ``id`` order is submission order."""
    __tablename__ = "import_pins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pin: Mapped[str] = mapped_column(String(18), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ImportPinStatus.PENDING.value, nullable=False
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    job: Mapped[ImportJob] = relationship("ImportJob", back_populates="pins")

    __table_args__ = (
        Index("ux_import_pins_job_pin", "job_id", "pin", unique=True),
        Index("ix_import_pins_job_status", "job_id", "status"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pin": self.pin,
            "status": self.status,
            "error": self.error,
            "fetchedAt": self.fetched_at.isoformat() if self.fetched_at else None,
        }


__all__ = [
    "Base",
    "ImportJobStatus",
    "ImportPinStatus",
    "PropertyCache",
    "PinBid",
    "ImportJob",
    "ImportPin",
]
