"""
Follow-up Infrastructure Models
===============================

SQLAlchemy ORM models for the follow-up module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from src.core import RecordDecodeError
from src.infrastructure.database import Base

E = TypeVar("E", bound=Enum)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    SQLite returns naive values; they are read back as UTC.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ========== JSON column codecs ==========

_string_list = TypeAdapter(List[str])
_metadata = TypeAdapter(Dict[str, Any])


def encode_string_list(value: Optional[List[str]]) -> Optional[str]:
    if value is None:
        return None
    return _string_list.dump_json(value).decode()


def decode_string_list(field: str, raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    try:
        return _string_list.validate_json(raw)
    except ValidationError as e:
        raise RecordDecodeError(field, raw, str(e.errors()[0]["msg"]))


def encode_metadata(value: Dict[str, Any]) -> str:
    return _metadata.dump_json(value or {}).decode()


def decode_metadata(field: str, raw: Optional[str]) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    try:
        return _metadata.validate_json(raw)
    except ValidationError as e:
        raise RecordDecodeError(field, raw, str(e.errors()[0]["msg"]))


def decode_enum(enum_type: Type[E], field: str, raw: Optional[str], nullable: bool = False) -> Optional[E]:
    if raw is None and nullable:
        return None
    try:
        return enum_type(raw)
    except ValueError:
        raise RecordDecodeError(field, raw, f"not a valid {enum_type.__name__}")


# ========== Tables ==========

class FollowUpItemModel(Base):
    """
    Database model for the FollowUpItem entity.

    Maps to the 'follow_up_queue' table. ``email_id`` is unique so two
    concurrent adds for one message cannot both succeed.
    """
    __tablename__ = "follow_up_queue"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email_id: Mapped[str] = mapped_column(String(255), nullable=False)
    thread_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Message metadata
    subject: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    from_address: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    to_address: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    received_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Classification
    priority: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    labels: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    # Lifecycle
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    added_to_queue_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_action_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # SLA tracking
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    time_remaining: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Waiting on others
    waiting_on_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    waiting_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_sent_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # AI suggestions
    suggested_snooze_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    suggested_actions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Bookkeeping
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    action_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    snooze_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_follow_up_queue_email_id", "email_id", unique=True),
        Index("ix_follow_up_queue_status_snoozed_until", "status", "snoozed_until"),
    )


class QueueHistoryModel(Base):
    """
    Database model for QueueHistoryEntry.

    Maps to the 'queue_history' table. Rows are append-only.
    """
    __tablename__ = "queue_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    queue_item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    old_priority: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_priority: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[str] = mapped_column("metadata", Text, nullable=False, default="{}")
