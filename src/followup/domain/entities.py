"""
Follow-up Domain Entities
=========================

Pure Python domain entities for the follow-up queue.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type
from uuid import uuid4

from src.config import (
    FollowUpReason,
    Priority,
    QueueAction,
    QueueItemStatus,
    SLAStatus,
    OPEN_STATUSES,
)


def new_queue_id() -> str:
    return f"queue_{uuid4().hex}"


def new_history_id() -> str:
    return f"hist_{uuid4().hex}"


def _coerce(enum_type: Type[Enum], value: Any) -> Any:
    """Convert a raw value to ``enum_type`` when it is a member; otherwise keep it for validation."""
    if value is None or isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        return value


@dataclass
class FollowUpItem:
    """
    A message that needs follow-up.

    ``email_id`` is the natural key: at most one item exists per message.
    """

    # Identity
    id: str
    email_id: str
    thread_id: str

    # Message metadata
    subject: str
    from_address: str
    to_address: str
    received_date: datetime

    # Classification
    priority: Priority
    category: str
    labels: List[str]

    # Lifecycle
    reason: FollowUpReason
    status: QueueItemStatus
    added_to_queue_at: datetime
    sla_status: SLAStatus

    # Bookkeeping
    created_at: datetime
    updated_at: datetime
    action_count: int = 0
    snooze_count: int = 0

    snoozed_until: Optional[datetime] = None
    last_action_date: Optional[datetime] = None

    # SLA tracking
    sla_deadline: Optional[datetime] = None
    time_remaining: Optional[float] = None

    # Waiting on others
    waiting_on_email: Optional[str] = None
    waiting_reason: Optional[str] = None
    original_sent_date: Optional[datetime] = None

    # AI suggestions
    suggested_snooze_time: Optional[datetime] = None
    suggested_actions: Optional[List[str]] = None
    ai_reasoning: Optional[str] = None

    def __post_init__(self):
        self.priority = _coerce(Priority, self.priority)
        self.status = _coerce(QueueItemStatus, self.status)
        self.sla_status = _coerce(SLAStatus, self.sla_status)
        self.reason = _coerce(FollowUpReason, self.reason)

    @classmethod
    def field_names(cls) -> set:
        return {f.name for f in fields(cls)}

    @classmethod
    def create(cls, data: Dict[str, Any], now: datetime) -> "FollowUpItem":
        """
        Build a new item from partial data, filling engine defaults.

        Explicit values in ``data`` win over defaults.
        """
        values: Dict[str, Any] = {
            "id": new_queue_id(),
            "subject": "",
            "from_address": "",
            "to_address": "",
            "received_date": now,
            "priority": Priority.MEDIUM,
            "category": "general",
            "labels": [],
            "reason": FollowUpReason.NEEDS_REPLY,
            "status": QueueItemStatus.ACTIVE,
            "added_to_queue_at": now,
            "sla_status": SLAStatus.ON_TIME,
            "created_at": now,
            "updated_at": now,
            "action_count": 0,
            "snooze_count": 0,
        }
        values.update({key: value for key, value in data.items() if value is not None})
        return cls(**values)

    @property
    def is_open(self) -> bool:
        """Still requires the user's attention."""
        return self.status in OPEN_STATUSES

    @property
    def is_closed(self) -> bool:
        return self.status in (QueueItemStatus.COMPLETED, QueueItemStatus.ARCHIVED)

    def validation_errors(self, now: datetime, check_snooze: bool = True) -> List[str]:
        """
        Rules this item currently violates (empty when valid).

        ``check_snooze=False`` skips the future-snooze rule, for updates
        that leave an already elapsed ``snoozed_until`` untouched.
        """
        errors = []

        if not self.email_id or not self.thread_id:
            errors.append("Missing required email identifiers")

        if not isinstance(self.priority, Priority):
            errors.append(f"Invalid priority: {self.priority}")

        if not isinstance(self.status, QueueItemStatus):
            errors.append(f"Invalid status: {self.status}")

        if not isinstance(self.sla_status, SLAStatus):
            errors.append(f"Invalid SLA status: {self.sla_status}")

        if not isinstance(self.reason, FollowUpReason):
            errors.append(f"Invalid reason: {self.reason}")

        if check_snooze and self.snoozed_until is not None and self.snoozed_until < now:
            errors.append("Snooze time cannot be in the past")

        if self.action_count < 0 or self.snooze_count < 0:
            errors.append("Counters cannot be negative")

        return errors


@dataclass
class QueueHistoryEntry:
    """Append-only audit record of one mutation."""

    queue_item_id: str
    email_id: str
    action: QueueAction
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=new_history_id)
    old_status: Optional[QueueItemStatus] = None
    new_status: Optional[QueueItemStatus] = None
    old_priority: Optional[Priority] = None
    new_priority: Optional[Priority] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.action = _coerce(QueueAction, self.action)
        self.old_status = _coerce(QueueItemStatus, self.old_status)
        self.new_status = _coerce(QueueItemStatus, self.new_status)
        self.old_priority = _coerce(Priority, self.old_priority)
        self.new_priority = _coerce(Priority, self.new_priority)


@dataclass
class QueueStatistics:
    """
    Aggregate view of the queue. Averages are in hours.

    Computed on demand and cached, never persisted.
    """

    total_items: int
    status_counts: Dict[str, int]
    priority_counts: Dict[str, int]
    sla_status_counts: Dict[str, int]
    completed_today: int
    completed_this_week: int
    waiting_on_others_count: int
    snoozed_count: int
    average_time_in_queue: float
    average_wait_time: float
    average_snooze_time: float
    average_response_time: float
    last_updated: datetime

    @classmethod
    def empty(cls, now: datetime) -> "QueueStatistics":
        return cls(
            total_items=0,
            status_counts={s.value: 0 for s in QueueItemStatus},
            priority_counts={p.value: 0 for p in Priority},
            sla_status_counts={s.value: 0 for s in SLAStatus},
            completed_today=0,
            completed_this_week=0,
            waiting_on_others_count=0,
            snoozed_count=0,
            average_time_in_queue=0.0,
            average_wait_time=0.0,
            average_snooze_time=0.0,
            average_response_time=0.0,
            last_updated=now,
        )
