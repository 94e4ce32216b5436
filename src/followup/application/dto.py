"""
Follow-up Application DTOs
==========================

Data Transfer Objects for the follow-up services and API layer.

These Pydantic models handle serialization/deserialization and validation
for service inputs, API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator

from src.config import FollowUpReason, Priority, QueueAction, QueueItemStatus, SLAStatus
from src.followup.domain import WorkingHours
from src.followup.domain.value_objects import validate_timezone_name


def _as_list(v: Any) -> Any:
    if v is None or isinstance(v, list):
        return v
    if isinstance(v, (tuple, set)):
        return list(v)
    return [v]


# ========== Service inputs ==========

class QueueQueryOptions(BaseModel):
    """
    Filters, sorting and pagination for queue reads.

    Enum filters accept a single value or a list. Date filters are
    inclusive bounds (``snoozed_until_before=now`` matches items due now).
    """
    model_config = ConfigDict(frozen=True)

    status: Optional[List[QueueItemStatus]] = None
    priority: Optional[List[Priority]] = None
    reason: Optional[List[FollowUpReason]] = None
    sla_status: Optional[List[SLAStatus]] = None
    category: Optional[str] = None

    added_after: Optional[datetime] = None
    added_before: Optional[datetime] = None
    sla_deadline_before: Optional[datetime] = None
    snoozed_until_before: Optional[datetime] = None

    sort_by: str = "priority"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @field_validator("status", "priority", "reason", "sla_status", mode="before")
    @classmethod
    def wrap_single_values(cls, v: Any) -> Any:
        return _as_list(v)

    def cache_key(self) -> str:
        return self.model_dump_json(exclude_none=True)


class ClassificationResult(BaseModel):
    """Output of the external message classifier that the queue consumes."""
    priority: Priority = Priority.MEDIUM
    category: str = "general"
    labels: List[str] = Field(default_factory=list)
    needs_reply: bool = False
    waiting_on_others: bool = False
    is_vip: bool = False
    vip_tier: Optional[int] = Field(default=None, ge=1, le=3)
    suggested_snooze_time: Optional[AwareDatetime] = None
    suggested_actions: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class EmailMetadata(BaseModel):
    """Envelope data for a classified message."""
    email_id: str = Field(..., min_length=1)
    thread_id: str = Field(..., min_length=1)
    subject: str = ""
    from_address: str = ""
    to_address: str = ""
    received_date: AwareDatetime


class EmailContext(BaseModel):
    """Message content used to suggest a snooze time."""
    subject: str = ""
    body: str = ""
    from_address: str = ""
    priority: str = Priority.MEDIUM.value
    category: str = "general"


class UserPreferences(BaseModel):
    working_hours: Optional[WorkingHours] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_timezone_name(v)


class SmartSnoozeRequest(BaseModel):
    """Request for an AI-assisted snooze suggestion."""
    email_context: EmailContext
    user_preferences: Optional[UserPreferences] = None


class BulkFailure(BaseModel):
    id: str
    error: str


class BulkOperationResult(BaseModel):
    """Per-id outcome of a bulk mutation."""
    successful: List[str] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)
    total_processed: int = 0


# ========== Request DTOs ==========

class AddItemRequest(BaseModel):
    """Manual add. Identifiers are validated by the queue service."""
    email_id: Optional[str] = None
    thread_id: Optional[str] = None
    subject: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    received_date: Optional[AwareDatetime] = None
    priority: Optional[Priority] = None
    category: Optional[str] = None
    labels: Optional[List[str]] = None
    reason: Optional[FollowUpReason] = None
    sla_deadline: Optional[AwareDatetime] = None


class UpdateItemRequest(BaseModel):
    """
    Partial item update. Only the fields sent are applied; identity and
    bookkeeping fields are rejected.
    """
    model_config = ConfigDict(extra="forbid")

    thread_id: Optional[str] = None
    subject: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    received_date: Optional[AwareDatetime] = None
    priority: Optional[Priority] = None
    category: Optional[str] = None
    labels: Optional[List[str]] = None
    reason: Optional[FollowUpReason] = None
    status: Optional[QueueItemStatus] = None
    snoozed_until: Optional[AwareDatetime] = None
    last_action_date: Optional[AwareDatetime] = None
    sla_deadline: Optional[AwareDatetime] = None
    sla_status: Optional[SLAStatus] = None
    time_remaining: Optional[float] = None
    waiting_on_email: Optional[str] = None
    waiting_reason: Optional[str] = None
    original_sent_date: Optional[AwareDatetime] = None
    suggested_snooze_time: Optional[AwareDatetime] = None
    suggested_actions: Optional[List[str]] = None
    ai_reasoning: Optional[str] = None
    snooze_count: Optional[int] = Field(default=None, ge=0)

    def updates(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SnoozeRequest(BaseModel):
    until: AwareDatetime
    reason: Optional[str] = None
    smart: bool = False
    ai_reasoning: Optional[str] = None


class WaitingRequest(BaseModel):
    waiting_on: str = Field(..., min_length=1)
    reason: str = ""


class EscalateRequest(BaseModel):
    priority: Priority


class BulkSnoozeRequest(SnoozeRequest):
    ids: List[str] = Field(..., min_length=1)


class BulkCompleteRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class ClassificationIntakeRequest(BaseModel):
    classification: ClassificationResult
    email: EmailMetadata


class SnoozeChoiceRequest(BaseModel):
    chosen_time: AwareDatetime


class SLAConfigUpdateRequest(BaseModel):
    """Partial SLA configuration update; merged and validated by the tracker."""
    critical: Optional[float] = Field(default=None, gt=0)
    high: Optional[float] = Field(default=None, gt=0)
    medium: Optional[float] = Field(default=None, gt=0)
    low: Optional[float] = Field(default=None, gt=0)
    adjust_for_weekends: Optional[bool] = None
    working_hours: Optional[Dict[str, int]] = None
    timezone: Optional[str] = None


# ========== Response DTOs ==========

class FollowUpItemResponse(BaseModel):
    """Serialized follow-up item."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email_id: str
    thread_id: str
    subject: str
    from_address: str
    to_address: str
    received_date: datetime
    priority: Priority
    category: str
    labels: List[str]
    reason: FollowUpReason
    status: QueueItemStatus
    added_to_queue_at: datetime
    snoozed_until: Optional[datetime] = None
    last_action_date: Optional[datetime] = None
    sla_deadline: Optional[datetime] = None
    sla_status: SLAStatus
    time_remaining: Optional[float] = None
    waiting_on_email: Optional[str] = None
    waiting_reason: Optional[str] = None
    original_sent_date: Optional[datetime] = None
    suggested_snooze_time: Optional[datetime] = None
    suggested_actions: Optional[List[str]] = None
    ai_reasoning: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    action_count: int
    snooze_count: int


class QueueHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    queue_item_id: str
    email_id: str
    action: QueueAction
    old_status: Optional[QueueItemStatus] = None
    new_status: Optional[QueueItemStatus] = None
    old_priority: Optional[Priority] = None
    new_priority: Optional[Priority] = None
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class QueueStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class SnoozeAlternativeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    time: datetime
    reason: str


class SnoozeSuggestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    suggested_time: datetime
    reasoning: str
    alternatives: List[SnoozeAlternativeResponse]
    confidence: float


class QuickSnoozeOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    label: str
    time: datetime
    reason: str


class ItemIdResponse(BaseModel):
    id: Optional[str]


class SweepResponse(BaseModel):
    """Outcome of a manually triggered sweep."""
    sweep: str
    count: int
    item_ids: List[str] = Field(default_factory=list)
