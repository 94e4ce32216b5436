"""
Follow-up Controllers (API Routes)
==================================

FastAPI routes for the follow-up queue.

Controllers are thin - they delegate to application services held on
``app.state``. Domain errors are mapped to HTTP status codes by the
application-wide exception handler.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from src.config import FollowUpReason, Priority, QueueItemStatus, SLAStatus
from src.followup.application import (
    FollowUpQueueService,
    QueueQueryOptions,
    SLATrackerService,
    SmartSnoozeRequest,
    SnoozeEngine,
)
from src.followup.application.dto import (
    AddItemRequest,
    BulkCompleteRequest,
    BulkOperationResult,
    BulkSnoozeRequest,
    ClassificationIntakeRequest,
    EscalateRequest,
    FollowUpItemResponse,
    ItemIdResponse,
    QueueHistoryResponse,
    QueueStatisticsResponse,
    QuickSnoozeOptionResponse,
    SLAConfigUpdateRequest,
    SnoozeChoiceRequest,
    SnoozeRequest,
    SnoozeSuggestionResponse,
    SweepResponse,
    UpdateItemRequest,
    WaitingRequest,
)
from src.followup.domain import SLAConfig, SnoozeOptions
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/queue", tags=["Follow-up Queue"])


# ========== Example payloads for Swagger ==========

ADD_ITEM_EXAMPLE = {
    "email_id": "msg-18c2f0a",
    "thread_id": "thr-77ab",
    "subject": "Contract renewal - need sign-off",
    "from_address": "dana@client.example",
    "to_address": "me@example.com",
    "received_date": "2026-10-16T16:30:00Z",
    "priority": "HIGH",
    "category": "work",
    "labels": ["contracts"]
}

SUGGESTION_RESPONSE_EXAMPLE = {
    "suggested_time": "2026-10-19T13:00:00Z",
    "reasoning": "Default snooze for HIGH priority: 4 hours",
    "alternatives": [
        {"time": "2026-10-19T16:00:00Z", "reason": "A bit later if you need more time"},
        {"time": "2026-10-20T13:00:00Z", "reason": "Tomorrow at the same time"}
    ],
    "confidence": 0.5
}


# ========== Dependencies ==========

def get_queue_service(request: Request) -> FollowUpQueueService:
    return request.app.state.queue_service


def get_sla_tracker(request: Request) -> SLATrackerService:
    return request.app.state.sla_tracker


def get_snooze_engine(request: Request) -> SnoozeEngine:
    return request.app.state.snooze_engine


def _item_response(item) -> FollowUpItemResponse:
    return FollowUpItemResponse.model_validate(item)


def _items_response(items) -> List[FollowUpItemResponse]:
    return [FollowUpItemResponse.model_validate(item) for item in items]


# ========== Items ==========

@router.post(
    "/items",
    response_model=ItemIdResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a message to the follow-up queue",
    description="""
    Add a message to the queue manually.

    **Idempotent**: one item per `email_id`. Posting the same message again
    returns the existing item's id.
    """,
    responses={422: {"description": "Missing identifiers or invalid fields"}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": ADD_ITEM_EXAMPLE}}}}
)
async def add_item(
    body: AddItemRequest,
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    item_id = await queue.add_item(body.model_dump(exclude_none=True))
    return ItemIdResponse(id=item_id)


@router.get(
    "/items",
    response_model=List[FollowUpItemResponse],
    summary="List queue items",
    description="Open items (ACTIVE or ESCALATED) unless `status` is given. Date filters are inclusive."
)
async def list_items(
    status_filter: Optional[List[QueueItemStatus]] = Query(default=None, alias="status"),
    priority: Optional[List[Priority]] = Query(default=None),
    reason: Optional[List[FollowUpReason]] = Query(default=None),
    sla_status: Optional[List[SLAStatus]] = Query(default=None),
    category: Optional[str] = None,
    sort_by: str = "priority",
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    query = QueueQueryOptions(
        status=status_filter,
        priority=priority,
        reason=reason,
        sla_status=sla_status,
        category=category,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset
    )
    return _items_response(await queue.get_active_items(query))


@router.get("/items/waiting", response_model=List[FollowUpItemResponse], summary="Items waiting on others")
async def list_waiting(queue: FollowUpQueueService = Depends(get_queue_service)):
    return _items_response(await queue.get_waiting_items())


@router.get("/items/overdue", response_model=List[FollowUpItemResponse], summary="Overdue items")
async def list_overdue(queue: FollowUpQueueService = Depends(get_queue_service)):
    return _items_response(await queue.get_overdue_items())


@router.get("/items/priority/{priority}", response_model=List[FollowUpItemResponse], summary="Open items by priority")
async def list_by_priority(priority: Priority, queue: FollowUpQueueService = Depends(get_queue_service)):
    return _items_response(await queue.get_items_by_priority(priority))


@router.get(
    "/items/{item_id}",
    response_model=FollowUpItemResponse,
    summary="Get a queue item",
    responses={404: {"description": "Item not found"}}
)
async def get_item(item_id: str, queue: FollowUpQueueService = Depends(get_queue_service)):
    item = await queue.get_item(item_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Queue item {item_id} not found"
        )
    return _item_response(item)


@router.patch("/items/{item_id}", response_model=FollowUpItemResponse, summary="Update fields of a queue item")
async def update_item(
    item_id: str,
    body: UpdateItemRequest,
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    updates = body.updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="No fields to update")
    return _item_response(await queue.update_item(item_id, updates))


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Remove a queue item")
async def remove_item(item_id: str, queue: FollowUpQueueService = Depends(get_queue_service)):
    if not await queue.remove_item(item_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Queue item {item_id} not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Lifecycle actions ==========

@router.post("/items/{item_id}/snooze", response_model=FollowUpItemResponse, summary="Snooze an item")
async def snooze_item(
    item_id: str,
    body: SnoozeRequest,
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    options = SnoozeOptions(until=body.until, reason=body.reason, smart=body.smart, ai_reasoning=body.ai_reasoning)
    return _item_response(await queue.snooze_item(item_id, options))


@router.post("/items/{item_id}/complete", response_model=FollowUpItemResponse, summary="Mark an item as done")
async def complete_item(item_id: str, queue: FollowUpQueueService = Depends(get_queue_service)):
    return _item_response(await queue.mark_completed(item_id))


@router.post("/items/{item_id}/wait", response_model=FollowUpItemResponse, summary="Mark an item as waiting on someone")
async def wait_on_item(
    item_id: str,
    body: WaitingRequest,
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    return _item_response(await queue.mark_waiting(item_id, body.waiting_on, body.reason))


@router.post("/items/{item_id}/escalate", response_model=FollowUpItemResponse, summary="Escalate an item")
async def escalate_item(
    item_id: str,
    body: EscalateRequest,
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    return _item_response(await queue.escalate(item_id, body.priority))


@router.post("/items/{item_id}/snooze-choice", status_code=status.HTTP_204_NO_CONTENT, summary="Record a user's snooze choice")
async def record_snooze_choice(
    item_id: str,
    body: SnoozeChoiceRequest,
    engine: SnoozeEngine = Depends(get_snooze_engine)
):
    await engine.learn_from_user_snooze(item_id, body.chosen_time)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Bulk ==========

@router.post("/bulk/snooze", response_model=BulkOperationResult, summary="Snooze many items")
async def bulk_snooze(body: BulkSnoozeRequest, queue: FollowUpQueueService = Depends(get_queue_service)):
    options = SnoozeOptions(until=body.until, reason=body.reason, smart=body.smart, ai_reasoning=body.ai_reasoning)
    return await queue.bulk_snooze(body.ids, options)


@router.post("/bulk/complete", response_model=BulkOperationResult, summary="Complete many items")
async def bulk_complete(body: BulkCompleteRequest, queue: FollowUpQueueService = Depends(get_queue_service)):
    return await queue.bulk_complete(body.ids)


# ========== Classification intake ==========

@router.post(
    "/classifications",
    response_model=ItemIdResponse,
    summary="Queue a classified message if it needs follow-up",
    description="Returns `id: null` when the message needs no follow-up or could not be queued."
)
async def process_classification(
    body: ClassificationIntakeRequest,
    queue: FollowUpQueueService = Depends(get_queue_service)
):
    return ItemIdResponse(id=await queue.process_new_classification(body.classification, body.email))


# ========== Reporting ==========

@router.get("/statistics", response_model=QueueStatisticsResponse, summary="Queue statistics")
async def get_statistics(queue: FollowUpQueueService = Depends(get_queue_service)):
    return QueueStatisticsResponse.model_validate(await queue.get_statistics())


@router.get("/history/{email_id}", response_model=List[QueueHistoryResponse], summary="History for a message")
async def get_history(email_id: str, queue: FollowUpQueueService = Depends(get_queue_service)):
    return [QueueHistoryResponse.model_validate(entry) for entry in await queue.get_item_history(email_id)]


# ========== Sweeps ==========

@router.post("/sweeps/resurface", response_model=SweepResponse, summary="Resurface due snoozed items")
async def sweep_resurface(queue: FollowUpQueueService = Depends(get_queue_service)):
    items = await queue.check_snoozed_items()
    return SweepResponse(sweep="resurface", count=len(items), item_ids=[item.id for item in items])


@router.post("/sweeps/sla-status", response_model=SweepResponse, summary="Recompute SLA status of open items")
async def sweep_sla_status(tracker: SLATrackerService = Depends(get_sla_tracker)):
    return SweepResponse(sweep="sla-status", count=await tracker.update_all_sla_statuses())


@router.post("/sweeps/escalate", response_model=SweepResponse, summary="Escalate at-risk items")
async def sweep_escalate(tracker: SLATrackerService = Depends(get_sla_tracker)):
    return SweepResponse(sweep="escalate", count=await tracker.escalate_at_risk())


@router.post("/sweeps/overdue", response_model=SweepResponse, summary="Report overdue items")
async def sweep_overdue(tracker: SLATrackerService = Depends(get_sla_tracker)):
    items = await tracker.check_and_alert_overdue()
    return SweepResponse(sweep="overdue", count=len(items), item_ids=[item.id for item in items])


# ========== Snooze suggestions ==========

@router.post(
    "/snooze/suggestions",
    response_model=SnoozeSuggestionResponse,
    summary="Suggest a snooze time",
    description="AI suggestion when available; otherwise a per-priority default. Every time is in the future.",
    responses={200: {"content": {"application/json": {"example": SUGGESTION_RESPONSE_EXAMPLE}}}}
)
async def suggest_snooze(body: SmartSnoozeRequest, engine: SnoozeEngine = Depends(get_snooze_engine)):
    return SnoozeSuggestionResponse.model_validate(await engine.suggest_snooze_time(body))


@router.get("/snooze/quick-options", response_model=List[QuickSnoozeOptionResponse], summary="Preset snooze times")
async def quick_snooze_options(
    timezone: Optional[str] = None,
    engine: SnoozeEngine = Depends(get_snooze_engine)
):
    try:
        options = engine.get_quick_snooze_options(timezone)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return [QuickSnoozeOptionResponse.model_validate(option) for option in options]


# ========== SLA configuration ==========

@router.get("/sla/config", response_model=SLAConfig, summary="Active SLA configuration")
async def get_sla_config(tracker: SLATrackerService = Depends(get_sla_tracker)):
    return tracker.get_sla_config()


@router.patch("/sla/config", response_model=SLAConfig, summary="Update the SLA configuration")
async def update_sla_config(
    body: SLAConfigUpdateRequest,
    tracker: SLATrackerService = Depends(get_sla_tracker)
):
    return tracker.update_sla_config(body.model_dump(exclude_none=True))
