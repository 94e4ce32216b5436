"""
Follow-up Infrastructure Repositories
=====================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Each call runs in its own session so a
failed write never leaves a half-applied transaction behind.
"""

from typing import List, Optional

from sqlalchemy import case, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import FollowUpReason, Priority, QueueAction, QueueItemStatus, SLAStatus
from src.core import DuplicateRecordError, RecordDecodeError, RepositoryException
from src.followup.application.dto import QueueQueryOptions
from src.followup.application.interfaces import IQueueHistoryRepository, IQueueItemRepository
from src.followup.domain import FollowUpItem, QueueHistoryEntry
from src.followup.infrastructure.models import (
    FollowUpItemModel,
    QueueHistoryModel,
    decode_enum,
    decode_metadata,
    decode_string_list,
    encode_metadata,
    encode_string_list,
)
from src.infrastructure.database import get_session_context
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

PRIORITY_RANK = case(
    {
        Priority.CRITICAL.value: 4,
        Priority.HIGH.value: 3,
        Priority.MEDIUM.value: 2,
        Priority.LOW.value: 1,
    },
    value=FollowUpItemModel.priority,
    else_=0,
)

SORT_COLUMNS = {
    "added_to_queue_at": FollowUpItemModel.added_to_queue_at,
    "received_date": FollowUpItemModel.received_date,
    "sla_deadline": FollowUpItemModel.sla_deadline,
    "snoozed_until": FollowUpItemModel.snoozed_until,
    "updated_at": FollowUpItemModel.updated_at,
}


# ========== Mapping ==========

def _item_values(item: FollowUpItem) -> dict:
    return {
        "id": item.id,
        "email_id": item.email_id,
        "thread_id": item.thread_id,
        "subject": item.subject,
        "from_address": item.from_address,
        "to_address": item.to_address,
        "received_date": item.received_date,
        "priority": item.priority.value,
        "category": item.category,
        "labels": encode_string_list(item.labels or []),
        "reason": item.reason.value,
        "status": item.status.value,
        "added_to_queue_at": item.added_to_queue_at,
        "snoozed_until": item.snoozed_until,
        "last_action_date": item.last_action_date,
        "sla_deadline": item.sla_deadline,
        "sla_status": item.sla_status.value,
        "time_remaining": item.time_remaining,
        "waiting_on_email": item.waiting_on_email,
        "waiting_reason": item.waiting_reason,
        "original_sent_date": item.original_sent_date,
        "suggested_snooze_time": item.suggested_snooze_time,
        "suggested_actions": encode_string_list(item.suggested_actions),
        "ai_reasoning": item.ai_reasoning,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
        "action_count": item.action_count,
        "snooze_count": item.snooze_count,
    }


def _to_item(model: FollowUpItemModel) -> FollowUpItem:
    """Decode a row eagerly; any malformed field raises RecordDecodeError."""
    return FollowUpItem(
        id=model.id,
        email_id=model.email_id,
        thread_id=model.thread_id,
        subject=model.subject,
        from_address=model.from_address,
        to_address=model.to_address,
        received_date=model.received_date,
        priority=decode_enum(Priority, "priority", model.priority),
        category=model.category,
        labels=decode_string_list("labels", model.labels) or [],
        reason=decode_enum(FollowUpReason, "reason", model.reason),
        status=decode_enum(QueueItemStatus, "status", model.status),
        added_to_queue_at=model.added_to_queue_at,
        sla_status=decode_enum(SLAStatus, "sla_status", model.sla_status),
        created_at=model.created_at,
        updated_at=model.updated_at,
        action_count=model.action_count,
        snooze_count=model.snooze_count,
        snoozed_until=model.snoozed_until,
        last_action_date=model.last_action_date,
        sla_deadline=model.sla_deadline,
        time_remaining=model.time_remaining,
        waiting_on_email=model.waiting_on_email,
        waiting_reason=model.waiting_reason,
        original_sent_date=model.original_sent_date,
        suggested_snooze_time=model.suggested_snooze_time,
        suggested_actions=decode_string_list("suggested_actions", model.suggested_actions),
        ai_reasoning=model.ai_reasoning,
    )


def _to_entry(model: QueueHistoryModel) -> QueueHistoryEntry:
    return QueueHistoryEntry(
        id=model.id,
        queue_item_id=model.queue_item_id,
        email_id=model.email_id,
        action=decode_enum(QueueAction, "action", model.action),
        old_status=decode_enum(QueueItemStatus, "old_status", model.old_status, nullable=True),
        new_status=decode_enum(QueueItemStatus, "new_status", model.new_status, nullable=True),
        old_priority=decode_enum(Priority, "old_priority", model.old_priority, nullable=True),
        new_priority=decode_enum(Priority, "new_priority", model.new_priority, nullable=True),
        timestamp=model.timestamp,
        metadata=decode_metadata("metadata", model.metadata_json),
    )


def _decode_rows(models) -> List[FollowUpItem]:
    """Decode rows, skipping (and logging) any that are malformed."""
    items = []
    for model in models:
        try:
            items.append(_to_item(model))
        except RecordDecodeError as e:
            logger.error(
                "Skipping undecodable queue item",
                extra={"item_id": model.id, "field": e.field, "error": e.message}
            )
    return items


# ========== Repositories ==========

class SQLAlchemyQueueItemRepository(IQueueItemRepository):
    """
    SQLAlchemy implementation of the follow-up item repository.

    Storage errors surface as RepositoryException; a unique violation on
    ``email_id`` surfaces as DuplicateRecordError.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    async def insert(self, item: FollowUpItem) -> str:
        try:
            async with get_session_context(self._session_maker) as session:
                session.add(FollowUpItemModel(**_item_values(item)))
        except IntegrityError as e:
            raise DuplicateRecordError(
                f"Queue item already exists for email_id {item.email_id}",
                {"email_id": item.email_id, "error": str(e.orig)}
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to insert queue item: {e}", {"email_id": item.email_id})
        return item.id

    async def update(self, item_id: str, item: FollowUpItem) -> bool:
        values = _item_values(item)
        values.pop("id")
        try:
            async with get_session_context(self._session_maker) as session:
                model = await session.get(FollowUpItemModel, item_id)
                if model is None:
                    return False
                for key, value in values.items():
                    setattr(model, key, value)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update queue item: {e}", {"item_id": item_id})
        return True

    async def delete(self, item_id: str) -> bool:
        try:
            async with get_session_context(self._session_maker) as session:
                result = await session.execute(
                    delete(FollowUpItemModel).where(FollowUpItemModel.id == item_id)
                )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to delete queue item: {e}", {"item_id": item_id})
        return result.rowcount > 0

    async def get_by_id(self, item_id: str) -> Optional[FollowUpItem]:
        model = await self._first(select(FollowUpItemModel).where(FollowUpItemModel.id == item_id))
        return _to_item(model) if model is not None else None

    async def find_by_email_id(self, email_id: str) -> Optional[FollowUpItem]:
        model = await self._first(select(FollowUpItemModel).where(FollowUpItemModel.email_id == email_id))
        return _to_item(model) if model is not None else None

    async def find(self, query: QueueQueryOptions) -> List[FollowUpItem]:
        stmt = select(FollowUpItemModel)

        # Filters; date bounds are inclusive
        if query.status:
            stmt = stmt.where(FollowUpItemModel.status.in_([s.value for s in query.status]))
        if query.priority:
            stmt = stmt.where(FollowUpItemModel.priority.in_([p.value for p in query.priority]))
        if query.reason:
            stmt = stmt.where(FollowUpItemModel.reason.in_([r.value for r in query.reason]))
        if query.sla_status:
            stmt = stmt.where(FollowUpItemModel.sla_status.in_([s.value for s in query.sla_status]))
        if query.category:
            stmt = stmt.where(FollowUpItemModel.category == query.category)
        if query.added_after:
            stmt = stmt.where(FollowUpItemModel.added_to_queue_at >= query.added_after)
        if query.added_before:
            stmt = stmt.where(FollowUpItemModel.added_to_queue_at <= query.added_before)
        if query.sla_deadline_before:
            stmt = stmt.where(FollowUpItemModel.sla_deadline <= query.sla_deadline_before)
        if query.snoozed_until_before:
            stmt = stmt.where(FollowUpItemModel.snoozed_until <= query.snoozed_until_before)

        # Sorting
        column = PRIORITY_RANK if query.sort_by == "priority" else SORT_COLUMNS.get(
            query.sort_by, FollowUpItemModel.added_to_queue_at
        )
        order = column.desc() if query.sort_order == "desc" else column.asc()
        stmt = stmt.order_by(order, FollowUpItemModel.added_to_queue_at.asc(), FollowUpItemModel.id.asc())

        stmt = stmt.limit(query.limit).offset(query.offset)
        return _decode_rows(await self._all(stmt))

    async def list_all(self) -> List[FollowUpItem]:
        return _decode_rows(await self._all(select(FollowUpItemModel)))

    async def _first(self, stmt) -> Optional[FollowUpItemModel]:
        try:
            async with get_session_context(self._session_maker) as session:
                result = await session.execute(stmt)
                return result.scalars().first()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read queue item: {e}")

    async def _all(self, stmt) -> List[FollowUpItemModel]:
        try:
            async with get_session_context(self._session_maker) as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read queue items: {e}")


class SQLAlchemyQueueHistoryRepository(IQueueHistoryRepository):
    """SQLAlchemy implementation of the append-only history log."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    async def insert(self, entry: QueueHistoryEntry) -> str:
        model = QueueHistoryModel(
            id=entry.id,
            queue_item_id=entry.queue_item_id,
            email_id=entry.email_id,
            action=entry.action.value,
            old_status=entry.old_status.value if entry.old_status else None,
            new_status=entry.new_status.value if entry.new_status else None,
            old_priority=entry.old_priority.value if entry.old_priority else None,
            new_priority=entry.new_priority.value if entry.new_priority else None,
            timestamp=entry.timestamp,
            metadata_json=encode_metadata(entry.metadata),
        )
        try:
            async with get_session_context(self._session_maker) as session:
                session.add(model)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to record queue history: {e}", {"item_id": entry.queue_item_id})
        return entry.id

    async def find_by_email_id(self, email_id: str) -> List[QueueHistoryEntry]:
        stmt = (
            select(QueueHistoryModel)
            .where(QueueHistoryModel.email_id == email_id)
            .order_by(QueueHistoryModel.timestamp.desc(), QueueHistoryModel.id.desc())
        )
        try:
            async with get_session_context(self._session_maker) as session:
                result = await session.execute(stmt)
                models = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read queue history: {e}", {"email_id": email_id})

        entries = []
        for model in models:
            try:
                entries.append(_to_entry(model))
            except RecordDecodeError as e:
                logger.error(
                    "Skipping undecodable history entry",
                    extra={"entry_id": model.id, "field": e.field, "error": e.message}
                )
        return entries
