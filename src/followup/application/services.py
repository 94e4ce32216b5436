"""
Follow-up Queue Service
=======================

Application service owning the follow-up item lifecycle.

Every mutation follows the same order: validate, persist with retry,
append history (best-effort), invalidate caches (best-effort), emit a
metric. Items are only created through ``add_item`` and only deleted
through ``remove_item``.
"""

import dataclasses
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from src.config import (
    OPEN_STATUSES,
    FollowUpReason,
    Priority,
    QueueAction,
    QueueItemStatus,
    SLAStatus,
    settings,
)
from src.core import (
    DuplicateRecordError,
    QueueItemNotFoundError,
    QueueValidationError,
    RecordDecodeError,
)
from src.core.retry import RetryPolicy
from src.followup.application.dto import (
    BulkFailure,
    BulkOperationResult,
    ClassificationResult,
    EmailMetadata,
    QueueQueryOptions,
)
from src.followup.application.interfaces import (
    ICache,
    IMetricsRecorder,
    IQueueHistoryRepository,
    IQueueItemRepository,
    ISLAConfigProvider,
    IVIPDirectory,
)
from src.followup.domain import (
    BusinessHoursCalendar,
    FollowUpItem,
    QueueHistoryEntry,
    QueueStatistics,
    SnoozeOptions,
    VIPContact,
    compute_deadline,
    hours_between,
    sla_status_for,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ITEM_CACHE_PREFIX = "queue:item:"
LIST_CACHE_PREFIX = "queue:active:"
STATS_CACHE_KEY = "queue:stats"

# Fields callers may not set through update_item
IMMUTABLE_FIELDS = frozenset({"id", "email_id", "created_at", "action_count"})

# Engine-assigned on add
ENGINE_FIELDS = frozenset({"id", "created_at", "updated_at", "action_count"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FollowUpQueueService:
    """
    Service for the follow-up queue.

    Coordinates between domain logic, storage, cache and metrics. One
    instance per process, built with explicit ports.
    """

    def __init__(
        self,
        item_repository: IQueueItemRepository,
        history_repository: IQueueHistoryRepository,
        cache: ICache,
        metrics: IMetricsRecorder,
        config_provider: ISLAConfigProvider,
        vip_directory: Optional[IVIPDirectory] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        item_ttl: int = settings.cache_item_ttl,
        list_ttl: int = settings.cache_list_ttl,
        stats_ttl: int = settings.cache_stats_ttl
    ):
        self._items = item_repository
        self._history = history_repository
        self._cache = cache
        self._metrics = metrics
        self._config_provider = config_provider
        self._vip_directory = vip_directory
        self._retry = retry_policy or RetryPolicy(
            settings.retry_max_attempts,
            settings.retry_base_delay_seconds
        )
        self._clock = clock
        self._item_ttl = item_ttl
        self._list_ttl = list_ttl
        self._stats_ttl = stats_ttl

    # ========== Mutators ==========

    async def add_item(self, data: Dict[str, Any]) -> str:
        """
        Add a message to the queue and return the item id.

        Idempotent per ``email_id``: an existing item's id is returned
        unchanged.

        Raises:
            QueueValidationError: missing identifiers or invalid fields
            RetryExhaustedError: storage kept failing
        """
        if not data.get("email_id") or not data.get("thread_id"):
            raise QueueValidationError(
                "Missing required fields: email_id and thread_id",
                ["Missing required email identifiers"]
            )
        self._reject_unknown_fields(data, immutable=ENGINE_FIELDS)

        existing = await self._items.find_by_email_id(data["email_id"])
        if existing is not None:
            logger.warning(
                "Queue item already exists for email_id",
                extra={"email_id": data["email_id"], "item_id": existing.id}
            )
            return existing.id

        now = self._clock()
        item = FollowUpItem.create(data, now)
        self._validate(item, now)

        try:
            item_id = await self._retry.run(lambda: self._items.insert(item), "add_queue_item")
        except DuplicateRecordError:
            winner = await self._items.find_by_email_id(item.email_id)
            if winner is None:
                raise
            logger.warning(
                "Concurrent add resolved to existing item",
                extra={"email_id": item.email_id, "item_id": winner.id}
            )
            return winner.id

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=item.email_id,
            action=QueueAction.ADDED,
            new_status=item.status,
            new_priority=item.priority,
            timestamp=now,
            metadata={"reason": item.reason.value}
        ))
        await self._invalidate_caches()

        logger.info(
            "Added item to follow-up queue",
            extra={
                "item_id": item_id,
                "email_id": item.email_id,
                "priority": item.priority.value,
                "reason": item.reason.value
            }
        )
        self._metrics.track_metric("queue.items.added", 1, {
            "priority": item.priority.value,
            "reason": item.reason.value
        })
        return item_id

    async def update_item(self, item_id: str, updates: Dict[str, Any]) -> FollowUpItem:
        """
        Merge ``updates`` into an item and persist it.

        Raises:
            QueueItemNotFoundError: no such item
            QueueValidationError: unknown/immutable fields or invalid result
        """
        self._reject_unknown_fields(updates, immutable=IMMUTABLE_FIELDS)
        existing = await self._require(item_id)

        updated = await self._apply(existing, updates)

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=existing.email_id,
            action=QueueAction.UPDATED,
            old_status=existing.status,
            new_status=updated.status,
            old_priority=existing.priority,
            new_priority=updated.priority,
            timestamp=updated.updated_at,
            metadata=dict(updates)
        ))

        logger.info("Updated queue item", extra={"item_id": item_id, "fields": sorted(updates)})
        return updated

    async def remove_item(self, item_id: str) -> bool:
        """Delete an item. Returns False (and logs) when it does not exist."""
        existing = await self._items.get_by_id(item_id)
        if existing is None:
            logger.warning("Cannot remove: queue item not found", extra={"item_id": item_id})
            return False

        await self._retry.run(lambda: self._items.delete(item_id), "remove_queue_item")

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=existing.email_id,
            action=QueueAction.ARCHIVED,
            old_status=existing.status,
            timestamp=self._clock()
        ))
        await self._invalidate_caches(item_id)

        logger.info("Removed queue item", extra={"item_id": item_id})
        return True

    async def snooze_item(self, item_id: str, options: SnoozeOptions) -> FollowUpItem:
        """
        Hide an item until ``options.until``.

        Raises:
            QueueValidationError: ``until`` is not strictly in the future
            QueueItemNotFoundError: no such item
        """
        now = self._clock()
        if options.until <= now:
            raise QueueValidationError(
                "Snooze time must be in the future",
                ["Snooze time cannot be in the past"],
                {"id": item_id, "until": options.until.isoformat()}
            )

        existing = await self._require(item_id)
        updated = await self._apply(existing, {
            "status": QueueItemStatus.SNOOZED,
            "snoozed_until": options.until,
            "snooze_count": existing.snooze_count + 1,
            "ai_reasoning": options.ai_reasoning if options.smart else None,
        })

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=existing.email_id,
            action=QueueAction.SNOOZED,
            old_status=existing.status,
            new_status=QueueItemStatus.SNOOZED,
            timestamp=now,
            metadata={
                "snoozed_until": options.until.isoformat(),
                "reason": options.reason,
                "smart": options.smart
            }
        ))

        logger.info(
            "Snoozed queue item",
            extra={"item_id": item_id, "until": options.until.isoformat(), "smart": options.smart}
        )
        self._metrics.track_metric("queue.items.snoozed", 1, {"smart": str(options.smart).lower()})
        return updated

    async def mark_completed(self, item_id: str) -> FollowUpItem:
        """Mark an item as done."""
        existing = await self._require(item_id)
        now = self._clock()
        updated = await self._apply(existing, {
            "status": QueueItemStatus.COMPLETED,
            "last_action_date": now,
        })

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=existing.email_id,
            action=QueueAction.COMPLETED,
            old_status=existing.status,
            new_status=QueueItemStatus.COMPLETED,
            timestamp=now
        ))

        logger.info("Marked queue item as completed", extra={"item_id": item_id})
        self._metrics.track_metric("queue.items.completed", 1, {"priority": existing.priority.value})
        return updated

    async def mark_waiting(self, item_id: str, waiting_on: str, reason: str) -> FollowUpItem:
        """Park an item until someone else replies."""
        existing = await self._require(item_id)
        now = self._clock()
        updated = await self._apply(existing, {
            "status": QueueItemStatus.WAITING,
            "waiting_on_email": waiting_on,
            "waiting_reason": reason,
            "last_action_date": now,
            "original_sent_date": existing.original_sent_date or now,
        })

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=existing.email_id,
            action=QueueAction.MARKED_WAITING,
            old_status=existing.status,
            new_status=QueueItemStatus.WAITING,
            timestamp=now,
            metadata={"waiting_on": waiting_on, "reason": reason}
        ))

        logger.info("Marked queue item as waiting", extra={"item_id": item_id, "waiting_on": waiting_on})
        self._metrics.track_metric("queue.items.waiting", 1)
        return updated

    async def escalate(self, item_id: str, new_priority: Priority) -> FollowUpItem:
        """Set a new priority and move the item to ESCALATED."""
        existing = await self._require(item_id)
        updated = await self._apply(existing, {
            "priority": new_priority,
            "status": QueueItemStatus.ESCALATED,
        })

        await self._record_history(QueueHistoryEntry(
            queue_item_id=item_id,
            email_id=existing.email_id,
            action=QueueAction.ESCALATED,
            old_status=existing.status,
            new_status=QueueItemStatus.ESCALATED,
            old_priority=existing.priority,
            new_priority=updated.priority,
            timestamp=updated.updated_at
        ))

        logger.info(
            "Escalated queue item",
            extra={"item_id": item_id, "from": existing.priority.value, "to": updated.priority.value}
        )
        self._metrics.track_metric("queue.items.escalated", 1, {
            "from": existing.priority.value,
            "to": updated.priority.value
        })
        return updated

    async def bulk_snooze(self, item_ids: Iterable[str], options: SnoozeOptions) -> BulkOperationResult:
        """Snooze each id independently; one failure never aborts the batch."""
        return await self._bulk("bulk_snooze", item_ids, lambda item_id: self.snooze_item(item_id, options))

    async def bulk_complete(self, item_ids: Iterable[str]) -> BulkOperationResult:
        """Complete each id independently; one failure never aborts the batch."""
        return await self._bulk("bulk_complete", item_ids, self.mark_completed)

    async def process_new_classification(
        self,
        classification: ClassificationResult,
        email: EmailMetadata
    ) -> Optional[str]:
        """
        Queue a freshly classified message when it needs follow-up.

        Returns the item id, or None when no follow-up is needed or the
        add failed (the failure is logged).
        """
        try:
            vip = await self._lookup_vip(email.from_address)
            is_vip = vip is not None or classification.is_vip

            needs_follow_up = (
                classification.needs_reply
                or classification.waiting_on_others
                or classification.priority in (Priority.CRITICAL, Priority.HIGH)
                or is_vip
            )
            if not needs_follow_up:
                return None

            if classification.waiting_on_others:
                reason = FollowUpReason.WAITING_ON_OTHERS
            elif is_vip:
                reason = FollowUpReason.VIP_REQUIRES_ATTENTION
            else:
                reason = FollowUpReason.NEEDS_REPLY

            now = self._clock()
            config = self._config_provider.get_config()
            deadline = compute_deadline(config, email.received_date, classification.priority, vip)
            remaining = hours_between(now, deadline)

            data: Dict[str, Any] = {
                "email_id": email.email_id,
                "thread_id": email.thread_id,
                "subject": email.subject,
                "from_address": email.from_address,
                "to_address": email.to_address,
                "received_date": email.received_date,
                "priority": classification.priority,
                "category": classification.category,
                "labels": list(classification.labels),
                "reason": reason,
                "status": QueueItemStatus.WAITING if classification.waiting_on_others else QueueItemStatus.ACTIVE,
                "sla_deadline": deadline,
                "sla_status": sla_status_for(remaining, classification.priority),
                "time_remaining": remaining,
                "suggested_snooze_time": classification.suggested_snooze_time,
                "suggested_actions": list(classification.suggested_actions) or None,
                "ai_reasoning": classification.reasoning,
            }
            if classification.waiting_on_others:
                data["original_sent_date"] = email.received_date

            item_id = await self.add_item(data)

            logger.info(
                "Added classification to queue",
                extra={
                    "item_id": item_id,
                    "email_id": email.email_id,
                    "priority": classification.priority.value,
                    "reason": reason.value,
                    "is_vip": is_vip
                }
            )
            return item_id

        except Exception as e:
            logger.error(
                "Failed to process classification",
                extra={"email_id": email.email_id, "error": str(e), "error_type": type(e).__name__}
            )
            return None

    # ========== Sweeps ==========

    async def check_snoozed_items(self) -> List[FollowUpItem]:
        """
        Resurface every snoozed item whose time has come.

        A failure on one item is logged and the sweep continues.
        """
        now = self._clock()
        due = await self._items.find(QueueQueryOptions(
            status=[QueueItemStatus.SNOOZED],
            snoozed_until_before=now,
            sort_by="snoozed_until",
            sort_order="asc",
            limit=1000
        ))

        resurfaced: List[FollowUpItem] = []
        for item in due:
            try:
                updated = await self._apply(item, {
                    "status": QueueItemStatus.ACTIVE,
                    "snoozed_until": None,
                })
            except Exception as e:
                logger.error(
                    "Failed to resurface snoozed item",
                    extra={"item_id": item.id, "error": str(e)}
                )
                continue

            await self._record_history(QueueHistoryEntry(
                queue_item_id=item.id,
                email_id=item.email_id,
                action=QueueAction.RESURFACED,
                old_status=QueueItemStatus.SNOOZED,
                new_status=QueueItemStatus.ACTIVE,
                timestamp=now
            ))
            resurfaced.append(updated)
            logger.info("Resurfaced snoozed item", extra={"item_id": item.id, "email_id": item.email_id})

        self._metrics.track_metric("queue.items.resurfaced", len(resurfaced))
        return resurfaced

    # ========== Readers ==========

    async def get_item(self, item_id: str) -> Optional[FollowUpItem]:
        """One item, or None when absent or undecodable."""
        try:
            return await self._cache.get(
                f"{ITEM_CACHE_PREFIX}{item_id}",
                lambda: self._items.get_by_id(item_id),
                ttl=self._item_ttl
            )
        except RecordDecodeError as e:
            logger.error(
                "Stored queue item could not be decoded",
                extra={"item_id": item_id, "field": e.field, "raw": repr(e.raw)[:200], "error": e.message}
            )
            return None

    async def get_active_items(self, query: Optional[QueueQueryOptions] = None) -> List[FollowUpItem]:
        """
        Items that still need attention.

        Without explicit statuses this means ACTIVE or ESCALATED.
        """
        query = query or QueueQueryOptions()
        if query.status is None:
            query = query.model_copy(update={"status": list(OPEN_STATUSES)})

        return await self._cache.get(
            f"{LIST_CACHE_PREFIX}{query.cache_key()}",
            lambda: self._items.find(query),
            ttl=self._list_ttl
        ) or []

    async def get_waiting_items(self) -> List[FollowUpItem]:
        return await self.get_active_items(QueueQueryOptions(status=[QueueItemStatus.WAITING]))

    async def get_overdue_items(self) -> List[FollowUpItem]:
        return await self.get_active_items(QueueQueryOptions(sla_status=[SLAStatus.OVERDUE], limit=1000))

    async def get_items_by_priority(self, priority: Priority) -> List[FollowUpItem]:
        return await self.get_active_items(QueueQueryOptions(priority=[priority]))

    async def get_item_history(self, email_id: str) -> List[QueueHistoryEntry]:
        """History for a message, newest first. Read failures yield an empty list."""
        try:
            return await self._history.find_by_email_id(email_id)
        except Exception as e:
            logger.error("Failed to get item history", extra={"email_id": email_id, "error": str(e)})
            return []

    async def get_statistics(self) -> QueueStatistics:
        """Aggregate counts and averages over every stored item (cached)."""
        return await self._cache.get(STATS_CACHE_KEY, self._compute_statistics, ttl=self._stats_ttl)

    async def _compute_statistics(self) -> QueueStatistics:
        stop = self._metrics.start_timer("queue.statistics.computed")
        items = await self._items.list_all()
        now = self._clock()
        calendar = BusinessHoursCalendar(self._config_provider.get_config())
        today_start = calendar.start_of_day(now)
        week_start = now - timedelta(days=7)

        stats = QueueStatistics.empty(now)
        stats.total_items = len(items)

        time_in_queue = wait_time = snooze_time = response_time = 0.0
        response_count = 0

        for item in items:
            stats.status_counts[item.status.value] += 1
            stats.priority_counts[item.priority.value] += 1
            stats.sla_status_counts[item.sla_status.value] += 1

            if item.status == QueueItemStatus.COMPLETED:
                if item.updated_at >= today_start:
                    stats.completed_today += 1
                if item.updated_at >= week_start:
                    stats.completed_this_week += 1
                if item.last_action_date is not None:
                    response_time += hours_between(item.added_to_queue_at, item.last_action_date)
                    response_count += 1

            end = item.updated_at if item.status == QueueItemStatus.COMPLETED else now
            time_in_queue += hours_between(item.added_to_queue_at, end)

            if item.status == QueueItemStatus.WAITING and item.original_sent_date is not None:
                stats.waiting_on_others_count += 1
                wait_time += hours_between(item.original_sent_date, now)

            if item.snooze_count > 0 and item.snoozed_until is not None:
                stats.snoozed_count += 1
                snooze_time += hours_between(item.added_to_queue_at, item.snoozed_until)

        stats.average_time_in_queue = _average(time_in_queue, stats.total_items)
        stats.average_wait_time = _average(wait_time, stats.waiting_on_others_count)
        stats.average_snooze_time = _average(snooze_time, stats.snoozed_count)
        stats.average_response_time = _average(response_time, response_count)

        elapsed_ms = stop()
        logger.info(
            "Calculated queue statistics",
            extra={"total_items": stats.total_items, "latency_ms": round(elapsed_ms, 2)}
        )
        return stats

    # ========== Helpers ==========

    async def _require(self, item_id: str) -> FollowUpItem:
        item = await self._items.get_by_id(item_id)
        if item is None:
            raise QueueItemNotFoundError(item_id)
        return item

    async def _apply(self, existing: FollowUpItem, updates: Dict[str, Any]) -> FollowUpItem:
        """Merge, bump bookkeeping, validate, persist with retry, invalidate caches."""
        now = self._clock()
        updated = dataclasses.replace(existing, **{
            **updates,
            "updated_at": now,
            "action_count": existing.action_count + 1,
        })
        self._validate(updated, now, check_snooze="snoozed_until" in updates)

        found = await self._retry.run(
            lambda: self._items.update(existing.id, updated),
            "update_queue_item"
        )
        if not found:
            raise QueueItemNotFoundError(existing.id)

        await self._invalidate_caches(existing.id)
        return updated

    def _validate(self, item: FollowUpItem, now: datetime, check_snooze: bool = True) -> None:
        errors = item.validation_errors(now, check_snooze)
        if errors:
            raise QueueValidationError(
                "Queue item validation failed",
                errors,
                {"id": item.id, "email_id": item.email_id}
            )

    def _reject_unknown_fields(self, data: Dict[str, Any], immutable: frozenset = frozenset()) -> None:
        known = FollowUpItem.field_names()
        unknown = sorted(key for key in data if key not in known)
        locked = sorted(key for key in data if key in immutable)
        errors = [f"Unknown field: {key}" for key in unknown]
        errors += [f"Field cannot be changed: {key}" for key in locked]
        if errors:
            raise QueueValidationError("Invalid queue item fields", errors)

    async def _lookup_vip(self, address: str) -> Optional[VIPContact]:
        if self._vip_directory is None or not address:
            return None
        try:
            return await self._vip_directory.is_vip(address)
        except Exception as e:
            logger.warning("VIP lookup failed", extra={"address": address, "error": str(e)})
            return None

    async def _bulk(self, operation: str, item_ids: Iterable[str], action) -> BulkOperationResult:
        result = BulkOperationResult()
        for item_id in item_ids:
            result.total_processed += 1
            try:
                await action(item_id)
                result.successful.append(item_id)
            except Exception as e:
                result.failed.append(BulkFailure(id=item_id, error=str(e)))

        logger.info(
            f"{operation} finished",
            extra={
                "total": result.total_processed,
                "successful": len(result.successful),
                "failed": len(result.failed)
            }
        )
        return result

    async def _record_history(self, entry: QueueHistoryEntry) -> None:
        """Append history; failures are logged and never fail the operation."""
        try:
            await self._history.insert(entry)
        except Exception as e:
            logger.warning(
                "Failed to record queue history",
                extra={"item_id": entry.queue_item_id, "action": entry.action.value, "error": str(e)}
            )

    async def _invalidate_caches(self, item_id: Optional[str] = None) -> None:
        """Drop list/statistics caches (and one item entry); failures are logged."""
        try:
            await self._cache.invalidate(LIST_CACHE_PREFIX)
            await self._cache.invalidate(STATS_CACHE_KEY)
            if item_id is not None:
                await self._cache.invalidate(re.compile(rf"^{re.escape(ITEM_CACHE_PREFIX + item_id)}$"))
        except Exception as e:
            logger.warning("Failed to invalidate queue caches", extra={"error": str(e)})


def _average(total: float, count: int) -> float:
    return total / count if count else 0.0
