"""
SLA Tracker Service
===================

Deadline arithmetic, status classification and the SLA sweeps.

Deadlines are computed in business hours through ``BusinessHoursCalendar``
using whatever configuration the provider currently holds, so a hot
reload takes effect on the next call.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from src.config import OPEN_STATUSES, Priority, QueueItemStatus, SLAStatus
from src.core import QueueValidationError
from src.followup.application.dto import QueueQueryOptions
from src.followup.application.interfaces import IMetricsRecorder, ISLAConfigProvider
from src.followup.application.services import FollowUpQueueService
from src.followup.domain import (
    FollowUpItem,
    SLAConfig,
    VIPContact,
    compute_deadline,
    escalate_priority,
    hours_between,
    sla_status_for,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SWEEP_LIMIT = 1000

# Remaining-time drift (hours) below which an unchanged status is not rewritten
DRIFT_TOLERANCE_HOURS = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SLATrackerService:
    """
    Tracks SLA deadlines for queued items.

    Example:
        tracker = SLATrackerService(queue, config_manager, metrics)
        overdue = await tracker.check_and_alert_overdue()
    """

    def __init__(
        self,
        queue: FollowUpQueueService,
        config_provider: ISLAConfigProvider,
        metrics: IMetricsRecorder,
        clock: Callable[[], datetime] = utc_now
    ):
        self._queue = queue
        self._config_provider = config_provider
        self._metrics = metrics
        self._clock = clock

    # ========== Deadline arithmetic ==========

    def calculate_deadline(self, item: FollowUpItem, vip: Optional[VIPContact] = None) -> datetime:
        return compute_deadline(self._config_provider.get_config(), item.received_date, item.priority, vip)

    def get_time_remaining(self, deadline: datetime) -> float:
        """Hours until ``deadline``; negative once it has passed."""
        return hours_between(self._clock(), deadline)

    def get_sla_status(self, deadline: datetime, priority: Optional[Priority] = None) -> SLAStatus:
        return sla_status_for(self.get_time_remaining(deadline), priority)

    # ========== Sweeps ==========

    async def check_and_alert_overdue(self) -> List[FollowUpItem]:
        """
        Log every open overdue item and report the count.

        Read failures are logged and yield an empty list.
        """
        try:
            overdue = await self._queue.get_active_items(QueueQueryOptions(
                status=list(OPEN_STATUSES),
                sla_status=[SLAStatus.OVERDUE],
                sort_by="sla_deadline",
                sort_order="asc",
                limit=SWEEP_LIMIT
            ))
        except Exception as e:
            logger.error("Failed to check overdue items", extra={"error": str(e)})
            overdue = []

        for item in overdue:
            hours_overdue = -self.get_time_remaining(item.sla_deadline) if item.sla_deadline else 0.0
            logger.warning(
                "SLA overdue",
                extra={
                    "item_id": item.id,
                    "email_id": item.email_id,
                    "subject": item.subject,
                    "priority": item.priority.value,
                    "hours_overdue": round(hours_overdue, 2)
                }
            )

        self._metrics.track_metric("sla.overdue", len(overdue))
        return overdue

    async def escalate_at_risk(self) -> int:
        """
        Raise every active at-risk item one priority level; returns how many were escalated.

        Escalated items leave the ACTIVE set, so each item moves up at most once.
        CRITICAL items are left as they are.
        """
        try:
            at_risk = await self._queue.get_active_items(QueueQueryOptions(
                status=[QueueItemStatus.ACTIVE],
                sla_status=[SLAStatus.AT_RISK],
                limit=SWEEP_LIMIT
            ))
        except Exception as e:
            logger.error("Failed to read at-risk items", extra={"error": str(e)})
            at_risk = []

        escalated = 0
        for item in at_risk:
            new_priority = escalate_priority(item.priority)
            if new_priority == item.priority:
                continue
            try:
                await self._queue.escalate(item.id, new_priority)
            except Exception as e:
                logger.error("Failed to escalate at-risk item", extra={"item_id": item.id, "error": str(e)})
                continue
            escalated += 1
            logger.info(
                "Escalated at-risk item",
                extra={"item_id": item.id, "from": item.priority.value, "to": new_priority.value}
            )

        self._metrics.track_metric("sla.escalated", escalated)
        return escalated

    async def update_item_sla_status(self, item: FollowUpItem) -> bool:
        """
        Recompute status and remaining time for one item.

        Returns True when the item was written.
        """
        if item.sla_deadline is None:
            return False

        remaining = self.get_time_remaining(item.sla_deadline)
        status = sla_status_for(remaining, item.priority)

        drifted = item.time_remaining is None or abs(remaining - item.time_remaining) > DRIFT_TOLERANCE_HOURS
        if status == item.sla_status and not drifted:
            return False

        await self._queue.update_item(item.id, {"sla_status": status, "time_remaining": remaining})
        return True

    async def update_all_sla_statuses(self) -> int:
        """Refresh every open item with a deadline; returns how many were written."""
        items = await self._queue.get_active_items(QueueQueryOptions(
            status=list(OPEN_STATUSES),
            limit=SWEEP_LIMIT
        ))

        updated = 0
        for item in items:
            try:
                if await self.update_item_sla_status(item):
                    updated += 1
            except Exception as e:
                logger.error("Failed to update SLA status", extra={"item_id": item.id, "error": str(e)})

        logger.info("Updated SLA statuses", extra={"checked": len(items), "updated": updated})
        return updated

    # ========== Configuration ==========

    def get_sla_config(self) -> SLAConfig:
        """A copy of the active configuration."""
        return self._config_provider.get_config().model_copy(deep=True)

    def update_sla_config(self, updates: Dict[str, Any]) -> SLAConfig:
        """
        Merge a partial update into the active configuration.

        Raises:
            QueueValidationError: the merged configuration is invalid
        """
        try:
            config = self._config_provider.get_config().merged(updates)
        except ValidationError as e:
            raise QueueValidationError(
                "Invalid SLA configuration",
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            )

        self._config_provider.set_config(config)
        logger.info("SLA configuration updated", extra={"fields": sorted(updates)})
        return config.model_copy(deep=True)
