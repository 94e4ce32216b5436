"""
Follow-up Infrastructure Layer
==============================

Infrastructure implementations for the follow-up queue:
- Models: SQLAlchemy ORM models and column codecs
- Repositories: Data access layer
- External: SLA config watcher, VIP directory, LLM snooze client, sweep scheduler
"""

from src.followup.infrastructure.external import (
    ConfigVIPDirectory,
    LLMSnoozeSuggestionClient,
    SLAConfigManager,
    SweepScheduler,
)
from src.followup.infrastructure.models import FollowUpItemModel, QueueHistoryModel
from src.followup.infrastructure.repositories import (
    SQLAlchemyQueueHistoryRepository,
    SQLAlchemyQueueItemRepository,
)

__all__ = [
    "FollowUpItemModel",
    "QueueHistoryModel",
    "SQLAlchemyQueueItemRepository",
    "SQLAlchemyQueueHistoryRepository",
    "SLAConfigManager",
    "ConfigVIPDirectory",
    "LLMSnoozeSuggestionClient",
    "SweepScheduler",
]
