"""
Follow-up Application Layer
===========================

Application layer for the follow-up queue module.

Contains:
- Services: FollowUpQueueService, SLATrackerService, SnoozeEngine
- DTOs: query options, service inputs, API requests and responses
- Ports: repository, cache, metrics, VIP and AI interfaces

This layer depends on the domain layer and port interfaces,
but not on concrete infrastructure implementations.
"""

from src.followup.application.dto import (
    BulkOperationResult,
    ClassificationResult,
    EmailContext,
    EmailMetadata,
    QueueQueryOptions,
    SmartSnoozeRequest,
    UserPreferences,
)
from src.followup.application.interfaces import (
    ICache,
    IMetricsRecorder,
    IQueueHistoryRepository,
    IQueueItemRepository,
    ISLAConfigProvider,
    ISnoozeSuggestionClient,
    IVIPDirectory,
)
from src.followup.application.services import FollowUpQueueService
from src.followup.application.sla_tracker import SLATrackerService
from src.followup.application.snooze_engine import SnoozeEngine

__all__ = [
    # DTOs
    "BulkOperationResult",
    "ClassificationResult",
    "EmailContext",
    "EmailMetadata",
    "QueueQueryOptions",
    "SmartSnoozeRequest",
    "UserPreferences",
    # Services
    "FollowUpQueueService",
    "SLATrackerService",
    "SnoozeEngine",
    # Ports
    "ICache",
    "IMetricsRecorder",
    "IQueueHistoryRepository",
    "IQueueItemRepository",
    "ISLAConfigProvider",
    "ISnoozeSuggestionClient",
    "IVIPDirectory",
]
