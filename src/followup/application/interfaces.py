"""
Follow-up Ports
===============

Abstractions the follow-up services depend on (Dependency Inversion).
Concrete adapters live in ``src.followup.infrastructure`` and
``src.infrastructure``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from src.followup.domain import (
    AISnoozeSuggestion,
    FollowUpItem,
    QueueHistoryEntry,
    SLAConfig,
    VIPContact,
    WorkingHours,
)
from src.infrastructure.cache import ICache
from src.shared.infrastructure.metrics import IMetricsRecorder

if TYPE_CHECKING:
    from src.followup.application.dto import EmailContext, QueueQueryOptions


# ========== Repository Interfaces ==========

class IQueueItemRepository(ABC):
    """Interface for follow-up item storage."""

    @abstractmethod
    async def insert(self, item: FollowUpItem) -> str:
        """
        Store a new item and return its id.

        Raises:
            DuplicateRecordError: if an item with the same email_id exists
            RepositoryException: on any other storage failure
        """

    @abstractmethod
    async def update(self, item_id: str, item: FollowUpItem) -> bool:
        """Overwrite a stored item. Returns False when no row matched."""

    @abstractmethod
    async def delete(self, item_id: str) -> bool:
        """Delete a stored item. Returns False when no row matched."""

    @abstractmethod
    async def get_by_id(self, item_id: str) -> Optional[FollowUpItem]:
        """Get an item by id."""

    @abstractmethod
    async def find_by_email_id(self, email_id: str) -> Optional[FollowUpItem]:
        """Get the item for a message, if any."""

    @abstractmethod
    async def find(self, query: "QueueQueryOptions") -> List[FollowUpItem]:
        """Filtered, sorted, paginated read."""

    @abstractmethod
    async def list_all(self) -> List[FollowUpItem]:
        """Every stored item."""


class IQueueHistoryRepository(ABC):
    """Interface for the append-only history log."""

    @abstractmethod
    async def insert(self, entry: QueueHistoryEntry) -> str:
        """Append an entry and return its id."""

    @abstractmethod
    async def find_by_email_id(self, email_id: str) -> List[QueueHistoryEntry]:
        """Entries for a message, newest first."""


# ========== Collaborator Interfaces ==========

class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""

    def set_config(self, config: SLAConfig) -> None:
        """Replace the active configuration. Optional for read-only providers."""
        raise NotImplementedError(f"{type(self).__name__} is read-only")


class IVIPDirectory(ABC):
    """Interface for VIP contact lookup."""

    @abstractmethod
    async def is_vip(self, address: str) -> Optional[VIPContact]:
        """The VIP record for an address, or None."""


class ISnoozeSuggestionClient(ABC):
    """Interface for the AI snooze suggestion source."""

    @abstractmethod
    async def suggest_snooze_time(
        self,
        email: "EmailContext",
        user_timezone: str,
        working_hours: Optional[WorkingHours],
        now: datetime
    ) -> AISnoozeSuggestion:
        """
        Ask for a resurface time.

        Raises:
            ExternalServiceException: on any failure
        """


__all__ = [
    "IQueueItemRepository",
    "IQueueHistoryRepository",
    "ISLAConfigProvider",
    "IVIPDirectory",
    "ISnoozeSuggestionClient",
    "ICache",
    "IMetricsRecorder",
]
