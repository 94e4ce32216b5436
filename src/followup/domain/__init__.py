"""
Follow-up Domain Layer
======================

Domain layer for the follow-up queue module.

Contains:
- Entities: FollowUpItem, QueueHistoryEntry, QueueStatistics
- Value Objects: SLAConfig, WorkingHours, VIPContact, snooze suggestions
- Domain Services: BusinessHoursCalendar, escalation ladder, SLA status rule

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.followup.domain.entities import FollowUpItem, QueueHistoryEntry, QueueStatistics
from src.followup.domain.value_objects import (
    AISnoozeSuggestion,
    AT_RISK_THRESHOLDS,
    BusinessHoursCalendar,
    QuickSnoozeOption,
    SLAConfig,
    SnoozeAlternative,
    SnoozeOptions,
    SnoozeSuggestion,
    VIPContact,
    WorkingHours,
    compute_deadline,
    escalate_priority,
    hours_between,
    sla_hours_for,
    sla_status_for,
)

__all__ = [
    # Entities
    "FollowUpItem",
    "QueueHistoryEntry",
    "QueueStatistics",
    # Value Objects & Services
    "AISnoozeSuggestion",
    "AT_RISK_THRESHOLDS",
    "BusinessHoursCalendar",
    "QuickSnoozeOption",
    "SLAConfig",
    "SnoozeAlternative",
    "SnoozeOptions",
    "SnoozeSuggestion",
    "VIPContact",
    "WorkingHours",
    "compute_deadline",
    "escalate_priority",
    "hours_between",
    "sla_hours_for",
    "sla_status_for",
]
