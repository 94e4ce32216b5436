"""
Follow-up Queue Module
======================

Bounded context for messages that need continued attention.

Responsibilities:
- Track follow-up items through their lifecycle (active, snoozed,
  waiting, escalated, completed, archived)
- Calculate business-hours SLA deadlines with VIP overrides
- Escalate at-risk items and report overdue ones
- Suggest snooze times (AI with deterministic fallback)
- Provide queue statistics and per-message history
"""

__version__ = "1.0.0"
