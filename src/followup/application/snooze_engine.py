"""
Snooze Engine
=============

Suggests when a snoozed item should resurface.

AI suggestions come from an ``ISnoozeSuggestionClient``; when it is
missing or fails, a deterministic per-priority default is used instead.
Every suggestion is validated so that all offered times lie strictly in
the future and at least two alternatives exist.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from src.config import Priority, settings
from src.followup.application.dto import EmailContext, SmartSnoozeRequest, UserPreferences
from src.followup.application.interfaces import (
    ICache,
    IMetricsRecorder,
    ISLAConfigProvider,
    ISnoozeSuggestionClient,
)
from src.followup.domain import (
    AISnoozeSuggestion,
    BusinessHoursCalendar,
    QuickSnoozeOption,
    SLAConfig,
    SnoozeAlternative,
    SnoozeSuggestion,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SUGGESTION_CACHE_PREFIX = "snooze:suggestion:"

DEFAULT_SNOOZE_HOURS = {
    Priority.CRITICAL: 2,
    Priority.HIGH: 4,
    Priority.MEDIUM: 24,
    Priority.LOW: 72,
}
FALLBACK_SNOOZE_HOURS = 24

DEFAULT_CONFIDENCE = 0.5
AI_DEFAULT_CONFIDENCE = 0.7
MIN_ALTERNATIVES = 2
ALTERNATIVE_STEP = timedelta(hours=3)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def suggestion_cache_key(email: EmailContext) -> str:
    raw = f"{email.subject}:{email.priority}:{email.category}"
    return SUGGESTION_CACHE_PREFIX + _NON_ALNUM.sub("_", raw)[:50]


class SnoozeEngine:
    """Smart and quick snooze suggestions."""

    def __init__(
        self,
        cache: ICache,
        metrics: IMetricsRecorder,
        config_provider: ISLAConfigProvider,
        suggestion_client: Optional[ISnoozeSuggestionClient] = None,
        clock: Callable[[], datetime] = utc_now,
        default_timezone: str = settings.default_user_timezone,
        suggestion_ttl: int = settings.cache_snooze_suggestion_ttl
    ):
        self._cache = cache
        self._metrics = metrics
        self._config_provider = config_provider
        self._client = suggestion_client
        self._clock = clock
        self._default_timezone = default_timezone
        self._ttl = suggestion_ttl

    def _user_config(self, preferences: Optional[UserPreferences] = None) -> SLAConfig:
        """Active config in the user's timezone and working hours, where given."""
        overrides = {"timezone": self._default_timezone}
        if preferences is not None:
            if preferences.timezone:
                overrides["timezone"] = preferences.timezone
            if preferences.working_hours is not None:
                overrides["working_hours"] = preferences.working_hours.model_dump()
        return self._config_provider.get_config().merged(overrides)

    # ========== Smart suggestions ==========

    async def suggest_snooze_time(self, request: SmartSnoozeRequest) -> SnoozeSuggestion:
        """
        Suggest a resurface time for a message.

        Never raises on AI failure; the per-priority default is returned
        instead.
        """
        email = request.email_context
        key = suggestion_cache_key(email)
        now = self._clock()

        cached = await self._cache.get(key)
        if cached is not None:
            return self._validate(cached, now)

        config = self._user_config(request.user_preferences)
        calendar = BusinessHoursCalendar(config)

        suggestion = None
        if self._client is not None:
            try:
                ai = await self._client.suggest_snooze_time(email, config.timezone, config.working_hours, now)
                suggestion = self._from_ai(ai)
            except Exception as e:
                logger.warning(
                    "AI snooze suggestion failed, using default",
                    extra={"priority": email.priority, "error": str(e), "error_type": type(e).__name__}
                )

        if suggestion is None:
            suggestion = self.default_suggestion(email.priority, calendar, now)

        suggestion = self._validate(suggestion, now)
        await self._cache.set(key, suggestion, self._ttl)

        self._metrics.track_metric("snooze.smart.generated", 1, {
            "priority": email.priority,
            "confidence": str(round(suggestion.confidence, 1))
        })
        logger.info(
            "Generated snooze suggestion",
            extra={
                "suggested_time": suggestion.suggested_time.isoformat(),
                "confidence": suggestion.confidence,
                "alternatives": len(suggestion.alternatives)
            }
        )
        return suggestion

    def default_suggestion(
        self,
        priority: str,
        calendar: BusinessHoursCalendar,
        now: datetime
    ) -> SnoozeSuggestion:
        """Per-priority default snapped into working hours."""
        try:
            hours = DEFAULT_SNOOZE_HOURS.get(Priority(priority), FALLBACK_SNOOZE_HOURS)
        except ValueError:
            hours = FALLBACK_SNOOZE_HOURS

        primary = calendar.snap_to_working_hours(now + timedelta(hours=hours))
        return SnoozeSuggestion(
            suggested_time=primary,
            reasoning=f"Default snooze for {priority} priority: {hours} hours",
            alternatives=[
                SnoozeAlternative(
                    calendar.snap_to_working_hours(primary + timedelta(hours=3)),
                    "A bit later if you need more time"
                ),
                SnoozeAlternative(
                    calendar.snap_to_working_hours(primary + timedelta(hours=24)),
                    "Tomorrow at the same time"
                ),
            ],
            confidence=DEFAULT_CONFIDENCE
        )

    @staticmethod
    def _from_ai(ai: AISnoozeSuggestion) -> SnoozeSuggestion:
        confidence = AI_DEFAULT_CONFIDENCE if ai.confidence is None else ai.confidence
        return SnoozeSuggestion(
            suggested_time=ai.suggested_time,
            reasoning=ai.reasoning or "AI-suggested snooze time",
            alternatives=[SnoozeAlternative(t, "Alternative suggestion") for t in ai.alternative_times],
            confidence=confidence
        )

    @staticmethod
    def _validate(suggestion: SnoozeSuggestion, now: datetime) -> SnoozeSuggestion:
        """Force every offered time strictly after ``now`` with at least two alternatives."""
        primary = suggestion.suggested_time
        if primary <= now:
            primary = now + timedelta(hours=1)

        alternatives = [alt for alt in suggestion.alternatives if alt.time > now]

        while len(alternatives) < MIN_ALTERNATIVES:
            last = alternatives[-1].time if alternatives else primary
            alternatives.append(SnoozeAlternative(last + ALTERNATIVE_STEP, "Additional option"))

        return SnoozeSuggestion(
            suggested_time=primary,
            reasoning=suggestion.reasoning,
            alternatives=alternatives,
            confidence=suggestion.confidence
        )

    # ========== Quick options ==========

    def get_quick_snooze_options(self, user_timezone: Optional[str] = None) -> List[QuickSnoozeOption]:
        """
        Labeled preset times, in display order.

        "End of week" points at the coming Friday and is left out on Friday and Saturday.
        """
        now = self._clock()
        calendar = BusinessHoursCalendar(self._user_config(UserPreferences(timezone=user_timezone)))
        today = calendar.to_local(now).date()

        options = [
            QuickSnoozeOption("In 1 hour", now + timedelta(hours=1), "Quick break"),
            QuickSnoozeOption("In 3 hours", now + timedelta(hours=3), "Later today"),
            QuickSnoozeOption(
                "Tomorrow morning",
                calendar.opening(calendar.next_working_day(today)).astimezone(timezone.utc),
                "Start of next business day"
            ),
            QuickSnoozeOption(
                "Next week",
                calendar.opening(calendar.skip_to_working_day(today + timedelta(days=7))).astimezone(timezone.utc),
                "Same time next week"
            ),
        ]

        if today.weekday() < 4 or today.weekday() == 6:
            friday = today + timedelta(days=(4 - today.weekday()) % 7)
            options.append(QuickSnoozeOption(
                "End of week",
                calendar.opening(friday).astimezone(timezone.utc),
                "Friday morning"
            ))

        return options

    # ========== Learning ==========

    async def learn_from_user_snooze(self, item_id: str, chosen_time: datetime) -> None:
        """Record which time a user picked. Never raises."""
        try:
            self._metrics.track_metric("snooze.user.choice", 1, {
                "hour": str(chosen_time.hour),
                "dayOfWeek": str(chosen_time.isoweekday() % 7)
            })
            logger.info(
                "Recorded user snooze choice",
                extra={"item_id": item_id, "chosen_time": chosen_time.isoformat()}
            )
        except Exception as e:
            logger.warning("Failed to record snooze choice", extra={"item_id": item_id, "error": str(e)})
