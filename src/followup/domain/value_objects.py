"""
Follow-up Value Objects
=======================

Immutable value objects for the follow-up domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import Priority, SLAStatus


# ========== SLA policy tables ==========

# Remaining hours at or below which an on-time item becomes AT_RISK
AT_RISK_THRESHOLDS: Dict[Priority, float] = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 4,
    Priority.LOW: 8,
}
DEFAULT_AT_RISK_THRESHOLD = 2

ESCALATION_LADDER: Dict[Priority, Priority] = {
    Priority.LOW: Priority.MEDIUM,
    Priority.MEDIUM: Priority.HIGH,
    Priority.HIGH: Priority.CRITICAL,
    Priority.CRITICAL: Priority.CRITICAL,
}


def escalate_priority(current: Priority) -> Priority:
    """One level up the ladder; CRITICAL stays CRITICAL."""
    return ESCALATION_LADDER.get(current, current)


def sla_status_for(hours_remaining: float, priority: Optional[Priority] = None) -> SLAStatus:
    """
    Classify remaining time against the priority's at-risk threshold.

    Negative remaining time is OVERDUE; exactly zero is still AT_RISK.
    """
    if hours_remaining < 0:
        return SLAStatus.OVERDUE

    threshold = AT_RISK_THRESHOLDS.get(priority, DEFAULT_AT_RISK_THRESHOLD)
    if hours_remaining <= threshold:
        return SLAStatus.AT_RISK

    return SLAStatus.ON_TIME


def hours_between(start: datetime, end: datetime) -> float:
    """Signed hours from start to end."""
    return (end - start).total_seconds() / 3600


# ========== SLA configuration ==========

def validate_timezone_name(name: str) -> str:
    """Return ``name`` if it is a known IANA timezone."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e
    return name


class WorkingHours(BaseModel):
    """Daily working window, in whole hours of the configured timezone."""
    start: int = Field(default=9, ge=0, le=23, description="Start hour (inclusive)")
    end: int = Field(default=17, ge=1, le=24, description="End hour (exclusive)")

    @model_validator(mode="after")
    def validate_window(self) -> "WorkingHours":
        if self.start >= self.end:
            raise ValueError("working_hours.start must be before working_hours.end")
        return self


class VIPContact(BaseModel):
    """A sender whose messages carry their own SLA."""
    email: str
    name: str = ""
    tier: int = Field(default=3, ge=1, le=3)
    sla_hours: Optional[float] = Field(default=None, gt=0)
    auto_draft: bool = False

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("VIP email must contain '@'")
        return v


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    Hours per priority are business hours; ``critical`` defaults to the
    same four hours as ``high``.
    """
    critical: float = Field(default=4, gt=0, description="Hours for CRITICAL priority")
    high: float = Field(default=4, gt=0, description="Hours for HIGH priority")
    medium: float = Field(default=24, gt=0, description="Hours for MEDIUM priority")
    low: float = Field(default=72, gt=0, description="Hours for LOW priority")
    adjust_for_weekends: bool = Field(default=True, description="Skip Saturday and Sunday")
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    timezone: str = Field(default="UTC", description="IANA timezone for calendar arithmetic")
    vip_contacts: List[VIPContact] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return validate_timezone_name(v)

    def hours_for(self, priority: Priority) -> float:
        """SLA hours for a priority; unknown priorities use MEDIUM."""
        return {
            Priority.CRITICAL: self.critical,
            Priority.HIGH: self.high,
            Priority.MEDIUM: self.medium,
            Priority.LOW: self.low,
        }.get(priority, self.medium)

    def merged(self, updates: dict) -> "SLAConfig":
        """
        Return a new config with ``updates`` applied and validated.

        A partial ``working_hours`` mapping is merged into the current one.
        """
        data = self.model_dump()
        for key, value in updates.items():
            if key == "working_hours" and isinstance(value, dict):
                data["working_hours"] = {**data["working_hours"], **value}
            else:
                data[key] = value
        return SLAConfig.model_validate(data)


# ========== Business-hours calendar ==========

class BusinessHoursCalendar:
    """
    Calendar arithmetic over the configured working window.

    All inputs may be in any timezone; results are returned in UTC.
    Day boundaries and weekends are evaluated in the config timezone.
    """

    def __init__(self, config: SLAConfig):
        self._config = config
        self._tz = ZoneInfo(config.timezone)
        self._start = config.working_hours.start
        self._end = config.working_hours.end

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def to_local(self, moment: datetime) -> datetime:
        return moment.astimezone(self._tz)

    def is_working_day(self, day: date) -> bool:
        return not self._config.adjust_for_weekends or day.weekday() < 5

    def at_hour(self, day: date, hour: int) -> datetime:
        """Local wall-clock ``hour`` on ``day``; ``hour`` may be 24."""
        return datetime.combine(day, time(0), tzinfo=self._tz) + timedelta(hours=hour)

    def opening(self, day: date) -> datetime:
        return self.at_hour(day, self._start)

    def closing(self, day: date) -> datetime:
        return self.at_hour(day, self._end)

    def next_working_day(self, day: date) -> date:
        """First working day strictly after ``day``."""
        day += timedelta(days=1)
        while not self.is_working_day(day):
            day += timedelta(days=1)
        return day

    def skip_to_working_day(self, day: date) -> date:
        """``day`` itself when it is a working day, else the next one."""
        while not self.is_working_day(day):
            day += timedelta(days=1)
        return day

    def add_business_hours(self, start: datetime, hours: float) -> datetime:
        """
        Advance ``start`` by ``hours`` of working time.

        The result always falls on a working day within [start, end). A
        deadline that lands exactly on closing time is reported as the next
        working day's opening.
        """
        if hours <= 0:
            return start.astimezone(timezone.utc)

        current = self.to_local(start)
        remaining = timedelta(hours=hours)

        while True:
            today = current.date()

            if not self.is_working_day(today):
                current = self.opening(self.next_working_day(today))
                continue

            if current < self.opening(today):
                current = self.opening(today)

            if current >= self.closing(today):
                current = self.opening(self.next_working_day(today))
                continue

            left_today = self.closing(today) - current
            if remaining < left_today:
                return (current + remaining).astimezone(timezone.utc)

            remaining -= left_today
            current = self.opening(self.next_working_day(today))

    def snap_to_working_hours(self, moment: datetime) -> datetime:
        """
        Move ``moment`` into working hours.

        Weekend days roll forward keeping the time of day; before opening
        snaps to opening; at or after closing moves to the next working
        day's opening.
        """
        local = self.to_local(moment)

        skipped = self.skip_to_working_day(local.date())
        if skipped != local.date():
            local = datetime.combine(skipped, local.timetz())

        if local.hour < self._start:
            local = self.opening(local.date())
        elif local.hour >= self._end:
            local = self.opening(self.next_working_day(local.date()))

        return local.astimezone(timezone.utc)

    def start_of_day(self, moment: datetime) -> datetime:
        """Local midnight of ``moment``'s day, in UTC."""
        return self.at_hour(self.to_local(moment).date(), 0).astimezone(timezone.utc)


def sla_hours_for(config: SLAConfig, priority: Priority, vip: Optional[VIPContact] = None) -> float:
    """A VIP's own positive SLA wins over the priority table."""
    if vip is not None and vip.sla_hours:
        return vip.sla_hours
    return config.hours_for(priority)


def compute_deadline(
    config: SLAConfig,
    received_date: datetime,
    priority: Priority,
    vip: Optional[VIPContact] = None
) -> datetime:
    """Deadline = received date advanced by the applicable SLA in business hours."""
    hours = sla_hours_for(config, priority, vip)
    return BusinessHoursCalendar(config).add_business_hours(received_date, hours)


# ========== Snooze value objects ==========

@dataclass(frozen=True)
class SnoozeOptions:
    """How and until when to snooze an item."""
    until: datetime
    reason: Optional[str] = None
    smart: bool = False
    ai_reasoning: Optional[str] = None


@dataclass
class SnoozeAlternative:
    time: datetime
    reason: str


@dataclass
class SnoozeSuggestion:
    """A primary resurface time plus at least two alternatives."""
    suggested_time: datetime
    reasoning: str
    alternatives: List[SnoozeAlternative] = field(default_factory=list)
    confidence: float = 0.5


@dataclass(frozen=True)
class QuickSnoozeOption:
    """A labeled preset resurface time."""
    label: str
    time: datetime
    reason: str


@dataclass(frozen=True)
class AISnoozeSuggestion:
    """Raw suggestion returned by the AI port."""
    suggested_time: datetime
    reasoning: Optional[str] = None
    alternative_times: List[datetime] = field(default_factory=list)
    confidence: Optional[float] = None
