"""Tests for business-hours arithmetic and SLA policy rules."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from src.config import Priority, SLAStatus
from src.followup.domain import (
    BusinessHoursCalendar,
    SLAConfig,
    VIPContact,
    compute_deadline,
    escalate_priority,
    sla_hours_for,
    sla_status_for,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def calendar() -> BusinessHoursCalendar:
    return BusinessHoursCalendar(SLAConfig())


class TestAddBusinessHours:
    """Tests for BusinessHoursCalendar.add_business_hours."""

    def test_low_priority_received_friday_afternoon(self, calendar):
        """72 business hours from Friday 16:30 land on the Thursday of the week after next."""
        deadline = calendar.add_business_hours(utc(2026, 10, 16, 16, 30), 72)

        assert deadline == utc(2026, 10, 29, 16, 30)
        assert deadline.weekday() == 3

    def test_fits_inside_same_day(self, calendar):
        assert calendar.add_business_hours(utc(2026, 10, 19, 10), 4) == utc(2026, 10, 19, 14)

    def test_before_opening_starts_at_opening(self, calendar):
        assert calendar.add_business_hours(utc(2026, 10, 19, 7), 1) == utc(2026, 10, 19, 10)

    def test_after_closing_starts_next_morning(self, calendar):
        assert calendar.add_business_hours(utc(2026, 10, 19, 18), 1) == utc(2026, 10, 20, 10)

    def test_deadline_at_close_rolls_to_next_opening(self, calendar):
        assert calendar.add_business_hours(utc(2026, 10, 19, 9), 8) == utc(2026, 10, 20, 9)

    def test_weekend_start_skips_to_monday(self, calendar):
        assert calendar.add_business_hours(utc(2026, 10, 17, 12), 2) == utc(2026, 10, 19, 11)

    def test_fractional_hours(self, calendar):
        assert calendar.add_business_hours(utc(2026, 10, 19, 16), 1.5) == utc(2026, 10, 20, 9, 30)

    def test_weekends_counted_when_adjustment_disabled(self):
        calendar = BusinessHoursCalendar(SLAConfig(adjust_for_weekends=False))

        assert calendar.add_business_hours(utc(2026, 10, 17, 12), 2) == utc(2026, 10, 17, 14)

    def test_non_positive_hours_return_start(self, calendar):
        start = utc(2026, 10, 17, 3)

        assert calendar.add_business_hours(start, 0) == start
        assert calendar.add_business_hours(start, -5) == start

    def test_configured_timezone(self):
        """Working hours are evaluated in the config timezone."""
        calendar = BusinessHoursCalendar(SLAConfig(timezone="America/New_York"))

        # 12:00 UTC is 08:00 EDT, before opening
        deadline = calendar.add_business_hours(utc(2026, 10, 19, 12), 1)

        assert deadline == utc(2026, 10, 19, 14)
        assert deadline.tzinfo == timezone.utc

    @pytest.mark.parametrize("hours", [0.25, 1, 3.5, 8, 13, 40, 72, 100])
    def test_result_always_inside_working_window(self, calendar, hours):
        start = utc(2026, 10, 14, 0)
        for offset in range(0, 24 * 7, 5):
            deadline = calendar.add_business_hours(start + timedelta(hours=offset, minutes=7), hours)

            assert deadline.weekday() < 5
            assert 9 <= deadline.hour < 17


class TestSnapToWorkingHours:
    """Tests for BusinessHoursCalendar.snap_to_working_hours."""

    def test_inside_hours_unchanged(self, calendar):
        assert calendar.snap_to_working_hours(utc(2026, 10, 19, 12, 15)) == utc(2026, 10, 19, 12, 15)

    def test_before_opening(self, calendar):
        assert calendar.snap_to_working_hours(utc(2026, 10, 19, 7)) == utc(2026, 10, 19, 9)

    def test_at_closing_moves_to_next_day(self, calendar):
        assert calendar.snap_to_working_hours(utc(2026, 10, 19, 17)) == utc(2026, 10, 20, 9)

    def test_weekend_keeps_time_of_day(self, calendar):
        assert calendar.snap_to_working_hours(utc(2026, 10, 17, 11)) == utc(2026, 10, 19, 11)

    def test_friday_evening_moves_to_monday(self, calendar):
        assert calendar.snap_to_working_hours(utc(2026, 10, 16, 18)) == utc(2026, 10, 19, 9)

    def test_start_of_day_in_timezone(self):
        calendar = BusinessHoursCalendar(SLAConfig(timezone="Asia/Tokyo"))

        start = calendar.start_of_day(utc(2026, 10, 19, 20))

        assert start.astimezone(ZoneInfo("Asia/Tokyo")) == datetime(2026, 10, 20, tzinfo=ZoneInfo("Asia/Tokyo"))


class TestSLAStatusRule:
    """Tests for sla_status_for thresholds."""

    @pytest.mark.parametrize("priority,threshold", [
        (Priority.CRITICAL, 1),
        (Priority.HIGH, 2),
        (Priority.MEDIUM, 4),
        (Priority.LOW, 8),
    ])
    def test_thresholds(self, priority, threshold):
        assert sla_status_for(-0.01, priority) == SLAStatus.OVERDUE
        assert sla_status_for(0, priority) == SLAStatus.AT_RISK
        assert sla_status_for(threshold, priority) == SLAStatus.AT_RISK
        assert sla_status_for(threshold + 0.01, priority) == SLAStatus.ON_TIME

    def test_default_threshold_without_priority(self):
        assert sla_status_for(2) == SLAStatus.AT_RISK
        assert sla_status_for(2.5) == SLAStatus.ON_TIME

    def test_monotonic_in_remaining_time(self):
        rank = {SLAStatus.OVERDUE: 0, SLAStatus.AT_RISK: 1, SLAStatus.ON_TIME: 2}
        for priority in Priority:
            statuses = [sla_status_for(h / 4, priority) for h in range(-8, 60)]
            ranks = [rank[s] for s in statuses]
            assert ranks == sorted(ranks)


class TestEscalationLadder:

    def test_one_level_up(self):
        assert escalate_priority(Priority.LOW) == Priority.MEDIUM
        assert escalate_priority(Priority.MEDIUM) == Priority.HIGH
        assert escalate_priority(Priority.HIGH) == Priority.CRITICAL

    def test_critical_is_ceiling(self):
        assert escalate_priority(Priority.CRITICAL) == Priority.CRITICAL


class TestSLAConfig:
    """Tests for SLA configuration validation and deadlines."""

    def test_defaults(self):
        config = SLAConfig()

        assert config.hours_for(Priority.CRITICAL) == 4
        assert config.hours_for(Priority.HIGH) == 4
        assert config.hours_for(Priority.MEDIUM) == 24
        assert config.hours_for(Priority.LOW) == 72

    def test_partial_working_hours_merge(self):
        merged = SLAConfig().merged({"working_hours": {"end": 18}, "low": 48})

        assert merged.working_hours.start == 9
        assert merged.working_hours.end == 18
        assert merged.low == 48

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ValidationError):
            SLAConfig(timezone="Mars/Olympus_Mons")

    def test_rejects_inverted_working_hours(self):
        with pytest.raises(ValidationError):
            SLAConfig().merged({"working_hours": {"start": 17, "end": 9}})

    def test_vip_hours_override_priority(self):
        config = SLAConfig()
        vip = VIPContact(email="Boss@Example.com", sla_hours=2)

        assert vip.email == "boss@example.com"
        assert sla_hours_for(config, Priority.LOW, vip) == 2
        assert compute_deadline(config, utc(2026, 10, 19, 10), Priority.LOW, vip) == utc(2026, 10, 19, 12)

    def test_vip_without_hours_uses_priority(self):
        assert sla_hours_for(SLAConfig(), Priority.MEDIUM, VIPContact(email="a@b.c")) == 24
