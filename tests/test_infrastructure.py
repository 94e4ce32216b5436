"""Tests for retry, cache, config loading, LLM parsing, scheduling, metrics and logging."""

import json
import logging
import re
from datetime import timedelta

import pytest

from src.core import (
    ConfigurationException,
    DuplicateRecordError,
    LLMException,
    QueueItemNotFoundError,
    QueueValidationError,
    RepositoryException,
    RetryExhaustedError,
)
from src.core.retry import RetryPolicy
from src.followup.application import EmailContext
from src.followup.domain import SLAConfig, VIPContact, WorkingHours
from src.followup.infrastructure import (
    ConfigVIPDirectory,
    LLMSnoozeSuggestionClient,
    SLAConfigManager,
    SweepScheduler,
)
from src.followup.infrastructure.external import build_snooze_prompt, run_sweep
from src.infrastructure.cache import InMemoryCache
from src.infrastructure.llm import ChatCompletionResult, ILLMClient, MockLLMClient
from src.shared.api.middleware import status_for
from src.shared.infrastructure.logging import CustomJsonFormatter
from src.shared.infrastructure.metrics import GrafanaMetricsRecorder, InMemoryMetricsRecorder
from tests.factories import MONDAY_10AM, FixedClock


class TestRetryPolicy:
    """Tests for exponential-backoff retries."""

    async def test_backoff_doubles(self):
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise RepositoryException("temporarily unavailable")
            return "ok"

        policy = RetryPolicy(max_attempts=3, base_delay=0.5, sleep=record_sleep)

        assert await policy.run(flaky, "flaky_write") == "ok"
        assert delays == [0.5, 1.0]

    async def test_exhaustion_carries_last_error(self):
        async def always_fails():
            raise RepositoryException("down")

        policy = RetryPolicy(max_attempts=2, base_delay=0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.run(always_fails, "write")

        assert exc_info.value.attempts == 2
        assert exc_info.value.operation == "write"
        assert exc_info.value.cause.message == "down"

    @pytest.mark.parametrize("error", [
        QueueValidationError("bad input"),
        DuplicateRecordError("already there"),
    ])
    async def test_non_retryable_errors_raised_immediately(self, error):
        calls = []

        async def operation():
            calls.append(1)
            raise error

        with pytest.raises(type(error)):
            await RetryPolicy(max_attempts=5, base_delay=0).run(operation, "write")

        assert len(calls) == 1

    def test_requires_an_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestInMemoryCache:
    """Tests for TTL expiry and invalidation."""

    @pytest.fixture
    def ticks(self):
        return {"now": 1000.0}

    @pytest.fixture
    def cache(self, ticks):
        return InMemoryCache(default_ttl=60, clock=lambda: ticks["now"])

    async def test_loader_called_once_until_expiry(self, cache, ticks):
        calls = []

        async def loader():
            calls.append(1)
            return {"value": len(calls)}

        assert await cache.get("k", loader, ttl=10) == {"value": 1}
        assert await cache.get("k", loader, ttl=10) == {"value": 1}

        ticks["now"] += 10
        assert await cache.get("k", loader, ttl=10) == {"value": 2}
        assert len(calls) == 2

    async def test_none_not_cached(self, cache):
        async def nothing():
            return None

        assert await cache.get("k", nothing) is None
        assert len(cache) == 0

    async def test_values_copied(self, cache):
        await cache.set("k", {"labels": ["a"]})
        value = await cache.get("k")
        value["labels"].append("b")

        assert await cache.get("k") == {"labels": ["a"]}

    async def test_substring_invalidation(self, cache):
        await cache.set("queue:active:1", [1])
        await cache.set("queue:active:2", [2])
        await cache.set("queue:stats", {})

        assert await cache.invalidate("queue:active:") == 2
        assert await cache.get("queue:stats") == {}

    async def test_regex_invalidation_is_exact(self, cache):
        await cache.set("queue:item:queue_1", 1)
        await cache.set("queue:item:queue_10", 10)

        assert await cache.invalidate(re.compile(r"^queue:item:queue_1$")) == 1
        assert await cache.get("queue:item:queue_10") == 10

    async def test_zero_ttl_not_stored(self, cache):
        await cache.set("k", 1, ttl=0)

        assert await cache.get("k") is None


class TestSLAConfigManager:
    """Tests for YAML loading and hot reload."""

    def write(self, path, text):
        path.write_text(text)
        return path

    def test_load_yaml(self, tmp_path):
        path = self.write(tmp_path / "sla.yaml", """
critical: 2
high: 4
medium: 24
low: 72
working_hours:
  start: 8
  end: 18
timezone: Europe/London
vip_contacts:
  - email: CEO@Example.com
    name: The CEO
    tier: 1
    sla_hours: 1
""")
        manager = SLAConfigManager()

        config = manager.load(path)

        assert config.critical == 2
        assert config.working_hours == WorkingHours(start=8, end=18)
        assert config.timezone == "Europe/London"
        assert config.vip_contacts[0].email == "ceo@example.com"
        assert manager.get_config() is config

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = SLAConfigManager()

        assert manager.load(tmp_path / "absent.yaml") == SLAConfig()

    def test_invalid_file_rejected(self, tmp_path):
        path = self.write(tmp_path / "sla.yaml", "working_hours:\n  start: 18\n  end: 9\n")

        with pytest.raises(ConfigurationException):
            SLAConfigManager().load(path)

    def test_malformed_yaml_rejected(self, tmp_path):
        path = self.write(tmp_path / "sla.yaml", "high: [4\n")

        with pytest.raises(ConfigurationException):
            SLAConfigManager().load(path)

    def test_reload_applies_changes(self, tmp_path):
        path = self.write(tmp_path / "sla.yaml", "high: 4\n")
        manager = SLAConfigManager()
        manager.load(path)

        self.write(path, "high: 6\n")

        assert manager.reload() is True
        assert manager.get_config().high == 6

    def test_failed_reload_keeps_previous(self, tmp_path):
        path = self.write(tmp_path / "sla.yaml", "high: 6\n")
        manager = SLAConfigManager()
        manager.load(path)

        self.write(path, "timezone: Nowhere/Special\n")

        assert manager.reload() is False
        assert manager.get_config().high == 6

    def test_reload_before_load(self):
        assert SLAConfigManager(SLAConfig()).reload() is False

    def test_not_loaded(self):
        with pytest.raises(ConfigurationException):
            SLAConfigManager().get_config()

    def test_watch_requires_load(self):
        with pytest.raises(RuntimeError):
            SLAConfigManager().start_watching()

    def test_stop_without_start(self):
        SLAConfigManager(SLAConfig()).stop_watching()


class TestVIPDirectory:

    @pytest.fixture
    def directory(self):
        config = SLAConfig(vip_contacts=[VIPContact(email="ceo@example.com", tier=1, sla_hours=2)])
        return ConfigVIPDirectory(SLAConfigManager(config))

    async def test_display_name_and_case_ignored(self, directory):
        contact = await directory.is_vip("The Boss <CEO@Example.COM>")

        assert contact is not None
        assert contact.sla_hours == 2

    async def test_unknown_sender(self, directory):
        assert await directory.is_vip("someone@example.com") is None
        assert await directory.is_vip("") is None


class CannedLLMClient(ILLMClient):
    """Returns fixed content and remembers the call."""

    def __init__(self, content: str):
        self.content = content
        self.calls = []

    async def chat_completion(self, messages, temperature=0.3, max_tokens=300,
                              operation="chat_completion", json_mode=False):
        self.calls.append({"messages": messages, "operation": operation, "json_mode": json_mode})
        return ChatCompletionResult(self.content, "canned", 10, 10, 5)


class TestLLMSnoozeSuggestionClient:
    """Tests for prompting and parsing model answers."""

    email = EmailContext(subject="Invoice overdue", body="Please pay", from_address="ap@vendor.com",
                         priority="HIGH", category="finance")

    async def test_mock_client_answer(self):
        clock = FixedClock()
        client = LLMSnoozeSuggestionClient(MockLLMClient(clock))

        suggestion = await client.suggest_snooze_time(self.email, "UTC", WorkingHours(), clock.now)

        assert suggestion.suggested_time == MONDAY_10AM + timedelta(hours=4)
        assert len(suggestion.alternative_times) == 2
        assert suggestion.confidence == 0.8

    async def test_requests_json_mode(self):
        llm = CannedLLMClient('{"suggestedTime": "2026-10-19T15:00:00Z"}')

        suggestion = await LLMSnoozeSuggestionClient(llm).suggest_snooze_time(
            self.email, "UTC", None, MONDAY_10AM
        )

        assert llm.calls[0]["json_mode"] is True
        assert llm.calls[0]["operation"] == "suggest_snooze"
        assert suggestion.suggested_time == MONDAY_10AM + timedelta(hours=5)
        assert suggestion.confidence is None
        assert suggestion.alternative_times == []

    async def test_fenced_answer_and_confidence_clamped(self):
        llm = CannedLLMClient(
            '```json\n{"suggestedTime": "2026-10-19T15:00:00", "confidence": 3, '
            '"alternativeTimes": ["2026-10-20T09:00:00+00:00"]}\n```'
        )

        suggestion = await LLMSnoozeSuggestionClient(llm).suggest_snooze_time(
            self.email, "UTC", None, MONDAY_10AM
        )

        assert suggestion.confidence == 1.0
        assert suggestion.suggested_time.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("content", [
        "not json at all",
        '{"reasoning": "no time given"}',
        '{"suggestedTime": "next tuesday"}',
        '["2026-10-19T15:00:00Z"]',
    ])
    async def test_unusable_answers_raise(self, content):
        client = LLMSnoozeSuggestionClient(CannedLLMClient(content))

        with pytest.raises(LLMException):
            await client.suggest_snooze_time(self.email, "UTC", None, MONDAY_10AM)

    def test_prompt_includes_context(self):
        prompt = build_snooze_prompt(self.email, "Europe/Paris", WorkingHours(start=8, end=16), MONDAY_10AM)

        assert "Invoice overdue" in prompt
        assert "User Timezone: Europe/Paris" in prompt
        assert "- Start: 8:00" in prompt
        assert "suggestedTime" in prompt

    def test_prompt_without_working_hours(self):
        prompt = build_snooze_prompt(self.email, "UTC", None, MONDAY_10AM)

        assert "Working Hours" not in prompt


class TestSweepScheduler:

    def test_jobs(self, queue_service, sla_tracker):
        scheduler = SweepScheduler(queue_service, sla_tracker, snooze_interval=60, sla_interval=300)

        assert [(job_id, interval) for job_id, interval, _ in scheduler.jobs()] == [
            ("resurface_snoozed", 60),
            ("update_sla_statuses", 300),
            ("escalate_at_risk", 300),
            ("alert_overdue", 300),
        ]

    def test_zero_interval_disables(self, queue_service, sla_tracker):
        scheduler = SweepScheduler(queue_service, sla_tracker, snooze_interval=0, sla_interval=300)

        assert "resurface_snoozed" not in [job_id for job_id, _, _ in scheduler.jobs()]

    async def test_start_and_stop(self, queue_service, sla_tracker):
        scheduler = SweepScheduler(queue_service, sla_tracker, snooze_interval=3600, sla_interval=3600)

        await scheduler.start()
        assert scheduler.is_running
        await scheduler.stop()
        assert not scheduler.is_running

    async def test_failed_sweep_is_contained(self):
        async def broken():
            raise QueueItemNotFoundError("queue_1")

        assert await run_sweep("broken", broken) is None


class TestMetrics:

    def test_disabled_grafana_falls_back(self):
        fallback = InMemoryMetricsRecorder()
        recorder = GrafanaMetricsRecorder(host=None, api_key=None, instance_id=None, fallback=fallback)

        recorder.track_metric("queue.items.added", 1, {"priority": "HIGH"})

        assert not recorder.is_enabled()
        assert fallback.tags("queue.items.added") == [{"priority": "HIGH"}]

    def test_payload_shape(self):
        recorder = GrafanaMetricsRecorder(
            host="https://otlp.example.net",
            api_key="key",
            instance_id="123",
            service_name="followup-service",
            fallback=InMemoryMetricsRecorder()
        )

        payload = recorder.build_payload("llm.latency.duration", 42, {"model": "gpt"})
        metric = payload["resourceMetrics"][0]["scopeMetrics"][0]["metrics"][0]
        point = metric["gauge"]["dataPoints"][0]

        assert recorder.is_enabled()
        assert metric["name"] == "llm_latency_duration"
        assert metric["unit"] == "ms"
        assert point["asDouble"] == 42.0
        assert {"key": "model", "value": {"stringValue": "gpt"}} in point["attributes"]

    def test_timer_records_elapsed(self):
        metrics = InMemoryMetricsRecorder()

        stop = metrics.start_timer("queue.statistics.computed")
        elapsed = stop()

        assert elapsed >= 0
        assert len(metrics.values("queue.statistics.computed")) == 1


class TestErrorMapping:

    @pytest.mark.parametrize("error,status", [
        (QueueValidationError("bad"), 422),
        (QueueItemNotFoundError("queue_1"), 404),
        (RetryExhaustedError("write", 3, RuntimeError("down")), 503),
        (LLMException("timeout"), 502),
        (ConfigurationException("missing"), 500),
        (RepositoryException("broken"), 500),
    ])
    def test_status_for(self, error, status):
        assert status_for(error) == status

    def test_codes(self):
        assert QueueValidationError("bad").code == "VALIDATION_ERROR"
        assert QueueItemNotFoundError("queue_1").to_dict()["details"] == {"id": "queue_1"}


class TestJsonLogging:

    def format(self, name="src.followup.application.services", **extra):
        record = logging.LogRecord(name, logging.INFO, __file__, 1, "Snoozed queue item", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(CustomJsonFormatter("%(name)s %(levelname)s %(message)s").format(record))

    def test_component_and_fields(self):
        output = self.format(item_id="queue_1")

        assert output["component"] == "followup"
        assert output["item_id"] == "queue_1"
        assert output["message"] == "Snoozed queue item"
        assert "timestamp" in output

    def test_secrets_redacted(self):
        output = self.format(api_key="sk-live", tokens_used="42")

        assert output["api_key"] == "***REDACTED***"
        assert output["tokens_used"] == "42"
