"""
Follow-up External Service Integrations
=======================================

External services for the follow-up queue:
- YAML SLA config with watchdog hot reload
- VIP directory backed by the SLA config
- LLM-backed snooze suggestions
- APScheduler for the periodic sweeps
"""

import threading
from datetime import datetime, timezone
from email.utils import parseaddr
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import settings
from src.core import ConfigurationException, LLMException
from src.followup.application.dto import EmailContext
from src.followup.application.interfaces import (
    ISLAConfigProvider,
    ISnoozeSuggestionClient,
    IVIPDirectory,
)
from src.followup.application.services import FollowUpQueueService
from src.followup.application.sla_tracker import SLATrackerService
from src.followup.domain import AISnoozeSuggestion, SLAConfig, VIPContact, WorkingHours
from src.infrastructure.llm import ILLMClient
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


# ========== SLA configuration ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration holder with hot-reload support.

    Watchdog runs its handler on its own thread, so swaps happen under a
    lock. A reload that fails validation keeps the previous config.
    """

    def __init__(self, config: Optional[SLAConfig] = None):
        self._config: Optional[SLAConfig] = config
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: the file exists but is invalid
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLAConfig.model_validate(data)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(f"Invalid SLA config: {e}", {"path": str(path)})

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error("Failed to reload SLA config", extra={"error": e.message})
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded", extra={"path": str(self._path)})
        return True

    def get_config(self) -> SLAConfig:
        with self._lock:
            if self._config is None:
                raise ConfigurationException("SLA configuration not loaded")
            return self._config

    def set_config(self, config: SLAConfig) -> None:
        with self._lock:
            self._config = config

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA config file missing, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call when not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class ConfigVIPDirectory(IVIPDirectory):
    """VIP lookup against the ``vip_contacts`` of the active SLA config."""

    def __init__(self, config_provider: ISLAConfigProvider):
        self._config_provider = config_provider

    async def is_vip(self, address: str) -> Optional[VIPContact]:
        email = parseaddr(address)[1].strip().lower()
        if not email:
            return None
        for contact in self._config_provider.get_config().vip_contacts:
            if contact.email == email:
                return contact
        return None


# ========== AI snooze suggestions ==========

SNOOZE_SYSTEM_PROMPT = (
    "You are an email productivity assistant. You help a busy professional decide "
    "when to revisit messages. Always answer with a single JSON object."
)


def build_snooze_prompt(
    email: EmailContext,
    user_timezone: str,
    working_hours: Optional[WorkingHours],
    now: datetime
) -> str:
    working_hours_section = ""
    if working_hours is not None:
        working_hours_section = (
            "\nWorking Hours:\n"
            f"- Start: {working_hours.start}:00\n"
            f"- End: {working_hours.end}:00\n"
            "- Days: Monday to Friday\n"
        )

    return f"""Analyze this email and suggest an optimal time to handle it:

Email Details:
Subject: {email.subject}
From: {email.from_address}
Priority: {email.priority}
Category: {email.category}

Content Preview:
{email.body[:500]}...

Current Time: {now.isoformat()}
User Timezone: {user_timezone}
{working_hours_section}
Provide snooze suggestions with this structure:
{{
  "suggestedTime": "ISO 8601 datetime",
  "reasoning": "Explanation for the suggested time",
  "alternativeTimes": ["ISO 8601 datetime", "ISO 8601 datetime"],
  "confidence": 0.0-1.0
}}

Consider:
- Email urgency and importance
- Optimal working hours
- Type of request (meeting, deadline, FYI)
- Sender importance
- Time needed to properly respond
- Current time and day of week"""


def _parse_time(value) -> datetime:
    """ISO 8601 text to an aware datetime; naive values are taken as UTC."""
    if not isinstance(value, str):
        raise LLMException("Snooze time is not a string", {"value": repr(value)[:100]})
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise LLMException(f"Invalid snooze time: {e}", {"value": value[:100]})
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LLMSnoozeSuggestionClient(ISnoozeSuggestionClient):
    """Asks a chat model for a snooze time and parses its JSON answer."""

    def __init__(
        self,
        llm_client: ILLMClient,
        temperature: float = settings.llm_temperature,
        max_tokens: int = settings.llm_max_tokens
    ):
        self._llm = llm_client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def suggest_snooze_time(
        self,
        email: EmailContext,
        user_timezone: str,
        working_hours: Optional[WorkingHours],
        now: datetime
    ) -> AISnoozeSuggestion:
        messages = [
            {"role": "system", "content": SNOOZE_SYSTEM_PROMPT},
            {"role": "user", "content": build_snooze_prompt(email, user_timezone, working_hours, now)},
        ]
        result = await self._llm.chat_completion(
            messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            operation="suggest_snooze",
            json_mode=True
        )
        data = result.json()

        if "suggestedTime" not in data:
            raise LLMException("Response is missing suggestedTime", {"content": result.content[:200]})

        confidence = data.get("confidence")
        if confidence is not None:
            try:
                confidence = min(max(float(confidence), 0.0), 1.0)
            except (TypeError, ValueError):
                confidence = None

        return AISnoozeSuggestion(
            suggested_time=_parse_time(data["suggestedTime"]),
            reasoning=data.get("reasoning") or None,
            alternative_times=[_parse_time(t) for t in data.get("alternativeTimes") or []],
            confidence=confidence
        )


# ========== Sweep scheduling ==========

class SweepScheduler:
    """
    Wrapper for APScheduler running the periodic queue sweeps.

    Jobs never overlap themselves (``max_instances=1``). A zero interval
    disables that group of jobs.
    """

    def __init__(
        self,
        queue: FollowUpQueueService,
        tracker: SLATrackerService,
        snooze_interval: int = settings.snooze_sweep_interval,
        sla_interval: int = settings.sla_sweep_interval
    ):
        self._queue = queue
        self._tracker = tracker
        self.snooze_interval = snooze_interval
        self.sla_interval = sla_interval
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def jobs(self) -> List[tuple]:
        """(job id, interval seconds, coroutine function) for every enabled sweep."""
        jobs = []
        if self.snooze_interval > 0:
            jobs.append(("resurface_snoozed", self.snooze_interval, self._queue.check_snoozed_items))
        if self.sla_interval > 0:
            jobs.extend([
                ("update_sla_statuses", self.sla_interval, self._tracker.update_all_sla_statuses),
                ("escalate_at_risk", self.sla_interval, self._tracker.escalate_at_risk),
                ("alert_overdue", self.sla_interval, self._tracker.check_and_alert_overdue),
            ])
        return jobs

    async def start(self) -> None:
        if self._running:
            logger.warning("Sweep scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        for job_id, interval, func in self.jobs():
            self._scheduler.add_job(
                run_sweep,
                "interval",
                seconds=interval,
                args=[job_id, func],
                id=job_id,
                name=job_id.replace("_", " ").title(),
                misfire_grace_time=60,
                max_instances=1,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True
        logger.info(
            "Sweep scheduler started",
            extra={"snooze_interval": self.snooze_interval, "sla_interval": self.sla_interval}
        )

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Sweep scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running


async def run_sweep(name: str, func: Callable[[], Awaitable]) -> None:
    """Run one sweep, logging its outcome; errors are logged and do not stop the scheduler."""
    try:
        with log_latency(logger, "sweep_run", sweep=name):
            result = await func()
    except Exception as e:
        logger.error("Sweep failed", extra={"sweep": name, "error": str(e), "error_type": type(e).__name__})
        return

    count = len(result) if isinstance(result, list) else result
    logger.info("Sweep completed", extra={"sweep": name, "count": count})
