"""Pytest fixtures for the follow-up service tests."""

import pytest

from src.core import LLMException
from src.core.retry import RetryPolicy
from src.followup.application import FollowUpQueueService, SLATrackerService, SnoozeEngine
from src.followup.domain import SLAConfig, VIPContact
from src.followup.infrastructure import (
    ConfigVIPDirectory,
    SLAConfigManager,
    SQLAlchemyQueueHistoryRepository,
    SQLAlchemyQueueItemRepository,
)
from src.infrastructure.cache import InMemoryCache
from src.infrastructure.database import build_engine, build_session_maker, create_tables
from src.shared.infrastructure.metrics import InMemoryMetricsRecorder
from tests.factories import FakeSnoozeClient, FixedClock, no_sleep


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def metrics() -> InMemoryMetricsRecorder:
    return InMemoryMetricsRecorder()


@pytest.fixture
def sla_config() -> SLAConfig:
    return SLAConfig(vip_contacts=[VIPContact(email="vip@example.com", name="VIP", tier=1, sla_hours=2)])


@pytest.fixture
def config_manager(sla_config: SLAConfig) -> SLAConfigManager:
    return SLAConfigManager(sla_config)


@pytest.fixture
async def session_maker(tmp_path):
    """File-backed SQLite database, fresh for each test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'followup.db'}")
    await create_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def item_repository(session_maker) -> SQLAlchemyQueueItemRepository:
    return SQLAlchemyQueueItemRepository(session_maker)


@pytest.fixture
def history_repository(session_maker) -> SQLAlchemyQueueHistoryRepository:
    return SQLAlchemyQueueHistoryRepository(session_maker)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.01, sleep=no_sleep)


@pytest.fixture
def queue_service(
    item_repository,
    history_repository,
    cache,
    metrics,
    config_manager,
    retry_policy,
    clock
) -> FollowUpQueueService:
    return FollowUpQueueService(
        item_repository=item_repository,
        history_repository=history_repository,
        cache=cache,
        metrics=metrics,
        config_provider=config_manager,
        vip_directory=ConfigVIPDirectory(config_manager),
        retry_policy=retry_policy,
        clock=clock
    )


@pytest.fixture
def sla_tracker(queue_service, config_manager, metrics, clock) -> SLATrackerService:
    return SLATrackerService(queue_service, config_manager, metrics, clock)


@pytest.fixture
def failing_snooze_client() -> FakeSnoozeClient:
    return FakeSnoozeClient(error=LLMException("model unavailable"))


@pytest.fixture
def snooze_engine(cache, metrics, config_manager, clock, failing_snooze_client) -> SnoozeEngine:
    return SnoozeEngine(
        cache=cache,
        metrics=metrics,
        config_provider=config_manager,
        suggestion_client=failing_snooze_client,
        clock=clock,
        default_timezone="UTC"
    )
