"""Shared pytest fixtures."""

import pytest

from axiomloop.domain.streaming.event_log import EventLog
from axiomloop.infrastructure.config.settings import Settings
from axiomloop.infrastructure.observability.logging import metrics


@pytest.fixture
def settings() -> Settings:
    return Settings(
        max_retries=1,
        retry_delay_ms=0,
        request_timeout_ms=5000,
        chat_max_duration_s=5,
        dev_max_duration_s=5,
        research_max_duration_s=5,
        log_format="console",
    )


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
