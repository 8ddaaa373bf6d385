"""Tests for ContentPipelineSettings loading and validation."""

import os

import pytest
from pydantic import ValidationError

from src.content_pipeline.config import ContentPipelineSettings, get_settings
from src.content_pipeline.events.emitter import EventSinkType


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any CONTENT_PIPELINE_ variables from the host environment."""
    for name in list(os.environ):
        if name.startswith("CONTENT_PIPELINE_"):
            monkeypatch.delenv(name)


class TestContentPipelineSettings:

    def test_defaults(self):
        settings = get_settings()

        assert settings.database_url is None
        assert settings.stuck_threshold_hours == 24.0
        assert settings.history_limit == 50
        assert settings.page_size == 50
        assert settings.log_level == "INFO"
        assert settings.port == 8080
        assert settings.sink_types == [EventSinkType.LOGGING, EventSinkType.METRICS]

    def test_loads_from_env(self, monkeypatch):
        monkeypatch.setenv(
            "CONTENT_PIPELINE_DATABASE_URL",
            "postgresql://content:secret@db:5432/content",
        )
        monkeypatch.setenv("CONTENT_PIPELINE_STUCK_THRESHOLD_HOURS", "6.5")
        monkeypatch.setenv("CONTENT_PIPELINE_MAX_BATCH_SIZE", "25")
        monkeypatch.setenv("CONTENT_PIPELINE_EVENT_SINKS", "logging")
        monkeypatch.setenv("CONTENT_PIPELINE_LOG_LEVEL", "debug")

        settings = ContentPipelineSettings()

        assert settings.database_url == "postgresql://content:secret@db:5432/content"
        assert settings.stuck_threshold_hours == 6.5
        assert settings.max_batch_size == 25
        assert settings.sink_types == [EventSinkType.LOGGING]
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("CONTENT_PIPELINE_DATABASE_URL", "mysql://localhost/content"),
            ("CONTENT_PIPELINE_DATABASE_URL", "   "),
            ("CONTENT_PIPELINE_PAGE_SIZE", "0"),
            ("CONTENT_PIPELINE_MAX_BATCH_SIZE", "-3"),
            ("CONTENT_PIPELINE_STUCK_THRESHOLD_HOURS", "-1"),
            ("CONTENT_PIPELINE_STUCK_THRESHOLD_HOURS", "inf"),
            ("CONTENT_PIPELINE_EVENT_SINKS", "logging,kafka"),
            ("CONTENT_PIPELINE_LOG_LEVEL", "chatty"),
            ("CONTENT_PIPELINE_PORT", "70000"),
        ],
    )
    def test_invalid_values_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            ContentPipelineSettings()

    def test_empty_event_sinks(self, monkeypatch):
        monkeypatch.setenv("CONTENT_PIPELINE_EVENT_SINKS", "")

        assert ContentPipelineSettings().sink_types == []
