"""Tests for structured logging."""

import json
import logging

import pytest

from agentflow.logging_config import JSONFormatter, build_logging_config, flow_context
from agentflow.models import Flow, FlowStatus, Requester
from conftest import START, make_trigger


def make_record(**extra):
    record = logging.LogRecord(
        name="agentflow.engine.engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Flow %s completed",
        args=("flow-assistant-1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        """Test that a record is rendered as one JSON object."""
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "agentflow.engine.engine"
        assert data["message"] == "Flow flow-assistant-1 completed"
        assert "flow_id" not in data

    def test_flow_context_fields(self):
        """Test that flow context passed as extra is included."""
        flow = Flow(
            id="flow-assistant-1",
            agent_id="assistant",
            status=FlowStatus.WAITING,
            trigger=make_trigger(),
            requester=Requester(email="alice@example.com"),
            max_rounds=5,
            current_round=2,
            created_at=START,
            updated_at=START,
            timeout_at=START,
        )

        data = json.loads(JSONFormatter().format(make_record(**flow_context(flow))))

        assert data["flow_id"] == "flow-assistant-1"
        assert data["agent_id"] == "assistant"
        assert data["round"] == 2
        assert data["status"] == "waiting"


class TestBuildLoggingConfig:
    def test_console_only(self):
        """Test that no file handler is configured without a log file."""
        config = build_logging_config("debug")

        assert list(config["handlers"]) == ["console"]
        assert config["root"]["level"] == "DEBUG"
        assert config["loggers"]["httpx"]["level"] == "WARNING"

    def test_file_handler(self, tmp_path):
        """Test that the file handler always writes JSON."""
        config = build_logging_config(log_file=tmp_path / "app.log", log_format="text")

        assert config["handlers"]["file"]["formatter"] == "json"
        assert config["handlers"]["console"]["formatter"] == "text"
        assert config["root"]["handlers"] == ["console", "file"]

    def test_unknown_format(self):
        """Test that an unknown console format is rejected."""
        with pytest.raises(ValueError):
            build_logging_config(log_format="xml")
