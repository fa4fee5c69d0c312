"""Unit tests for git_rest/logging_config.py."""

from __future__ import annotations

import json
import logging

import pytest
from flask import Flask, Response

from git_rest.logging_config import (
    JSONFormatter,
    LogContext,
    TextFormatter,
    clear_context,
    flask_request_middleware,
    get_context,
    set_context,
)


@pytest.fixture(autouse=True)
def _reset_context():
    clear_context()
    yield
    clear_context()


def _record(msg="hello", **extra):
    record = logging.LogRecord("git_rest.test", logging.INFO, "mod.py", 7, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContext:
    def test_set_and_clear(self):
        set_context(request_id="r1", workspace_id="ws-1", method="GET")
        assert get_context() == {"request_id": "r1", "workspace_id": "ws-1", "method": "GET"}

        clear_context()
        assert get_context() == {}

    def test_log_context_restores_previous(self):
        set_context(request_id="outer")

        with LogContext(request_id="inner", workspace_id="ws-2"):
            assert get_context()["request_id"] == "inner"

        assert get_context() == {"request_id": "outer"}


class TestJSONFormatter:
    def test_fields(self):
        set_context(request_id="r1", workspace_id="ws-1")

        data = json.loads(JSONFormatter().format(_record(command_args=["log"])))

        assert data["level"] == "INFO"
        assert data["logger"] == "git_rest.test"
        assert data["message"] == "hello"
        assert data["request_id"] == "r1"
        assert data["workspace_id"] == "ws-1"
        assert data["location"] == "mod.py:7:None"
        assert data["command_args"] == ["log"]
        assert data["timestamp"].endswith("Z")

    def test_optional_parts_omitted(self):
        data = json.loads(
            JSONFormatter(include_timestamp=False, include_location=False).format(_record())
        )
        assert "timestamp" not in data
        assert "location" not in data


class TestTextFormatter:
    def test_line_shape(self):
        set_context(request_id="r1", workspace_id="ws-1")

        line = TextFormatter(include_timestamp=False).format(_record("commit created"))

        assert line == "INFO [git_rest.test] [r1/ws-1] commit created"


class TestFlaskMiddleware:
    def _app(self, verbose=False):
        app = Flask(__name__)
        flask_request_middleware(app, verbose=verbose)

        @app.route("/ping")
        def ping():
            return Response(b"\xffpong", content_type="application/octet-stream")

        return app

    def test_request_id_echoed(self):
        client = self._app().test_client()

        resp = client.get("/ping", headers={"X-Request-ID": "abc"})

        assert resp.headers["X-Request-ID"] == "abc"

    def test_request_id_generated(self):
        resp = self._app().test_client().get("/ping")
        assert len(resp.headers["X-Request-ID"]) == 36

    def test_verbose_logs_binary_body(self, caplog):
        client = self._app(verbose=True).test_client()

        with caplog.at_level(logging.INFO, logger="git_rest.http"):
            resp = client.get("/ping")

        assert resp.status_code == 200
        completes = [r for r in caplog.records if getattr(r, "event", "") == "request_complete"]
        assert completes[0].response_body.endswith("pong")
        assert completes[0].status_code == 200
