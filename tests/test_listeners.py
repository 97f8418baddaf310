from __future__ import annotations

import json
import logging

from apidriver.http_executor import Profile, RequestSpec, Result
from apidriver.listeners import LoggingListener, StepLogRecorder, redact_sensitive


def _request():
    return RequestSpec(
        method="POST",
        url="http://example.org/login",
        headers={"Authorization": "Bearer secret", "X-Client": "tests"},
        body={"user": "mia", "password": "hunter2"},
    )


def _result():
    return Result(
        status_code=200,
        headers={"set-cookie": "sid=abc", "content-type": "application/json"},
        json={"token": "t0k3n", "user": {"name": "mia"}},
        text='{"token": "t0k3n", "user": {"name": "mia"}}',
        profile=Profile(request_start_ms=1000.0, response_end_ms=1042.0),
    )


def test_redact_sensitive_is_recursive():
    data = {"Authorization": "x", "items": [{"password": "p", "keep": 1}]}
    assert redact_sensitive(data) == {
        "Authorization": "[REDACTED]",
        "items": [{"password": "[REDACTED]", "keep": 1}],
    }


def test_step_log_recorder_writes_redacted_json(tmp_path):
    recorder = StepLogRecorder(str(tmp_path))
    recorder.on_request_end(["Login"], "mia", _request(), _result())
    recorder.on_request_end(["Login"], "mia", _request(), _result())

    files = sorted((tmp_path / "step_logs_api").glob("api_*.json"))
    assert len(files) == 2
    assert files[0].name.startswith("api_0001_")

    payload = json.loads(files[0].read_text(encoding="utf-8"))
    assert payload["stack"] == ["Login"]
    assert payload["actor"] == "mia"
    assert payload["elapsed_ms"] == 42.0
    assert payload["request"]["headers"] == {"Authorization": "[REDACTED]", "X-Client": "tests"}
    assert payload["request"]["body"] == {"user": "mia", "password": "[REDACTED]"}
    assert payload["response"]["status_code"] == 200
    assert payload["response"]["headers"]["set-cookie"] == "[REDACTED]"
    assert payload["response"]["body"] == {"token": "[REDACTED]", "user": {"name": "mia"}}


def test_logging_listener_lines(caplog):
    caplog.set_level(logging.INFO, logger="apidriver.listeners")
    listener = LoggingListener()

    listener.on_step_start(["Login"], "Login")
    listener.on_request_end(["Login"], "mia", _request(), _result())
    listener.on_step_end([], "Login", None)
    listener.on_doc([], "all done")

    messages = [record.getMessage() for record in caplog.records]
    assert "mia POST http://example.org/login → 200" in messages
    assert any("all done" in m for m in messages)
    assert len(messages) == 4
