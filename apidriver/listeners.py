# apidriver/listeners.py
"""
Run listeners: observers attached to a Context for the duration of a run.

Hooks (all optional, all no-ops on the base class):
- on_step_start(stack, title)
- on_step_end(stack, title, error)
- on_request_end(stack, actor, request, result)
- on_doc(stack, message)
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from apidriver.config import get_settings

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = {
    "authorization", "x-api-key", "api_key", "apikey", "token",
    "access_token", "cookie", "set-cookie", "x-auth-token", "x-access-token",
    "bearer", "session", "csrf", "jwt", "password",
}


def redact_sensitive(data: Any) -> Any:
    """Recursively redact sensitive information"""
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in _SENSITIVE_KEYS else redact_sensitive(v)
            for k, v in data.items()
        }
    elif isinstance(data, list):
        return [redact_sensitive(item) for item in data]
    return data


class ScriptListener:
    """Base listener; override the hooks you care about."""

    def on_step_start(self, stack: List[str], title: str) -> None:
        pass

    def on_step_end(self, stack: List[str], title: str, error: Optional[BaseException]) -> None:
        pass

    def on_request_end(self, stack: List[str], actor: Optional[str], request: Any, result: Any) -> None:
        pass

    def on_doc(self, stack: List[str], message: str) -> None:
        pass


class LoggingListener(ScriptListener):
    """Writes step and request lines through `logging`."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def on_step_start(self, stack, title):
        self.log.info(f"▶ {' > '.join(stack) or title}")

    def on_step_end(self, stack, title, error):
        if error is None:
            self.log.info(f"✅ {title}")
        else:
            self.log.warning(f"❌ {title}: {getattr(error, 'name', type(error).__name__)}")

    def on_request_end(self, stack, actor, request, result):
        status = getattr(result, "status_code", "?")
        self.log.info(f"{actor or '-'} {request.method} {request.url} → {status}")

    def on_doc(self, stack, message):
        self.log.info(f"📝 {message}")


class StepLogRecorder(ScriptListener):
    """Writes one structured JSON file per completed request."""

    def __init__(self, reports_dir: Optional[str] = None):
        base = Path(reports_dir or get_settings().reports_dir)
        self.step_log_dir = base / "step_logs_api"
        self.step_log_dir.mkdir(parents=True, exist_ok=True)
        self._count = 0

    def _step_id(self, stack: List[str], request: Any) -> str:
        self._count += 1
        digest = hashlib.sha1(
            f"{'/'.join(stack)}|{request.method}|{request.url}|{self._count}".encode("utf-8")
        ).hexdigest()[:10]
        return f"api_{self._count:04d}_{digest}"

    def on_request_end(self, stack, actor, request, result):
        step_id = self._step_id(stack, request)
        profile = getattr(result, "profile", None)
        payload: Dict[str, Any] = {
            "step_id": step_id,
            "stack": list(stack),
            "actor": actor,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request": {
                "method": request.method,
                "url": request.url,
                "headers": redact_sensitive(dict(request.headers or {})),
                "body": redact_sensitive(request.body),
            },
            "response": {
                "status_code": getattr(result, "status_code", None),
                "headers": redact_sensitive(dict(getattr(result, "headers", None) or {})),
                "body": redact_sensitive(getattr(result, "body", None)),
            },
        }
        if profile is not None:
            payload["elapsed_ms"] = profile.elapsed_ms

        out = self.step_log_dir / f"{step_id}.json"
        try:
            with out.open("w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
        except OSError:
            logger.debug(f"Failed writing step log {out}")
