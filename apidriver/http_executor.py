# apidriver/http_executor.py
"""
HTTP executor: performs one normalized request and returns a normalized result.

The rest of the engine only sees RequestSpec -> Result, so any async callable
honouring that contract can replace HttpxExecutor (see Req.handler).
Transport, TLS, redirects and content decoding are all httpx's business.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from apidriver.config import Settings, get_settings
from apidriver.errors import ContextError

logger = logging.getLogger(__name__)


# ==================== Data Models ====================

@dataclass
class RequestSpec:
    """Request after stash substitution, ready to send"""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    form: Optional[Dict[str, Any]] = None
    jar: Optional[httpx.Cookies] = None
    timeout_s: Optional[float] = None


@dataclass
class Profile:
    request_start_ms: float
    response_end_ms: float
    raw_size: int = 0
    decoded_size: int = 0

    @property
    def elapsed_ms(self) -> float:
        return self.response_end_ms - self.request_start_ms


class CookieAccessor:
    """Read access to the cookies the actor's jar would send to `url`."""

    def __init__(self, jar: Optional[httpx.Cookies], url: str):
        self._jar = jar
        self._url = httpx.URL(url) if url else None

    def get(self, name: str) -> Optional[str]:
        if self._jar is None:
            return None
        host = self._url.host if self._url is not None else ""
        matches = [
            cookie for cookie in self._jar.jar
            if cookie.name == name and _domain_matches(host, cookie.domain)
        ]
        if len(matches) > 1:
            raise ContextError(f"Multiple matching cookies found for {name!r}")
        return matches[0].value if matches else None


def _domain_matches(host: str, domain: str) -> bool:
    if not host or not domain:
        return True
    domain = domain.lstrip(".").lower()
    host = host.lower()
    if domain.endswith(".local") and not host.endswith(".local"):
        # http.cookiejar stores dotless hosts with a ".local" suffix
        domain = domain[: -len(".local")]
    return host == domain or host.endswith("." + domain)


@dataclass
class Result:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    text: Optional[str] = None
    json: Any = None
    cookies: Optional[CookieAccessor] = None
    profile: Optional[Profile] = None
    response: Optional[httpx.Response] = None

    @property
    def body(self) -> Any:
        return self.json if self.json is not None else self.text


def make_result(
    response: httpx.Response,
    jar: Optional[httpx.Cookies],
    request_start_ms: float,
    response_end_ms: float,
) -> Result:
    """Normalize an httpx response."""
    text = response.text or None
    try:
        parsed = json.loads(text) if text is not None else None
    except ValueError:
        parsed = None

    return Result(
        status_code=response.status_code,
        headers=dict(response.headers),
        text=text,
        json=parsed,
        cookies=CookieAccessor(jar, str(response.request.url)),
        profile=Profile(
            request_start_ms=request_start_ms,
            response_end_ms=response_end_ms,
            raw_size=response.num_bytes_downloaded,
            decoded_size=len(response.content),
        ),
        response=response,
    )


# ==================== Executor ====================

class HttpxExecutor:
    """
    Default executor backed by httpx.AsyncClient.

    A client is opened per request, seeded from the actor's jar; cookies the
    server sets are written back into that same jar so every branch acting as
    the actor observes them.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    async def __call__(self, request: RequestSpec) -> Result:
        cfg = self.settings
        timeout = httpx.Timeout(request.timeout_s or cfg.request_timeout_s)
        headers = httpx.Headers(cfg.default_headers)
        headers.update(request.headers or {})
        if request.form is not None and "content-type" not in httpx.Headers(request.headers or {}):
            headers.pop("content-type", None)

        content = None
        if request.body is not None:
            content = request.body if isinstance(request.body, (str, bytes)) else json.dumps(request.body)

        async with httpx.AsyncClient(
            cookies=request.jar,
            timeout=timeout,
            verify=cfg.verify_ssl,
            follow_redirects=cfg.follow_redirects,
            transport=self._transport,
        ) as client:
            start = time.time() * 1000.0
            response = await client.request(
                request.method.upper(),
                request.url,
                headers=headers,
                content=content,
                data=request.form,
            )
            end = time.time() * 1000.0

            if request.jar is not None:
                # only what the server set; the client's own copy of the jar may be stale
                for hop in [*response.history, response]:
                    request.jar.extract_cookies(hop)

        logger.debug(f"{request.method} {request.url} → {response.status_code} ({end - start:.0f}ms)")
        return make_result(response, request.jar, start, end)
