"""Error telemetry: event sanitizing, breadcrumbs and transmission."""
from __future__ import annotations

import json
import logging
import traceback
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, urlencode
from uuid import uuid4

import httpx

from .config import ClientConfig

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

CONTENT_KEYS = frozenset({"content", "message", "text", "prompt", "body", "input", "output"})
SENSITIVE_HEADERS = frozenset(
    {"authorization", "cookie", "set-cookie", "x-csrf-token", "csrf-token", "proxy-authorization"}
)
SENSITIVE_QUERY_KEYS = frozenset({"csrf_token", "token", "access_token", "code"})


_MAX_BREADCRUMBS = 100

_Scalar = (str, int, float, bool, type(None))


class _Uninspectable(Exception):
    pass


def _is_sensitive_header(name: object) -> bool:
    if not isinstance(name, str):
        return True
    return name.strip().lower().replace("_", "-") in SENSITIVE_HEADERS


def _sanitize_headers(headers: object) -> dict[str, Any] | None:
    if not isinstance(headers, Mapping):
        return None
    cleaned: dict[str, Any] = {}
    for name, value in headers.items():
        if _is_sensitive_header(name):
            continue
        if isinstance(value, _Scalar):
            cleaned[name] = value
    return cleaned


def _sanitize_query(query: object) -> str | None:
    if not isinstance(query, str):
        return None
    pairs = parse_qsl(query, keep_blank_values=True)
    cleaned = [
        (key, REDACTED if key.lower() in SENSITIVE_QUERY_KEYS else value)
        for key, value in pairs
    ]
    return urlencode(cleaned, safe="[]")


def _sanitize_value(value: object, *, redact_content: bool) -> object:
    """Deep-copy ``value`` with content keys redacted and headers stripped.

    Raises _Uninspectable for values that are not plain JSON-like data.
    """
    if isinstance(value, _Scalar):
        return value
    if isinstance(value, Mapping):
        cleaned: dict[str, object] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                continue
            lowered = key.lower()
            if lowered == "headers":
                headers = _sanitize_headers(item)
                if headers is not None:
                    cleaned[key] = headers
                continue
            if lowered in ("cookies", "csrf_token") or _is_sensitive_header(key):
                continue
            if redact_content and lowered in CONTENT_KEYS:
                cleaned[key] = REDACTED
                continue
            try:
                cleaned[key] = _sanitize_value(item, redact_content=redact_content)
            except _Uninspectable:
                continue
        return cleaned
    if isinstance(value, (list, tuple)):
        items: list[object] = []
        for item in value:
            try:
                items.append(_sanitize_value(item, redact_content=redact_content))
            except _Uninspectable:
                continue
        return items
    raise _Uninspectable(type(value).__name__)


def _sanitize_request_data(data: object) -> object:
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except ValueError:
            raise _Uninspectable("request data is not JSON") from None
        return json.dumps(_sanitize_value(parsed, redact_content=True))
    return _sanitize_value(data, redact_content=True)


def _sanitize_request(request: object) -> dict[str, object] | None:
    if not isinstance(request, Mapping):
        return None
    cleaned: dict[str, object] = {}
    for key, value in request.items():
        if _is_sensitive_header(key):
            continue
        if key == "headers":
            headers = _sanitize_headers(value)
            if headers is not None:
                cleaned[key] = headers
        elif key == "cookies":
            continue
        elif key == "data":
            try:
                cleaned[key] = _sanitize_request_data(value)
            except _Uninspectable:
                logger.debug("Dropping uninspectable request data from telemetry event")
        elif key == "query_string":
            query = _sanitize_query(value)
            if query is not None:
                cleaned[key] = query
        else:
            try:
                cleaned[key] = _sanitize_value(value, redact_content=False)
            except _Uninspectable:
                continue
    return cleaned


def _sanitize_breadcrumb(crumb: object) -> dict[str, object] | None:
    if not isinstance(crumb, Mapping):
        return None
    cleaned: dict[str, object] = {}
    for key, value in crumb.items():
        if _is_sensitive_header(key):
            continue
        if key == "data":
            try:
                data = _sanitize_value(value, redact_content=True)
            except _Uninspectable:
                continue
            if isinstance(data, dict):
                cleaned[key] = data
        else:
            try:
                cleaned[key] = _sanitize_value(value, redact_content=False)
            except _Uninspectable:
                continue
    return cleaned


def sanitize_event(event: Mapping[str, Any]) -> dict[str, Any]:
    """Return a sanitized copy of a telemetry event.

    Content-bearing fields (``content``, ``message``, ``text`` ...) become
    ``[REDACTED]`` at any depth; auth, cookie and CSRF headers are removed
    from every ``headers`` mapping, and keys with those names are dropped
    wherever they appear. Anything that cannot be inspected is dropped.
    Applying it twice gives the same result as applying it once.
    """
    sanitized: dict[str, Any] = {}
    for key, value in event.items():
        if not isinstance(key, str):
            continue
        if key == "breadcrumbs":
            crumbs = value.get("values") if isinstance(value, Mapping) else value
            if isinstance(crumbs, (list, tuple)):
                sanitized[key] = [
                    cleaned
                    for cleaned in (_sanitize_breadcrumb(crumb) for crumb in crumbs)
                    if cleaned is not None
                ]
        elif key == "request":
            request = _sanitize_request(value)
            if request is not None:
                sanitized[key] = request
        elif key == "exception":
            try:
                sanitized[key] = _sanitize_value(value, redact_content=False)
            except _Uninspectable:
                continue
        elif key.lower() == "headers":
            headers = _sanitize_headers(value)
            if headers is not None:
                sanitized[key] = headers
        elif key.lower() in ("cookies", "csrf_token") or _is_sensitive_header(key):
            continue
        elif key.lower() in CONTENT_KEYS:
            sanitized[key] = REDACTED
        else:
            try:
                sanitized[key] = _sanitize_value(value, redact_content=True)
            except _Uninspectable:
                continue
    return sanitized


TelemetrySink = Callable[[dict[str, Any]], Awaitable[None]]


class TelemetryReporter:
    """Collects breadcrumbs and ships sanitized error events.

    Only the output of ``sanitize_event`` ever reaches the sink.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        sink: TelemetrySink | None = None,
        max_breadcrumbs: int = _MAX_BREADCRUMBS,
    ) -> None:
        self.config = config
        self._sink = sink
        self._client: httpx.AsyncClient | None = None
        self._breadcrumbs: deque[dict[str, Any]] = deque(maxlen=max_breadcrumbs)
        self._user_id: str | None = None

    @property
    def enabled(self) -> bool:
        return self._sink is not None or self.config.telemetry_enabled

    @property
    def breadcrumbs(self) -> list[dict[str, Any]]:
        return list(self._breadcrumbs)

    def set_user(self, user_id: str | None) -> None:
        """Attach an opaque tenant/user id (no PII)."""
        self._user_id = user_id

    def add_breadcrumb(
        self,
        category: str,
        message: str,
        *,
        level: str = "info",
        data: dict[str, Any] | None = None,
    ) -> None:
        self._breadcrumbs.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "category": category,
                "message": message,
                "level": level,
                "data": dict(data or {}),
            }
        )

    def add_api_breadcrumb(
        self, method: str, url: str, status_code: int | None = None, error: str | None = None
    ) -> None:
        data: dict[str, Any] = {"method": method, "url": url, "status_code": status_code}
        if error:
            data["error"] = error
        self.add_breadcrumb("api", f"{method} {url}", level="error" if error else "info", data=data)

    def add_streaming_breadcrumb(
        self, event_type: str, session_id: str, error: str | None = None
    ) -> None:
        data: dict[str, Any] = {"event_type": event_type, "session_id": session_id}
        if error:
            data["error"] = error
        self.add_breadcrumb(
            "streaming", f"SSE {event_type}", level="error" if error else "info", data=data
        )

    def build_event(
        self, exc: BaseException, context: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        frames = traceback.extract_tb(exc.__traceback__)
        event: dict[str, Any] = {
            "event_id": uuid4().hex,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": "error",
            "platform": "python",
            "environment": self.config.environment,
            "exception": {
                "type": type(exc).__name__,
                "value": str(exc),
                "frames": [
                    {"filename": frame.filename, "function": frame.name, "lineno": frame.lineno}
                    for frame in frames
                ],
            },
            "breadcrumbs": self.breadcrumbs,
            "extra": dict(context or {}),
        }
        if self.config.release:
            event["release"] = self.config.release
        if self._user_id:
            event["user"] = {"id": self._user_id}
        return event

    async def capture_exception(
        self, exc: BaseException, context: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Sanitize and send an error event. Never raises."""
        if not self.enabled:
            return None
        event = sanitize_event(self.build_event(exc, context))
        await self._send(event)
        return event

    async def _send(self, event: dict[str, Any]) -> None:
        try:
            if self._sink is not None:
                await self._sink(event)
                return
            client = self._get_client()
            response = await client.post(self.config.telemetry_url or "", json=event)
            if response.status_code >= 400:
                logger.warning("Telemetry sink rejected event: HTTP %d", response.status_code)
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Telemetry send failed: %s", exc)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=5.0)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
