from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from .auth import AuthContext, UserProfile, build_csrf_cookie
from .chat.runtime_types import StreamEvent
from .chat.sse import SseDecoder
from .config import ClientConfig
from .errors import AuthError, NetworkError
from .models import ApiStatus, Message, MessageStatus, Role, Session
from .telemetry import TelemetryReporter

logger = logging.getLogger(__name__)

OAUTH_PROVIDERS = ("google", "discord", "apple")


def _encode_body(payload: Any) -> bytes | None:
    """JSON body with non-ASCII escaped, so lone surrogates still encode."""
    if payload is None:
        return None
    return json.dumps(payload).encode("ascii")


def _extract_error_text(data: object) -> str | None:
    """Best-effort extraction of human-readable error text from backend JSON."""
    if not isinstance(data, dict):
        return None
    for key in ("error", "message", "detail"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            nested = value.get("message")
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return None


def _parse_timestamp(raw: object) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp %r", raw)
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _parse_message(raw: dict) -> Message:
    role = Role.ASSISTANT if raw.get("role") == "assistant" else Role.USER
    return Message(
        id=str(raw["id"]),
        role=role,
        content=str(raw.get("content") or ""),
        status=MessageStatus.COMPLETE,
        created_at=_parse_timestamp(raw.get("created_at")),
        remote_id=str(raw["id"]),
    )


def _parse_session(raw: dict) -> Session:
    messages: list[Message] = []
    for item in raw.get("messages") or []:
        if not isinstance(item, dict):
            continue
        try:
            messages.append(_parse_message(item))
        except (KeyError, TypeError) as exc:
            logger.warning("Skipping malformed message record: %s", exc)
    return Session(
        id=str(raw["id"]),
        title=str(raw.get("title") or "New chat"),
        created_at=_parse_timestamp(raw.get("created_at")),
        updated_at=_parse_timestamp(raw.get("updated_at") or raw.get("created_at")),
        messages=messages,
    )


class ChatApiClient:
    """Async client for the chat backend REST + streaming API."""

    def __init__(
        self,
        config: ClientConfig,
        auth: AuthContext,
        *,
        reporter: TelemetryReporter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.auth = auth
        self._reporter = reporter
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.backend_url,
                cookies=self.auth.cookies.jar,
                timeout=httpx.Timeout(self.config.request_timeout_s, read=None),
                transport=self._transport,
            )
            logger.info("Backend client created for %s", self.config.backend_url)
        return self._client

    def _headers(self, *, stream: bool = False) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-CSRF-Token": self.auth.csrf_token,
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    def _breadcrumb(self, method: str, path: str, status: int | None, error: str | None = None) -> None:
        if self._reporter is not None:
            self._reporter.add_api_breadcrumb(method, path, status, error)

    async def _send(
        self, method: str, path: str, *, json: Any = None, stream: bool = False
    ) -> httpx.Response:
        client = self._get_client()
        request = client.build_request(
            method, path, content=_encode_body(json), headers=self._headers(stream=stream)
        )
        try:
            return await client.send(request, stream=stream)
        except httpx.ConnectError as exc:
            logger.warning("Backend connection failed: %s", exc)
            self._breadcrumb(method, path, None, "connect failed")
            raise NetworkError(f"Cannot reach backend at {self.config.backend_url}: {exc}") from exc
        except httpx.TimeoutException as exc:
            logger.warning("Backend request timed out: %s", exc)
            self._breadcrumb(method, path, None, "timeout")
            raise NetworkError(f"Backend request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            logger.warning("Backend request error: %s", exc)
            self._breadcrumb(method, path, None, "request error")
            raise NetworkError(f"Backend request error: {exc}") from exc

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        """Issue a JSON request with one refresh-and-retry on 401."""
        response = await self._send(method, path, json=json)
        self._breadcrumb(method, path, response.status_code)

        if response.status_code == 401:
            if not await self.refresh_token():
                raise AuthError("Session expired")
            response = await self._send(method, path, json=json)
            self._breadcrumb(method, path, response.status_code)
            if response.status_code == 401:
                raise AuthError("Session expired")

        if response.status_code == 403:
            raise AuthError(f"Authentication failed: HTTP {response.status_code}")

        data: object = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None

        if not response.is_success:
            message = _extract_error_text(data) or f"Request failed with status {response.status_code}"
            self._breadcrumb(method, path, response.status_code, message)
            logger.warning("%s %s failed: %s", method, path, message)
            raise NetworkError(message, status_code=response.status_code)

        return data if data is not None else {}

    async def refresh_token(self) -> bool:
        """POST /v1/auth/refresh; stores the rotated CSRF token. Never raises."""
        try:
            response = await self._send("POST", "/v1/auth/refresh")
        except NetworkError:
            return False
        self._breadcrumb("POST", "/v1/auth/refresh", response.status_code)
        if not response.is_success:
            return False
        try:
            data = response.json()
        except ValueError:
            return True
        token = data.get("csrf_token") if isinstance(data, dict) else None
        if isinstance(token, str) and token:
            self.auth.write_cookie(build_csrf_cookie(token))
        return True

    async def stream_message(self, session_id: str, content: str) -> AsyncIterator[StreamEvent]:
        """POST a message and yield server-sent events in arrival order.

        Raises AuthError when the session cannot be refreshed and
        NetworkError for transport or backend failures. Closing the
        generator aborts the underlying response.
        """
        path = f"/v1/sessions/{session_id}/messages"
        payload = {"content": content}

        response = await self._send("POST", path, json=payload, stream=True)
        self._breadcrumb("POST", path, response.status_code)
        if response.status_code == 401:
            await response.aclose()
            if not await self.refresh_token():
                raise AuthError("Session expired")
            response = await self._send("POST", path, json=payload, stream=True)
            self._breadcrumb("POST", path, response.status_code)

        try:
            if response.status_code == 401:
                raise AuthError("Session expired")
            if not response.is_success:
                body = await response.aread()
                message = f"Request failed with status {response.status_code}"
                try:
                    message = _extract_error_text(json.loads(body)) or message
                except ValueError:
                    pass
                self._breadcrumb("POST", path, response.status_code, message)
                raise NetworkError(message, status_code=response.status_code)

            decoder = SseDecoder()
            async for line in response.aiter_lines():
                for event in decoder.feed_line(line):
                    yield event
        except httpx.HTTPError as exc:
            logger.warning("Stream for session %s failed: %s", session_id, exc)
            raise NetworkError(f"Stream interrupted: {exc}") from exc
        finally:
            await response.aclose()

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> list[Session]:
        data = await self._request("GET", f"/v1/sessions?limit={limit}&offset={offset}")
        raw_sessions = data.get("sessions") if isinstance(data, dict) else None
        if not isinstance(raw_sessions, list):
            logger.warning("Unexpected sessions response shape — returning empty list")
            return []

        sessions: list[Session] = []
        for raw in raw_sessions:
            try:
                sessions.append(_parse_session(raw))
            except (KeyError, TypeError) as exc:
                logger.warning("Skipping malformed session record: %s", exc)
        logger.debug("Fetched %d sessions from backend", len(sessions))
        return sessions

    async def get_session(self, session_id: str) -> Session:
        data = await self._request("GET", f"/v1/sessions/{session_id}")
        try:
            return _parse_session(data)
        except (KeyError, TypeError) as exc:
            raise NetworkError(f"Unexpected session response shape: {exc}") from exc

    async def create_session(self, mode: str = "chat") -> Session:
        data = await self._request("POST", "/v1/sessions", json={"mode": mode})
        try:
            return _parse_session(data)
        except (KeyError, TypeError) as exc:
            raise NetworkError(f"Unexpected session response shape: {exc}") from exc

    async def update_session(self, session_id: str, title: str) -> dict:
        return await self._request("PATCH", f"/v1/sessions/{session_id}", json={"title": title})

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/v1/sessions/{session_id}")

    async def get_me(self) -> UserProfile:
        data = await self._request("GET", "/v1/auth/me")
        try:
            return UserProfile.from_payload(data)
        except (KeyError, TypeError) as exc:
            raise AuthError(f"Unexpected identity response: {exc}") from exc

    async def logout(self) -> None:
        await self._request("POST", "/v1/auth/logout")

    async def get_status(self) -> ApiStatus:
        data = await self._request("GET", "/status")
        if not isinstance(data, dict):
            return ApiStatus()
        return ApiStatus(
            version=str(data.get("version") or "unknown"),
            dev_mode=bool(data.get("dev_mode")),
        )

    def login_url(self, provider: str) -> str:
        """OAuth start URL; the backend redirects back to ``auth_redirect_uri``."""
        provider = provider.strip().lower()
        if provider not in OAUTH_PROVIDERS:
            raise ValueError(f"Unknown login provider: {provider}")
        redirect_uri = quote(self.config.auth_redirect_uri, safe="")
        return f"{self.config.backend_url}/v1/auth/{provider}?redirect_uri={redirect_uri}"

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            logger.info("Backend client closed")
