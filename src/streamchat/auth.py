"""Auth context and the OAuth redirect bridge."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, quote, urlsplit

import httpx

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "csrf_token"
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24 * 7
LOGIN_PATH = "/login"
CHAT_PATH = "/chat"


def build_csrf_cookie(token: str) -> str:
    """Cookie string for the CSRF token. The token is used verbatim."""
    return f"{CSRF_COOKIE_NAME}={token}; path=/; max-age={CSRF_COOKIE_MAX_AGE}; SameSite=Lax"


@dataclass
class UserProfile:
    tenant_id: str
    tenant_name: str = ""
    email: str = ""
    name: str = ""
    provider: str = ""
    linked_providers: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> UserProfile:
        linked = raw.get("linked_providers")
        return cls(
            tenant_id=str(raw["tenant_id"]),
            tenant_name=str(raw.get("tenant_name", "")),
            email=str(raw.get("email", "")),
            name=str(raw.get("name", "")),
            provider=str(raw.get("provider", "")),
            linked_providers=[str(p) for p in linked] if isinstance(linked, list) else [],
        )


class AuthContext:
    """Explicit auth/session context.

    Created when the client session starts and closed at logout. Owns the
    cookie jar shared with the API client and the signed-in user.
    """

    def __init__(self, cookies: httpx.Cookies | None = None) -> None:
        self.cookies = cookies if cookies is not None else httpx.Cookies()
        self.user: UserProfile | None = None
        self.cookie_writes: list[str] = []
        self._teardown: list[Callable[[], None]] = []
        self._closed = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def csrf_token(self) -> str:
        # Several domains may carry the cookie; any match will do.
        for cookie in self.cookies.jar:
            if cookie.name == CSRF_COOKIE_NAME and cookie.value is not None:
                return cookie.value
        return ""

    def write_cookie(self, cookie: str) -> None:
        """Apply a ``name=value; attr=...`` cookie string to the jar."""
        pair, _, _attributes = cookie.partition(";")
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValueError(f"malformed cookie string: {cookie!r}")
        self.cookies.set(name, value.strip(), path="/")
        self.cookie_writes.append(cookie)

    def add_teardown(self, callback: Callable[[], None]) -> None:
        self._teardown.append(callback)

    def close(self) -> None:
        """Tear down at logout: forget the user, cookies and dependants."""
        if self._closed:
            return
        self._closed = True
        self.user = None
        self.cookies.clear()
        for callback in self._teardown:
            try:
                callback()
            except Exception:
                logger.exception("Auth teardown callback failed")
        self._teardown.clear()


def parse_redirect_params(raw: str | Mapping[str, str]) -> dict[str, str]:
    """Accept a mapping, a query string or a full redirect URL."""
    if isinstance(raw, Mapping):
        return {str(k): str(v) for k, v in raw.items() if v is not None}

    text = raw.strip()
    query = urlsplit(text).query if "?" in text or "://" in text else text.lstrip("?")
    # parse_qs would decode "+" in the token; keep it verbatim.
    parsed = parse_qs(query.replace("+", "%2B"), keep_blank_values=True)
    return {key: values[0] for key, values in parsed.items() if values}


@dataclass
class CallbackResult:
    ok: bool
    destination: str
    error: str | None = None
    cookie_written: bool = False


class AuthSessionBridge:
    """Finish an OAuth login from the redirect parameters.

    An ``error`` parameter always routes to the login surface and stops
    the handshake; otherwise the CSRF token (if any) is stored as a cookie,
    identity is refreshed and the user lands on the chat surface.
    """

    def __init__(
        self,
        auth: AuthContext,
        *,
        refresh_identity: Callable[[], Awaitable[object]],
        navigate: Callable[[str], object],
    ) -> None:
        self._auth = auth
        self._refresh_identity = refresh_identity
        self._navigate = navigate
        self._result: CallbackResult | None = None

    @property
    def result(self) -> CallbackResult | None:
        return self._result

    async def handle_callback(self, params: str | Mapping[str, str]) -> CallbackResult:
        if self._result is not None:
            logger.debug("Auth callback already handled; ignoring repeat")
            return self._result

        values = parse_redirect_params(params)
        error = values.get("error")
        if error:
            logger.error("OAuth error: %s", error)
            destination = f"{LOGIN_PATH}?error={quote(error, safe='')}"
            self._result = CallbackResult(ok=False, destination=destination, error=error)
            self._navigate(destination)
            return self._result

        cookie_written = False
        csrf_token = values.get(CSRF_COOKIE_NAME)
        if csrf_token:
            self._auth.write_cookie(build_csrf_cookie(csrf_token))
            cookie_written = True

        self._result = CallbackResult(ok=True, destination=CHAT_PATH, cookie_written=cookie_written)
        await self._refresh_identity()
        self._navigate(CHAT_PATH)
        logger.info("Login handshake completed")
        return self._result
