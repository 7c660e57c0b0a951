from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_DEFAULT_BACKEND_URL = "http://localhost:8080"
_DEFAULT_ENVIRONMENT = "development"
_DEFAULT_TIMEOUT_S = 30.0
_DEFAULT_REDIRECT_URI = "http://localhost:3000/auth/callback"
_DEFAULT_CONFIG_PATH = Path.home() / ".streamchat" / "config.json"


@dataclass(frozen=True)
class ClientConfig:
    backend_url: str
    telemetry_url: str | None = None
    environment: str = _DEFAULT_ENVIRONMENT
    release: str | None = None
    request_timeout_s: float = _DEFAULT_TIMEOUT_S
    auth_redirect_uri: str = _DEFAULT_REDIRECT_URI

    @property
    def telemetry_enabled(self) -> bool:
        return bool(self.telemetry_url)


def load_config(config_path: str | None = None) -> ClientConfig:
    """Load config from ~/.streamchat/config.json, falling back to env vars.

    Config file fields:
    - backend.url (str, default http://localhost:8080)
    - backend.timeout (float seconds, default 30)
    - telemetry.url (str, optional; telemetry disabled when missing)
    - telemetry.environment (str, default "development")
    - telemetry.release (str, optional)
    - auth.redirect_uri (str, OAuth callback page, default
      http://localhost:3000/auth/callback)

    Env var overrides:
    - STREAMCHAT_BACKEND_URL / NEXT_PUBLIC_BACKEND_URL
    - STREAMCHAT_TELEMETRY_URL
    - STREAMCHAT_ENVIRONMENT
    - STREAMCHAT_RELEASE
    - STREAMCHAT_AUTH_REDIRECT_URI

    Returns ClientConfig. Never raises — uses defaults if config missing.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH

    backend_url = _DEFAULT_BACKEND_URL
    timeout_s = _DEFAULT_TIMEOUT_S
    telemetry_url: str | None = None
    environment = _DEFAULT_ENVIRONMENT
    release: str | None = None
    redirect_uri = _DEFAULT_REDIRECT_URI

    if path.exists():
        try:
            data = json.loads(path.read_text())
            backend_section = data.get("backend", {})
            backend_url = str(backend_section.get("url", _DEFAULT_BACKEND_URL))
            timeout_s = float(backend_section.get("timeout", _DEFAULT_TIMEOUT_S))
            telemetry_section = data.get("telemetry", {})
            telemetry_url = telemetry_section.get("url")
            environment = str(telemetry_section.get("environment", _DEFAULT_ENVIRONMENT))
            release = telemetry_section.get("release")
            redirect_uri = str(data.get("auth", {}).get("redirect_uri", _DEFAULT_REDIRECT_URI))
        except Exception as exc:
            logger.warning("Failed to parse config file %s: %s — using defaults", path, exc)
            backend_url = _DEFAULT_BACKEND_URL
            timeout_s = _DEFAULT_TIMEOUT_S
            telemetry_url = None
            environment = _DEFAULT_ENVIRONMENT
            release = None
            redirect_uri = _DEFAULT_REDIRECT_URI
    else:
        logger.info("Config file not found at %s — using defaults", path)

    env_backend = os.environ.get("STREAMCHAT_BACKEND_URL") or os.environ.get("NEXT_PUBLIC_BACKEND_URL")
    if env_backend:
        backend_url = env_backend

    env_telemetry = os.environ.get("STREAMCHAT_TELEMETRY_URL")
    if env_telemetry is not None:
        telemetry_url = env_telemetry or None

    environment = os.environ.get("STREAMCHAT_ENVIRONMENT", environment)
    release = os.environ.get("STREAMCHAT_RELEASE", release)
    redirect_uri = os.environ.get("STREAMCHAT_AUTH_REDIRECT_URI") or redirect_uri

    if timeout_s <= 0:
        logger.warning("Invalid backend timeout %r — using %.0f", timeout_s, _DEFAULT_TIMEOUT_S)
        timeout_s = _DEFAULT_TIMEOUT_S

    return ClientConfig(
        backend_url=backend_url.rstrip("/"),
        telemetry_url=telemetry_url,
        environment=environment,
        release=release,
        request_timeout_s=timeout_s,
        auth_redirect_uri=redirect_uri,
    )
