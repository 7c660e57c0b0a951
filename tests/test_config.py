from __future__ import annotations

import json

from streamchat.config import ClientConfig, load_config

_ENV_VARS = (
    "STREAMCHAT_BACKEND_URL",
    "NEXT_PUBLIC_BACKEND_URL",
    "STREAMCHAT_TELEMETRY_URL",
    "STREAMCHAT_ENVIRONMENT",
    "STREAMCHAT_RELEASE",
    "STREAMCHAT_AUTH_REDIRECT_URI",
)


def clear_env(monkeypatch) -> None:
    """Remove all StreamChat env vars so tests get clean defaults."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestClientConfig:
    def test_telemetry_disabled_without_url(self):
        assert ClientConfig(backend_url="http://b").telemetry_enabled is False

    def test_telemetry_enabled_with_url(self):
        cfg = ClientConfig(backend_url="http://b", telemetry_url="https://sink")
        assert cfg.telemetry_enabled is True


class TestLoadConfig:
    def test_reads_config_file(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "backend": {"url": "https://api.example.test/", "timeout": 12},
            "telemetry": {"url": "https://sink.test", "environment": "staging", "release": "1.0"},
        }))

        cfg = load_config(config_path=str(config_file))

        assert cfg.backend_url == "https://api.example.test"
        assert cfg.request_timeout_s == 12.0
        assert cfg.telemetry_url == "https://sink.test"
        assert cfg.environment == "staging"
        assert cfg.release == "1.0"

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        cfg = load_config(config_path=str(tmp_path / "nope.json"))
        assert cfg.backend_url == "http://localhost:8080"
        assert cfg.request_timeout_s == 30.0
        assert cfg.telemetry_url is None
        assert cfg.environment == "development"
        assert cfg.release is None

    def test_malformed_file_falls_back_to_defaults(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")
        cfg = load_config(config_path=str(config_file))
        assert cfg.backend_url == "http://localhost:8080"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"backend": {"url": "http://file"}}))
        monkeypatch.setenv("STREAMCHAT_BACKEND_URL", "http://env")
        monkeypatch.setenv("STREAMCHAT_ENVIRONMENT", "production")
        monkeypatch.setenv("STREAMCHAT_RELEASE", "abc123")

        cfg = load_config(config_path=str(config_file))

        assert cfg.backend_url == "http://env"
        assert cfg.environment == "production"
        assert cfg.release == "abc123"

    def test_next_public_backend_url_is_honoured(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        monkeypatch.setenv("NEXT_PUBLIC_BACKEND_URL", "http://legacy")
        assert load_config(config_path=str(tmp_path / "x.json")).backend_url == "http://legacy"

    def test_empty_telemetry_env_disables_telemetry(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"telemetry": {"url": "https://sink"}}))
        monkeypatch.setenv("STREAMCHAT_TELEMETRY_URL", "")
        assert load_config(config_path=str(config_file)).telemetry_url is None

    def test_non_positive_timeout_uses_default(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"backend": {"timeout": 0}}))
        assert load_config(config_path=str(config_file)).request_timeout_s == 30.0

    def test_auth_redirect_uri_from_file_then_env(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"auth": {"redirect_uri": "https://app.test/auth/callback"}}))
        assert load_config(config_path=str(config_file)).auth_redirect_uri == "https://app.test/auth/callback"

        monkeypatch.setenv("STREAMCHAT_AUTH_REDIRECT_URI", "https://env.test/cb")
        assert load_config(config_path=str(config_file)).auth_redirect_uri == "https://env.test/cb"

    def test_auth_redirect_uri_default(self, tmp_path, monkeypatch):
        clear_env(monkeypatch)
        cfg = load_config(config_path=str(tmp_path / "nope.json"))
        assert cfg.auth_redirect_uri == "http://localhost:3000/auth/callback"
