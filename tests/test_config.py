"""Tests for environment driven configuration."""

from netlayer import __version__
from netlayer.config import DEFAULT_RETRY_STATUS_CODES, HttpConfig, SocketConfig


def test_defaults_need_no_environment(monkeypatch) -> None:
    for name in ("NETLAYER_API_URL", "NETLAYER_WS_URL", "NETLAYER_HTTP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    http = HttpConfig.from_env()
    socket = SocketConfig.from_env()
    assert http.base_url == HttpConfig.base_url
    assert http.client_version == __version__
    assert http.retry_status_codes == DEFAULT_RETRY_STATUS_CODES
    assert socket.reconnect_decay == 1.5
    assert socket.max_reconnect_attempts == 10


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("NETLAYER_API_URL", "http://localhost:8080/api")
    monkeypatch.setenv("NETLAYER_HTTP_TIMEOUT", "5")
    monkeypatch.setenv("NETLAYER_RETRY_STATUS_CODES", "503, 504")
    monkeypatch.setenv("NETLAYER_WS_MAX_RECONNECT_ATTEMPTS", "3")
    http = HttpConfig.from_env()
    assert http.base_url == "http://localhost:8080/api"
    assert http.timeout == 5.0
    assert http.retry_status_codes == (503, 504)
    assert SocketConfig.from_env().max_reconnect_attempts == 3


def test_explicit_url_wins_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("NETLAYER_WS_URL", "ws://env")
    assert SocketConfig.from_env("ws://explicit").url == "ws://explicit"


def test_invalid_numbers_fall_back_to_defaults(monkeypatch, caplog) -> None:
    monkeypatch.setenv("NETLAYER_WS_HEARTBEAT_INTERVAL", "soon")
    monkeypatch.setenv("NETLAYER_MAX_RETRIES", "many")
    assert SocketConfig.from_env().heartbeat_interval == 30.0
    assert HttpConfig.from_env().max_retries == 3
    assert "NETLAYER_WS_HEARTBEAT_INTERVAL" in caplog.text
