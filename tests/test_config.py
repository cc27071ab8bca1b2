from __future__ import annotations

from pathlib import Path

import pytest

from pylingoloop.config import LingoLoopConfig, MqttSettings
from pylingoloop.exceptions import LingoLoopConfigError


def test_defaults() -> None:
    config = LingoLoopConfig()

    assert config.list_path == "/api/audios"
    assert config.page_size == 100
    assert config.cache_namespace == "lingoloop"
    assert config.cache_version == 1
    assert config.cache_dir is None
    assert config.feed_namespace == "public"
    assert config.mqtt == MqttSettings()


def test_from_env_reads_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LINGOLOOP_API_BASE", "https://api.example.com/")
    monkeypatch.setenv("LINGOLOOP_PAGE_SIZE", "25")
    monkeypatch.setenv("LINGOLOOP_CACHE_DIR", str(tmp_path))
    monkeypatch.setenv("LINGOLOOP_FEED_ENABLED", "off")
    monkeypatch.setenv("LINGOLOOP_MQTT_HOST", "broker.example.com")
    monkeypatch.setenv("LINGOLOOP_MQTT_PORT", "1883")
    monkeypatch.setenv("LINGOLOOP_MQTT_TLS", "false")

    config = LingoLoopConfig.from_env()

    assert config.base_url == "https://api.example.com"
    assert config.page_size == 25
    assert config.cache_dir == tmp_path
    assert config.feed_enabled is False
    assert config.mqtt.host == "broker.example.com"
    assert config.mqtt.port == 1883
    assert config.mqtt.tls is False


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LINGOLOOP_PAGE_SIZE", "25")
    monkeypatch.setenv("LINGOLOOP_MQTT_HOST", "env-broker")

    config = LingoLoopConfig.from_env(page_size=10, mqtt={"host": "explicit-broker"})

    assert config.page_size == 10
    assert config.mqtt.host == "explicit-broker"


def test_from_env_rejects_non_numeric(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LINGOLOOP_PAGE_SIZE", "lots")

    with pytest.raises(LingoLoopConfigError):
        LingoLoopConfig.from_env()


def test_validation() -> None:
    with pytest.raises(LingoLoopConfigError):
        LingoLoopConfig(list_path="api/audios")
    with pytest.raises(LingoLoopConfigError):
        LingoLoopConfig(page_size=0)


def test_resolve_url() -> None:
    config = LingoLoopConfig(base_url="https://api.example.com")

    assert config.resolve_url("/api/audios") == "https://api.example.com/api/audios"
    with pytest.raises(LingoLoopConfigError):
        config.resolve_url("api/audios")
