"""Client configuration for pylingoloop."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pylingoloop._constants import (
    DEFAULT_CACHE_NAMESPACE,
    DEFAULT_CACHE_VERSION,
    DEFAULT_FEED_NAMESPACE,
    DEFAULT_LIST_PATH,
    DEFAULT_PAGE_SIZE,
)
from pylingoloop.exceptions import LingoLoopConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], key: str, cast: type[int] | type[float]) -> Any:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise LingoLoopConfigError(f"{key} must be numeric, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class MqttSettings:
    """Broker settings for the MQTT change feed client.

    ``host`` left as ``None`` means no MQTT feed is configured; the engine
    then starts without a feed client (status ``disabled``) unless one is
    injected explicitly.
    """

    host: str | None = None
    port: int = 8883
    username: str | None = None
    password: str | None = None
    tls: bool = True
    keepalive: int = 60
    topic_prefix: str = "lingoloop"
    client_id: str | None = None


@dataclasses.dataclass(frozen=True)
class LingoLoopConfig:
    """Sync engine configuration.

    Parameters
    ----------
    base_url : str
        Remote API base URL. Paths such as ``/api/audios`` are appended to it.
        Trailing slashes are stripped.
    list_path : str
        Authoritative list endpoint for the primary entity kind.
    page_size : int
        Page size requested from the list endpoint on every ``sync()``.
    request_timeout : float
        Total timeout in seconds for a single Remote API request.
    cache_namespace : str
        Prefix of the persisted collection keys.
    cache_version : int
        Version suffix of the persisted collection keys. Bump it to orphan
        caches written by an incompatible release.
    cache_dir : Path or None
        Directory for the file-backed local store. ``None`` keeps persisted
        state in memory only.
    feed_enabled : bool
        Whether to build an MQTT feed client from ``mqtt`` settings.
    feed_namespace : str
        Namespace part of channel names (``<namespace>:<Kind>``).
    feed_subscribe_timeout : float
        Seconds to wait for a subscription acknowledgement before reporting
        the channel as timed out.
    mqtt : MqttSettings
        Broker settings for the MQTT feed client.
    api_trace_enabled : bool
        Log redacted request/response bodies at DEBUG level.
    """

    base_url: str = ""
    list_path: str = DEFAULT_LIST_PATH
    page_size: int = DEFAULT_PAGE_SIZE
    request_timeout: float = 30.0
    cache_namespace: str = DEFAULT_CACHE_NAMESPACE
    cache_version: int = DEFAULT_CACHE_VERSION
    cache_dir: Path | None = None
    feed_enabled: bool = True
    feed_namespace: str = DEFAULT_FEED_NAMESPACE
    feed_subscribe_timeout: float = 10.0
    mqtt: MqttSettings = dataclasses.field(default_factory=MqttSettings)
    api_trace_enabled: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.strip().rstrip("/"))
        if not self.list_path.startswith("/"):
            raise LingoLoopConfigError(f"list_path must start with '/', got {self.list_path!r}")
        if self.page_size <= 0:
            raise LingoLoopConfigError(f"page_size must be positive, got {self.page_size}")
        if self.cache_dir is not None and not isinstance(self.cache_dir, Path):
            object.__setattr__(self, "cache_dir", Path(self.cache_dir))

    @classmethod
    def from_env(cls, **overrides: Any) -> LingoLoopConfig:
        """Create configuration from environment variables.

        Reads ``LINGOLOOP_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        LingoLoopConfig
            Populated configuration.
        """
        env = os.environ

        mqtt_kwargs: dict[str, Any] = {}
        _ENV_MQTT_MAP = {
            "LINGOLOOP_MQTT_HOST": "host",
            "LINGOLOOP_MQTT_USERNAME": "username",
            "LINGOLOOP_MQTT_PASSWORD": "password",
            "LINGOLOOP_MQTT_TOPIC_PREFIX": "topic_prefix",
            "LINGOLOOP_MQTT_CLIENT_ID": "client_id",
        }
        for env_key, field_name in _ENV_MQTT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                mqtt_kwargs[field_name] = val

        port = _env_number(env, "LINGOLOOP_MQTT_PORT", int)
        if port is not None:
            mqtt_kwargs["port"] = port
        keepalive = _env_number(env, "LINGOLOOP_MQTT_KEEPALIVE", int)
        if keepalive is not None:
            mqtt_kwargs["keepalive"] = keepalive
        if env.get("LINGOLOOP_MQTT_TLS") is not None:
            mqtt_kwargs["tls"] = _env_bool(env.get("LINGOLOOP_MQTT_TLS"), True)

        # Allow overriding MQTT fields via a nested dict
        mqtt_overrides = overrides.pop("mqtt", None)
        if isinstance(mqtt_overrides, dict):
            mqtt_kwargs.update(mqtt_overrides)
        elif isinstance(mqtt_overrides, MqttSettings):
            mqtt_kwargs = dataclasses.asdict(mqtt_overrides)

        config_kwargs: dict[str, Any] = {"mqtt": MqttSettings(**mqtt_kwargs)}

        _ENV_CONFIG_MAP = {
            "LINGOLOOP_API_BASE": "base_url",
            "LINGOLOOP_LIST_PATH": "list_path",
            "LINGOLOOP_CACHE_NAMESPACE": "cache_namespace",
            "LINGOLOOP_FEED_NAMESPACE": "feed_namespace",
        }
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "LINGOLOOP_PAGE_SIZE": ("page_size", int),
            "LINGOLOOP_REQUEST_TIMEOUT": ("request_timeout", float),
            "LINGOLOOP_CACHE_VERSION": ("cache_version", int),
            "LINGOLOOP_FEED_SUBSCRIBE_TIMEOUT": ("feed_subscribe_timeout", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            if field_name in overrides:
                continue
            parsed = _env_number(env, env_key, cast)
            if parsed is not None:
                config_kwargs[field_name] = parsed

        cache_dir = env.get("LINGOLOOP_CACHE_DIR")
        if cache_dir and "cache_dir" not in overrides:
            config_kwargs["cache_dir"] = Path(cache_dir).expanduser()

        if "feed_enabled" not in overrides:
            config_kwargs["feed_enabled"] = _env_bool(env.get("LINGOLOOP_FEED_ENABLED"), True)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(
                env.get("LINGOLOOP_API_TRACE_ENABLED"),
                False,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)

    def resolve_url(self, path: str) -> str:
        """Join an absolute API path onto ``base_url``."""
        if not path.startswith("/"):
            raise LingoLoopConfigError(f"API paths must start with '/', got {path!r}")
        return f"{self.base_url}{path}"
