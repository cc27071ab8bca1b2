"""HTTP transport for the Remote API with bearer credential handling."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pylingoloop._constants import USER_AGENT
from pylingoloop._redact import redact_for_log
from pylingoloop.config import LingoLoopConfig
from pylingoloop.exceptions import LingoLoopApiError, LingoLoopTransportError
from pylingoloop.session import Credential

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the engine and the mutation queue.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        path: str,
        *,
        credential: Credential,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        expect_json: bool = True,
    ) -> Any:
        ...


class HttpTransport:
    """aiohttp transport that attaches the bearer credential and decodes JSON."""

    def __init__(self, config: LingoLoopConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def request(
        self,
        method: str,
        path: str,
        *,
        credential: Credential,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        expect_json: bool = True,
    ) -> Any:
        """Issue ``METHOD path`` and return the decoded JSON body.

        Raises :class:`LingoLoopApiError` for non-2xx answers and
        :class:`LingoLoopTransportError` for connection failures, timeouts and
        undecodable bodies. With ``expect_json=False`` the body of a
        successful response is returned as text and never parsed.
        """
        url = self._config.resolve_url(path)
        headers: dict[str, str] = {
            "accept": "application/json",
            "authorization": credential.authorization_header(),
            "user-agent": USER_AGENT,
        }
        data: str | None = None
        if body is not None:
            headers["content-type"] = "application/json"
            data = json.dumps(body, separators=(",", ":"))

        _logger.debug("%s %s params=%s", method, url, dict(params) if params else {})
        if self._config.api_trace_enabled and body is not None:
            _logger.debug("Request body %s %s: %s", method, path, redact_for_log(body))

        try:
            async with self._http.request(
                method,
                url,
                params={k: str(v) for k, v in params.items()} if params else None,
                data=data,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise LingoLoopApiError(
                        f"HTTP {resp.status} from {method} {path}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=path,
                    )
                status = resp.status
        except LingoLoopTransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise LingoLoopTransportError(
                f"Request {method} {path} failed: {exc!r}",
                endpoint=path,
            ) from exc

        if not expect_json:
            if self._config.api_trace_enabled:
                _logger.debug("Response %s %s status=%s (%d chars)", method, path, status, len(text))
            return text
        if not text.strip():
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise LingoLoopTransportError(
                f"Invalid JSON from {method} {path}: {text[:200]}",
                status_code=status,
                endpoint=path,
            ) from exc

        if self._config.api_trace_enabled:
            _logger.debug("Response %s %s status=%s: %s", method, path, status, redact_for_log(payload))
        return payload
