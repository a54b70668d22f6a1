"""Shared httpx client factory.

All outgoing HTTP (storage, mail relay, geocoding, attachment downloads) is
made through ``http_client`` so request/response telemetry is attached via
event hooks rather than by patching call sites.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

import httpx

from fieldverify.core.config import settings
from fieldverify.core.logging import current_request_id

logger = logging.getLogger(__name__)

_extra_request_hooks: List[Callable[[httpx.Request], None]] = []
_extra_response_hooks: List[Callable[[httpx.Response], None]] = []


def _log_request(request: httpx.Request) -> None:
    request_id = current_request_id()
    if request_id:
        request.headers.setdefault("X-Request-ID", request_id)
    logger.debug("HTTP %s %s", request.method, request.url)


def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.info(
        "HTTP %s %s -> %d",
        request.method,
        request.url.copy_with(query=None),
        response.status_code,
    )


def add_telemetry_hooks(
    on_request: Optional[Callable[[httpx.Request], None]] = None,
    on_response: Optional[Callable[[httpx.Response], None]] = None,
) -> None:
    """Register extra hooks applied to every client created afterwards."""
    if on_request:
        _extra_request_hooks.append(on_request)
    if on_response:
        _extra_response_hooks.append(on_response)


def clear_telemetry_hooks() -> None:
    _extra_request_hooks.clear()
    _extra_response_hooks.clear()


def http_client(timeout: Optional[float] = None, **kwargs) -> httpx.Client:
    return httpx.Client(
        timeout=timeout if timeout is not None else settings.http_timeout,
        follow_redirects=True,
        event_hooks={
            "request": [_log_request, *_extra_request_hooks],
            "response": [_log_response, *_extra_response_hooks],
        },
        **kwargs,
    )
