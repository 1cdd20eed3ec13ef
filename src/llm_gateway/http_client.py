"""Blocking ``requests`` calls moved off the event loop, with uniform errors."""

from __future__ import annotations

import asyncio
from typing import Any

import requests

from .errors import InvalidUpstreamResponse, UpstreamHTTPError

DEFAULT_TIMEOUT = 120.0
# Upstream error bodies can be whole HTML pages.
_BODY_EXCERPT_CHARS = 2_000


def build_openai_url(base_url: str, endpoint: str) -> str:
    """Join an OpenAI-style endpoint onto a base URL with or without ``/v1``."""
    base = base_url.rstrip("/")
    if base.endswith("/v1"):
        return f"{base}{endpoint}"
    return f"{base}/v1{endpoint}"


def _decode(url: str, resp: requests.Response) -> Any:
    if not resp.ok:
        raise UpstreamHTTPError(url, resp.status_code, resp.text[:_BODY_EXCERPT_CHARS])
    try:
        return resp.json()
    except ValueError as exc:
        msg = f"Non-JSON response from {url}: {resp.text[:200]}"
        raise InvalidUpstreamResponse(msg) from exc


def _post(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float) -> Any:
    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamHTTPError(url, None, str(exc)) from exc
    return _decode(url, resp)


def _get(url: str, headers: dict[str, str], timeout: float) -> Any:
    try:
        resp = requests.get(url, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamHTTPError(url, None, str(exc)) from exc
    return _decode(url, resp)


async def post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """POST *payload* as JSON and return the decoded response body."""
    return await asyncio.to_thread(_post, url, payload, dict(headers or {}), timeout)


async def get_json(
    url: str,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """GET *url* and return the decoded response body."""
    return await asyncio.to_thread(_get, url, dict(headers or {}), timeout)
