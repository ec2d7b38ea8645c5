"""
HTTP helpers.

This module centralizes the minimal HTTP client logic used by the Elasticsearch adapter.

Design goals:
- Small surface area (one JSON request helper).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so callers can decide how to map failures (e.g. 404 -> NotFound).
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "geoprox/0.1.0 (+https://local)"


def request_json(
    method: str,
    url: str,
    *,
    json: Any | None = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    auth: tuple[str, str] | None = None,
    timeout_seconds: float = 15,
) -> Any:
    """Send a request with an optional JSON body and return the decoded JSON response.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
    if headers:
        request_headers.update(headers)

    with httpx.Client(timeout=timeout_seconds, auth=auth) as client:
        resp = client.request(method, url, json=json, params=params, headers=request_headers)
        resp.raise_for_status()
        if not resp.content:
            return None
        return resp.json()

