"""Shared httpx helpers for token endpoints and CRM REST APIs."""

from __future__ import annotations

from typing import Any

import httpx

from src.scribe.crm.errors import HttpError


async def send(
    method: str,
    url: str,
    *,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one bounded HTTP request; transport failures become HttpError.

    Timeouts are not retried here. Status codes are left to the caller.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            return await client.request(method, url, **kwargs)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise HttpError(exc) from exc


def response_body(response: httpx.Response) -> Any:
    """Decoded JSON body, the raw text when it isn't JSON, or None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
