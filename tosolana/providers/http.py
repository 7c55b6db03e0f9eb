"""Shared HTTP plumbing for provider adapters and chain RPC calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 502, 503, 504})


async def send_with_retry(
    method: str,
    url: str,
    *,
    timeout_s: float,
    max_retries: int = 2,
    retry_delay_s: float = 0.5,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send one request with a bounded number of retries.

    Connection errors and retryable status codes are retried with a linear
    backoff. Timeouts are not retried: the caller's deadline already elapsed.
    Non-retryable responses are returned as-is for the caller to interpret.
    """
    attempt = 0
    while True:
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise
        except httpx.TransportError as exc:
            if attempt >= max_retries:
                raise
            logger.debug(f"{method} {url} failed ({exc!r}), retry {attempt + 1}/{max_retries}")
        else:
            if response.status_code not in RETRYABLE_STATUS or attempt >= max_retries:
                return response
            logger.debug(f"{method} {url} returned {response.status_code}, retry {attempt + 1}/{max_retries}")

        await asyncio.sleep(retry_delay_s * (attempt + 1))
        attempt += 1


async def request_json(
    provider: str,
    method: str,
    url: str,
    *,
    timeout_s: float,
    max_retries: int = 2,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any,
) -> Any:
    """Call a provider endpoint and return decoded JSON, mapping failures to ProviderError."""
    try:
        response = await send_with_retry(
            method,
            url,
            timeout_s=timeout_s,
            max_retries=max_retries,
            transport=transport,
            headers={"accept": "application/json", **(headers or {})},
            **kwargs,
        )
    except httpx.TimeoutException as exc:
        raise ProviderError(provider, f"Request timed out after {timeout_s}s", ProviderErrorKind.TRANSIENT) from exc
    except httpx.TransportError as exc:
        raise ProviderError(provider, f"Network error: {exc}", ProviderErrorKind.TRANSIENT) from exc

    if response.status_code in RETRYABLE_STATUS:
        raise ProviderError(
            provider,
            f"Service unavailable (HTTP {response.status_code})",
            ProviderErrorKind.TRANSIENT,
        )
    if response.status_code >= 400:
        raise ProviderError(provider, _error_message(response), ProviderErrorKind.UNEXPECTED)

    try:
        return response.json()
    except ValueError as exc:
        raise ProviderError(provider, "Invalid JSON response", ProviderErrorKind.UNEXPECTED) from exc


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str):
                return f"HTTP {response.status_code}: {body[key]}"
    return f"HTTP {response.status_code}"
