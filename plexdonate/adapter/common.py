"""Helpers shared by the HTTP provider clients."""

from datetime import datetime, timezone
from typing import Any

import httpx
import logfire
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from plexdonate.adapter.error import (
    ProviderNotFoundError,
    ProviderResponseError,
    RejectedByProviderError,
    TransportError,
)

_DATETIME = TypeAdapter(datetime)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or unix epoch into an aware UTC datetime.

    Returns None for blank or unparseable input.
    """
    if value is None or value == "":
        return None
    try:
        parsed = _DATETIME.validate_python(value)
    except PydanticValidationError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def check_response(response: httpx.Response, provider: str, action: str) -> None:
    """Translate a non-2xx response into the adapter error hierarchy.

    Args:
        response: Provider response
        provider: Provider name for error context
        action: Human readable description of the call

    Raises:
        RejectedByProviderError: On 401/403
        ProviderNotFoundError: On 404/410
        TransportError: On 5xx or 429
        ProviderResponseError: On any other non-2xx status
    """
    status = response.status_code
    if 200 <= status < 300:
        return

    detail = response.text[:500]
    logfire.warn(
        f"{provider} request failed",
        provider=provider,
        action=action,
        status_code=status,
        error=detail,
    )
    message = f"{action} failed with status {status}: {detail}"
    if status in (401, 403):
        raise RejectedByProviderError(message, provider, status)
    if status in (404, 410):
        raise ProviderNotFoundError(message, provider)
    if status >= 500 or status == 429:
        raise TransportError(message, provider, status)
    raise ProviderResponseError(message, provider)


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    action: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, mapping network failures and timeouts to TransportError.

    The response is returned unchecked so callers can treat particular
    statuses (e.g. 404 on delete) as success.
    """
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        logfire.warn(f"{provider} request timed out", provider=provider, action=action)
        raise TransportError(f"{action} timed out", provider) from e
    except httpx.HTTPError as e:
        logfire.warn(
            f"{provider} HTTP error", provider=provider, action=action, error=str(e)
        )
        raise TransportError(f"HTTP error during {action}: {e}", provider) from e


def read_json(response: httpx.Response, provider: str, action: str) -> Any:
    """Decode a JSON body or raise ProviderResponseError."""
    try:
        return response.json()
    except ValueError as e:
        raise ProviderResponseError(
            f"{action} returned a non-JSON body", provider
        ) from e
