"""Mapping of HTTP provider failures onto the provider error taxonomy."""

import httpx

from morphorama.domain.errors import (
    ProviderAuthError,
    ProviderUnavailableError,
    RateLimitedError,
)

_DETAIL_CHARS = 200
_AUTH_STATUSES = {401, 403}
_RATE_LIMITED = 429


async def send_request(
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    **kwargs: object,
) -> httpx.Response:
    """Send a request, converting transport failures and error statuses."""
    try:
        response = await http_client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderUnavailableError(provider, f"Request timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise ProviderUnavailableError(provider, f"Transport error: {exc}") from exc
    raise_for_provider_status(response, provider)
    return response


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Raise the matching ProviderError for a non-2xx response."""
    if response.is_success:
        return
    status = response.status_code
    detail = response.text[:_DETAIL_CHARS]
    if status in _AUTH_STATUSES:
        raise ProviderAuthError(provider, f"Invalid API credentials ({status})")
    if status == _RATE_LIMITED:
        raise RateLimitedError(provider, f"Rate limit exceeded: {detail}")
    raise ProviderUnavailableError(provider, f"HTTP {status}: {detail}")
