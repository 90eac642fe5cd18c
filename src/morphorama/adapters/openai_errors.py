"""Translation of OpenAI SDK exceptions into provider errors."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import openai

from morphorama.domain.errors import (
    ProviderAuthError,
    ProviderUnavailableError,
    RateLimitedError,
)


@asynccontextmanager
async def openai_errors(provider: str) -> AsyncIterator[None]:
    """Re-raise OpenAI SDK failures as the matching ProviderError."""
    try:
        yield
    except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
        raise ProviderAuthError(provider, f"Invalid API credentials: {exc}") from exc
    except openai.RateLimitError as exc:
        raise RateLimitedError(provider, f"Rate limit exceeded: {exc}") from exc
    except openai.APITimeoutError as exc:
        raise ProviderUnavailableError(provider, f"Request timed out: {exc}") from exc
    except openai.APIError as exc:
        raise ProviderUnavailableError(provider, str(exc)) from exc
