"""Error taxonomy for the evolution engine."""


class MorphoramaError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(MorphoramaError):
    """Missing or rejected configuration; never retried."""


class NotFoundError(MorphoramaError):
    """A run, photo or frame does not exist."""


class PhotoNotApprovedError(MorphoramaError):
    """The source photo has not passed moderation."""


class RunClaimError(MorphoramaError):
    """The run could not be claimed for processing."""


class PersistenceError(MorphoramaError):
    """A storage or ledger write did not take effect."""


class ProviderError(MorphoramaError):
    """Failure reported by an external AI provider."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderAuthError(ProviderError):
    """Credentials were rejected by the provider."""


class RateLimitedError(ProviderError):
    """The provider throttled the request."""


class InvalidImageError(ProviderError):
    """The provider returned content that is not a decodable image."""


class ProviderUnavailableError(ProviderError):
    """Transport failure, timeout or unexpected provider response."""
