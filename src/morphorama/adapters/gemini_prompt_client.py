"""Gemini generateContent client for evolution prompts."""

from dataclasses import dataclass

import httpx

from morphorama.adapters.http_errors import send_request
from morphorama.domain.errors import ProviderAuthError, ProviderUnavailableError
from morphorama.services.prompts import PromptClient

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_PROVIDER = "gemini"
_INVALID_KEY_MARKER = "API key not valid"


@dataclass
class GeminiPromptClient(PromptClient):
    """Prompt client backed by the Gemini REST API."""

    api_key: str
    http_client: httpx.AsyncClient
    model: str = "gemini-2.0-flash"
    base_url: str = GEMINI_BASE_URL
    timeout: float = 60.0

    @classmethod
    def create(
        cls, api_key: str, *, model: str = "gemini-2.0-flash", timeout: float = 60.0
    ) -> "GeminiPromptClient":
        """Create a Gemini client with a managed httpx session."""
        return cls(
            api_key=api_key,
            http_client=httpx.AsyncClient(),
            model=model,
            timeout=timeout,
        )

    async def complete(self, *, instructions: str, image_data_url: str) -> str:
        """Send the framing text and inline image, return the answer text."""
        mime_type, data = _split_data_url(image_data_url)
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": instructions},
                        {"inline_data": {"mime_type": mime_type, "data": data}},
                    ],
                }
            ]
        }
        response = await self._send(
            "POST", f"{self.base_url}/models/{self.model}:generateContent", json=payload
        )
        return _extract_text(response.json())

    async def validate_credentials(self) -> None:
        """List models; Gemini reports a bad key as HTTP 400, not 401."""
        await self._send("GET", f"{self.base_url}/models", params={"pageSize": 1})

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _send(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            return await send_request(
                self.http_client,
                method,
                url,
                provider=_PROVIDER,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
                **kwargs,
            )
        except ProviderUnavailableError as exc:
            if _INVALID_KEY_MARKER in str(exc):
                raise ProviderAuthError(_PROVIDER, "Invalid API key") from exc
            raise


def _split_data_url(image_data_url: str) -> tuple[str, str]:
    header, _, data = image_data_url.partition(",")
    mime_type = header.removeprefix("data:").split(";", 1)[0] or "image/jpeg"
    return mime_type, data


def _extract_text(payload: dict[str, object]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ProviderUnavailableError(_PROVIDER, "No candidates in response")
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts)
