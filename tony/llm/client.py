"""AsyncOpenAI client for an OpenAI-compatible backend (OpenRouter by default)."""

from typing import Any, Callable

from openai import AsyncOpenAI

from tony.errors import MissingApiKeyError
from tony.settings import get_setting


def build_client(settings: dict[str, Any], secrets_getter: Callable[[str], str | None]) -> AsyncOpenAI:
    """Build the client from settings.llm. Raises MissingApiKeyError if no key resolves."""
    key_name = get_setting(settings, "llm.api_key_secret", "OPENROUTER_API_KEY")
    api_key = secrets_getter(key_name)
    if not api_key:
        raise MissingApiKeyError(f"Missing {key_name} in keyring or environment.")
    return AsyncOpenAI(
        base_url=get_setting(settings, "llm.base_url"),
        api_key=api_key,
        timeout=float(get_setting(settings, "llm.timeout", 120.0)),
        # Retries are owned by RetryingTransport
        max_retries=0,
    )


class LazyClient:
    """Builds the client on first use so runs that never call the model need no key."""

    def __init__(self, settings: dict[str, Any], secrets_getter: Callable[[str], str | None]) -> None:
        self._settings = settings
        self._secrets = secrets_getter
        self._client: AsyncOpenAI | None = None

    def __call__(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_client(self._settings, self._secrets)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
