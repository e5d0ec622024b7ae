from typing import Optional

from ..config import Settings
from ..errors import ConfigError
from .base import CompletionClient
from .mock import MockCompletionClient


def get_completion_client(settings: Settings, provider: Optional[str] = None) -> CompletionClient:
    """Return the completion client selected by settings (or an explicit override).

    Unlike a best-effort fallback, a selected provider that cannot be built is
    a startup error.
    """
    prov = (provider or settings.ai_provider or "google").lower()

    if prov in ("mock", "test"):
        return MockCompletionClient(model=settings.default_model)

    if prov in ("google", "gemini"):
        if not settings.gemini_api_key:
            raise ConfigError("GEMINI_API_KEY is required")
        from .google import GoogleCompletionClient

        return GoogleCompletionClient(
            api_key=settings.gemini_api_key,
            model=settings.default_model,
            timeout=settings.ai_timeout_seconds,
            max_output_tokens=settings.max_output_tokens,
        )

    raise ConfigError(f"unknown AI_PROVIDER {prov!r}")
