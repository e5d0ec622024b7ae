from typing import Optional

from .base import CompletionClient


class MockCompletionClient(CompletionClient):
    """Deterministic offline client: echoes the last line of the prompt."""

    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-chat-1")

    async def complete(self, prompt: str, model: Optional[str] = None, request_id: Optional[str] = None) -> str:
        lines = [line for line in (prompt or "").splitlines() if line.strip()]
        last = lines[-1] if lines else "Hello, world!"
        return f"Echo: {last}"
