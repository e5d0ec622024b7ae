from __future__ import annotations

import abc
from typing import Optional


class CompletionClient(abc.ABC):
    """Abstract text completion interface: one prompt in, one reply out.

    Implementations raise CompletionFailure (or InvalidCredential) on any
    upstream problem and never retry.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def complete(self, prompt: str, model: Optional[str] = None, request_id: Optional[str] = None) -> str:
        ...

    def resolve_model(self, model: Optional[str] = None) -> str:
        return (model or self.model or "").strip()
