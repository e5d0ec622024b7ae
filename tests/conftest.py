import sys
import os
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path for `import app.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: keep every external backend offline so `app.main:app` builds at import time
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("STORE_PROVIDER", "memory")
os.environ.setdefault("AUTH_PROVIDER", "static")
os.environ.setdefault("AUTH_STATIC_TOKENS", "token-alice:alice,token-bob:bob")

from app.config import Settings  # noqa: E402
from app.identity import StaticIdentityVerifier  # noqa: E402
from app.main import create_app  # noqa: E402
from app.providers.base import CompletionClient  # noqa: E402
from app.store.memory import InMemoryRecordStore  # noqa: E402


ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}


class ScriptedCompletionClient(CompletionClient):
    """Records every prompt and answers from a script (or raises a set error)."""

    provider_name: str = "scripted"

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None):
        super().__init__(model="gemini-2.0-flash-exp")
        self.replies = list(replies or [])
        self.error = error
        self.prompts: List[str] = []
        self.models: List[Optional[str]] = []

    async def complete(self, prompt: str, model: Optional[str] = None, request_id: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.models.append(model)
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.prompts)}"


@pytest.fixture
def settings() -> Settings:
    return Settings(ai_provider="mock", store_provider="memory", auth_provider="static")


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def verifier() -> StaticIdentityVerifier:
    return StaticIdentityVerifier({"token-alice": "alice", "token-bob": "bob"})


@pytest.fixture
def completion() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def client(settings, store, verifier, completion):
    app = create_app(settings, store=store, verifier=verifier, completion=completion)
    with TestClient(app) as c:
        yield c
