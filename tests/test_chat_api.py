import pytest
from fastapi.testclient import TestClient

from app.errors import CompletionFailure, InvalidCredential, StoreFailure
from app.main import create_app
from app.store.memory import InMemoryRecordStore

from conftest import ALICE, BOB, ScriptedCompletionClient


def test_chat_without_conversation_creates_one_with_two_messages(client, store):
    prompt = "Tell me something interesting about the deep ocean and its creatures"
    r = client.post("/api/chat", json={"prompt": prompt}, headers=ALICE)
    assert r.status_code == 200, r.text
    body = r.json()
    assert set(body.keys()) == {"content", "conversation_id", "model_used"}
    assert body["content"] == "reply 1"
    assert body["model_used"] == "gemini-2.0-flash-exp"

    assert len(store.conversations) == 1
    conv = store.conversations[body["conversation_id"]]
    assert conv["user_id"] == "alice"
    assert conv["title"] == prompt[:50] + "..."
    roles = sorted(m["role"] for m in store.messages.values())
    assert roles == ["assistant", "user"]


def test_short_prompt_title_has_no_ellipsis(client, store):
    r = client.post("/api/chat", json={"prompt": "Quick question"}, headers=ALICE)
    assert r.status_code == 200
    conv = store.conversations[r.json()["conversation_id"]]
    assert conv["title"] == "Quick question"


def test_chat_continues_existing_conversation(client, store, completion):
    r1 = client.post("/api/chat", json={"prompt": "hi"}, headers=ALICE)
    cid = r1.json()["conversation_id"]
    store.conversations[cid]["title"] = "Pinned title"

    r2 = client.post("/api/chat", json={"prompt": "how are you", "conversation_id": cid}, headers=ALICE)
    assert r2.status_code == 200
    assert r2.json()["conversation_id"] == cid
    assert len(store.conversations) == 1
    assert len([m for m in store.messages.values() if m["conversation_id"] == cid]) == 4
    assert store.conversations[cid]["title"] == "Pinned title"
    assert completion.prompts[-1].startswith("Previous conversation:\nUser: hi\nAssistant: reply 1\n\n")


def test_chat_with_foreign_conversation_id_starts_new_conversation(client, store):
    bob_cid = client.post("/api/chat", json={"prompt": "bob here"}, headers=BOB).json()["conversation_id"]

    r = client.post("/api/chat", json={"prompt": "alice here", "conversation_id": bob_cid}, headers=ALICE)
    assert r.status_code == 200
    alice_cid = r.json()["conversation_id"]
    assert alice_cid != bob_cid
    assert store.conversations[alice_cid]["user_id"] == "alice"
    assert len([m for m in store.messages.values() if m["conversation_id"] == bob_cid]) == 2


def test_chat_with_unknown_conversation_id_starts_new_conversation(client, store):
    r = client.post("/api/chat", json={"prompt": "hello", "conversation_id": "does-not-exist"}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["conversation_id"] != "does-not-exist"
    assert len(store.conversations) == 1


def test_chat_forwards_model_name(client, completion):
    r = client.post("/api/chat", json={"prompt": "hi", "model_name": "gemini-1.5-flash"}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["model_used"] == "gemini-1.5-flash"
    assert completion.models == ["gemini-1.5-flash"]


@pytest.mark.parametrize("model_name", ["gpt-4o", "../../v1/files?x="])
def test_chat_rejects_model_outside_catalog_without_writes(client, store, completion, model_name):
    r = client.post("/api/chat", json={"prompt": "hi", "model_name": model_name}, headers=ALICE)
    assert r.status_code == 400
    assert r.json() == {"error": f"Unsupported model: {model_name}"}
    assert store.conversations == {}
    assert completion.prompts == []


def test_chat_title_update_failure_still_answers(client, store, monkeypatch: pytest.MonkeyPatch):
    async def broken_title(conversation_id, title):
        raise StoreFailure("title failed", operation="update_conversation_title")

    monkeypatch.setattr(store, "update_conversation_title", broken_title)
    r = client.post("/api/chat", json={"prompt": "hi"}, headers=ALICE)

    assert r.status_code == 200
    assert r.json()["content"] == "reply 1"
    assert sorted(m["role"] for m in store.messages.values()) == ["assistant", "user"]


@pytest.mark.parametrize("payload", [{}, {"prompt": ""}, {"conversation_id": "x"}])
def test_chat_missing_prompt_is_client_error_without_writes(client, store, completion, payload):
    r = client.post("/api/chat", json=payload, headers=ALICE)
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required parameter: prompt"}
    assert store.conversations == {}
    assert store.messages == {}
    assert completion.prompts == []


def test_chat_rejects_non_json_body(client, store):
    r = client.post("/api/chat", content=b"not json", headers={**ALICE, "Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid JSON body"}
    assert store.conversations == {}


def test_chat_rejects_non_string_prompt(client, store):
    r = client.post("/api/chat", json={"prompt": 42}, headers=ALICE)
    assert r.status_code == 400
    assert store.conversations == {}


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "token-alice"},
    {"Authorization": "Basic token-alice"},
    {"Authorization": "Bearer "},
])
def test_chat_requires_bearer_header(client, store, headers):
    r = client.post("/api/chat", json={"prompt": "hi"}, headers=headers)
    assert r.status_code == 401
    assert r.json() == {"error": "Missing or invalid authorization header"}
    assert store.conversations == {}
    assert store.messages == {}


def test_chat_rejects_unknown_token(client, store):
    r = client.post("/api/chat", json={"prompt": "hi"}, headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    assert r.json() == {"error": "Invalid or expired token"}
    assert store.conversations == {}


def _app_with(completion, store=None, settings=None):
    from app.config import Settings
    from app.identity import StaticIdentityVerifier

    return create_app(
        settings or Settings(ai_provider="mock", store_provider="memory", auth_provider="static"),
        store=store or InMemoryRecordStore(),
        verifier=StaticIdentityVerifier({"token-alice": "alice"}),
        completion=completion,
    )


def test_chat_completion_failure_includes_details_and_keeps_user_message():
    store = InMemoryRecordStore()
    completion = ScriptedCompletionClient(error=CompletionFailure("Google generateContent error 503: overloaded"))
    with TestClient(_app_with(completion, store)) as c:
        r = c.post("/api/chat", json={"prompt": "hi"}, headers=ALICE)
    assert r.status_code == 500
    assert r.json() == {
        "error": "Failed to generate response. Please try again.",
        "details": "Google generateContent error 503: overloaded",
    }
    assert [m["role"] for m in store.messages.values()] == ["user"]


def test_chat_invalid_credential_has_specific_message():
    completion = ScriptedCompletionClient(error=InvalidCredential("API key not valid. [API_KEY_INVALID]"))
    with TestClient(_app_with(completion)) as c:
        r = c.post("/api/chat", json={"prompt": "hi"}, headers=ALICE)
    assert r.status_code == 500
    assert r.json() == {"error": "Invalid or missing Gemini API key. Please check your configuration."}


def test_chat_store_failure_is_generic_server_error(monkeypatch: pytest.MonkeyPatch):
    store = InMemoryRecordStore()

    async def broken_create(owner_id, title):
        raise StoreFailure("connection reset", operation="create_conversation")

    monkeypatch.setattr(store, "create_conversation", broken_create)
    completion = ScriptedCompletionClient()
    with TestClient(_app_with(completion, store)) as c:
        r = c.post("/api/chat", json={"prompt": "hi"}, headers=ALICE)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to generate response. Please try again."}
    assert completion.prompts == []
