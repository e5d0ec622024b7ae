import itertools
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import Conversation, Message
from .base import RecordStore


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryRecordStore(RecordStore):
    """Process-local store for development and tests.

    Mirrors what the hosted schema does on its own: ids and timestamps are
    assigned here, `updated_at` moves when a conversation gains a message or
    a new title, and deleting a conversation cascades to its messages.
    """

    backend_name: str = "memory"

    def __init__(self) -> None:
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, Dict[str, Any]] = {}
        self._seq = itertools.count(1)

    async def find_conversation(self, conversation_id: Any, owner_id: str) -> Optional[Conversation]:
        row = self.conversations.get(str(conversation_id))
        if row is None or row["user_id"] != owner_id:
            return None
        return Conversation.from_row(row)

    async def create_conversation(self, owner_id: str, title: str) -> Conversation:
        now = _now_iso()
        row = {
            "id": str(uuid.uuid4()),
            "user_id": owner_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
            "_seq": next(self._seq),
        }
        self.conversations[row["id"]] = row
        return Conversation.from_row(row)

    async def list_conversations(self, owner_id: str) -> List[Conversation]:
        rows = [r for r in self.conversations.values() if r["user_id"] == owner_id]
        rows.sort(key=lambda r: (r["updated_at"], r["_seq"]), reverse=True)
        return [Conversation.from_row(r) for r in rows]

    async def update_conversation_title(self, conversation_id: Any, title: str) -> None:
        row = self.conversations.get(str(conversation_id))
        if row is not None:
            row["title"] = title
            self._touch(row)

    async def delete_conversation(self, conversation_id: Any, owner_id: str) -> None:
        key = str(conversation_id)
        row = self.conversations.get(key)
        if row is None or row["user_id"] != owner_id:
            return
        del self.conversations[key]
        for mid in [m for m, r in self.messages.items() if r["conversation_id"] == key]:
            del self.messages[mid]

    async def list_messages(self, conversation_id: Any, limit: int = 20) -> List[Message]:
        key = str(conversation_id)
        rows = [r for r in self.messages.values() if r["conversation_id"] == key]
        rows.sort(key=lambda r: (r["created_at"], r["_seq"]))
        return [Message.from_row(r) for r in rows[: max(0, limit)]]

    async def insert_message(self, conversation_id: Any, role: str, content: str) -> Message:
        key = str(conversation_id)
        row = {
            "id": str(uuid.uuid4()),
            "conversation_id": key,
            "role": role,
            "content": content,
            "created_at": _now_iso(),
            "_seq": next(self._seq),
        }
        self.messages[row["id"]] = row
        parent = self.conversations.get(key)
        if parent is not None:
            self._touch(parent)
        return Message.from_row(row)

    def _touch(self, row: Dict[str, Any]) -> None:
        row["updated_at"] = _now_iso()
        row["_seq"] = next(self._seq)
