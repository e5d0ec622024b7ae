from __future__ import annotations

import abc
from typing import Any, List, Optional

from ..models import Conversation, Message


class RecordStore(abc.ABC):
    """Typed accessors for the `conversations` and `messages` collections.

    Every operation raises StoreFailure on an underlying error; none retry.
    """

    backend_name: str = "unknown"

    @abc.abstractmethod
    async def find_conversation(self, conversation_id: Any, owner_id: str) -> Optional[Conversation]:
        """Return the conversation if it exists and belongs to owner_id, else None."""

    @abc.abstractmethod
    async def create_conversation(self, owner_id: str, title: str) -> Conversation:
        ...

    @abc.abstractmethod
    async def list_conversations(self, owner_id: str) -> List[Conversation]:
        """Most recently updated first."""

    @abc.abstractmethod
    async def update_conversation_title(self, conversation_id: Any, title: str) -> None:
        ...

    @abc.abstractmethod
    async def delete_conversation(self, conversation_id: Any, owner_id: str) -> None:
        """Delete when owned by owner_id; silently does nothing otherwise."""

    @abc.abstractmethod
    async def list_messages(self, conversation_id: Any, limit: int = 20) -> List[Message]:
        """Oldest first, at most `limit` rows."""

    @abc.abstractmethod
    async def insert_message(self, conversation_id: Any, role: str, content: str) -> Message:
        ...
