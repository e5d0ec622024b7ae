from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import DEFAULT_MODEL


ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass
class Principal:
    user_id: str
    email: Optional[str] = None


@dataclass
class Conversation:
    id: Any
    user_id: str
    title: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Conversation":
        return cls(
            id=row.get("id"),
            user_id=str(row.get("user_id") or ""),
            title=str(row.get("title") or ""),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Message:
    id: Any
    conversation_id: Any
    role: str
    content: str
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Message":
        return cls(
            id=row.get("id"),
            conversation_id=row.get("conversation_id"),
            role=str(row.get("role") or ""),
            content=str(row.get("content") or ""),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass
class TurnResult:
    content: str
    conversation_id: Any
    model_used: str
    created_conversation: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "conversation_id": self.conversation_id,
            "model_used": self.model_used,
        }


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str


TEXT_MODELS: List[ModelDescriptor] = [
    ModelDescriptor(id="gemini-2.0-flash-exp", name="Gemini 2.0 Flash Experimental"),
    ModelDescriptor(id="gemini-1.5-pro", name="Gemini 1.5 Pro"),
    ModelDescriptor(id="gemini-1.5-flash", name="Gemini 1.5 Flash"),
]


def model_catalog(default_model: str = DEFAULT_MODEL) -> Dict[str, Any]:
    return {
        "text_models": [{"id": m.id, "name": m.name} for m in TEXT_MODELS],
        "default_model": default_model,
    }
