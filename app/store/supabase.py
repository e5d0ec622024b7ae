import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ConfigError, StoreFailure
from ..metrics import STORE_ERRORS_TOTAL
from ..models import Conversation, Message
from .base import RecordStore


logger = logging.getLogger("chat_relay.store")

# PostgREST error code for "invalid input syntax" (e.g. a non-uuid id literal)
INVALID_TEXT_REPRESENTATION = "22P02"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _eq(value: Any) -> str:
    return f"eq.{value}"


class SupabaseRecordStore(RecordStore):
    """Record store backed by Supabase tables through the PostgREST HTTP API.

    Tables: `conversations(id, user_id, title, created_at, updated_at)` and
    `messages(id, conversation_id, role, content, created_at)`.
    """

    backend_name: str = "supabase"

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url or not api_key:
            raise ConfigError("SUPABASE_URL and an API key are required")
        self._rest_url = url.rstrip("/") + "/rest/v1"
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        url = f"{self._rest_url}/{table}"
        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.request(method, url, params=params, json=body, headers=self._headers(prefer))
        except httpx.HTTPError as e:
            STORE_ERRORS_TOTAL.labels(operation=operation).inc()
            logger.error(json.dumps({
                "event": "store_transport_error",
                "operation": operation,
                "error": type(e).__name__,
            }))
            raise StoreFailure(f"{operation} failed: {e}", operation=operation) from e
        logger.debug(json.dumps({
            "event": "store_request",
            "operation": operation,
            "status": resp.status_code,
            "latency_ms": int((time.perf_counter() - t0) * 1000),
        }))
        return resp

    def _raise_for_status(self, operation: str, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        STORE_ERRORS_TOTAL.labels(operation=operation).inc()
        body = (resp.text or "")[:1024]
        logger.error(json.dumps({
            "event": "store_http_error",
            "operation": operation,
            "status": resp.status_code,
            "body": body,
        }))
        raise StoreFailure(f"{operation} failed with {resp.status_code}: {body}", operation=operation, status=resp.status_code)

    @staticmethod
    def _rows(operation: str, resp: httpx.Response) -> List[Dict[str, Any]]:
        try:
            data = resp.json()
        except ValueError as e:
            raise StoreFailure(f"{operation} returned a non-JSON body", operation=operation) from e
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            return [r for r in data if isinstance(r, dict)]
        return []

    def _single(self, operation: str, resp: httpx.Response) -> Dict[str, Any]:
        rows = self._rows(operation, resp)
        if not rows:
            raise StoreFailure(f"{operation} returned no row", operation=operation)
        return rows[0]

    async def find_conversation(self, conversation_id: Any, owner_id: str) -> Optional[Conversation]:
        op = "find_conversation"
        resp = await self._request(op, "GET", "conversations", params={
            "select": "*",
            "id": _eq(conversation_id),
            "user_id": _eq(owner_id),
            "limit": 1,
        })
        if resp.status_code == 400 and _error_code(resp) == INVALID_TEXT_REPRESENTATION:
            return None
        self._raise_for_status(op, resp)
        rows = self._rows(op, resp)
        return Conversation.from_row(rows[0]) if rows else None

    async def create_conversation(self, owner_id: str, title: str) -> Conversation:
        op = "create_conversation"
        now = _now_iso()
        resp = await self._request(op, "POST", "conversations", body={
            "user_id": owner_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
        }, prefer="return=representation")
        self._raise_for_status(op, resp)
        return Conversation.from_row(self._single(op, resp))

    async def list_conversations(self, owner_id: str) -> List[Conversation]:
        op = "list_conversations"
        resp = await self._request(op, "GET", "conversations", params={
            "select": "*",
            "user_id": _eq(owner_id),
            "order": "updated_at.desc",
        })
        self._raise_for_status(op, resp)
        return [Conversation.from_row(r) for r in self._rows(op, resp)]

    async def update_conversation_title(self, conversation_id: Any, title: str) -> None:
        op = "update_conversation_title"
        resp = await self._request(op, "PATCH", "conversations", params={
            "id": _eq(conversation_id),
        }, body={"title": title}, prefer="return=minimal")
        self._raise_for_status(op, resp)

    async def delete_conversation(self, conversation_id: Any, owner_id: str) -> None:
        op = "delete_conversation"
        resp = await self._request(op, "DELETE", "conversations", params={
            "id": _eq(conversation_id),
            "user_id": _eq(owner_id),
        }, prefer="return=minimal")
        if resp.status_code == 400 and _error_code(resp) == INVALID_TEXT_REPRESENTATION:
            return
        self._raise_for_status(op, resp)

    async def list_messages(self, conversation_id: Any, limit: int = 20) -> List[Message]:
        op = "list_messages"
        resp = await self._request(op, "GET", "messages", params={
            "select": "*",
            "conversation_id": _eq(conversation_id),
            "order": "created_at.asc",
            "limit": limit,
        })
        self._raise_for_status(op, resp)
        return [Message.from_row(r) for r in self._rows(op, resp)]

    async def insert_message(self, conversation_id: Any, role: str, content: str) -> Message:
        op = "insert_message"
        resp = await self._request(op, "POST", "messages", body={
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "created_at": _now_iso(),
        }, prefer="return=representation")
        self._raise_for_status(op, resp)
        return Message.from_row(self._single(op, resp))


def _error_code(resp: httpx.Response) -> Optional[str]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data.get("code") if isinstance(data, dict) else None
