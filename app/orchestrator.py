import json
import logging
import time
from typing import Any, Optional, Tuple

from .context import build_context, final_title, provisional_title
from .errors import StoreFailure
from .metrics import COMPLETION_SECONDS, STORE_ERRORS_TOTAL
from .models import ROLE_ASSISTANT, ROLE_USER, Conversation, TurnResult
from .providers.base import CompletionClient
from .store.base import RecordStore


logger = logging.getLogger("chat_relay.api")


class ConversationOrchestrator:
    """Runs one chat turn against the record store and the completion client.

    Steps up to saving the reply run strictly in order and stop at the first
    failure. Writes that already happened stay committed: a user message
    persisted before a failed completion call is not rolled back. The
    first-turn title update runs after both messages are saved; its failure
    is logged and the reply is still returned.
    """

    def __init__(self, store: RecordStore, completion: CompletionClient, *, history_limit: int = 20):
        self.store = store
        self.completion = completion
        self.history_limit = history_limit

    async def resolve_conversation(
        self,
        owner_id: str,
        conversation_id: Optional[Any],
        prompt: str,
    ) -> Tuple[Conversation, bool]:
        """Return (conversation, created). Unknown or foreign ids start a new conversation."""
        if conversation_id:
            existing = await self.store.find_conversation(conversation_id, owner_id)
            if existing is not None:
                return existing, False
        created = await self.store.create_conversation(owner_id, provisional_title(prompt))
        return created, True

    async def run_turn(
        self,
        owner_id: str,
        prompt: str,
        conversation_id: Optional[Any] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> TurnResult:
        conversation, created = await self.resolve_conversation(owner_id, conversation_id, prompt)

        history = await self.store.list_messages(conversation.id, self.history_limit)
        await self.store.insert_message(conversation.id, ROLE_USER, prompt)

        full_context = build_context(history, prompt)
        model_used = self.completion.resolve_model(model)
        logger.info(json.dumps({
            "event": "chat_context_built",
            "requestId": request_id,
            "conversationId": conversation.id,
            "contextMessages": len(history) + 1,
            "contextChars": len(full_context),
            "model": model_used,
        }))

        t0 = time.perf_counter()
        try:
            reply = await self.completion.complete(full_context, model=model_used, request_id=request_id)
        finally:
            COMPLETION_SECONDS.labels(provider=self.completion.provider_name).observe(time.perf_counter() - t0)

        await self.store.insert_message(conversation.id, ROLE_ASSISTANT, reply)

        if not history:
            try:
                await self.store.update_conversation_title(conversation.id, final_title(prompt))
            except StoreFailure as e:
                STORE_ERRORS_TOTAL.labels(operation="title_update_skipped").inc()
                logger.warning(json.dumps({
                    "event": "title_update_failed",
                    "requestId": request_id,
                    "conversationId": conversation.id,
                    "error": str(e),
                }))

        return TurnResult(
            content=reply,
            conversation_id=conversation.id,
            model_used=model_used,
            created_conversation=created,
        )
