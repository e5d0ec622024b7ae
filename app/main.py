import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from app.config import Settings, load_settings
from app.errors import CompletionFailure, InvalidCredential, StoreFailure, Unauthenticated
from app.identity import IdentityVerifier, extract_bearer_token, get_identity_verifier
from app.metrics import CHAT_TURNS_TOTAL, HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from app.middleware.request_id import RequestIdMiddleware
from app.middleware.security_headers import SecurityHeadersMiddleware
from app.models import TEXT_MODELS, Principal, model_catalog
from app.orchestrator import ConversationOrchestrator
from app.providers.base import CompletionClient
from app.providers.factory import get_completion_client
from app.store.base import RecordStore
from app.store.factory import get_record_store


logger = logging.getLogger("chat_relay.api")

INVALID_KEY_MESSAGE = "Invalid or missing Gemini API key. Please check your configuration."
CHAT_FAILED_MESSAGE = "Failed to generate response. Please try again."
# Fixed page size of the messages route, independent of CHAT_HISTORY_LIMIT
MESSAGES_PAGE_LIMIT = 20
TEXT_MODEL_IDS = frozenset(m.id for m in TEXT_MODELS)


def configure_logging(level_name: str = "INFO") -> None:
    """Emit `chat_relay.*` logs under Uvicorn without duplicating lines.

    - honor LOG_LEVEL (default INFO)
    - attach a StreamHandler if none present
    - disable propagate so root/uvicorn handlers don't print twice
    """
    lvl = getattr(logging, (level_name or "INFO").strip().upper(), logging.INFO)
    root = logging.getLogger("chat_relay")
    root.setLevel(lvl)
    if not root.handlers:
        h = logging.StreamHandler()
        h.setLevel(lvl)
        h.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(h)
    root.propagate = False


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    body.update(extra)
    return JSONResponse(body, status_code=status_code)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


async def require_principal(request: Request) -> Principal:
    """Dependency gate for protected routes; raises Unauthenticated before any handler work."""
    token = extract_bearer_token(request.headers.get("authorization"))
    verifier: IdentityVerifier = request.app.state.verifier
    principal = await verifier.verify(token)
    request.state.user_id = principal.user_id
    return principal


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[RecordStore] = None,
    verifier: Optional[IdentityVerifier] = None,
    completion: Optional[CompletionClient] = None,
) -> FastAPI:
    """Build the service around explicitly constructed collaborators.

    Collaborators not passed in are built from settings. Environment
    settings are validated on load and each factory refuses a backend
    without credentials, so a misconfigured process never starts serving.
    """
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)

    if store is None:
        store = get_record_store(settings)
    if verifier is None:
        verifier = get_identity_verifier(settings)
    if completion is None:
        completion = get_completion_client(settings)
    orchestrator = ConversationOrchestrator(store, completion, history_limit=settings.history_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(json.dumps({
            "event": "startup",
            "completionProvider": completion.provider_name,
            "defaultModel": completion.model,
            "store": store.backend_name,
            "auth": verifier.provider_name,
        }))
        yield

    app = FastAPI(
        title="Chat Relay API",
        description="Relays chat prompts to a hosted LLM and keeps per-user conversation history.",
        version="0.1.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "meta", "description": "Service metadata and liveness"},
            {"name": "chat", "description": "Chat turns"},
            {"name": "conversations", "description": "Conversation history"},
        ],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.verifier = verifier
    app.state.completion = completion
    app.state.orchestrator = orchestrator

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["X-Request-Id"],
    )
    app.add_middleware(RequestIdMiddleware)

    # HTTP metrics middleware
    @app.middleware("http")
    async def _http_metrics_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = getattr(response, "status_code", 500)
            return response
        finally:
            try:
                # Label by route template so ids don't explode cardinality
                route = request.scope.get("route")
                path = getattr(route, "path", None) or request.url.path
                status_class = f"{status_code // 100}xx"
                HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
                HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)
            except Exception:
                pass

    @app.exception_handler(Unauthenticated)
    async def _unauthenticated_handler(request: Request, exc: Unauthenticated):
        return _error(401, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Endpoint not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error: %s", exc)
        return _error(500, "Internal server error")

    @app.get("/api/health", tags=["meta"], description="Liveness endpoint for health checks.")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "gemini": completion.provider_name == "google",
                "supabase": store.backend_name == "supabase",
            },
        }

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/api/models", tags=["meta"], description="Static catalog of selectable models.")
    async def list_models():
        return model_catalog(settings.default_model)

    @app.get("/api/conversations", tags=["conversations"], description="Caller's conversations, most recently updated first.")
    async def list_conversations(principal: Principal = Depends(require_principal)):
        try:
            conversations = await store.list_conversations(principal.user_id)
        except StoreFailure as e:
            logger.error(json.dumps({"event": "list_conversations_failed", "error": str(e)}))
            return _error(500, "Failed to fetch conversations")
        return [c.to_dict() for c in conversations]

    @app.get(
        "/api/conversations/{conversation_id}/messages",
        tags=["conversations"],
        description="Messages of one of the caller's conversations, oldest first.",
    )
    async def list_messages(conversation_id: str, principal: Principal = Depends(require_principal)):
        try:
            conversation = await store.find_conversation(conversation_id, principal.user_id)
            if conversation is None:
                return _error(404, "Conversation not found")
            messages = await store.list_messages(conversation.id, MESSAGES_PAGE_LIMIT)
        except StoreFailure as e:
            logger.error(json.dumps({"event": "list_messages_failed", "error": str(e)}))
            return _error(500, "Failed to fetch messages")
        return [m.to_dict() for m in messages]

    @app.post("/api/chat", tags=["chat"], description="Run one chat turn and persist both sides of it.")
    async def chat(request: Request, principal: Principal = Depends(require_principal)):
        request_id = _request_id(request)
        try:
            payload = await request.json()
        except ValueError:
            return _error(400, "Invalid JSON body")
        if not isinstance(payload, dict):
            return _error(400, "Invalid JSON body")

        prompt = payload.get("prompt")
        if not prompt:
            return _error(400, "Missing required parameter: prompt")
        if not isinstance(prompt, str):
            return _error(400, "Invalid parameter: prompt must be a string")
        conversation_id = payload.get("conversation_id") or None
        model_name = payload.get("model_name") or settings.default_model
        if not isinstance(model_name, str):
            return _error(400, "Invalid parameter: model_name must be a string")
        if payload.get("model_name") and model_name not in TEXT_MODEL_IDS:
            return _error(400, f"Unsupported model: {model_name}")

        logger.info(json.dumps({
            "event": "chat_request",
            "requestId": request_id,
            "userId": principal.user_id,
            "promptPreview": prompt[:50],
        }))

        try:
            result = await orchestrator.run_turn(
                principal.user_id,
                prompt,
                conversation_id=conversation_id,
                model=model_name,
                request_id=request_id,
            )
        except InvalidCredential as e:
            CHAT_TURNS_TOTAL.labels(outcome="invalid_credential").inc()
            logger.error(json.dumps({"event": "chat_failed", "requestId": request_id, "kind": "invalid_credential", "error": str(e)}))
            return _error(500, INVALID_KEY_MESSAGE)
        except CompletionFailure as e:
            CHAT_TURNS_TOTAL.labels(outcome="completion_error").inc()
            logger.error(json.dumps({"event": "chat_failed", "requestId": request_id, "kind": "completion", "error": str(e)}))
            return _error(500, CHAT_FAILED_MESSAGE, details=str(e))
        except StoreFailure as e:
            CHAT_TURNS_TOTAL.labels(outcome="store_error").inc()
            logger.error(json.dumps({"event": "chat_failed", "requestId": request_id, "kind": "store", "error": str(e)}))
            return _error(500, CHAT_FAILED_MESSAGE)

        CHAT_TURNS_TOTAL.labels(outcome="success").inc()
        logger.info(json.dumps({
            "event": "chat_turn_completed",
            "requestId": request_id,
            "conversationId": result.conversation_id,
            "createdConversation": result.created_conversation,
            "model": result.model_used,
        }))
        return result.to_dict()

    @app.delete("/api/conversations/{conversation_id}", tags=["conversations"], description="Delete one of the caller's conversations.")
    async def delete_conversation(conversation_id: str, principal: Principal = Depends(require_principal)):
        try:
            await store.delete_conversation(conversation_id, principal.user_id)
        except StoreFailure as e:
            logger.error(json.dumps({"event": "delete_conversation_failed", "error": str(e)}))
            return _error(500, "Failed to delete conversation")
        return {"message": "Conversation deleted successfully"}

    return app


app = create_app()
