import json
import logging
import time
import uuid
from typing import Any, Callable, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


access_logger = logging.getLogger("chat_relay.access")


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates X-Request-Id, keeps it on request.state and echoes it back.

    Each request also produces one JSON access line. Besides method, route and
    status it names the authenticated caller and the conversation the path
    refers to, so a chat turn can be followed across the access and api logs.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        req_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = req_id

        response = await call_next(request)
        response.headers["X-Request-Id"] = req_id

        entry: Dict[str, Any] = {
            "event": "http_access",
            "requestId": req_id,
            "method": request.method,
            "route": _route_template(request),
            "status": response.status_code,
            "latency_ms": int((time.perf_counter() - start) * 1000),
        }
        # Set by the auth dependency on protected routes only
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            entry["userId"] = user_id
        conversation_id = request.scope.get("path_params", {}).get("conversation_id")
        if conversation_id:
            entry["conversationId"] = conversation_id
        access_logger.info(json.dumps(entry))

        return response
