import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..errors import CompletionFailure, ConfigError, completion_failure_from_text
from .base import CompletionClient


BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

logger = logging.getLogger("chat_relay.google")


class GoogleCompletionClient(CompletionClient):
    provider_name: str = "google"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        *,
        timeout: float = 30.0,
        max_output_tokens: int = 0,
        base_url: str = BASE_URL,
    ):
        super().__init__(model=model or "gemini-2.0-flash-exp")
        api_key = (api_key or "").strip()
        if not api_key:
            raise ConfigError("GEMINI_API_KEY is required for Google provider")
        self._api_key = api_key
        self._timeout = timeout
        self._max_output_tokens = max_output_tokens
        self._base_url = base_url.rstrip("/")

    async def complete(self, prompt: str, model: Optional[str] = None, request_id: Optional[str] = None) -> str:
        """Generate a single reply with the Gemini generateContent endpoint.

        Endpoint: POST {base}/models/{model}:generateContent?key=API_KEY
        Docs: https://ai.google.dev/api/rest/v1beta/models/generateContent
        """
        mdl = self.resolve_model(model)
        # Model ids are untrusted input; keep them inside a single path segment
        url = f"{self._base_url}/models/{quote(mdl, safe='')}:generateContent"

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if self._max_output_tokens > 0:
            payload["generationConfig"] = {"maxOutputTokens": self._max_output_tokens}

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "chat-relay-api/0.1.0",
        }
        if request_id:
            headers["X-Request-Id"] = request_id

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=headers, json=payload, params={"key": self._api_key})
        except httpx.HTTPError as e:
            logger.error(json.dumps({
                "event": "google_generate_transport_error",
                "error": type(e).__name__,
                "model": mdl,
            }))
            raise CompletionFailure(f"Google generateContent request failed: {e}") from e

        if resp.status_code >= 400:
            body = (resp.text or "")[:1024]
            logger.error(json.dumps({
                "event": "google_generate_http_error",
                "status": resp.status_code,
                "body": body,
                "model": mdl,
            }))
            raise completion_failure_from_text(
                f"Google generateContent error {resp.status_code}: {_error_message(resp) or body}",
                status=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise CompletionFailure("Google generateContent returned a non-JSON body") from e
        return _extract_text(data, mdl)


def _error_message(resp: Any) -> str:
    # Error shape: { error: { code, message, status, details: [ { reason } ] } }
    try:
        err = (resp.json() or {}).get("error") or {}
    except Exception:
        return ""
    parts: List[str] = []
    if err.get("message"):
        parts.append(str(err["message"]))
    for detail in err.get("details") or []:
        reason = detail.get("reason") if isinstance(detail, dict) else None
        if reason:
            parts.append(f"[{reason}]")
    return " ".join(parts)


def _extract_text(data: Dict[str, Any], model: str) -> str:
    # Shape: { candidates: [ { content: { parts: [ { text } ] }, finishReason } ], promptFeedback }
    candidates = (data or {}).get("candidates") or []
    if not candidates:
        reason = ((data or {}).get("promptFeedback") or {}).get("blockReason")
        suffix = f" (blockReason={reason})" if reason else ""
        raise CompletionFailure(f"Google generateContent returned no candidates for {model}{suffix}")
    content = candidates[0].get("content") or {}
    texts = [p.get("text") or "" for p in (content.get("parts") or []) if isinstance(p, dict)]
    text = "".join(texts)
    if not text:
        finish = candidates[0].get("finishReason") or "unknown"
        raise CompletionFailure(f"Google generateContent returned an empty reply (finishReason={finish})")
    return text
