"""Ollama client for the intelligent analysis stage.

The analysis asks one question per proposal and needs a small JSON object
back, so the client only exposes non-streaming JSON chat. Requests go to
Ollama's native /api/chat with ``format="json"`` and thinking disabled.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from typing import Any

import httpx

from wealthdesk.audit.events import emit
from wealthdesk.config import settings
from wealthdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class LLMResponseError(Exception):
    """The model answered, but not with a JSON object."""


def parse_json_object(text: str) -> dict[str, Any]:
    """Pull the JSON object out of a model reply.

    Tolerates markdown fences and prose around the object.

    Raises:
        LLMResponseError: No JSON object in the reply.
    """
    match = _JSON_OBJECT_RE.search(text)
    if match is None:
        raise LLMResponseError(f"No JSON object in model reply: {text[:80]!r}")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"Malformed JSON in model reply: {exc}") from exc
    if not isinstance(payload, dict):
        raise LLMResponseError("Model reply is JSON but not an object")
    return payload


class OllamaClient:
    """Async JSON-mode client for Ollama's /api/chat."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or settings.llm.ollama_base_url
        self.model = model or settings.llm.analysis_model
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(float(settings.llm.analysis_timeout), connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def _emit(self, event_type: EventType, **data: Any) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            data={"model": self.model, **data},
            source_module="llm.client",
        ))

    async def chat_json(
        self,
        system_prompt: str,
        user_content: str,
        temperature: float = 0.1,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """One system + user exchange; returns the reply's JSON object.

        Raises:
            httpx.HTTPError: Timeout, connection or HTTP status failure.
            LLMResponseError: The reply carried no JSON object.
        """
        await self._emit(
            EventType.LLM_REQUEST,
            prompt_hash=hashlib.md5(system_prompt.encode()).hexdigest()[:8],
        )

        start = time.monotonic()
        try:
            response = await self._http().post(
                "/api/chat",
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_content},
                    ],
                    "format": "json",
                    "stream": False,
                    "think": False,
                    "options": {
                        "temperature": temperature,
                        "num_predict": max_tokens or settings.llm.analysis_max_tokens,
                    },
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            reason = "timeout" if isinstance(exc, httpx.TimeoutException) else str(exc) or type(exc).__name__
            await self._emit(EventType.LLM_ERROR, error=reason, latency_ms=elapsed_ms)
            logger.warning("LLM request to %s failed after %dms: %s", self.model, elapsed_ms, reason)
            raise

        body: dict[str, Any] = response.json()
        elapsed_ms = int((time.monotonic() - start) * 1000)
        await self._emit(
            EventType.LLM_RESPONSE,
            latency_ms=elapsed_ms,
            prompt_tokens=body.get("prompt_eval_count", 0),
            completion_tokens=body.get("eval_count", 0),
        )
        logger.info("LLM response: model=%s latency=%dms", self.model, elapsed_ms)

        content = body.get("message", {}).get("content", "")
        try:
            return parse_json_object(content)
        except LLMResponseError as exc:
            await self._emit(EventType.LLM_ERROR, error=str(exc), latency_ms=elapsed_ms)
            raise

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


llm_client = OllamaClient()
