"""Streaming adapter for the Gemini text-generation API.

The backend is modelled as a lazy, finite, ordered sequence of text
fragments. Closing the iterator early closes the upstream HTTP response,
which is how a client disconnect stops downstream spend. Nothing here
retries: a partially delivered generation cannot be replayed without
charging twice.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..errors import GenerationError, GenerationQuotaError
from ..models.user import Role
from .prompts import Prompt

LOGGER = logging.getLogger(__name__)


class GenerationClient(ABC):
    @abstractmethod
    def stream_generation(self, prompt: Prompt, model: str) -> AsyncIterator[str]:
        """Yield text fragments in arrival order; raise GenerationError on failure."""
        ...

    async def aclose(self) -> None:
        return None


class ModelCatalog:
    """Maps a role (or a requested tier) to a backend model name."""

    def __init__(self, basic_model: str, pro_model: str) -> None:
        self._models = {Role.BASIC: basic_model, Role.PRO: pro_model}

    def select(self, role: Role, requested: Optional[Role] = None) -> str:
        # A request may step down a tier, never up.
        if requested is not None and (requested is Role.BASIC or role is Role.PRO):
            return self._models[requested]
        return self._models[role]


class GeminiGenerationClient(GenerationClient):
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _payload(prompt: Prompt) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": prompt.system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt.user}]}],
        }

    @staticmethod
    def _parse_event(line: str) -> str:
        """Extract the text carried by one SSE line; empty for non-data lines."""
        if not line.startswith("data:"):
            return ""
        raw = line[len("data:"):].strip()
        if not raw:
            return ""
        try:
            event = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GenerationError(f"malformed stream event: {raw[:80]!r}") from exc
        if not isinstance(event, dict):
            raise GenerationError(f"malformed stream event: {raw[:80]!r}")

        if "error" in event:
            error = event["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise GenerationError(f"upstream error: {message}")

        try:
            feedback = event.get("promptFeedback") or {}
            if feedback.get("blockReason"):
                raise GenerationError(f"prompt blocked: {feedback['blockReason']}")

            candidates = event.get("candidates") or []
            if not candidates:
                return ""
            parts = (candidates[0].get("content") or {}).get("parts") or []
            return "".join(part.get("text", "") for part in parts)
        except (AttributeError, TypeError) as exc:
            raise GenerationError("malformed stream event") from exc

    async def stream_generation(self, prompt: Prompt, model: str) -> AsyncIterator[str]:
        if not self._api_key:
            raise GenerationError("GEMINI API key is not configured")

        url = f"{self._base_url}/models/{model}:streamGenerateContent"
        headers = {"x-goog-api-key": self._api_key}
        try:
            async with self._client.stream(
                "POST", url, params={"alt": "sse"}, headers=headers, json=self._payload(prompt)
            ) as response:
                if response.status_code == 429:
                    raise GenerationQuotaError("upstream quota exhausted")
                if response.status_code >= 400:
                    await response.aread()
                    LOGGER.error(
                        "Gemini returned %s: %s", response.status_code, response.text[:200]
                    )
                    raise GenerationError(f"upstream returned HTTP {response.status_code}")

                async for line in response.aiter_lines():
                    text = self._parse_event(line)
                    if text:
                        yield text
        except httpx.HTTPError as exc:
            raise GenerationError(f"transport failure: {exc}") from exc
