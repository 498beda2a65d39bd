# FILE: project_chat/changes/backend.py
"""
Change backend client.

Contract: ``await backend.submit(prompt) -> str``. Request in, text out.

- BackendTimeout: the SDK timed out, or the caller-imposed bound expired
- BackendUnavailable: network, auth, API status errors, missing SDK or key

No retries here (the SDK's own retries are switched off too): a change
request costs money and is not idempotent on the backend's side. Retry
policy, if any, belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional, Protocol

from project_chat.changes.prompt import CHANGE_SYSTEM_PROMPT
from project_chat.config import DEFAULT_BACKEND_TIMEOUT_SEC, DEFAULT_MAX_TOKENS, DEFAULT_MODEL, Settings
from project_chat.errors import BackendTimeout, BackendUnavailable

logger = logging.getLogger(__name__)


class ChangeBackend(Protocol):
    async def submit(self, prompt: str) -> str:
        ...


class AnthropicChangeBackend:
    """Sends change prompts to the Anthropic messages API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_seconds: Optional[float] = DEFAULT_BACKEND_TIMEOUT_SEC,
        system_prompt: str = CHANGE_SYSTEM_PROMPT,
        temperature: float = 0.2,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.system_prompt = system_prompt
        self.temperature = temperature
        self._client = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnthropicChangeBackend":
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.model,
            max_tokens=settings.max_tokens,
            timeout_seconds=settings.backend_timeout_seconds,
        )

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            import anthropic
        except ImportError as e:
            raise BackendUnavailable("anthropic SDK is not installed") from e

        api_key = self.api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise BackendUnavailable("ANTHROPIC_API_KEY is not set")

        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=self.timeout_seconds,
            max_retries=0,
        )
        return self._client

    async def _create(self, prompt: str) -> str:
        import anthropic

        client = self._get_client()
        try:
            resp = await client.messages.create(
                model=self.model,
                system=self.system_prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise BackendTimeout(f"Anthropic request timed out: {e}") from e
        except anthropic.APIConnectionError as e:
            raise BackendUnavailable(f"Anthropic connection failed: {e}") from e
        except anthropic.APIStatusError as e:
            raise BackendUnavailable(f"Anthropic returned HTTP {e.status_code}: {e.message}") from e
        except anthropic.AnthropicError as e:
            raise BackendUnavailable(f"Anthropic call failed: {e}") from e

        text_parts: List[str] = []
        for b in resp.content or []:
            if getattr(b, "type", None) == "text":
                text_parts.append(getattr(b, "text", ""))

        usage = getattr(resp, "usage", None)
        logger.info(
            "[backend] model=%s stop_reason=%s input_tokens=%s output_tokens=%s",
            self.model,
            getattr(resp, "stop_reason", None),
            getattr(usage, "input_tokens", None),
            getattr(usage, "output_tokens", None),
        )
        if getattr(resp, "stop_reason", None) == "max_tokens":
            logger.warning("[backend] Response hit max_tokens=%d; trailing file blocks may be cut off", self.max_tokens)

        return "".join(text_parts)

    async def submit(self, prompt: str) -> str:
        logger.info("[backend] Submitting prompt (%d chars) to %s", len(prompt), self.model)
        if self.timeout_seconds is None:
            return await self._create(prompt)
        try:
            return await asyncio.wait_for(self._create(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise BackendTimeout(f"Backend did not answer within {self.timeout_seconds}s") from e


__all__ = [
    "ChangeBackend",
    "AnthropicChangeBackend",
]
