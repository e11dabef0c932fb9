"""
LLM completion client for OpenAI-compatible chat completion endpoints.

The OpenAI SDK call is blocking; ``complete`` runs it on a worker thread so
callers can bound it with ``asyncio.wait_for``.
"""

import asyncio
import logging
from typing import Optional

from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


class LLMUnavailableError(RuntimeError):
    """Raised when a completion is requested without an API key configured."""


class LLMClient:
    """Thin wrapper over ``OpenAI.chat.completions.create``."""

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL,
                 base_url: Optional[str] = None, request_timeout: float = 60):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.base_url = base_url or None
        self.request_timeout = request_timeout
        self._client = None

    @classmethod
    def from_config(cls, config) -> 'LLMClient':
        """Build a client from an ``AuditForgeConfig``."""
        return cls(
            api_key=config.llm_api_key,
            model=config.llm_model,
            base_url=config.llm_base_url,
            request_timeout=config.llm_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> OpenAI:
        if not self.is_configured:
            raise LLMUnavailableError("No LLM API key configured")
        if self._client is None:
            kwargs = {"api_key": self.api_key, "timeout": self.request_timeout}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = OpenAI(**kwargs)
        return self._client

    def complete_sync(self, system_prompt: str, user_prompt: str,
                      temperature: float = 0.3, max_tokens: int = 2000) -> str:
        """Blocking completion; returns the first choice's text ('' when absent)."""
        client = self.client
        logger.debug(f"Calling {self.model} (temperature={temperature}, max_tokens={max_tokens})")
        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def complete(self, system_prompt: str, user_prompt: str,
                       temperature: float = 0.3, max_tokens: int = 2000) -> str:
        """Run ``complete_sync`` on a worker thread.

        Raises:
            LLMUnavailableError: no API key configured.
        """
        if not self.is_configured:
            raise LLMUnavailableError("No LLM API key configured")
        return await asyncio.to_thread(
            self.complete_sync, system_prompt, user_prompt, temperature, max_tokens
        )
