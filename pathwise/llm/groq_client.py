from __future__ import annotations

import logging
from typing import Protocol

from groq import AsyncGroq

from .config import DEFAULT_LLM_CONFIG, LLMConfig

logger = logging.getLogger(__name__)


class EmptyCompletionError(RuntimeError):
    """The provider answered but the completion carried no content."""


class CompletionProvider(Protocol):
    @property
    def available(self) -> bool: ...

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
    ) -> str: ...


class GroqProvider:
    """Chat completions against Groq.

    The SDK's own retries are turned off; attempts, timeouts and backoff are
    owned by the refinement service's retry policy.
    """

    def __init__(self, config: LLMConfig = DEFAULT_LLM_CONFIG) -> None:
        self._config = config
        self._client: AsyncGroq | None = None

    @property
    def available(self) -> bool:
        return self._config.enabled and bool(self._config.api_key)

    @property
    def model(self) -> str:
        return self._config.model

    def _get_client(self) -> AsyncGroq:
        if self._client is None:
            self._client = AsyncGroq(
                api_key=self._config.api_key,
                timeout=self._config.timeout,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._get_client().chat.completions.create(
            model=self._config.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise EmptyCompletionError(f"Empty completion from {self._config.model}")
        logger.debug("Groq completion: %d chars from %s", len(content), self._config.model)
        return content
