"""OpenAI-compatible natural-language extraction provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI, OpenAIError

from f95catalog.capabilities import Capability
from f95catalog.config import config
from f95catalog.errors import ExtractionServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a data extraction assistant. Extract game information from forum thread content "
    "and return only valid JSON."
)


class OpenAIExtractionProvider:
    """Text-in, text-out wrapper around the chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._api_key = config.OPENAI_API_KEY if api_key is None else api_key
        self._base_url = base_url if base_url is not None else config.OPENAI_BASE_URL
        self.model = model or config.EXTRACTION_MODEL
        self._client = client

        if client is None and not self._api_key:
            self.capability = Capability.not_configured("OPENAI_API_KEY not set")
        else:
            self.capability = Capability.configured(f"model={self.model}")

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url or None)
        return self._client

    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send ``prompt`` and return the model's text reply.

        Args:
            prompt: Full extraction prompt.
            temperature: Sampling temperature, defaults to ``config.LLM_TEMPERATURE``.
            max_tokens: Completion token cap, defaults to ``config.LLM_MAX_TOKENS``.

        Returns:
            str: Raw response text.

        Raises:
            ExtractionServiceError: When the provider is not configured or the call fails.
        """
        if not self.capability.available:
            raise ExtractionServiceError(f"Extraction provider unavailable: {self.capability.detail}")

        if temperature is None:
            temperature = config.LLM_TEMPERATURE
        if max_tokens is None:
            max_tokens = config.LLM_MAX_TOKENS

        request_params: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
        }
        # Only include max_tokens when a value is provided.
        if max_tokens is not None:
            request_params["max_tokens"] = max_tokens

        try:
            response = await self._get_client().chat.completions.create(**request_params)
        except OpenAIError as exc:
            raise ExtractionServiceError(f"Model {self.model} call failed: {exc}") from exc

        if not response.choices:
            raise ExtractionServiceError(f"Model {self.model} returned no choices")
        return response.choices[0].message.content or ""
