"""
Chat-completion capability.

The loop only ever needs ``complete(system_prompt, human_prompt, config)``.
Two providers sit behind it: Gemini through ``google-genai`` (API key,
rotated on rate limits) and a local Ollama endpoint over ``httpx``.
"""
from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

import httpx
from google import genai
from google.genai import types

from cardforge.llm.resilient_client import call_with_retries
from cardforge.schemas.agent_schemas import LLMConfig
from cardforge.utils.auth import KeyRotator, get_rotator

logger = logging.getLogger("cardforge.llm")


class ChatCompletion(Protocol):
    async def complete(self, system_prompt: str, human_prompt: str, config: LLMConfig) -> str:
        ...


class GeminiChatClient:
    """Remote provider: one ``generate_content`` call per completion."""

    def __init__(self, rotator: Optional[KeyRotator] = None):
        self._rotator = rotator
        self._current_key: Optional[str] = None

    async def _key(self, config: LLMConfig) -> str:
        if config.api_key:
            return config.api_key
        if self._rotator is None:
            self._rotator = get_rotator()
        if self._current_key is None:
            self._current_key = await self._rotator.get_next_key()
        return self._current_key

    async def _rotate(self) -> None:
        # A caller-supplied key cannot be rotated; the backoff alone applies
        if self._rotator is None or self._current_key is None:
            return
        self._rotator.mark_exhausted(self._current_key)
        logger.info("Rotating API key. Old key: %s...", self._current_key[:8])
        self._current_key = await self._rotator.get_next_key()

    async def complete(self, system_prompt: str, human_prompt: str, config: LLMConfig) -> str:
        generation_config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
        )
        http_options = types.HttpOptions(base_url=config.base_url) if config.base_url else None

        async def _call() -> str:
            client = genai.Client(api_key=await self._key(config), http_options=http_options)
            response = await client.aio.models.generate_content(
                model=config.model_name,
                contents=human_prompt,
                config=generation_config,
            )
            return response.text or ""

        start = time.monotonic()
        text = await call_with_retries(_call, "generate_content", on_rate_limit=self._rotate)
        logger.info(
            "completion_done",
            extra={"action": "gemini", "duration_ms": int((time.monotonic() - start) * 1000),
                   "metadata": {"model": config.model_name, "chars": len(text)}},
        )
        return text


class OllamaChatClient:
    """Local provider: Ollama's ``/api/chat`` endpoint, non-streaming."""

    def __init__(self, timeout: float = 300.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        self._transport = transport

    async def complete(self, system_prompt: str, human_prompt: str, config: LLMConfig) -> str:
        base_url = (config.base_url or "http://localhost:11434").rstrip("/")
        options: dict = {"temperature": config.temperature}
        if config.max_tokens:
            options["num_predict"] = config.max_tokens
        body = {
            "model": config.model_name,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": human_prompt},
            ],
            "stream": False,
            "options": options,
        }

        async def _call() -> str:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{base_url}/api/chat", json=body)
                response.raise_for_status()
                data = response.json()
            return (data.get("message") or {}).get("content", "")

        return await call_with_retries(_call, "ollama_chat")


def create_chat_client(config: LLMConfig) -> ChatCompletion:
    """Pick the provider for *config*."""
    if config.llm_type == "ollama":
        return OllamaChatClient()
    return GeminiChatClient()
