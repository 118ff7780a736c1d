"""Unified LLM client for VibeWatch.

Supports Anthropic (Claude), OpenAI (GPT), Groq and OpenRouter APIs.
Routes requests based on the model name.
"""

import asyncio
import json
import logging
from typing import Any

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel

from vibewatch.config import ModelProvider, ModelType, Settings, get_settings
from vibewatch.lib.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMResponseParseError,
)

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


# =============================================================================
# Response Models
# =============================================================================


class LLMResponse(BaseModel):
    """Unified response from LLM."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str | None = None


def _classify(e: Exception) -> Exception:
    """Map a provider SDK exception onto the LLM error family."""
    error_msg = str(e).lower()
    if "rate limit" in error_msg or "429" in error_msg:
        return LLMRateLimitError(str(e))
    if "authentication" in error_msg or "401" in error_msg:
        return LLMAuthenticationError(str(e))
    return LLMConnectionError(str(e))


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Pull a JSON object out of a model response.

    Accepts bare JSON, a fenced ```json block, or prose around one object.

    Raises:
        LLMResponseParseError: If no JSON object can be decoded
    """
    content = content.strip()

    if "```json" in content:
        start = content.find("```json") + 7
        end = content.find("```", start)
        json_str = content[start:end].strip()
    elif content.startswith("{"):
        json_str = content
    else:
        start = content.find("{")
        end = content.rfind("}") + 1
        if start >= 0 and end > start:
            json_str = content[start:end]
        else:
            raise LLMResponseParseError(
                "No JSON found in response", raw_response=content
            )

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise LLMResponseParseError(
            f"Invalid JSON in response: {e}", raw_response=content
        )

    if not isinstance(data, dict):
        raise LLMResponseParseError("Expected a JSON object", raw_response=content)
    return data


# =============================================================================
# LLM Client
# =============================================================================


class LLMClient:
    """
    Unified client for LLM APIs.

    Routes requests to Anthropic, OpenAI, Groq, or OpenRouter based on the
    model name.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._anthropic_client: AsyncAnthropic | None = None
        self._openai_client: AsyncOpenAI | None = None
        self._groq_client: AsyncOpenAI | None = None
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "LLMClient":
        await self._ensure_clients()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_clients(self) -> None:
        """Initialize clients if needed."""
        if self._anthropic_client is None and self.settings.has_anthropic_key:
            self._anthropic_client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
            )

        if self._openai_client is None and self.settings.has_openai_key:
            self._openai_client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
            )

        if self._groq_client is None and self.settings.has_groq_key:
            self._groq_client = AsyncOpenAI(
                api_key=self.settings.groq_api_key,
                base_url=GROQ_BASE_URL,
            )

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
            )

    async def close(self) -> None:
        """Close all clients."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # =========================================================================
    # Anthropic API
    # =========================================================================

    async def _complete_anthropic(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        await self._ensure_clients()

        if not self._anthropic_client:
            raise LLMAuthenticationError("Anthropic API key not configured")

        try:
            kwargs: dict[str, Any] = {
                "model": model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
            if system:
                kwargs["system"] = system

            response = await self._anthropic_client.messages.create(**kwargs)
        except Exception as e:
            raise _classify(e)

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        return LLMResponse(
            content=content,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.stop_reason,
        )

    # =========================================================================
    # OpenAI-compatible APIs (OpenAI, Groq)
    # =========================================================================

    async def _complete_chat(
        self,
        client: AsyncOpenAI | None,
        provider_name: str,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None,
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> LLMResponse:
        await self._ensure_clients()

        if client is None:
            raise LLMAuthenticationError(f"{provider_name} API key not configured")

        all_messages = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": all_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**kwargs)
        except Exception as e:
            raise _classify(e)

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=model,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            finish_reason=response.choices[0].finish_reason,
        )

    # =========================================================================
    # OpenRouter API
    # =========================================================================

    async def _complete_openrouter(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        await self._ensure_clients()

        if not self.settings.has_openrouter_key:
            raise LLMAuthenticationError("OpenRouter API key not configured")

        all_messages = messages.copy()
        if system:
            all_messages.insert(0, {"role": "system", "content": system})

        payload = {
            "model": model,
            "messages": all_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            assert self._http_client is not None
            response = await self._http_client.post(
                OPENROUTER_URL,
                headers={
                    "Authorization": f"Bearer {self.settings.openrouter_api_key}",
                    "X-Title": "VibeWatch",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

            if response.status_code == 429:
                raise LLMRateLimitError("OpenRouter rate limit exceeded")
            if response.status_code == 401:
                raise LLMAuthenticationError("OpenRouter authentication failed")

            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise LLMConnectionError(f"OpenRouter HTTP error: {e}")
        except httpx.RequestError as e:
            raise LLMConnectionError(f"OpenRouter connection error: {e}")

        usage = data.get("usage", {})
        return LLMResponse(
            content=data["choices"][0]["message"]["content"] or "",
            model=model,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            finish_reason=data["choices"][0].get("finish_reason"),
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def _dispatch(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None,
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> LLMResponse:
        await self._ensure_clients()
        provider = self.settings.get_model_provider(model)

        if provider == ModelProvider.ANTHROPIC:
            return await self._complete_anthropic(
                model, messages, system, max_tokens, temperature
            )
        if provider == ModelProvider.OPENAI:
            return await self._complete_chat(
                self._openai_client, "OpenAI", model, messages,
                system, max_tokens, temperature, json_mode,
            )
        if provider == ModelProvider.GROQ:
            return await self._complete_chat(
                self._groq_client, "Groq", model.removeprefix("groq/"), messages,
                system, max_tokens, temperature, json_mode,
            )
        return await self._complete_openrouter(
            model, messages, system, max_tokens, temperature
        )

    async def complete(
        self,
        model: str | ModelType,
        messages: list[dict[str, Any]],
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        json_mode: bool = False,
        retries: int = 3,
        retry_delay: float = 1.0,
    ) -> LLMResponse:
        """
        Complete a chat conversation.

        Args:
            model: Model to use (ModelType enum or string)
            messages: List of message dicts with 'role' and 'content'
            system: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            json_mode: Ask OpenAI-compatible providers for a JSON object
            retries: Number of retries on transient errors
            retry_delay: Initial delay between retries (exponential backoff)

        Returns:
            LLMResponse with content and token counts
        """
        model_str = model.value if isinstance(model, ModelType) else model

        for attempt in range(retries):
            try:
                return await self._dispatch(
                    model_str, messages, system, max_tokens, temperature, json_mode
                )
            except (LLMRateLimitError, LLMConnectionError) as e:
                if attempt < retries - 1:
                    delay = retry_delay * (2**attempt)
                    logger.warning(f"{type(e).__name__}, retrying in {delay}s...")
                    await asyncio.sleep(delay)
                else:
                    raise

        raise LLMConnectionError("Max retries exceeded")

    async def complete_json(
        self,
        model: str | ModelType,
        system: str,
        prompt: str,
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Complete a single-prompt request and decode the JSON object it returns."""
        response = await self.complete(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            system=system,
            temperature=temperature,
            json_mode=True,
            **kwargs,
        )
        logger.debug(
            f"{response.model} used {response.input_tokens}+{response.output_tokens} tokens"
        )
        return extract_json_object(response.content)


# =============================================================================
# Module-level client factory
# =============================================================================


_default_client: LLMClient | None = None


async def get_llm_client() -> LLMClient:
    """Get the default LLM client instance."""
    global _default_client
    if _default_client is None:
        _default_client = LLMClient()
        await _default_client._ensure_clients()
    return _default_client


async def close_llm_client() -> None:
    """Close the default LLM client."""
    global _default_client
    if _default_client:
        await _default_client.close()
        _default_client = None
