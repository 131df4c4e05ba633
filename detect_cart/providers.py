"""
Vendor adapters for detect-cart.

Each adapter turns ``(model, system, prompt)`` into a Generation. Adapters
let vendor SDK exceptions escape untouched; the gateway translates them into
the typed provider errors. SDKs are imported lazily so a deployment only
needs the vendors it actually routes to.
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

from detect_cart.config import get_api_key
from detect_cart.errors import ProviderFatal
from detect_cart.models import Generation, ModelDescriptor, TokenUsage


DEFAULT_MAX_TOKENS = 4096
FIREWORKS_BASE_URL = "https://api.fireworks.ai/inference/v1"


def _missing_key(provider: str, env_name: str) -> ProviderFatal:
    return ProviderFatal(f"{provider}: {env_name} not set", code="missing_api_key")


class LLMProvider(ABC):
    """Abstract base class for LLM vendors."""

    @abstractmethod
    async def generate(
        self,
        model: ModelDescriptor,
        system: str,
        prompt: str,
    ) -> Generation:
        """Run one completion for ``model``."""
        pass


MockReply = Union[str, BaseException, Callable[[ModelDescriptor, str, str], str]]


class MockProvider(LLMProvider):
    """
    Mock provider for tests and dry runs.

    Replies are looked up by registry model id; a reply may be a string, an
    exception instance to raise, or a callable ``(model, system, prompt)``.
    Calls are recorded on ``self.calls``.
    """

    def __init__(
        self,
        replies: Optional[dict[str, MockReply]] = None,
        default_reply: MockReply = "output:document.querySelector('.cart-subtotal')",
        latency_ms: int = 0,
    ):
        self.replies = replies or {}
        self.default_reply = default_reply
        self.latency_ms = latency_ms
        self.calls: list[dict] = []

    async def generate(
        self,
        model: ModelDescriptor,
        system: str,
        prompt: str,
    ) -> Generation:
        self.calls.append({"model_id": model.id, "system": system, "prompt": prompt})

        if self.latency_ms:
            jitter = 0.8 + random.random() * 0.4
            await asyncio.sleep(self.latency_ms * jitter / 1000)

        reply = self.replies.get(model.id, self.default_reply)
        if isinstance(reply, BaseException):
            raise reply
        text = reply(model, system, prompt) if callable(reply) else reply

        prompt_tokens = max(1, (len(system) + len(prompt)) // 4)
        completion_tokens = max(1, len(text) // 4)
        return Generation(
            text=text,
            usage=TokenUsage(
                total_tokens=prompt_tokens + completion_tokens,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            ),
            model_id=model.id,
            provider_model=model.provider_model,
            latency_ms=self.latency_ms,
            finish_reason="stop",
        )


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat completions.

    Requires OPENAI_API_KEY environment variable.
    """

    env_name = "OPENAI_API_KEY"
    vendor = "openai"
    base_url: Optional[str] = None

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or get_api_key(self.vendor)
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise _missing_key(self.vendor, self.env_name)
            from openai import AsyncOpenAI
            kwargs = {"api_key": self.api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def generate(
        self,
        model: ModelDescriptor,
        system: str,
        prompt: str,
    ) -> Generation:
        start_time = time.time()

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=model.provider_model,
            messages=messages,
        )

        usage = response.usage
        return Generation(
            text=response.choices[0].message.content or "",
            usage=TokenUsage(
                total_tokens=usage.total_tokens if usage else 0,
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
            ),
            model_id=model.id,
            provider_model=model.provider_model,
            latency_ms=int((time.time() - start_time) * 1000),
            finish_reason=response.choices[0].finish_reason,
        )


class FireworksProvider(OpenAIProvider):
    """
    Fireworks AI through its OpenAI-compatible endpoint.

    Requires FIREWORKS_API_KEY environment variable.
    """

    env_name = "FIREWORKS_API_KEY"
    vendor = "fireworks"
    base_url = FIREWORKS_BASE_URL


class AnthropicProvider(LLMProvider):
    """
    Anthropic messages API.

    Requires ANTHROPIC_API_KEY environment variable.
    """

    def __init__(self, api_key: Optional[str] = None, max_tokens: int = DEFAULT_MAX_TOKENS):
        self.api_key = api_key or get_api_key("anthropic")
        self.max_tokens = max_tokens
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise _missing_key("anthropic", "ANTHROPIC_API_KEY")
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        model: ModelDescriptor,
        system: str,
        prompt: str,
    ) -> Generation:
        start_time = time.time()

        response = await self.client.messages.create(
            model=model.provider_model,
            max_tokens=self.max_tokens,
            system=system or "",
            messages=[{"role": "user", "content": prompt}],
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        return Generation(
            text=text,
            usage=TokenUsage(
                total_tokens=input_tokens + output_tokens,
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
            ),
            model_id=model.id,
            provider_model=model.provider_model,
            latency_ms=int((time.time() - start_time) * 1000),
            finish_reason=response.stop_reason,
        )


class GeminiProvider(LLMProvider):
    """
    Google Gemini through the google-genai SDK (async ``client.aio``).

    Requires GEMINI_API_KEY (or GOOGLE_API_KEY) environment variable.
    """

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or get_api_key("google")
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise _missing_key("google", "GEMINI_API_KEY")
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        model: ModelDescriptor,
        system: str,
        prompt: str,
    ) -> Generation:
        from google.genai import types

        start_time = time.time()

        response = await self.client.aio.models.generate_content(
            model=model.provider_model,
            contents=prompt,
            config=types.GenerateContentConfig(system_instruction=system or None),
        )

        meta = response.usage_metadata
        prompt_tokens = (meta.prompt_token_count or 0) if meta else 0
        completion_tokens = (meta.candidates_token_count or 0) if meta else 0
        total_tokens = (meta.total_token_count or 0) if meta else 0

        finish_reason = None
        if response.candidates:
            reason = response.candidates[0].finish_reason
            finish_reason = getattr(reason, "name", None) or (str(reason) if reason else None)

        return Generation(
            text=response.text or "",
            usage=TokenUsage(
                total_tokens=total_tokens or prompt_tokens + completion_tokens,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            ),
            model_id=model.id,
            provider_model=model.provider_model,
            latency_ms=int((time.time() - start_time) * 1000),
            finish_reason=finish_reason,
        )


def default_providers() -> dict[str, LLMProvider]:
    """One adapter per vendor, keyed by ``ModelDescriptor.provider``."""
    return {
        "openai": OpenAIProvider(),
        "fireworks": FireworksProvider(),
        "anthropic": AnthropicProvider(),
        "google": GeminiProvider(),
    }
