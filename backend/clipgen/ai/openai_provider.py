"""
OpenAI provider implementation.
Uses the OpenAI SDK (async client) for the two language model calls the
editor makes before a generation: rewriting a short prompt (gpt-4o-mini) and
describing a still frame (gpt-4o).

API keys are stored in environment variables and never exposed to clients.
"""
import base64
import logging
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from clipgen.config import settings
from clipgen.errors import EnhancementError
from clipgen.utils.logging import log_provider_failure, log_provider_request
from clipgen.utils.metrics import (
    provider_failures_total,
    provider_latency_seconds,
    provider_requests_total,
    provider_tokens_total,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai"

ENHANCE_MAX_TOKENS = 300
ENHANCE_TEMPERATURE = 0.3
VISION_TEMPERATURE = 0.2


def image_data_url(image_path: str, data: bytes) -> str:
    """Inline an image as a base64 data URL (PNG or JPEG by extension)."""
    ext = "png" if image_path.lower().endswith(".png") else "jpeg"
    return f"data:image/{ext};base64,{base64.b64encode(data).decode('utf-8')}"


class OpenAIProvider:
    """
    OpenAI chat completion client.

    Both calls share one code path so every request is counted, timed and
    logged the same way.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        chat_model: Optional[str] = None,
        vision_model: Optional[str] = None,
    ):
        """
        Args:
            api_key: OpenAI API key (defaults to settings)
            client: Preconfigured SDK client (tests)
            chat_model: Model used to rewrite prompts
            vision_model: Vision-capable model used to describe images
        """
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.chat_model = chat_model or settings.openai_chat_model
        self.vision_model = vision_model or settings.openai_vision_model

        if client is not None:
            self.client = client
        elif self.api_key:
            self.client = AsyncOpenAI(api_key=self.api_key)
        else:
            self.client = None

    def is_configured(self) -> bool:
        """Check if OpenAI API key is configured."""
        return self.client is not None

    async def rewrite_prompt(self, system_prompt: str, prompt: str) -> str:
        """
        Rewrite a user prompt under the given system instructions.

        Raises:
            ValueError: If API key not configured
            EnhancementError: If the API call fails or returns no text
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        return await self._complete(
            operation="enhance_prompt",
            model=self.chat_model,
            messages=messages,
            max_tokens=ENHANCE_MAX_TOKENS,
            temperature=ENHANCE_TEMPERATURE,
        )

    async def describe_image(self, instruction: str, data_url: str, max_tokens: int) -> str:
        """
        Describe an inline image following instruction.

        Raises:
            ValueError: If API key not configured
            EnhancementError: If the API call fails or returns no text
        """
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instruction},
                    {"type": "image_url", "image_url": {"url": data_url, "detail": "auto"}},
                ],
            }
        ]
        return await self._complete(
            operation="describe_image",
            model=self.vision_model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=VISION_TEMPERATURE,
        )

    async def _complete(
        self,
        operation: str,
        model: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        temperature: float,
    ) -> str:
        if not self.is_configured():
            raise ValueError("OpenAI API key not configured")

        start_time = time.time()
        provider_requests_total.labels(provider=PROVIDER_NAME, operation=operation).inc()

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as e:
            duration = time.time() - start_time
            provider_failures_total.labels(provider=PROVIDER_NAME, operation=operation).inc()
            provider_latency_seconds.labels(provider=PROVIDER_NAME, operation=operation).observe(duration)
            log_provider_failure(
                logger,
                provider=PROVIDER_NAME,
                operation=operation,
                error=str(e),
                duration_ms=duration * 1000,
            )
            raise EnhancementError(f"OpenAI {operation} failed: {e}") from e

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=PROVIDER_NAME, operation=operation).observe(duration)
        self._record_usage(response, operation)

        content = response.choices[0].message.content if response.choices else None
        text = (content or "").strip()
        if not text:
            provider_failures_total.labels(provider=PROVIDER_NAME, operation=operation).inc()
            raise EnhancementError(f"OpenAI {operation} returned no text")

        log_provider_request(
            logger,
            provider=PROVIDER_NAME,
            operation=operation,
            duration_ms=duration * 1000,
            model=model,
            output_chars=len(text),
        )
        return text

    @staticmethod
    def _record_usage(response: Any, operation: str) -> None:
        usage = getattr(response, "usage", None)
        if not usage:
            return
        for token_type in ("prompt", "completion"):
            count = getattr(usage, f"{token_type}_tokens", None)
            if count:
                provider_tokens_total.labels(
                    provider=PROVIDER_NAME,
                    operation=operation,
                    token_type=token_type,
                ).inc(count)
