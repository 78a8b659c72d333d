"""AI provider layer.

Wraps the Anthropic Messages API behind a small provider interface so
services deal in ``ChatMessage``/``ChatResponse`` values only.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from app.core.config import settings
from app.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AIProviderError(Exception):
    """Provider call failed (network, HTTP status or malformed response)."""


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    """Response from an AI provider."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    model: str

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> ChatResponse:
        """Send a chat completion request."""
        pass


class AnthropicProvider(AIProvider):
    """Anthropic Messages API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model or settings.ANTHROPIC_MODEL
        self.api_url = api_url or settings.ANTHROPIC_API_URL
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT_SECONDS

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> ChatResponse:
        model = model or self.default_model

        # System prompt is a top-level field, not a message role
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        request_body: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system:
            request_body["system"] = system

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(self.api_url, headers=headers, json=request_body)

                response = await request_with_retries(
                    request_fn,
                    retry_statuses=DEFAULT_RETRY_STATUSES | {529},
                )
        except httpx.RequestError as exc:
            raise AIProviderError(f"Anthropic request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning("Anthropic returned %s", response.status_code)
            raise AIProviderError(f"Anthropic returned {response.status_code}")

        data = response.json()
        text_blocks = [
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        ]
        if not text_blocks:
            raise AIProviderError("No text response from AI")

        usage = data.get("usage", {})
        return ChatResponse(
            content=text_blocks[0],
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            model=data.get("model", model),
        )


def get_provider(api_key: str, model: str | None = None) -> AIProvider:
    """Factory for the configured provider."""
    return AnthropicProvider(api_key, default_model=model)
