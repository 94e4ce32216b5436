"""
LLM Client Infrastructure
==========================

Wrapper for OpenAI-compatible chat models providing a clean interface for
LLM operations.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the follow-up context depends on
abstractions, not concrete SDKs.
"""

import json
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from openai import AsyncOpenAI

from src.config import settings
from src.core import ConfigurationException, LLMException
from src.shared.infrastructure.metrics import IMetricsRecorder, LoggingMetricsRecorder


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms

    def json(self) -> dict:
        """
        Parse the content as a JSON object.

        Tolerates a fenced ```json block around the payload.

        Raises:
            LLMException: If the content is not a JSON object
        """
        content = self.content.strip()
        if content.startswith("```"):
            content = content.strip("`")
            if content.startswith("json"):
                content = content[4:]
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMException(f"Response is not valid JSON: {e}", {"content": self.content[:200]})
        if not isinstance(parsed, dict):
            raise LLMException("Response JSON is not an object", {"content": self.content[:200]})
        return parsed


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 300,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """Generate chat completion."""


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation for GPT models.

    Provides async wrapper around OpenAI SDK operations. Token usage and
    latency are reported through the metrics recorder.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        metrics: Optional[IMetricsRecorder] = None
    ):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=base_url or settings.openai_base_url
        )
        self._model = model or settings.llm_model
        self._metrics = metrics or LoggingMetricsRecorder()

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 300,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Operation type for metrics
            json_mode: Ask the model for a JSON object response

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        extra_args = {"response_format": {"type": "json_object"}} if json_mode else {}

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **extra_args
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content or ""
        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0

        tags = {"model": self._model, "operation": operation}
        self._metrics.track_metric("llm.latency.duration", latency_ms, tags)
        self._metrics.track_metric("llm.tokens.total", prompt_tokens + completion_tokens, tags)

        return ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for development and testing.

    Returns predictable responses without calling external APIs.
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 300,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """Return a mock response based on operation type."""
        if "snooze" in operation.lower():
            now = self._clock()
            mock_response = {
                "suggestedTime": (now + timedelta(hours=4)).isoformat(),
                "reasoning": "Mock: revisit later today once the sender has had time to reply.",
                "alternativeTimes": [
                    (now + timedelta(hours=8)).isoformat(),
                    (now + timedelta(days=1)).isoformat(),
                ],
                "confidence": 0.8
            }
            content = json.dumps(mock_response)
        else:
            content = "This is a mock LLM response for testing purposes."

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=100
        )
