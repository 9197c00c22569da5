"""
LLM Gateway — chat-completion client for the AI gateway.

Behavioral Contract:
- One POST per call to {gateway_url}/chat/completions, bearer-authenticated
- 429 -> RateLimitedError, 402 -> PaymentRequiredError; any other non-2xx
  -> UpstreamError. Nothing is retried.
- A forced tool call is returned as parsed arguments; otherwise the first
  choice's text content
"""

import json
from typing import List, Optional

import httpx
import structlog

from edusync.errors import (
    ConfigurationError,
    PaymentRequiredError,
    RateLimitedError,
    UpstreamError,
)
from edusync.models.integrations import CompletionMessage, CompletionResult, ToolSchema

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "google/gemini-2.5-flash"


class LLMGateway:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        client_kwargs = {"transport": transport}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = httpx.Client(**client_kwargs)

    def complete(
        self,
        messages: List[CompletionMessage],
        model: Optional[str] = None,
        tools: Optional[List[ToolSchema]] = None,
        tool_choice: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """Request a completion. tool_choice names a tool the model must call."""
        if not self.api_key:
            raise ConfigurationError("LLM gateway API key is not configured")

        body: dict = {
            "model": model or self.model,
            "messages": [m.model_dump() for m in messages],
        }
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        if tool_choice:
            body["tool_choice"] = {"type": "function", "function": {"name": tool_choice}}

        logger.debug("llm_request", model=body["model"], messages=len(messages))
        response = self._client.post(
            f"{self.base_url}/chat/completions",
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        if response.status_code == 429:
            raise RateLimitedError(
                "Rate limit exceeded. Please try again later.", upstream_status=429
            )
        if response.status_code == 402:
            raise PaymentRequiredError(
                "Payment required. Please add credits to continue.", upstream_status=402
            )
        if response.is_error:
            logger.error(
                "llm_gateway_error", status=response.status_code, body=response.text[:500]
            )
            raise UpstreamError(
                f"AI gateway error: {response.status_code}",
                upstream_status=response.status_code,
            )

        return self._parse(response.json())

    @staticmethod
    def _parse(data: dict) -> CompletionResult:
        choices = data.get("choices") or []
        if not choices:
            return CompletionResult()
        message = choices[0].get("message") or {}
        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            raw = tool_calls[0].get("function", {}).get("arguments") or "{}"
            try:
                arguments = json.loads(raw) if isinstance(raw, str) else raw
            except json.JSONDecodeError:
                raise UpstreamError("AI gateway returned malformed tool arguments")
            return CompletionResult(content=message.get("content"), tool_arguments=arguments)
        return CompletionResult(content=message.get("content"))

    def close(self) -> None:
        self._client.close()
