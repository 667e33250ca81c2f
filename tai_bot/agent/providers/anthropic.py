"""Anthropic provider adapter using the official SDK."""

from __future__ import annotations

from typing import Any

import anthropic

from tai_bot.agent.providers.base import ModelProvider, ModelRequest, ModelResponse, ToolInvocation
from tai_bot.errors import RemoteFailure


class AnthropicProvider(ModelProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        client: Any | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        if client is None and not api_key:
            raise RuntimeError("anthropic_provider_not_configured")
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout_s)

    def complete(self, request: ModelRequest) -> ModelResponse:
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "system": request.system,
            "messages": request.messages,
        }
        if request.tools:
            params["tools"] = request.tools
        try:
            response = self.client.messages.create(**params)
        except anthropic.APIError as exc:
            raise RemoteFailure("model_api_error", str(exc)) from exc

        texts: list[str] = []
        calls: list[ToolInvocation] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(
                    ToolInvocation(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )
        usage = getattr(response, "usage", None)
        return ModelResponse(
            text="\n".join(text for text in texts if text),
            tool_calls=tuple(calls),
            usage={
                "input_tokens": int(getattr(usage, "input_tokens", 0) or 0),
                "output_tokens": int(getattr(usage, "output_tokens", 0) or 0),
            },
            stop_reason=str(response.stop_reason or ""),
        )
