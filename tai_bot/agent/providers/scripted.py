"""Deterministic provider that replays scripted responses."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from tai_bot.agent.providers.base import ModelProvider, ModelRequest, ModelResponse, ToolInvocation
from tai_bot.errors import RemoteFailure


class ScriptedModelProvider(ModelProvider):
    """Returns queued responses in order, or delegates to a responder callable.

    Records every request so callers can inspect what the model was shown.
    """

    name = "scripted"

    def __init__(
        self,
        responses: Iterable[ModelResponse] = (),
        responder: Callable[[ModelRequest], ModelResponse] | None = None,
    ) -> None:
        self.responses = list(responses)
        self.responder = responder
        self.requests: list[ModelRequest] = []

    def complete(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        if self.responder is not None:
            return self.responder(request)
        raise RemoteFailure("scripted_provider_exhausted", "no scripted response left")


def text_response(text: str, input_tokens: int = 10, output_tokens: int = 5) -> ModelResponse:
    return ModelResponse(
        text=text,
        usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
    )


def tool_response(*calls: ToolInvocation, text: str = "") -> ModelResponse:
    return ModelResponse(
        text=text,
        tool_calls=tuple(calls),
        usage={"input_tokens": 10, "output_tokens": 5},
        stop_reason="tool_use",
    )
