"""Provider interface and normalized request/response contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelRequest:
    """Normalized chat-completion request independent of vendor SDKs.

    ``messages`` use role/content dicts whose content is either a string or a
    list of ``text`` / ``tool_use`` / ``tool_result`` blocks.
    """

    system: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]]
    model: str
    max_tokens: int = 1024


@dataclass(frozen=True)
class ModelResponse:
    text: str = ""
    tool_calls: tuple[ToolInvocation, ...] = ()
    usage: dict[str, int] = field(default_factory=dict)
    stop_reason: str = "end_turn"

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)

    def content_blocks(self) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        if self.text:
            blocks.append({"type": "text", "text": self.text})
        for call in self.tool_calls:
            blocks.append(
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
            )
        return blocks


class ModelProvider(Protocol):
    """Provider adapter protocol; transport and API errors surface as ``RemoteFailure``."""

    name: str

    def complete(self, request: ModelRequest) -> ModelResponse:
        """Run one chat-completion round-trip."""
