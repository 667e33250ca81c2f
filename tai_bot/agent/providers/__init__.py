"""Provider adapters for the agent loop."""

from tai_bot.agent.providers.anthropic import AnthropicProvider
from tai_bot.agent.providers.base import ModelProvider, ModelRequest, ModelResponse, ToolInvocation
from tai_bot.agent.providers.scripted import ScriptedModelProvider, text_response, tool_response

__all__ = [
    "AnthropicProvider",
    "ModelProvider",
    "ModelRequest",
    "ModelResponse",
    "ScriptedModelProvider",
    "ToolInvocation",
    "text_response",
    "tool_response",
]
