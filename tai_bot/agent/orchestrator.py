"""Bounded tool-use conversation loop between the model and the tracker."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tai_bot.access.permissions import AccessTier
from tai_bot.agent.executor import ToolExecutor, ToolOutcome
from tai_bot.agent.providers.base import ModelProvider, ModelRequest, ModelResponse
from tai_bot.agent.tools import ToolName, tools_for
from tai_bot.context.collector import ConversationTurn
from tai_bot.errors import RemoteFailure

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5
CONTEXT_TURN_LIMIT = 10
APOLOGY_MESSAGE = "Sorry, I encountered an error processing your request. Please try again."
NO_RESPONSE_MESSAGE = "I processed your request but have no response."

SYSTEM_PROMPT = """You are TAI Bot, an AI assistant for the team's chat workspace.

Your capabilities:
- Answer questions about the team's work
- Create, search, inspect and update tracker issues when tools are available
- Comment on issues and look up members, labels, projects, cycles and statuses

Guidelines:
- Be concise - replies are limited to 2000 characters
- Use markdown formatting (bold, code blocks, lists)
- When creating issues, extract a clear title and a detailed description
- Label changes only ever add labels; say so if the user asks to remove one
- If a name is ambiguous, ask the user which candidate they meant
- If you can't help with something, explain why

Current user: {username}
Channel: {channel}"""


class OrchestrationState(str, Enum):
    ASSEMBLING = "assembling"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentRequest:
    content: str
    username: str
    channel: str
    tier: AccessTier
    features: frozenset[str]
    context: list[ConversationTurn] = field(default_factory=list)


@dataclass
class OrchestrationResult:
    content: str
    state: OrchestrationState
    iterations: int = 0
    model_calls: int = 0
    usage: dict[str, int] = field(default_factory=lambda: {"input_tokens": 0, "output_tokens": 0})
    actions: list[ToolOutcome] = field(default_factory=list)
    exhausted: bool = False
    abandoned: bool = False
    processing_time_ms: int = 0

    @property
    def tokens_used(self) -> int:
        return self.usage.get("input_tokens", 0) + self.usage.get("output_tokens", 0)


class AgentOrchestrator:
    def __init__(
        self,
        provider: ModelProvider,
        executor: ToolExecutor,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 1024,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.provider = provider
        self.executor = executor
        self.model = model
        self.max_tokens = max_tokens
        self.max_iterations = max(1, int(max_iterations))

    def run(
        self,
        request: AgentRequest,
        is_abandoned: Callable[[], bool] | None = None,
    ) -> OrchestrationResult:
        started = time.monotonic()
        abandoned = is_abandoned or (lambda: False)
        result = OrchestrationResult(content="", state=OrchestrationState.ASSEMBLING)

        specs = tools_for(request.tier, request.features)
        allowed = {spec.name for spec in specs}
        tools = [spec.as_tool_definition() for spec in specs]
        system = SYSTEM_PROMPT.format(username=request.username, channel=request.channel)
        messages = _initial_messages(request)
        last_text = ""

        try:
            while True:
                if abandoned():
                    result.abandoned = True
                    result.state = OrchestrationState.DONE
                    break
                result.state = OrchestrationState.AWAITING_MODEL
                response = self._call_model(system, messages, tools, result)
                if response.text.strip():
                    last_text = response.text

                if not response.wants_tools:
                    result.content = response.text.strip() or NO_RESPONSE_MESSAGE
                    result.state = OrchestrationState.DONE
                    break

                if result.iterations >= self.max_iterations:
                    logger.warning(
                        "tool loop exhausted after %d iterations for %s",
                        result.iterations,
                        request.username,
                    )
                    result.exhausted = True
                    result.content = last_text.strip() or NO_RESPONSE_MESSAGE
                    result.state = OrchestrationState.DONE
                    break

                if abandoned():
                    result.abandoned = True
                    result.state = OrchestrationState.DONE
                    break
                result.state = OrchestrationState.EXECUTING_TOOLS
                result.iterations += 1
                messages.append({"role": "assistant", "content": response.content_blocks()})
                messages.append(
                    {"role": "user", "content": self._execute_batch(response, allowed, result)}
                )
        except RemoteFailure as exc:
            logger.error("model provider failure: %s", exc, exc_info=True)
            result.state = OrchestrationState.FAILED
            result.content = APOLOGY_MESSAGE

        result.processing_time_ms = int((time.monotonic() - started) * 1000)
        return result

    def _call_model(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        result: OrchestrationResult,
    ) -> ModelResponse:
        response = self.provider.complete(
            ModelRequest(
                system=system,
                messages=list(messages),
                tools=tools,
                model=self.model,
                max_tokens=self.max_tokens,
            )
        )
        result.model_calls += 1
        for key in ("input_tokens", "output_tokens"):
            result.usage[key] = result.usage.get(key, 0) + int(response.usage.get(key, 0))
        return response

    def _execute_batch(
        self,
        response: ModelResponse,
        allowed: set[ToolName],
        result: OrchestrationResult,
    ) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for call in response.tool_calls:
            try:
                outcome = self.executor.execute(call, allowed=allowed)
            except Exception:
                logger.exception("tool %s raised", call.name)
                outcome = ToolOutcome(
                    tool=call.name,
                    arguments=dict(call.arguments),
                    content=f"❌ {call.name} failed unexpectedly",
                    success=False,
                )
            result.actions.append(outcome)
            blocks.append(
                {
                    "type": "tool_result",
                    "tool_use_id": call.id,
                    "content": outcome.content,
                    "is_error": not outcome.success,
                }
            )
        return blocks


def _initial_messages(request: AgentRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for turn in request.context[-CONTEXT_TURN_LIMIT:]:
        if not turn.content.strip():
            continue
        role = "user" if turn.role == "user" else "assistant"
        content = f"{turn.author}: {turn.content}" if role == "user" and turn.author else turn.content
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] = f"{messages[-1]['content']}\n{content}"
        else:
            messages.append({"role": role, "content": content})
    if messages and messages[0]["role"] == "assistant":
        messages.pop(0)
    if messages and messages[-1]["role"] == "user":
        messages[-1]["content"] = f"{messages[-1]['content']}\n{request.content}"
    else:
        messages.append({"role": "user", "content": request.content})
    return messages
