"""Request pipeline: classify, admit, assemble context, orchestrate, deliver."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

from tai_bot.access.permissions import (
    BASIC_CHAT,
    TRACKER_CREATE,
    AccessClassifier,
    AccessPolicy,
    AccessTier,
    CallerIdentity,
    load_access_policy,
)
from tai_bot.access.rate_limiter import AdmissionController
from tai_bot.agent.executor import ToolExecutor
from tai_bot.agent.orchestrator import AgentOrchestrator, AgentRequest, OrchestrationState
from tai_bot.agent.providers.anthropic import AnthropicProvider
from tai_bot.agent.providers.base import ModelProvider
from tai_bot.context.collector import (
    ChatMessage,
    ChatTransport,
    ContextAssembler,
    summarize_context,
)
from tai_bot.errors import AdmissionDenied, PermissionDenied, TaiBotError
from tai_bot.formatting import format_response, render_user_error
from tai_bot.shared.settings import BotSettings
from tai_bot.tracker.entities import EntityCache, EntityResolver
from tai_bot.tracker.linear_auth import load_service_auth_from_env
from tai_bot.tracker.linear_client import build_tracker_from_env
from tai_bot.tracker.models import TrackerClient

logger = logging.getLogger(__name__)

EMPTY_PROMPT_HINT = "👋 Hi! You can ask me anything. Try: `help me create a bug ticket`"


class ReplyTransport(ChatTransport, Protocol):
    def deliver_reply(self, container_id: str, text: str, reply_to: str | None = None) -> None: ...


@dataclass(frozen=True)
class InboundRequest:
    caller: CallerIdentity
    prompt: str
    message: ChatMessage
    channel_name: str = "DM"
    required_feature: str = BASIC_CHAT
    is_abandoned: Callable[[], bool] | None = None


@dataclass(frozen=True)
class PipelineResult:
    reply: str
    outcome: str
    tier: AccessTier | None = None
    delivered: bool = False
    tokens_used: int = 0


@dataclass(frozen=True)
class CommandRoute:
    required_feature: str
    prompt_prefix: str = ""


COMMAND_ROUTES: dict[str, CommandRoute] = {
    "ask": CommandRoute(BASIC_CHAT),
    "create-issue": CommandRoute(TRACKER_CREATE, "Create a Linear issue: "),
}


def command_request(
    command: str,
    text: str,
    caller: CallerIdentity,
    message: ChatMessage,
    channel_name: str = "DM",
    priority: str | None = None,
    is_abandoned: Callable[[], bool] | None = None,
) -> InboundRequest:
    """Build the request for a chat command; unknown commands are plain chat."""

    route = COMMAND_ROUTES.get(command, COMMAND_ROUTES["ask"])
    body = text.strip()
    prompt = f"{route.prompt_prefix}{body}" if body else ""
    if prompt and priority:
        prompt += f" [Priority: {priority}]"
    return InboundRequest(
        caller=caller,
        prompt=prompt,
        message=message,
        channel_name=channel_name,
        required_feature=route.required_feature,
        is_abandoned=is_abandoned,
    )


class RequestPipeline:
    """Owns the process-scoped stores (rate-limit buckets, entity cache)."""

    def __init__(
        self,
        transport: ReplyTransport,
        provider: ModelProvider,
        tracker: TrackerClient,
        policy: AccessPolicy | None = None,
        settings: BotSettings | None = None,
    ) -> None:
        self.settings = settings or BotSettings()
        self.transport = transport
        self.classifier = AccessClassifier(policy)
        self.admission = AdmissionController(self.classifier.policy)
        self.context = ContextAssembler(
            transport,
            thread_parent_limit=self.settings.thread_parent_limit,
            reply_chain_depth=self.settings.reply_chain_depth,
        )
        self.resolver = EntityResolver(tracker, EntityCache(ttl_s=self.settings.entity_cache_ttl_s))
        self.orchestrator = AgentOrchestrator(
            provider=provider,
            executor=ToolExecutor(tracker, self.resolver),
            model=self.settings.model,
            max_tokens=self.settings.max_output_tokens,
            max_iterations=self.settings.max_tool_iterations,
        )

    def handle(self, request: InboundRequest) -> PipelineResult:
        prompt = request.prompt.strip()
        if not prompt:
            return self._finish(request, EMPTY_PROMPT_HINT, "empty_prompt", tier=None)

        tier, features = self.classifier.classify(request.caller.groups)
        try:
            self._authorize(request, tier, features)
        except TaiBotError as exc:
            logger.info("request rejected caller=%s reason=%s", request.caller.caller_id, exc)
            return self._finish(request, render_user_error(exc, self._limit), exc.reason_code, tier)

        origin_key = (request.message.author, request.message.created_at.isoformat())
        turns = self.context.assemble_for(request.message, self.settings.channel_context_limit)
        context = summarize_context([turn for turn in turns if turn.dedup_key != origin_key])
        result = self.orchestrator.run(
            AgentRequest(
                content=prompt,
                username=request.caller.display_name,
                channel=request.channel_name,
                tier=tier,
                features=features,
                context=context,
            ),
            is_abandoned=request.is_abandoned,
        )
        logger.info(
            "request done caller=%s state=%s iterations=%d tokens=%d ms=%d",
            request.caller.caller_id,
            result.state.value,
            result.iterations,
            result.tokens_used,
            result.processing_time_ms,
        )
        if result.abandoned:
            return PipelineResult(
                reply="", outcome="abandoned", tier=tier, tokens_used=result.tokens_used
            )
        outcome = "failed" if result.state == OrchestrationState.FAILED else "ok"
        reply = format_response(result.content, result.actions, max_length=self._limit)
        return self._finish(request, reply, outcome, tier, tokens_used=result.tokens_used)

    def sweep(self) -> int:
        return self.admission.sweep_idle(self.settings.bucket_idle_s)

    @property
    def _limit(self) -> int:
        return self.settings.max_reply_length

    def _authorize(
        self, request: InboundRequest, tier: AccessTier, features: frozenset[str]
    ) -> None:
        for feature in dict.fromkeys([BASIC_CHAT, request.required_feature]):
            decision = self.classifier.check_feature(tier, feature, features)
            if not decision.allowed:
                raise PermissionDenied(feature, decision.reason)

        admission = self.admission.check_admission(request.caller.caller_id, tier)
        if not admission.allowed:
            raise AdmissionDenied(request.caller.caller_id, admission.retry_after_s or 0.0)

    def _finish(
        self,
        request: InboundRequest,
        reply: str,
        outcome: str,
        tier: AccessTier | None,
        tokens_used: int = 0,
    ) -> PipelineResult:
        if request.is_abandoned is not None and request.is_abandoned():
            return PipelineResult(
                reply=reply, outcome="abandoned", tier=tier, tokens_used=tokens_used
            )
        self.transport.deliver_reply(
            request.message.container_id, reply, reply_to=request.message.message_id
        )
        return PipelineResult(
            reply=reply, outcome=outcome, tier=tier, delivered=True, tokens_used=tokens_used
        )


def build_pipeline_from_env(
    transport: ReplyTransport,
    env: Mapping[str, str] | None = None,
    provider: ModelProvider | None = None,
) -> RequestPipeline:
    """Wire settings, policy, tracker and the Anthropic provider from env."""

    settings = BotSettings.from_env(env)
    auth = load_service_auth_from_env(env)
    if provider is None:
        provider = AnthropicProvider(api_key=auth.model_api_key)
    return RequestPipeline(
        transport=transport,
        provider=provider,
        tracker=build_tracker_from_env(env, team_id=settings.team_id),
        policy=load_access_policy(settings.policy_path, env),
        settings=settings,
    )
