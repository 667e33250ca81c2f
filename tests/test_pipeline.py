from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tai_bot.access.permissions import (
    BASIC_CHAT,
    TRACKER_CREATE,
    AccessTier,
    CallerIdentity,
    default_access_policy,
)
from tai_bot.agent.providers import (
    ModelRequest,
    ModelResponse,
    ScriptedModelProvider,
    ToolInvocation,
    text_response,
    tool_response,
)
from tai_bot.context.collector import ChatMessage
from tai_bot.errors import RemoteFailure
from tai_bot.pipeline import (
    EMPTY_PROMPT_HINT,
    InboundRequest,
    RequestPipeline,
    build_pipeline_from_env,
    command_request,
)
from tai_bot.shared.settings import BotSettings
from tai_bot.tracker.models import TrackerEntity
from tai_bot.tracker.tracker_inmemory import InMemoryTrackerClient

BASE = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeChatTransport:
    def __init__(self, history: list[ChatMessage] | None = None) -> None:
        self.history = history or []
        self.delivered: list[tuple[str, str, str | None]] = []

    def fetch_recent(self, container_id: str, limit: int) -> list[ChatMessage]:
        return [m for m in self.history if m.container_id == container_id][-limit:]

    def fetch_message(self, container_id: str, message_id: str) -> ChatMessage:
        for message in self.history:
            if message.message_id == message_id:
                return message
        raise LookupError(message_id)

    def parent_of(self, container_id: str) -> str | None:
        return None

    def deliver_reply(self, container_id: str, text: str, reply_to: str | None = None) -> None:
        self.delivered.append((container_id, text, reply_to))


def _message(
    message_id: str, content: str, minute: int = 0, author: str = "alice"
) -> ChatMessage:
    return ChatMessage(
        message_id=message_id,
        container_id="general",
        author=author,
        content=content,
        created_at=BASE + timedelta(minutes=minute),
    )


def _pipeline(
    provider: ScriptedModelProvider,
    transport: FakeChatTransport | None = None,
    tracker: InMemoryTrackerClient | None = None,
) -> tuple[RequestPipeline, FakeChatTransport, InMemoryTrackerClient]:
    transport = transport or FakeChatTransport()
    tracker = tracker or InMemoryTrackerClient(
        members=[TrackerEntity(id="m1", name="jordan", display_name="Jordan")]
    )
    policy = default_access_policy().model_copy(
        update={"group_tiers": {"supporters": AccessTier.PREMIUM, "staff": AccessTier.ADMIN}}
    )
    pipeline = RequestPipeline(
        transport=transport, provider=provider, tracker=tracker, policy=policy
    )
    return pipeline, transport, tracker


def _request(
    prompt: str,
    groups: frozenset[str] = frozenset(),
    caller_id: str = "u1",
    **kwargs: object,
) -> InboundRequest:
    return InboundRequest(
        caller=CallerIdentity(caller_id=caller_id, display_name="alice", groups=groups),
        prompt=prompt,
        message=_message("origin", prompt, minute=30),
        channel_name="general",
        **kwargs,  # type: ignore[arg-type]
    )


def test_free_caller_without_required_feature_is_denied_before_any_remote_call() -> None:
    provider = ScriptedModelProvider([text_response("should not happen")])
    pipeline, transport, tracker = _pipeline(provider)

    result = pipeline.handle(
        _request("create a ticket for the login bug", required_feature=TRACKER_CREATE)
    )

    assert result.outcome == "permission_denied"
    assert result.tier == AccessTier.FREE
    assert result.reply.startswith("❌ You don't have permission for tracker issue creation.")
    assert provider.requests == []
    assert tracker.calls == []
    assert transport.delivered == [("general", result.reply, "origin")]


def test_premium_caller_gets_model_answer_delivered_as_reply() -> None:
    provider = ScriptedModelProvider([text_response("Here is the answer.")])
    pipeline, transport, _ = _pipeline(provider)

    result = pipeline.handle(_request("what's up?", groups=frozenset({"supporters"})))

    assert result.outcome == "ok"
    assert result.tier == AccessTier.PREMIUM
    assert result.delivered
    assert result.tokens_used == 15
    assert transport.delivered == [("general", "Here is the answer.", "origin")]
    assert provider.requests[0].tools


def test_burst_beyond_capacity_is_rate_limited() -> None:
    provider = ScriptedModelProvider(responder=lambda request: text_response("ok"))
    pipeline, transport, _ = _pipeline(provider)

    outcomes = [pipeline.handle(_request("hi")).outcome for _ in range(6)]

    assert outcomes == ["ok"] * 5 + ["rate_limited"]
    assert transport.delivered[-1][1].startswith("⏳ Rate limit reached. Please wait")
    assert len(provider.requests) == 5


def test_empty_prompt_gets_greeting_without_admission() -> None:
    provider = ScriptedModelProvider()
    pipeline, transport, _ = _pipeline(provider)

    result = pipeline.handle(_request("   "))

    assert result.outcome == "empty_prompt"
    assert result.reply == EMPTY_PROMPT_HINT
    assert pipeline.admission.status("u1", AccessTier.FREE).tokens == 5
    assert provider.requests == []


def test_abandoned_request_is_not_delivered() -> None:
    provider = ScriptedModelProvider([text_response("late answer")])
    pipeline, transport, _ = _pipeline(provider)

    result = pipeline.handle(_request("hello", is_abandoned=lambda: True))

    assert result.outcome == "abandoned"
    assert not result.delivered
    assert transport.delivered == []


def test_model_failure_delivers_generic_apology() -> None:
    def broken(request: ModelRequest) -> ModelResponse:
        raise RemoteFailure("model_api_error", "529 overloaded at internal-host-7")

    pipeline, transport, _ = _pipeline(ScriptedModelProvider(responder=broken))

    result = pipeline.handle(_request("hello"))

    assert result.outcome == "failed"
    assert "internal-host" not in transport.delivered[0][1]
    assert transport.delivered[0][1].startswith("Sorry, I encountered an error")


def test_channel_history_is_passed_without_the_origin_message() -> None:
    history = [
        _message("m1", "the login page is broken", minute=1, author="bob"),
        _message("origin", "can you file that?", minute=30),
    ]
    provider = ScriptedModelProvider([text_response("Sure")])
    pipeline, _, _ = _pipeline(provider, transport=FakeChatTransport(history))

    pipeline.handle(_request("can you file that?", groups=frozenset({"supporters"})))

    messages = provider.requests[0].messages
    assert messages == [
        {"role": "user", "content": "bob: the login page is broken\ncan you file that?"}
    ]


def test_tool_use_end_to_end_creates_issue() -> None:
    create = ToolInvocation(
        id="toolu_1",
        name="create_issue",
        arguments={"title": "Login page broken", "assignee": "jordan"},
    )
    provider = ScriptedModelProvider([tool_response(create), text_response("Filed COD-1.")])
    pipeline, transport, tracker = _pipeline(provider)

    result = pipeline.handle(
        _request("file it", groups=frozenset({"staff"}), required_feature=TRACKER_CREATE)
    )

    assert result.outcome == "ok"
    assert tracker.issues["COD-1"].assignee == "Jordan"
    assert transport.delivered[0][1] == (
        "Filed COD-1.\n\n**Actions Taken:**\n✅ **create_issue**"
    )


def test_long_answers_are_truncated_to_reply_limit() -> None:
    provider = ScriptedModelProvider([text_response("word " * 600)])
    pipeline, transport, _ = _pipeline(provider)

    pipeline.handle(_request("essay please"))

    assert len(transport.delivered[0][1]) <= 2000


def test_sweep_evicts_idle_buckets() -> None:
    pipeline, _, _ = _pipeline(ScriptedModelProvider(responder=lambda r: text_response("ok")))
    pipeline.handle(_request("hi"))

    assert pipeline.sweep() == 0


def test_build_pipeline_from_env_uses_inmemory_tracker_and_env_settings(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("TAI_BOT_POLICY_FILE", raising=False)
    env = {"TAI_BOT_MAX_TOOL_ITERATIONS": "3", "TAI_BOT_ADMIN_GROUPS": "ops"}

    pipeline = build_pipeline_from_env(
        FakeChatTransport(), env=env, provider=ScriptedModelProvider()
    )

    assert isinstance(pipeline.orchestrator.executor.tracker, InMemoryTrackerClient)
    assert pipeline.orchestrator.max_iterations == 3
    assert pipeline.classifier.classify(["ops"])[0] == AccessTier.ADMIN
    assert pipeline.settings == BotSettings.from_env(env)


def _caller(groups: frozenset[str] = frozenset()) -> CallerIdentity:
    return CallerIdentity(caller_id="u1", display_name="alice", groups=groups)


def test_create_issue_command_builds_prompt_and_requires_tracker_create() -> None:
    request = command_request(
        "create-issue",
        " login page is broken ",
        caller=_caller(),
        message=_message("origin", "login page is broken"),
        priority="high",
    )

    assert request.prompt == "Create a Linear issue: login page is broken [Priority: high]"
    assert request.required_feature == TRACKER_CREATE


def test_unknown_command_falls_back_to_basic_chat() -> None:
    request = command_request(
        "dance", "hello", caller=_caller(), message=_message("origin", "hello")
    )

    assert request.prompt == "hello"
    assert request.required_feature == BASIC_CHAT


def test_free_caller_create_issue_command_is_denied_before_any_remote_call() -> None:
    provider = ScriptedModelProvider([text_response("should not happen")])
    pipeline, transport, tracker = _pipeline(provider)

    result = pipeline.handle(
        command_request(
            "create-issue", "login bug", caller=_caller(), message=_message("origin", "x")
        )
    )

    assert result.outcome == "permission_denied"
    assert provider.requests == []
    assert tracker.calls == []
    assert transport.delivered[0][1].startswith("❌ You don't have permission")


def test_empty_create_issue_command_gets_greeting() -> None:
    pipeline, _, tracker = _pipeline(ScriptedModelProvider())

    result = pipeline.handle(
        command_request(
            "create-issue", "  ", caller=_caller(), message=_message("origin", ""), priority="high"
        )
    )

    assert result.outcome == "empty_prompt"
    assert tracker.calls == []
