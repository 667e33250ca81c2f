from __future__ import annotations

from datetime import datetime, timedelta, timezone

from tai_bot.context.collector import (
    ChatMessage,
    ContextAssembler,
    ConversationTurn,
    summarize_context,
)

BASE = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _message(
    message_id: str,
    minute: int,
    container_id: str = "general",
    author: str = "alice",
    bot: bool = False,
    reference_id: str | None = None,
) -> ChatMessage:
    return ChatMessage(
        message_id=message_id,
        container_id=container_id,
        author=author,
        content=f"message {message_id}",
        created_at=BASE + timedelta(minutes=minute),
        author_is_bot=bot,
        reference_id=reference_id,
    )


class FakeTransport:
    def __init__(
        self,
        history: dict[str, list[ChatMessage]] | None = None,
        parents: dict[str, str] | None = None,
        fail_recent: set[str] | None = None,
        fail_parent: bool = False,
    ) -> None:
        self.history = history or {}
        self.parents = parents or {}
        self.fail_recent = fail_recent or set()
        self.fail_parent = fail_parent
        self.fetched: list[str] = []

    def fetch_recent(self, container_id: str, limit: int) -> list[ChatMessage]:
        if container_id in self.fail_recent:
            raise ConnectionError("history unavailable")
        # newest first, like most chat APIs
        messages = sorted(
            self.history.get(container_id, []), key=lambda m: m.created_at, reverse=True
        )
        return messages[:limit]

    def fetch_message(self, container_id: str, message_id: str) -> ChatMessage:
        self.fetched.append(message_id)
        for message in self.history.get(container_id, []):
            if message.message_id == message_id:
                return message
        raise LookupError(message_id)

    def parent_of(self, container_id: str) -> str | None:
        if self.fail_parent:
            raise ConnectionError("parent unavailable")
        return self.parents.get(container_id)


def test_channel_context_is_oldest_first_and_bounded() -> None:
    history = {"general": [_message(str(i), i) for i in range(15)]}
    assembler = ContextAssembler(FakeTransport(history))

    turns = assembler.assemble_channel_context("general", limit=10)

    assert [turn.content for turn in turns] == [f"message {i}" for i in range(5, 15)]


def test_bot_authored_messages_become_assistant_turns() -> None:
    history = {"general": [_message("1", 1), _message("2", 2, author="tai", bot=True)]}
    turns = ContextAssembler(FakeTransport(history)).assemble_channel_context("general")

    assert [turn.role for turn in turns] == ["user", "assistant"]
    assert turns[0].timestamp == (BASE + timedelta(minutes=1)).isoformat()


def test_transport_failure_yields_empty_context() -> None:
    transport = FakeTransport(fail_recent={"general"})

    assert ContextAssembler(transport).assemble_channel_context("general") == []


def test_thread_context_prepends_parent_channel_turns() -> None:
    history = {
        "general": [_message(f"p{i}", i) for i in range(8)],
        "thread-1": [_message("t1", 20, container_id="thread-1")],
    }
    transport = FakeTransport(history, parents={"thread-1": "general"})

    turns = ContextAssembler(transport, thread_parent_limit=5).assemble_thread_context("thread-1")

    assert [turn.content for turn in turns] == [
        "message p3",
        "message p4",
        "message p5",
        "message p6",
        "message p7",
        "message t1",
    ]


def test_thread_context_survives_parent_failure() -> None:
    history = {"thread-1": [_message("t1", 20, container_id="thread-1")]}
    transport = FakeTransport(history, parents={"thread-1": "general"}, fail_recent={"general"})

    turns = ContextAssembler(transport).assemble_thread_context("thread-1")

    assert [turn.content for turn in turns] == ["message t1"]


def test_reply_chain_walk_is_bounded_by_depth() -> None:
    chain = [_message("0", 0)]
    for i in range(1, 9):
        chain.append(_message(str(i), i, reference_id=str(i - 1)))
    transport = FakeTransport({"general": chain})
    assembler = ContextAssembler(transport, reply_chain_depth=3)

    origin = _message("9", 30, reference_id="8")
    turns = assembler.assemble_reply_context(origin, limit=0)

    assert transport.fetched == ["8", "7", "6"]
    assert [turn.content for turn in turns] == ["message 6", "message 7", "message 8"]


def test_reply_chain_turns_appear_exactly_once_with_channel_history() -> None:
    history = [
        _message("1", 1),
        _message("2", 2, author="bob", reference_id="1"),
        _message("3", 3, author="carol"),
    ]
    transport = FakeTransport({"general": history})
    origin = _message("4", 4, reference_id="2")

    turns = ContextAssembler(transport).assemble_reply_context(origin, limit=10)

    contents = [turn.content for turn in turns]
    assert contents == ["message 1", "message 2", "message 3"]
    assert len({turn.dedup_key for turn in turns}) == len(turns)


def test_reply_chain_stops_quietly_at_missing_message() -> None:
    transport = FakeTransport({"general": [_message("2", 2, reference_id="gone")]})
    origin = _message("3", 3, reference_id="2")

    turns = ContextAssembler(transport).assemble_reply_context(origin, limit=0)

    assert [turn.content for turn in turns] == ["message 2"]


def test_assemble_for_dispatches_on_thread_then_reply() -> None:
    history = {
        "general": [_message("1", 1)],
        "thread-1": [_message("t1", 5, container_id="thread-1")],
    }
    transport = FakeTransport(history, parents={"thread-1": "general"})
    assembler = ContextAssembler(transport)

    in_thread = assembler.assemble_for(_message("t2", 6, container_id="thread-1"))
    plain = assembler.assemble_for(_message("2", 2))

    assert [turn.content for turn in in_thread] == ["message 1", "message t1"]
    assert [turn.content for turn in plain] == ["message 1"]


def test_assemble_for_treats_parent_lookup_failure_as_plain_channel() -> None:
    transport = FakeTransport({"general": [_message("1", 1)]}, fail_parent=True)

    turns = ContextAssembler(transport).assemble_for(_message("2", 2))

    assert [turn.content for turn in turns] == ["message 1"]


def test_summarize_context_keeps_most_recent_turns() -> None:
    turns = [ConversationTurn(role="user", content=str(i)) for i in range(50)]

    kept = summarize_context(turns, max_tokens=1000)

    assert [turn.content for turn in kept] == [str(i) for i in range(40, 50)]
    assert summarize_context(turns[:3]) == turns[:3]
