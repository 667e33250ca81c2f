"""Best-effort conversation transcript assembly from chat history.

Every function here returns a (possibly empty) list of turns and never
raises: transport failures are logged and the affected part of the context
is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol

logger = logging.getLogger(__name__)

MAX_REPLY_CHAIN_DEPTH = 5
THREAD_PARENT_LIMIT = 5
ESTIMATED_TOKENS_PER_TURN = 100


@dataclass(frozen=True)
class ChatMessage:
    message_id: str
    container_id: str
    author: str
    content: str
    created_at: datetime
    author_is_bot: bool = False
    reference_id: str | None = None


@dataclass(frozen=True)
class ConversationTurn:
    role: Literal["user", "assistant"]
    content: str
    author: str | None = None
    timestamp: str | None = None

    @property
    def dedup_key(self) -> tuple[str | None, str | None]:
        return (self.author, self.timestamp)


class ChatTransport(Protocol):
    def fetch_recent(self, container_id: str, limit: int) -> list[ChatMessage]: ...

    def fetch_message(self, container_id: str, message_id: str) -> ChatMessage: ...

    def parent_of(self, container_id: str) -> str | None: ...


def message_to_turn(message: ChatMessage) -> ConversationTurn:
    return ConversationTurn(
        role="assistant" if message.author_is_bot else "user",
        content=message.content,
        author=message.author,
        timestamp=message.created_at.isoformat(),
    )


class ContextAssembler:
    def __init__(
        self,
        transport: ChatTransport,
        thread_parent_limit: int = THREAD_PARENT_LIMIT,
        reply_chain_depth: int = MAX_REPLY_CHAIN_DEPTH,
    ) -> None:
        self.transport = transport
        self.thread_parent_limit = thread_parent_limit
        self.reply_chain_depth = reply_chain_depth

    def assemble_channel_context(self, container_id: str, limit: int = 10) -> list[ConversationTurn]:
        try:
            messages = self.transport.fetch_recent(container_id, limit)
        except Exception:
            logger.warning("failed to collect context for %s", container_id, exc_info=True)
            return []
        recent = sorted(messages, key=lambda message: message.created_at)[-limit:]
        return [message_to_turn(message) for message in recent]

    def assemble_thread_context(self, container_id: str, limit: int = 10) -> list[ConversationTurn]:
        turns = self.assemble_channel_context(container_id, limit)
        try:
            parent_id = self.transport.parent_of(container_id)
        except Exception:
            logger.info("parent lookup failed for thread %s", container_id, exc_info=True)
            return turns
        if not parent_id:
            return turns
        parent_turns = self.assemble_channel_context(parent_id, self.thread_parent_limit)
        return [*parent_turns, *turns]

    def assemble_reply_context(self, origin: ChatMessage, limit: int = 10) -> list[ConversationTurn]:
        chain: list[ConversationTurn] = []
        current = origin
        for _ in range(self.reply_chain_depth):
            if not current.reference_id:
                break
            try:
                referenced = self.transport.fetch_message(current.container_id, current.reference_id)
            except Exception:
                logger.info(
                    "reply chain walk stopped at %s in %s",
                    current.reference_id,
                    current.container_id,
                    exc_info=True,
                )
                break
            chain.insert(0, message_to_turn(referenced))
            current = referenced

        seen = {turn.dedup_key for turn in chain}
        channel_turns = self.assemble_channel_context(origin.container_id, limit)
        return [*chain, *(turn for turn in channel_turns if turn.dedup_key not in seen)]

    def assemble_for(self, message: ChatMessage, limit: int = 10) -> list[ConversationTurn]:
        """Pick thread, reply or channel context for an inbound message."""

        try:
            in_thread = self.transport.parent_of(message.container_id) is not None
        except Exception:
            logger.info("parent lookup failed for %s", message.container_id, exc_info=True)
            in_thread = False
        if in_thread:
            return self.assemble_thread_context(message.container_id, limit)
        if message.reference_id:
            return self.assemble_reply_context(message, limit)
        return self.assemble_channel_context(message.container_id, limit)


def summarize_context(
    turns: list[ConversationTurn], max_tokens: int = 4000
) -> list[ConversationTurn]:
    max_turns = max_tokens // ESTIMATED_TOKENS_PER_TURN
    if len(turns) <= max_turns:
        return list(turns)
    return list(turns[len(turns) - max_turns :]) if max_turns else []
