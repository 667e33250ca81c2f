"""Reply formatting for the chat surface's message length limit."""

from __future__ import annotations

from tai_bot.agent.executor import ToolOutcome
from tai_bot.errors import TaiBotError

MAX_MESSAGE_LENGTH = 2000
TRUNCATION_MARKER = "\n\n*...message truncated*"


def truncate_message(content: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut at a paragraph, sentence or word boundary before a hard cut."""

    if len(content) <= max_length:
        return content
    target = max_length - len(TRUNCATION_MARKER)
    if target <= 0:
        return TRUNCATION_MARKER[:max_length]

    paragraph_break = content.rfind("\n\n", 0, target)
    if paragraph_break > target * 0.7:
        return content[:paragraph_break] + TRUNCATION_MARKER

    sentence_break = content.rfind(". ", 0, target)
    if sentence_break > target * 0.7:
        return content[: sentence_break + 1] + TRUNCATION_MARKER

    word_break = content.rfind(" ", 0, target)
    if word_break > target * 0.5:
        return content[:word_break] + TRUNCATION_MARKER

    return content[:target] + TRUNCATION_MARKER


def format_response(
    content: str,
    actions: list[ToolOutcome] | None = None,
    max_length: int = MAX_MESSAGE_LENGTH,
    include_actions: bool = True,
) -> str:
    """Append a per-tool outcome summary (no tool output) and fit the length limit."""

    if include_actions and actions:
        summary = "\n".join(
            f"{'✅' if action.success else '❌'} **{action.tool}**" for action in actions
        )
        content = f"{content}\n\n**Actions Taken:**\n{summary}"
    return truncate_message(content, max_length)


def render_user_error(error: TaiBotError, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    return truncate_message(error.user_message(), max_length)
