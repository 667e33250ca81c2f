from __future__ import annotations

from tai_bot.agent.executor import ToolOutcome
from tai_bot.errors import PermissionDenied, RemoteFailure
from tai_bot.formatting import (
    MAX_MESSAGE_LENGTH,
    TRUNCATION_MARKER,
    format_response,
    render_user_error,
    truncate_message,
)


def test_short_messages_are_untouched() -> None:
    assert truncate_message("hello") == "hello"
    assert truncate_message("x" * MAX_MESSAGE_LENGTH) == "x" * MAX_MESSAGE_LENGTH


def test_long_message_is_cut_to_limit_with_marker() -> None:
    content = "word " * 500

    truncated = truncate_message(content)

    assert len(content) == 2500
    assert len(truncated) <= MAX_MESSAGE_LENGTH
    assert truncated.endswith(TRUNCATION_MARKER)
    assert not truncated[: -len(TRUNCATION_MARKER)].endswith(" ")


def test_truncation_prefers_paragraph_boundary() -> None:
    content = "a" * 1600 + "\n\n" + "b" * 900

    truncated = truncate_message(content)

    assert truncated == "a" * 1600 + TRUNCATION_MARKER


def test_truncation_keeps_sentence_period() -> None:
    content = "a" * 1500 + ". " + "b" * 1000

    truncated = truncate_message(content)

    assert truncated == "a" * 1500 + "." + TRUNCATION_MARKER


def test_unbroken_text_is_hard_cut() -> None:
    truncated = truncate_message("z" * 3000, max_length=100)

    assert len(truncated) == 100
    assert truncated.startswith("z" * (100 - len(TRUNCATION_MARKER)))


def test_format_response_appends_action_summary_by_default() -> None:
    actions = [
        ToolOutcome(tool="create_issue", arguments={}, content="ok", success=True),
        ToolOutcome(tool="update_issue", arguments={}, content="nope", success=False),
    ]

    plain = format_response("Done.", actions, include_actions=False)
    detailed = format_response("Done.", actions)

    assert plain == "Done."
    assert detailed == (
        "Done.\n\n**Actions Taken:**\n✅ **create_issue**\n❌ **update_issue**"
    )


def test_user_errors_never_expose_remote_detail() -> None:
    denied = PermissionDenied("tracker_create", "You don't have permission for x.")
    remote = RemoteFailure("tracker_500", "stack trace with internal host names")

    assert render_user_error(denied) == "❌ You don't have permission for x."
    assert "internal" not in render_user_error(remote)
