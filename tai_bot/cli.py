"""tai-bot CLI."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import typer

from tai_bot.access.permissions import AccessClassifier, CallerIdentity, load_access_policy
from tai_bot.context.collector import ChatMessage
from tai_bot.errors import MalformedInput
from tai_bot.pipeline import build_pipeline_from_env, command_request
from tai_bot.shared.settings import BotSettings
from tai_bot.tracker.linear_auth import load_service_auth_from_env
from tai_bot.tracker.models import parse_issue_identifier

app = typer.Typer(add_completion=False, help="tai-bot: chat assistant with tracker tools")


class ConsoleTransport:
    """Single-shot terminal surface with no chat history."""

    def __init__(self) -> None:
        self.replies: list[str] = []

    def fetch_recent(self, container_id: str, limit: int) -> list[ChatMessage]:
        return []

    def fetch_message(self, container_id: str, message_id: str) -> ChatMessage:
        raise LookupError(f"message {message_id} is not available on the console")

    def parent_of(self, container_id: str) -> str | None:
        return None

    def deliver_reply(self, container_id: str, text: str, reply_to: str | None = None) -> None:
        self.replies.append(text)
        typer.echo(text)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _groups(raw: str) -> frozenset[str]:
    return frozenset(group.strip() for group in raw.split(",") if group.strip())


def _run_command(
    command: str, text: str, user: str, groups: str, verbose: bool, priority: str | None = None
) -> None:
    _configure_logging(verbose)
    if not load_service_auth_from_env().model_api_key:
        raise typer.BadParameter(
            "Set TAI_BOT_ANTHROPIC_API_KEY (preferred) or ANTHROPIC_API_KEY to ask the model."
        )
    pipeline = build_pipeline_from_env(ConsoleTransport())
    result = pipeline.handle(
        command_request(
            command,
            text,
            caller=CallerIdentity(caller_id=user, display_name=user, groups=_groups(groups)),
            message=ChatMessage(
                message_id="console-1",
                container_id="console",
                author=user,
                content=text,
                created_at=datetime.now(timezone.utc),
            ),
            channel_name="console",
            priority=priority,
        )
    )
    if result.outcome not in {"ok", "empty_prompt"}:
        raise typer.Exit(code=1)


@app.command()
def ask(
    prompt: str = typer.Argument(...),
    user: str = typer.Option("console", "--user"),
    groups: str = typer.Option("", "--groups", help="Comma-separated group names"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Send one prompt through the full request pipeline."""

    _run_command("ask", prompt, user, groups, verbose)


@app.command("create-issue")
def create_issue(
    description: str = typer.Argument(...),
    priority: str = typer.Option(None, "--priority", help="urgent, high, normal or low"),
    user: str = typer.Option("console", "--user"),
    groups: str = typer.Option("", "--groups", help="Comma-separated group names"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Ask the assistant to file a tracker issue; needs tracker create access."""

    _run_command("create-issue", description, user, groups, verbose, priority=priority)


@app.command()
def policy(
    file: Path = typer.Option(None, "--file"),
    groups: str = typer.Option("", "--groups", help="Show the tier these groups classify to"),
) -> None:
    """Print the effective access policy as JSON."""

    path = file or BotSettings.from_env().policy_path
    effective = load_access_policy(path)
    payload = effective.model_dump(mode="json")
    if groups:
        tier, features = AccessClassifier(effective).classify(_groups(groups))
        payload["classification"] = {"tier": tier.value, "features": sorted(features)}
    typer.echo(json.dumps(payload, indent=2))


@app.command("parse-id")
def parse_id(identifier: str = typer.Argument(...)) -> None:
    try:
        prefix, number = parse_issue_identifier(identifier)
    except MalformedInput as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    typer.echo(json.dumps({"team_key": prefix, "number": number}))


@app.command()
def status() -> None:
    """Show configuration with credentials redacted."""

    settings = BotSettings.from_env()
    auth = load_service_auth_from_env()
    typer.echo(
        json.dumps(
            {
                "team_id": settings.team_id or "unset",
                "tracker": "linear" if auth.tracker_api_key and settings.team_id else "inmemory",
                "model": settings.model,
                "max_tool_iterations": settings.max_tool_iterations,
                "policy_file": str(settings.policy_path) if settings.policy_path else "builtin",
                "credentials": auth.redacted(),
                "key_problems": auth.key_problems(),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
