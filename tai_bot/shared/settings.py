"""Shared runtime settings for the request pipeline."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class BotSettings:
    """Tunable values consumed by the pipeline components."""

    team_id: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_output_tokens: int = 1024
    max_tool_iterations: int = 5
    entity_cache_ttl_s: int = 300
    channel_context_limit: int = 10
    thread_parent_limit: int = 5
    reply_chain_depth: int = 5
    max_reply_length: int = 2000
    bucket_idle_s: int = 3600
    policy_path: Path | None = None

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "BotSettings":
        source = os.environ if env is None else env
        policy_path = _clean(source.get("TAI_BOT_POLICY_FILE"))
        return cls(
            team_id=_clean(source.get("TAI_BOT_LINEAR_TEAM_ID") or source.get("LINEAR_TEAM_ID")),
            model=_clean(source.get("TAI_BOT_MODEL")) or cls.model,
            max_output_tokens=_int(source, "TAI_BOT_MAX_OUTPUT_TOKENS", cls.max_output_tokens),
            max_tool_iterations=_int(source, "TAI_BOT_MAX_TOOL_ITERATIONS", cls.max_tool_iterations),
            entity_cache_ttl_s=_int(source, "TAI_BOT_ENTITY_CACHE_TTL_S", cls.entity_cache_ttl_s),
            channel_context_limit=_int(
                source, "TAI_BOT_CHANNEL_CONTEXT_LIMIT", cls.channel_context_limit
            ),
            thread_parent_limit=_int(source, "TAI_BOT_THREAD_PARENT_LIMIT", cls.thread_parent_limit),
            reply_chain_depth=_int(source, "TAI_BOT_REPLY_CHAIN_DEPTH", cls.reply_chain_depth),
            max_reply_length=_int(source, "TAI_BOT_MAX_REPLY_LENGTH", cls.max_reply_length),
            bucket_idle_s=_int(source, "TAI_BOT_BUCKET_IDLE_S", cls.bucket_idle_s),
            policy_path=Path(policy_path) if policy_path else None,
        )


def get_bot_settings(env: dict[str, str] | None = None) -> BotSettings:
    """Build settings from environment variables."""

    return BotSettings.from_env(env)


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _int(source: Mapping[str, str], key: str, default: int) -> int:
    raw = _clean(source.get(key))
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError as exc:
        raise ValueError(f"invalid_setting:{key}:{raw}") from exc
