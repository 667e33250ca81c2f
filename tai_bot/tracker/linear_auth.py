"""Tracker and model-provider credentials: env loading, key shape checks, redaction."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

LINEAR_PERSONAL_KEY_PREFIX = "lin_api_"
LINEAR_OAUTH_TOKEN_PREFIX = "lin_oauth_"
ANTHROPIC_KEY_PREFIX = "sk-ant-"

_KNOWN_PREFIXES = (LINEAR_PERSONAL_KEY_PREFIX, LINEAR_OAUTH_TOKEN_PREFIX, ANTHROPIC_KEY_PREFIX)


@dataclass(frozen=True)
class ServiceAuth:
    tracker_api_key: str | None
    model_api_key: str | None

    def tracker_authorization(self) -> str | None:
        """Header value for Linear: personal keys go raw, OAuth tokens as bearer."""

        key = self.tracker_api_key
        if key is None:
            return None
        if key.startswith(LINEAR_PERSONAL_KEY_PREFIX) or key.lower().startswith("bearer "):
            return key
        return f"Bearer {key}"

    def key_problems(self) -> list[str]:
        problems: list[str] = []
        if self.tracker_api_key and not self.tracker_api_key.startswith(
            (LINEAR_PERSONAL_KEY_PREFIX, LINEAR_OAUTH_TOKEN_PREFIX)
        ):
            problems.append(
                "tracker key is neither a Linear personal key (lin_api_) "
                "nor an OAuth token (lin_oauth_); sending it as a bearer token"
            )
        if self.model_api_key and not self.model_api_key.startswith(ANTHROPIC_KEY_PREFIX):
            problems.append("model key does not look like an Anthropic key (sk-ant-)")
        return problems

    def redacted(self) -> dict[str, str]:
        return {
            "tracker_api_key": _mask(self.tracker_api_key),
            "model_api_key": _mask(self.model_api_key),
        }


def load_service_auth_from_env(env: Mapping[str, str] | None = None) -> ServiceAuth:
    env_map = os.environ if env is None else env

    def first(*names: str) -> str | None:
        for name in names:
            value = (env_map.get(name) or "").strip()
            if value:
                return value
        return None

    return ServiceAuth(
        tracker_api_key=first("TAI_BOT_LINEAR_API_KEY", "LINEAR_API_KEY"),
        model_api_key=first("TAI_BOT_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )


def _mask(key: str | None) -> str:
    """Keep the key-type prefix and the last four characters."""

    if key is None:
        return "unset"
    prefix = next((p for p in _KNOWN_PREFIXES if key.startswith(p)), "")
    if len(key) - len(prefix) <= 8:
        return f"{prefix}***"
    return f"{prefix}...{key[-4:]}"
