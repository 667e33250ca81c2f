"""Caller classification into access tiers and feature allow-lists."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class AccessTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {AccessTier.FREE: 0, AccessTier.PREMIUM: 1, AccessTier.ADMIN: 2}
TIERS_BY_PRIVILEGE = sorted(AccessTier, key=lambda tier: tier.rank, reverse=True)

BASIC_CHAT = "basic_chat"
TRACKER_READ = "tracker_read"
TRACKER_CREATE = "tracker_create"
TRACKER_WRITE = "tracker_write"
ADMIN_TOOLS = "admin_tools"

FEATURE_DESCRIPTIONS = {
    BASIC_CHAT: "basic chat access",
    TRACKER_READ: "tracker read access",
    TRACKER_CREATE: "tracker issue creation",
    TRACKER_WRITE: "tracker issue updates",
    ADMIN_TOOLS: "admin tools",
}


@dataclass(frozen=True)
class CallerIdentity:
    caller_id: str
    display_name: str
    groups: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    tier: AccessTier
    reason: str = ""


class TierPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    features: list[str] = Field(default_factory=list)
    burst_capacity: float = Field(gt=0)
    requests_per_minute: float = Field(gt=0)

    @property
    def refill_per_second(self) -> float:
        return self.requests_per_minute / 60.0


class AccessPolicy(BaseModel):
    """Group-to-tier mapping plus per-tier features and rate limits."""

    model_config = ConfigDict(extra="forbid")

    tiers: dict[AccessTier, TierPolicy]
    group_tiers: dict[str, AccessTier] = Field(default_factory=dict)
    default_features: list[str] = Field(default_factory=lambda: [BASIC_CHAT])

    @model_validator(mode="after")
    def check_every_tier_configured(self) -> AccessPolicy:
        missing = [tier.value for tier in AccessTier if tier not in self.tiers]
        if missing:
            raise ValueError(f"tiers missing from policy: {', '.join(missing)}")
        return self

    def tier_policy(self, tier: AccessTier) -> TierPolicy:
        policy = self.tiers.get(tier)
        if policy is None:
            raise ValueError(f"unconfigured_tier:{tier.value}")
        return policy


def default_access_policy() -> AccessPolicy:
    return AccessPolicy(
        tiers={
            AccessTier.ADMIN: TierPolicy(
                features=[BASIC_CHAT, TRACKER_READ, TRACKER_CREATE, TRACKER_WRITE, ADMIN_TOOLS],
                burst_capacity=100,
                requests_per_minute=1000,
            ),
            AccessTier.PREMIUM: TierPolicy(
                features=[BASIC_CHAT, TRACKER_READ, TRACKER_CREATE, TRACKER_WRITE],
                burst_capacity=10,
                requests_per_minute=60,
            ),
            AccessTier.FREE: TierPolicy(
                features=[BASIC_CHAT],
                burst_capacity=5,
                requests_per_minute=10,
            ),
        },
    )


def load_access_policy(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> AccessPolicy:
    """Load the policy YAML (or defaults) and apply group overrides from env."""

    source = os.environ if env is None else env
    if path is not None:
        raw = yaml.safe_load(path.read_text()) or {}
        policy = AccessPolicy.model_validate(raw)
    else:
        policy = default_access_policy()

    group_tiers = dict(policy.group_tiers)
    for tier in AccessTier:
        value = source.get(f"TAI_BOT_{tier.value.upper()}_GROUPS", "")
        for group in value.split(","):
            if group.strip():
                group_tiers[group.strip()] = tier
    return policy.model_copy(update={"group_tiers": group_tiers})


class AccessClassifier:
    def __init__(self, policy: AccessPolicy | None = None) -> None:
        self.policy = policy or default_access_policy()

    def classify(self, groups: Iterable[str]) -> tuple[AccessTier, frozenset[str]]:
        held = set(groups)
        for tier in TIERS_BY_PRIVILEGE:
            if any(self.policy.group_tiers.get(group) == tier for group in held):
                return tier, frozenset(self.policy.tier_policy(tier).features)
        return AccessTier.FREE, frozenset(self.policy.default_features)

    def check_feature(
        self, tier: AccessTier, feature: str, features: frozenset[str] | None = None
    ) -> PermissionDecision:
        allowed = features if features is not None else self.policy.tier_policy(tier).features
        if feature in allowed:
            return PermissionDecision(allowed=True, tier=tier)
        description = FEATURE_DESCRIPTIONS.get(feature, feature)
        return PermissionDecision(
            allowed=False,
            tier=tier,
            reason=(
                f"You don't have permission for {description}. "
                "Contact an admin to upgrade your access."
            ),
        )

    def is_admin(self, groups: Iterable[str]) -> bool:
        return self.classify(groups)[0] == AccessTier.ADMIN

    def available_features(self, groups: Iterable[str]) -> list[str]:
        return sorted(self.classify(groups)[1])
