from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tai_bot.access.permissions import (
    ADMIN_TOOLS,
    BASIC_CHAT,
    TRACKER_CREATE,
    TRACKER_READ,
    AccessClassifier,
    AccessPolicy,
    AccessTier,
    TierPolicy,
    default_access_policy,
    load_access_policy,
)


def _classifier() -> AccessClassifier:
    policy = default_access_policy().model_copy(
        update={"group_tiers": {"staff": AccessTier.ADMIN, "supporters": AccessTier.PREMIUM}}
    )
    return AccessClassifier(policy)


def test_classify_defaults_to_free_with_basic_chat_only() -> None:
    tier, features = _classifier().classify(["random", "visitors"])

    assert tier == AccessTier.FREE
    assert features == frozenset({BASIC_CHAT})


def test_classify_picks_most_privileged_tier() -> None:
    classifier = _classifier()

    tier, features = classifier.classify(["supporters", "staff"])

    assert tier == AccessTier.ADMIN
    assert ADMIN_TOOLS in features
    assert classifier.is_admin(["staff"])
    assert not classifier.is_admin(["supporters"])


def test_classify_is_deterministic_and_idempotent() -> None:
    classifier = _classifier()
    groups = frozenset({"supporters", "misc"})

    first = classifier.classify(groups)
    second = classifier.classify(list(reversed(sorted(groups))))

    assert first == second == (AccessTier.PREMIUM, first[1])
    assert classifier.available_features(groups) == sorted(first[1])


def test_check_feature_denial_names_the_feature() -> None:
    classifier = _classifier()
    tier, features = classifier.classify([])

    decision = classifier.check_feature(tier, TRACKER_CREATE, features)

    assert not decision.allowed
    assert decision.tier == AccessTier.FREE
    assert decision.reason == (
        "You don't have permission for tracker issue creation. "
        "Contact an admin to upgrade your access."
    )
    assert classifier.check_feature(AccessTier.PREMIUM, TRACKER_READ).allowed


def test_load_access_policy_reads_yaml(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.yaml"
    policy_file.write_text(
        """
tiers:
  admin:
    features: [basic_chat, tracker_read, tracker_create, tracker_write, admin_tools]
    burst_capacity: 50
    requests_per_minute: 500
  premium:
    features: [basic_chat, tracker_read]
    burst_capacity: 8
    requests_per_minute: 30
  free:
    features: [basic_chat]
    burst_capacity: 2
    requests_per_minute: 6
group_tiers:
  core-team: admin
""",
        encoding="utf-8",
    )

    policy = load_access_policy(policy_file, env={})

    assert policy.group_tiers == {"core-team": AccessTier.ADMIN}
    assert policy.tier_policy(AccessTier.PREMIUM).burst_capacity == 8
    assert policy.tier_policy(AccessTier.FREE).refill_per_second == pytest.approx(0.1)


def test_env_group_lists_override_policy_file() -> None:
    policy = load_access_policy(
        env={"TAI_BOT_ADMIN_GROUPS": " ops , leads", "TAI_BOT_PREMIUM_GROUPS": "backers,"}
    )
    classifier = AccessClassifier(policy)

    assert classifier.classify(["leads"])[0] == AccessTier.ADMIN
    assert classifier.classify(["backers"])[0] == AccessTier.PREMIUM
    assert "" not in policy.group_tiers


def test_policy_rejects_unknown_keys_and_non_positive_limits() -> None:
    with pytest.raises(ValidationError):
        AccessPolicy.model_validate({"tiers": {}, "surprise": True})
    with pytest.raises(ValidationError):
        TierPolicy(features=[BASIC_CHAT], burst_capacity=0, requests_per_minute=10)


def test_policy_missing_a_tier_is_rejected_at_load_time(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.yaml"
    policy_file.write_text(
        """
tiers:
  premium:
    features: [basic_chat, tracker_read]
    burst_capacity: 8
    requests_per_minute: 30
""",
        encoding="utf-8",
    )

    with pytest.raises(ValidationError, match="tiers missing from policy: free, admin"):
        load_access_policy(policy_file, env={})
