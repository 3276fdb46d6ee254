from __future__ import annotations

import pytest

from channelchat.domain.models import Channel, PermissionRule, User
from channelchat.services.permissions import (
    PermissionRuleInvalidError,
    can_use_channel,
    evaluate_access,
    model_overrides,
    validate_rule_shape,
)


def _user(active: bool = True) -> User:
    return User(id="u1", email="u1@example.com", role="user", is_active=active)


def _rule(rule_id: str, effect: str, *, channel_id: str | None = None, model_id: str | None = None) -> PermissionRule:
    return PermissionRule(
        id=rule_id,
        user_id="u1",
        channel_id=channel_id,
        model_id=model_id,
        permission_type=effect,
    )


def test_validate_rule_shape_requires_exactly_one_target() -> None:
    validate_rule_shape(channel_id="general", model_id=None, permission_type="allow")
    validate_rule_shape(channel_id=None, model_id="gpt-4o", permission_type="deny")
    with pytest.raises(PermissionRuleInvalidError):
        validate_rule_shape(channel_id="general", model_id="gpt-4o", permission_type="allow")
    with pytest.raises(PermissionRuleInvalidError):
        validate_rule_shape(channel_id=None, model_id=None, permission_type="allow")


def test_validate_rule_shape_rejects_unknown_effect() -> None:
    with pytest.raises(PermissionRuleInvalidError) as excinfo:
        validate_rule_shape(channel_id="general", model_id=None, permission_type="maybe")
    assert "maybe" in excinfo.value.message


def test_deny_beats_allow_on_same_resource() -> None:
    rules = [
        _rule("r-allow", "allow", model_id="gpt-4o"),
        _rule("r-deny", "deny", model_id="gpt-4o"),
    ]
    decision = evaluate_access(_user(), resource_type="model", resource_id="gpt-4o", rules=rules, default=True)
    assert decision.allowed is False
    assert decision.reason == "deny_rule"
    assert decision.matched_rule_ids == ("r-deny",)


def test_inactive_user_is_denied_before_rules() -> None:
    rules = [_rule("r-allow", "allow", channel_id="general")]
    decision = evaluate_access(
        _user(active=False),
        resource_type="channel",
        resource_id="general",
        rules=rules,
        default=True,
    )
    assert decision.allowed is False
    assert decision.reason == "user_inactive"


def test_rules_for_other_resources_fall_through_to_default() -> None:
    rules = [_rule("r-deny", "deny", channel_id="coding")]
    decision = evaluate_access(_user(), resource_type="channel", resource_id="general", rules=rules, default=True)
    assert decision.allowed is True
    assert decision.reason == "default_allow"


def test_can_use_channel_checks_existence_and_activity() -> None:
    assert can_use_channel(_user(), None, []).reason == "channel_missing"
    inactive = Channel(id="general", name="General", is_active=False)
    assert can_use_channel(_user(), inactive, []).reason == "channel_inactive"
    active = Channel(id="general", name="General", is_active=True)
    assert can_use_channel(_user(), active, []).allowed is True
    denied = can_use_channel(_user(), active, [_rule("r1", "deny", channel_id="general")])
    assert denied.allowed is False


def test_model_overrides_drop_allows_that_are_also_denied() -> None:
    rules = [
        _rule("a1", "allow", model_id="gpt-4o"),
        _rule("a2", "allow", model_id="claude-3-5-sonnet"),
        _rule("d1", "deny", model_id="gpt-4o"),
        _rule("c1", "deny", channel_id="general"),
    ]
    granted, denied = model_overrides(rules, "u1")
    assert granted == {"claude-3-5-sonnet"}
    assert denied == {"gpt-4o"}
    assert model_overrides(rules, "someone-else") == (set(), set())
