from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from channelchat.domain.models import Channel, PermissionRule, User


EFFECT_ALLOW = "allow"
EFFECT_DENY = "deny"

RESOURCE_CHANNEL = "channel"
RESOURCE_MODEL = "model"


class PermissionRuleInvalidError(ValueError):
    # Surface malformed rules with stable error handling.
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str
    matched_rule_ids: tuple[str, ...] = ()


def validate_rule_shape(*, channel_id: str | None, model_id: str | None, permission_type: str) -> None:
    # A rule targets exactly one dimension: a channel or a model.
    if permission_type not in {EFFECT_ALLOW, EFFECT_DENY}:
        raise PermissionRuleInvalidError(f"Unsupported permission_type: {permission_type}")
    if bool(channel_id) == bool(model_id):
        raise PermissionRuleInvalidError("Permission rule must target exactly one of channel_id or model_id")


def rule_target(rule: PermissionRule) -> tuple[str, str]:
    if rule.channel_id:
        return RESOURCE_CHANNEL, rule.channel_id
    return RESOURCE_MODEL, rule.model_id or ""


def matching_rules(
    rules: Iterable[PermissionRule],
    *,
    user_id: str,
    resource_type: str,
    resource_id: str,
) -> list[PermissionRule]:
    return [
        rule
        for rule in rules
        if rule.user_id == user_id and rule_target(rule) == (resource_type, resource_id)
    ]


def evaluate_access(
    user: User,
    *,
    resource_type: str,
    resource_id: str,
    rules: Iterable[PermissionRule],
    default: bool,
) -> AccessDecision:
    """Answer whether ``user`` may use one resource, deny rules first.

    Precedence: inactive user, then any matching deny, then any matching
    allow, then ``default``. Allow and deny on the same resource resolve
    to deny.
    """
    if not user.is_active:
        return AccessDecision(False, "user_inactive")
    matched = matching_rules(rules, user_id=user.id, resource_type=resource_type, resource_id=resource_id)
    denies = tuple(rule.id for rule in matched if rule.permission_type == EFFECT_DENY)
    if denies:
        return AccessDecision(False, "deny_rule", denies)
    allows = tuple(rule.id for rule in matched if rule.permission_type == EFFECT_ALLOW)
    if allows:
        return AccessDecision(True, "allow_rule", allows)
    return AccessDecision(default, "default_allow" if default else "default_deny")


def can_use_channel(user: User, channel: Channel | None, rules: Iterable[PermissionRule]) -> AccessDecision:
    if channel is None:
        return AccessDecision(False, "channel_missing")
    if not channel.is_active:
        return AccessDecision(False, "channel_inactive")
    return evaluate_access(
        user,
        resource_type=RESOURCE_CHANNEL,
        resource_id=channel.id,
        rules=rules,
        default=True,
    )


def model_overrides(rules: Iterable[PermissionRule], user_id: str) -> tuple[set[str], set[str]]:
    # Collapse model-scoped rules into (granted, denied) id sets.
    granted: set[str] = set()
    denied: set[str] = set()
    for rule in rules:
        if rule.user_id != user_id or not rule.model_id:
            continue
        if rule.permission_type == EFFECT_DENY:
            denied.add(rule.model_id)
        elif rule.permission_type == EFFECT_ALLOW:
            granted.add(rule.model_id)
    return granted - denied, denied
