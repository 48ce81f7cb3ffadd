"""Resolution of the role-sets a guild offers on its verification prompts."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Final

import discord

from .buttons import ButtonAction
from .settings import GuildConfig, RoleSet

MAX_LABEL_LENGTH: Final[int] = 80

RoleLookup = Callable[[int], "discord.Role | None"]


def clamp_label(label: str) -> str:
    label = label.strip() or "✅ Verify"
    if len(label) <= MAX_LABEL_LENGTH:
        return label
    return label[: MAX_LABEL_LENGTH - 1] + "…"


def default_label(role: discord.Role) -> str:
    return clamp_label(f"✅ Verify: {role.name}")


def _legacy_entry(role_id: int, fallback: str, role_lookup: RoleLookup) -> RoleSet:
    role = role_lookup(role_id)
    label = default_label(role) if role is not None else f"✅ Verify: {fallback}"
    return RoleSet(role_ids=(role_id,), label=label)


def resolve_role_sets(config: GuildConfig, role_lookup: RoleLookup) -> list[RoleSet]:
    """Return the role-sets offered by ``config``, in button order.

    Configured role-sets win outright; otherwise Role A and Role B are
    offered as single-role buttons, A first. Roles are not checked for
    existence here; that happens when a button is clicked.
    """
    if config.verify_roles:
        return list(config.verify_roles)

    entries: list[RoleSet] = []
    if config.role_a_id:
        entries.append(_legacy_entry(config.role_a_id, "Role A", role_lookup))
    if config.role_b_id:
        entries.append(_legacy_entry(config.role_b_id, "Role B", role_lookup))
    return entries


def legacy_role_set(
    config: GuildConfig, action: ButtonAction, role_lookup: RoleLookup
) -> RoleSet | None:
    """Role-set behind an ``assignA``/``assignB`` button from an older prompt."""
    if action is ButtonAction.ASSIGN_A and config.role_a_id:
        return _legacy_entry(config.role_a_id, "Role A", role_lookup)
    if action is ButtonAction.ASSIGN_B and config.role_b_id:
        return _legacy_entry(config.role_b_id, "Role B", role_lookup)
    return None


def role_assignment_issues(
    bot_member: discord.Member, roles: Sequence[discord.Role]
) -> list[str]:
    """List every reason the bot cannot grant ``roles``; empty when it can."""
    issues: list[str] = []
    if not bot_member.guild_permissions.manage_roles:
        issues.append("• Bot is missing the **Manage Roles** permission.")

    top_position = bot_member.top_role.position
    for role in roles:
        if role.managed:
            issues.append(
                f"• <@&{role.id}> is a **managed role** (integration / booster) "
                "and cannot be assigned by bots."
            )
        if role.position >= top_position:
            issues.append(
                f"• <@&{role.id}> is **above or equal to the bot's highest role**. "
                "Move the bot role above it in Server Settings → Roles."
            )
    return issues


def bot_top_role_line(bot_member: discord.Member) -> str:
    top_role = bot_member.top_role
    return f"Bot highest role: <@&{top_role.id}> (position {top_role.position})"
