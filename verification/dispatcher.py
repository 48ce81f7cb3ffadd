"""Handles clicks on the help, assign and deny buttons."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Awaitable, Sequence
from typing import Final

import discord

from .buttons import ButtonAction, ButtonDecodeError, ButtonToken, decode, is_verification_custom_id
from .logging_utils import best_effort, fetch_member, resolve_text_channel
from .role_sets import (
    bot_top_role_line,
    legacy_role_set,
    resolve_role_sets,
    role_assignment_issues,
)
from .settings import GuildConfig, RoleSet, SettingsStore

log: Final = logging.getLogger("verify-bot")

NOT_ALLOWED: Final[str] = "You are not allowed to do that."
ALREADY_HANDLED: Final[str] = "This submission has already been handled."
HELP_ACK: Final[str] = "✅ A moderator has been notified — someone will assist you shortly!"
STALE_BUTTON: Final[str] = "This verification button is not configured with any roles."
MEMBER_GONE: Final[str] = "User is no longer in the server."
ROLES_GONE: Final[str] = (
    "None of the configured roles for this button exist on this server anymore."
)
INVALID_BUTTON: Final[str] = "This button is no longer valid."


class ResolutionGuard:
    """Single-flight guard keyed by the id of the submitted message.

    A submission is claimed while a moderator's click is being processed and
    stays resolved afterwards, so racing clicks on the same prompt cannot
    run the mutation twice.
    """

    def __init__(self, max_resolved: int = 2048) -> None:
        self._in_flight: set[int] = set()
        self._resolved: OrderedDict[int, None] = OrderedDict()
        self._max_resolved = max_resolved

    def claim(self, message_id: int) -> bool:
        if message_id in self._in_flight or message_id in self._resolved:
            return False
        self._in_flight.add(message_id)
        return True

    def release(self, message_id: int, *, resolved: bool) -> None:
        self._in_flight.discard(message_id)
        if resolved:
            self._resolved[message_id] = None
            while len(self._resolved) > self._max_resolved:
                self._resolved.popitem(last=False)


async def reply_ephemeral(interaction: discord.Interaction, content: str) -> None:
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=True)
    else:
        await interaction.response.send_message(content, ephemeral=True)


def is_moderator(member: discord.Member, config: GuildConfig) -> bool:
    if not config.mod_role_id:
        return True
    if any(role.id == config.mod_role_id for role in member.roles):
        return True
    return bool(member.guild_permissions.manage_roles)


class VerificationDispatcher:
    def __init__(
        self,
        client: discord.Client,
        store: SettingsStore,
        *,
        shadow=None,
        guard: ResolutionGuard | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._shadow = shadow
        self._guard = guard or ResolutionGuard()

    @property
    def shadow_enabled(self) -> bool:
        return bool(self._shadow is not None and self._shadow.enabled)

    async def handle_button(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        if not is_verification_custom_id(custom_id):
            return

        guild = interaction.guild
        if guild is None:
            return
        config = self._store.get(guild.id)
        if config is None:
            return

        try:
            token = decode(custom_id)
        except ButtonDecodeError as exc:
            log.warning("Rejected button %r in guild %s: %s", custom_id, guild.id, exc)
            await reply_ephemeral(interaction, INVALID_BUTTON)
            return

        if token.action is ButtonAction.HELP:
            await self._handle_help(interaction, guild, config, token)
            return

        if not await self._is_authorized(interaction, guild, config):
            log.info(
                "Blocked %s from %s on a verification prompt in guild %s",
                interaction.user.id,
                token.action.value,
                guild.id,
            )
            await reply_ephemeral(interaction, NOT_ALLOWED)
            return

        if not self._guard.claim(token.message_id):
            await reply_ephemeral(interaction, ALREADY_HANDLED)
            return

        resolved = False
        try:
            if token.action.assigns_roles:
                resolved = await self._handle_assign(interaction, guild, config, token)
            else:
                resolved = await self._handle_deny(interaction, guild, config, token)
        finally:
            self._guard.release(token.message_id, resolved=resolved)

    async def _is_authorized(
        self, interaction: discord.Interaction, guild: discord.Guild, config: GuildConfig
    ) -> bool:
        if not config.mod_role_id:
            return True
        clicker = interaction.user
        if not isinstance(clicker, discord.Member):
            clicker = await fetch_member(guild, interaction.user.id)
        return clicker is not None and is_moderator(clicker, config)

    # ----- help -----
    async def _handle_help(
        self,
        interaction: discord.Interaction,
        guild: discord.Guild,
        config: GuildConfig,
        token: ButtonToken,
    ) -> None:
        staff_channel = await resolve_text_channel(
            self._client, guild, config.staff_channel_id
        )
        if staff_channel is not None:
            content = f"**User <@{token.user_id}> needs help with verification.**"
            if config.mod_role_id:
                content = f"<@&{config.mod_role_id}> {content}"
            await self._mutate(
                guild,
                f"help ping for {token.user_id} in {staff_channel.id}",
                staff_channel.send(
                    content=content,
                    allowed_mentions=discord.AllowedMentions(
                        everyone=False,
                        roles=(
                            [discord.Object(id=config.mod_role_id)]
                            if config.mod_role_id
                            else False
                        ),
                        users=[discord.Object(id=token.user_id)],
                    ),
                ),
            )
            log.info("Help requested by %s in guild %s", token.user_id, guild.id)
        else:
            log.warning("Help requested in guild %s but no staff channel is usable", guild.id)

        await reply_ephemeral(interaction, HELP_ACK)

    # ----- assign -----
    def _target_role_set(
        self, guild: discord.Guild, config: GuildConfig, token: ButtonToken
    ) -> RoleSet | None:
        if token.action is ButtonAction.ASSIGN_SET:
            role_sets = resolve_role_sets(config, guild.get_role)
            index = token.role_set_index
            if index is None or index >= len(role_sets):
                return None
            return role_sets[index]
        return legacy_role_set(config, token.action, guild.get_role)

    async def _handle_assign(
        self,
        interaction: discord.Interaction,
        guild: discord.Guild,
        config: GuildConfig,
        token: ButtonToken,
    ) -> bool:
        role_set = self._target_role_set(guild, config, token)
        if role_set is None:
            await reply_ephemeral(interaction, STALE_BUTTON)
            return False

        target = await fetch_member(guild, token.user_id)
        if target is None:
            await reply_ephemeral(interaction, MEMBER_GONE)
            return False

        roles = [
            role for role in (guild.get_role(role_id) for role_id in role_set.role_ids) if role
        ]
        if not roles:
            await reply_ephemeral(interaction, ROLES_GONE)
            return False

        me = guild.me
        issues = role_assignment_issues(me, roles)
        if issues:
            log.warning(
                "Cannot assign roles %s in guild %s: %d issue(s)",
                [role.id for role in roles],
                guild.id,
                len(issues),
            )
            await reply_ephemeral(
                interaction,
                "⚠️ I tried to assign those roles but ran into problems:\n"
                + "\n".join(issues)
                + f"\n\n{bot_top_role_line(me)}",
            )
            return False

        moderator = interaction.user
        try:
            await self._mutate(
                guild,
                f"assign {[role.id for role in roles]} to {target.id}",
                target.add_roles(*roles, reason=f"Verified by {moderator}"),
            )
        except discord.Forbidden:
            log.warning("Forbidden when adding roles to %s", target)
            await reply_ephemeral(
                interaction,
                "🚫 Bot lacks **Manage Roles** permission or the role hierarchy is incorrect.",
            )
            return False
        except discord.HTTPException as exc:
            log.exception("HTTPException adding roles to %s: %s", target, exc)
            await reply_ephemeral(interaction, "Unexpected Discord error – try again later.")
            return False

        await self._remove_not_verified(guild, config, target, moderator)

        mentions = ", ".join(f"<@&{role.id}>" for role in roles)
        await self._close_prompt(
            interaction,
            f"✅ Assigned {mentions} to <@{token.user_id}> (by <@{moderator.id}>)",
        )
        log.info(
            "Assigned roles %s to %s in guild %s (by %s)",
            [role.id for role in roles],
            target.id,
            guild.id,
            moderator.id,
        )

        names = ", ".join(f"**{role.name}**" for role in roles)
        await best_effort(
            f"verification DM to {target.id}",
            self._mutate(
                guild,
                f"DM {target.id}",
                target.send(
                    f"You’ve been verified in **{guild.name}** and given the roles "
                    f"{names}. Welcome!"
                ),
            ),
        )
        return True

    async def _remove_not_verified(
        self,
        guild: discord.Guild,
        config: GuildConfig,
        target: discord.Member,
        moderator: discord.abc.User,
    ) -> None:
        if not config.not_verified_role_id:
            return
        role = guild.get_role(config.not_verified_role_id)
        if role is None or role not in target.roles:
            return
        await best_effort(
            f"remove not-verified role from {target.id}",
            self._mutate(
                guild,
                f"remove {role.id} from {target.id}",
                target.remove_roles(
                    role, reason=f"Auto-removed on verification by {moderator}"
                ),
            ),
        )

    # ----- deny -----
    async def _handle_deny(
        self,
        interaction: discord.Interaction,
        guild: discord.Guild,
        config: GuildConfig,
        token: ButtonToken,
    ) -> bool:
        target = await fetch_member(guild, token.user_id)
        if target is None:
            await reply_ephemeral(interaction, MEMBER_GONE)
            return False

        await best_effort(
            f"delete submission {token.message_id}",
            self._delete_submission(guild, config, token.message_id),
        )

        moderator = interaction.user
        await self._close_prompt(
            interaction, f"❌ Denied <@{token.user_id}> (by <@{moderator.id}>)"
        )
        log.info(
            "Denied verification of %s in guild %s (by %s)",
            target.id,
            guild.id,
            moderator.id,
        )

        await best_effort(
            f"denial DM to {target.id}",
            self._mutate(
                guild,
                f"DM {target.id}",
                target.send(
                    f"Your verification in **{guild.name}** was not approved. "
                    "Please review the instructions and try again."
                ),
            ),
        )
        return True

    async def _delete_submission(
        self, guild: discord.Guild, config: GuildConfig, message_id: int
    ) -> None:
        channel = await resolve_text_channel(
            self._client, guild, config.verification_channel_id
        )
        if channel is None:
            return
        original = await channel.fetch_message(message_id)
        await self._mutate(guild, f"delete submission {message_id}", original.delete())

    # ----- shared -----
    async def _mutate(
        self, guild: discord.Guild, description: str, action: Awaitable[object]
    ):
        if self.shadow_enabled:
            return await self._shadow.noop_or_run(description, action, guild=guild)
        return await action

    async def _close_prompt(self, interaction: discord.Interaction, content: str) -> None:
        if self.shadow_enabled:
            content = f"🕶️ [shadow] {content}"
        embeds: Sequence[discord.Embed] = (
            interaction.message.embeds if interaction.message is not None else []
        )
        try:
            await interaction.response.edit_message(
                content=content, embeds=list(embeds[:1]), view=None
            )
        except discord.NotFound:
            log.warning("Verification prompt vanished before it could be updated")
        except discord.HTTPException as exc:
            log.warning("Failed to update verification prompt: %s", exc)
            await reply_ephemeral(interaction, content)
