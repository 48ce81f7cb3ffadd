"""The ``/setup`` command group used by server managers to configure the bot."""

from __future__ import annotations

import logging

import discord
from discord import app_commands

from verification.role_sets import (
    bot_top_role_line,
    clamp_label,
    default_label,
    role_assignment_issues,
)
from verification.settings import (
    DuplicateRoleSetError,
    RoleSet,
    RoleSetLimitError,
    SettingsStore,
)

log = logging.getLogger("verify-bot")

NOT_IN_GUILD = "This command can only be used in a server."
NEEDS_MANAGE_GUILD = "You need the **Manage Server** permission to run setup commands."
NONE_SET = "*(none set)*"


def _role_line(label: str, new_role: discord.Role | None, current_id: int | None) -> str:
    if new_role is not None:
        value = f"<@&{new_role.id}>"
    elif current_id:
        value = f"<@&{current_id}>"
    else:
        value = NONE_SET
    return f"• {label}: {value}"


class SetupCommands(app_commands.Group):
    def __init__(self, store: SettingsStore) -> None:
        super().__init__(
            name="setup",
            description="Configure verification bot for this server",
            guild_only=True,
            default_permissions=discord.Permissions(manage_guild=True),
        )
        self.store = store

    async def _reply(self, interaction: discord.Interaction, content: str) -> None:
        await interaction.response.send_message(content, ephemeral=True)

    async def _ensure_manager(self, interaction: discord.Interaction) -> bool:
        if interaction.guild is None or interaction.guild_id is None:
            await self._reply(interaction, NOT_IN_GUILD)
            return False
        permissions = getattr(interaction.user, "guild_permissions", None)
        if permissions is None or not permissions.manage_guild:
            await self._reply(interaction, NEEDS_MANAGE_GUILD)
            return False
        log.info(
            "/setup %s used in guild %s by %s",
            interaction.command.name if interaction.command else "?",
            interaction.guild_id,
            interaction.user.id,
        )
        return True

    @app_commands.command(name="verification", description="Set the verification channel")
    @app_commands.describe(
        channel="Channel where users post verification screenshots and see the welcome message"
    )
    async def verification(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        if not await self._ensure_manager(interaction):
            return
        self.store.update(interaction.guild_id, verification_channel_id=channel.id)
        await self._reply(interaction, f"✅ Verification channel set to <#{channel.id}>.")

    @app_commands.command(name="staff", description="Set the staff review channel")
    @app_commands.describe(channel="Channel where staff receive verification submissions")
    async def staff(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        if not await self._ensure_manager(interaction):
            return
        self.store.update(interaction.guild_id, staff_channel_id=channel.id)
        await self._reply(interaction, f"✅ Staff review channel set to <#{channel.id}>.")

    @app_commands.command(
        name="roles", description="Set legacy Role A / Role B / Not Verified role"
    )
    @app_commands.describe(
        role_a='Role for "Existing Server Member"',
        role_b='Role for "Migrant"',
        not_verified_role='Role for "Not Yet Verified" (removed on verify)',
    )
    async def roles(
        self,
        interaction: discord.Interaction,
        role_a: discord.Role | None = None,
        role_b: discord.Role | None = None,
        not_verified_role: discord.Role | None = None,
    ) -> None:
        if not await self._ensure_manager(interaction):
            return
        current = self.store.get(interaction.guild_id)
        current_a = current.role_a_id if current else None
        current_b = current.role_b_id if current else None
        current_nv = current.not_verified_role_id if current else None

        self.store.update(
            interaction.guild_id,
            role_a_id=role_a.id if role_a else current_a,
            role_b_id=role_b.id if role_b else current_b,
            not_verified_role_id=not_verified_role.id if not_verified_role else current_nv,
        )

        lines = [
            "✅ Roles updated:",
            _role_line("Role A (Existing Server Member)", role_a, current_a),
            _role_line("Role B (Migrant)", role_b, current_b),
            _role_line("Not Yet Verified", not_verified_role, current_nv),
        ]
        await self._reply(interaction, "\n".join(lines))

    @app_commands.command(
        name="modrole", description="Set the moderator role allowed to verify"
    )
    @app_commands.describe(role="Moderator / Migration Coordinator role")
    async def modrole(self, interaction: discord.Interaction, role: discord.Role) -> None:
        if not await self._ensure_manager(interaction):
            return
        self.store.update(interaction.guild_id, mod_role_id=role.id)
        await self._reply(
            interaction,
            f"✅ Moderator / Migration Coordinator role set to <@&{role.id}>.",
        )

    @app_commands.command(
        name="welcome", description="Set the welcome message for new members"
    )
    @app_commands.describe(
        description="Message text (supports {user} and {verification_channel})",
        title="Embed title (only used in embed mode)",
        mode="How to send the welcome message",
    )
    @app_commands.choices(
        mode=[
            app_commands.Choice(name="Embed", value="embed"),
            app_commands.Choice(name="Normal message", value="text"),
        ]
    )
    async def welcome(
        self,
        interaction: discord.Interaction,
        description: str,
        title: str | None = None,
        mode: app_commands.Choice[str] | None = None,
    ) -> None:
        if not await self._ensure_manager(interaction):
            return
        current = self.store.get(interaction.guild_id)
        chosen_mode = (
            mode.value if mode else (current.welcome_mode if current else None)
        ) or "embed"

        self.store.update(
            interaction.guild_id,
            welcome_title=title or None,
            welcome_description=description,
            welcome_mode=chosen_mode,
        )
        await self._reply(
            interaction,
            "✅ Welcome message updated.\n"
            "You can use these placeholders in the description:\n"
            "• `{user}` → mentions the new member\n"
            "• `{verification_channel}` → mentions the configured verification channel\n\n"
            f"Current mode: `{chosen_mode}`",
        )

    @app_commands.command(
        name="verifyrole_add",
        description="Add a verification role button (can assign multiple roles)",
    )
    @app_commands.describe(
        role_1="First role to assign (required)",
        role_2="Second role to assign (optional)",
        role_3="Third role to assign (optional)",
        label='Button label (e.g. "✅ Verify: Migrant + Extra")',
    )
    async def verifyrole_add(
        self,
        interaction: discord.Interaction,
        role_1: discord.Role,
        role_2: discord.Role | None = None,
        role_3: discord.Role | None = None,
        label: str | None = None,
    ) -> None:
        if not await self._ensure_manager(interaction):
            return

        roles: list[discord.Role] = []
        for role in (role_1, role_2, role_3):
            if role is not None and all(role.id != seen.id for seen in roles):
                roles.append(role)

        me = interaction.guild.me
        issues = role_assignment_issues(me, roles)
        if issues:
            await self._reply(
                interaction,
                "⚠️ I can't reliably assign one or more of those roles yet:\n"
                + "\n".join(issues)
                + "\n\nPlease fix these, then run `/setup verifyrole_add` again.",
            )
            return

        entry = RoleSet(
            role_ids=tuple(role.id for role in roles),
            label=clamp_label(label) if label else default_label(role_1),
        )
        try:
            self.store.add_role_set(interaction.guild_id, entry)
        except (DuplicateRoleSetError, RoleSetLimitError) as exc:
            await self._reply(interaction, str(exc))
            return

        mentions = ", ".join(f"<@&{role_id}>" for role_id in entry.role_ids)
        await self._reply(
            interaction,
            "✅ Added verification role button:\n"
            f"• Roles: {mentions}\n"
            f"• Label: `{entry.label}`\n\n"
            f"{bot_top_role_line(me)}",
        )

    @app_commands.command(
        name="verifyrole_clear", description="Clear all verification role buttons"
    )
    async def verifyrole_clear(self, interaction: discord.Interaction) -> None:
        if not await self._ensure_manager(interaction):
            return
        self.store.clear_role_sets(interaction.guild_id)
        await self._reply(interaction, "✅ Cleared all verification role buttons.")

    @app_commands.command(
        name="verifyrole_list", description="List current verification role buttons"
    )
    async def verifyrole_list(self, interaction: discord.Interaction) -> None:
        if not await self._ensure_manager(interaction):
            return
        config = self.store.get(interaction.guild_id)
        entries = config.verify_roles if config else ()
        if not entries:
            await self._reply(
                interaction,
                "There are currently **no** custom verification role buttons.\n"
                "You can add one with `/setup verifyrole_add`.\n\n"
                "If you have `role_a` / `role_b` set via `/setup roles`, "
                "those will still be used as fallback.",
            )
            return

        lines = [
            f"{position}. "
            + ", ".join(f"<@&{role_id}>" for role_id in entry.role_ids)
            + f" — label: `{entry.label}`"
            for position, entry in enumerate(entries, start=1)
        ]
        await self._reply(
            interaction, "Current verification role buttons:\n" + "\n".join(lines)
        )
