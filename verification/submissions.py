"""Turns screenshots posted in the verification channel into staff prompts."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Final

import discord

from .buttons import ButtonToken, encode
from .logging_utils import resolve_text_channel
from .role_sets import clamp_label, resolve_role_sets
from .settings import GuildConfig, RoleSet, SettingsStore

log: Final = logging.getLogger("verify-bot")

BUTTONS_PER_ROW: Final[int] = 5
DENY_LABEL: Final[str] = "❌ Deny"
PROMPT_TITLE: Final[str] = "New verification submission"

_IMAGE_NAME = re.compile(r"\.(png|jpe?g|gif|webp)$", re.IGNORECASE)


def is_image_attachment(attachment: discord.Attachment) -> bool:
    content_type = attachment.content_type or ""
    if content_type.startswith("image/"):
        return True
    return bool(_IMAGE_NAME.search(attachment.filename or ""))


def build_prompt_embed(
    message: discord.Message, config: GuildConfig, image: discord.Attachment | None
) -> discord.Embed:
    author = message.author
    if config.mod_role_id:
        ask = (
            f"<@&{config.mod_role_id}> please review the image and select which "
            "role set to assign, or deny."
        )
    else:
        ask = "Please review the image and select which role set to assign, or deny."

    embed = discord.Embed(
        title=PROMPT_TITLE,
        description=(
            f"**User:** <@{author.id}>\n"
            f"**Message:** [jump to message]({message.jump_url})\n\n"
            f"{ask}"
        ),
        timestamp=datetime.now(UTC),
    )
    embed.set_footer(text=f"In #{getattr(message.channel, 'name', 'unknown')}")
    if image is not None and image.url:
        embed.set_image(url=image.url)
    return embed


def build_prompt_view(
    role_sets: Sequence[RoleSet], message_id: int, user_id: int
) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    buttons = [
        discord.ui.Button(
            label=clamp_label(entry.label),
            style=discord.ButtonStyle.success,
            custom_id=encode(ButtonToken.assign_set(index, message_id, user_id)),
        )
        for index, entry in enumerate(role_sets)
    ]
    buttons.append(
        discord.ui.Button(
            label=DENY_LABEL,
            style=discord.ButtonStyle.danger,
            custom_id=encode(ButtonToken.deny(message_id, user_id)),
        )
    )
    for position, button in enumerate(buttons):
        button.row = position // BUTTONS_PER_ROW
        view.add_item(button)
    # Clicks are routed by custom id in on_interaction; a finished view is
    # not kept in the client's view store after sending.
    view.stop()
    return view


class SubmissionWatcher:
    def __init__(self, client: discord.Client, store: SettingsStore) -> None:
        self._client = client
        self._store = store

    async def handle_message(self, message: discord.Message) -> discord.Message | None:
        guild = message.guild
        if guild is None or message.author.bot:
            return None

        config = self._store.get(guild.id)
        if config is None or not config.verification_channel_id or not config.staff_channel_id:
            return None
        if message.channel.id != config.verification_channel_id:
            return None

        images = [a for a in message.attachments if is_image_attachment(a)]
        if not images:
            return None

        log.info(
            "Detected verification image from %s in guild %s", message.author.id, guild.id
        )

        staff_channel = await resolve_text_channel(
            self._client, guild, config.staff_channel_id
        )
        if staff_channel is None:
            log.warning("Staff channel not found or not text-based in guild %s", guild.id)
            return None

        role_sets = resolve_role_sets(config, guild.get_role)
        if not role_sets:
            log.warning(
                "No verification roles configured in guild %s; prompt only offers deny",
                guild.id,
            )

        allowed = discord.AllowedMentions(
            everyone=False,
            users=False,
            roles=[discord.Object(id=config.mod_role_id)] if config.mod_role_id else False,
        )
        # Mentions inside an embed never ping, so the role goes in the content.
        prompt = await staff_channel.send(
            content=f"<@&{config.mod_role_id}>" if config.mod_role_id else None,
            embed=build_prompt_embed(message, config, images[0]),
            view=build_prompt_view(role_sets, message.id, message.author.id),
            allowed_mentions=allowed,
        )
        log.info(
            "Sent staff verification prompt for user %s in guild %s",
            message.author.id,
            guild.id,
        )
        return prompt
