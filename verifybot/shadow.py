"""Shadow (dry-run) reporting.

With ``SHADOW_MODE`` enabled, role changes (including the not-verified role
given on join), submission deletions, DMs and staff help pings are described
in the shadow channel instead of being carried out. Prompts and welcome
messages are still posted, so a server can watch the bot work without any
member being touched.
"""

from __future__ import annotations

import inspect
import logging
from typing import Iterable

import discord

from .config import ShadowConfig

log = logging.getLogger(__name__)


class ShadowReporter:
    def __init__(self, bot: discord.Client, config: ShadowConfig) -> None:
        self._bot = bot
        self._config = config

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def channel_id(self) -> int | None:
        return self._config.channel_id

    async def _resolve_channel(
        self, guild: discord.Guild | None
    ) -> discord.abc.Messageable | None:
        channel_id = self.channel_id
        if channel_id is None:
            return None
        channel = guild.get_channel(channel_id) if guild is not None else None
        if channel is None:
            channel = self._bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self._bot.fetch_channel(channel_id)
            except discord.DiscordException as exc:
                log.warning("Unable to fetch shadow channel %s: %s", channel_id, exc)
                return None
        if not isinstance(channel, discord.abc.Messageable):
            log.warning("Shadow channel %s cannot receive messages", channel_id)
            return None
        return channel

    async def report(
        self,
        guild: discord.Guild | None,
        message: str,
        *,
        embeds: Iterable[discord.Embed] | None = None,
    ) -> None:
        if not self.enabled:
            return

        channel = await self._resolve_channel(guild)
        if channel is None:
            log.info("[SHADOW] %s", message)
            return

        payload: dict[str, object] = {
            "content": message,
            "allowed_mentions": discord.AllowedMentions.none(),
        }
        if embeds is not None:
            payload["embeds"] = list(embeds)
        try:
            await channel.send(**payload)
        except discord.DiscordException as exc:
            log.warning("Failed to send shadow report to %s: %s", self.channel_id, exc)

    async def noop_or_run(
        self, description: str, coro, *, guild: discord.Guild | None = None
    ):
        """Await ``coro`` normally; in shadow mode discard it and report instead."""
        if not self.enabled:
            return await coro
        if inspect.iscoroutine(coro):
            coro.close()
        where = f" in guild {guild.id}" if guild is not None else ""
        await self.report(guild, f"[noop]{where} {description}")
        return None
