from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Final

import discord

log: Final = logging.getLogger("verify-bot")


async def resolve_text_channel(
    client: discord.Client,
    guild: discord.Guild,
    channel_id: int | None,
) -> discord.TextChannel | None:
    """Return a TextChannel object or None if unavailable.

    Looks in guild cache first, then tries REST fetch as fallback.
    """
    if not channel_id:
        return None

    channel = guild.get_channel(channel_id)
    if isinstance(channel, discord.TextChannel):
        return channel
    if channel is not None:
        log.warning("Channel ID %s is not a text channel", channel_id)
        return None

    try:
        channel = await client.fetch_channel(channel_id)
    except discord.NotFound:
        log.warning("Channel %s not found", channel_id)
        return None
    except discord.Forbidden:
        log.warning("No access to channel %s – check bot permissions", channel_id)
        return None
    except discord.HTTPException as exc:
        log.warning("Cannot fetch channel %s – HTTP error: %s", channel_id, exc)
        return None

    if not isinstance(channel, discord.TextChannel):
        log.warning("Channel ID %s is not a text channel", channel_id)
        return None
    if channel.guild.id != guild.id:
        log.warning(
            "Channel %s belongs to different guild (%s) than expected (%s)",
            channel_id,
            channel.guild.id,
            guild.id,
        )
        return None
    return channel


async def fetch_member(guild: discord.Guild, user_id: int) -> discord.Member | None:
    member = guild.get_member(user_id)
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id)
    except discord.NotFound:
        return None
    except discord.HTTPException as exc:
        log.warning("Cannot fetch member %s in guild %s: %s", user_id, guild.id, exc)
        return None


async def best_effort(description: str, action: Awaitable[object]) -> bool:
    """Await a non-critical side effect; log a failure instead of raising it."""
    try:
        await action
    except Exception as exc:  # pylint: disable=broad-except
        log.warning("Best-effort step failed (%s): %s", description, exc)
        return False
    return True
