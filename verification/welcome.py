"""Welcome posts for members who join or finish membership screening."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Final, Protocol

import discord

from .buttons import ButtonToken, encode
from .logging_utils import best_effort, resolve_text_channel
from .scheduler import ScheduledTask, TaskFactory
from .settings import GuildConfig, SettingsStore

log: Final = logging.getLogger("verify-bot")

WELCOME_DELAY_SECONDS: Final[float] = 30.0
WELCOME_RETENTION_SECONDS: Final[float] = 24 * 3600
WELCOME_COLOR: Final[int] = 0x3498DB
HELP_LABEL: Final[str] = "🆘 HELP"


class Scheduler(Protocol):
    def schedule(
        self, delay: float, factory: TaskFactory, *, name: str = ...
    ) -> ScheduledTask: ...


class WelcomeDeduplicator:
    """Remembers which join of each member has already been welcomed.

    A member who leaves and rejoins gets a new join timestamp and is
    welcomed again; repeated triggers for the same join are suppressed.
    A join is claimed while its welcome is being sent, so overlapping
    triggers cannot both post.
    """

    def __init__(
        self,
        retention_seconds: float = WELCOME_RETENTION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._retention = retention_seconds
        self._clock = clock
        self._welcomed: dict[tuple[int, int], tuple[object, float]] = {}
        self._in_flight: set[tuple[int, int, object]] = set()

    def should_post(self, guild_id: int, user_id: int, join_timestamp: object) -> bool:
        if (guild_id, user_id, join_timestamp) in self._in_flight:
            return False
        entry = self._welcomed.get((guild_id, user_id))
        return entry is None or entry[0] != join_timestamp

    def mark_posted(self, guild_id: int, user_id: int, join_timestamp: object) -> None:
        self.prune()
        self._welcomed[(guild_id, user_id)] = (join_timestamp, self._clock())

    def claim(self, guild_id: int, user_id: int, join_timestamp: object) -> bool:
        if not self.should_post(guild_id, user_id, join_timestamp):
            return False
        self._in_flight.add((guild_id, user_id, join_timestamp))
        return True

    def release(
        self, guild_id: int, user_id: int, join_timestamp: object, *, posted: bool
    ) -> None:
        self._in_flight.discard((guild_id, user_id, join_timestamp))
        if posted:
            self.mark_posted(guild_id, user_id, join_timestamp)

    def forget(self, guild_id: int, user_id: int) -> bool:
        return self._welcomed.pop((guild_id, user_id), None) is not None

    def prune(self) -> int:
        cutoff = self._clock() - self._retention
        stale = [key for key, (_, at) in self._welcomed.items() if at < cutoff]
        for key in stale:
            del self._welcomed[key]
        return len(stale)


def join_timestamp(member: discord.Member) -> int | None:
    joined_at = member.joined_at
    if joined_at is None:
        return None
    return int(joined_at.timestamp() * 1000)


def render_welcome_text(template: str, member: discord.Member, config: GuildConfig) -> str:
    text = (template or "").replace("{user}", f"<@{member.id}>")
    if config.verification_channel_id:
        text = text.replace(
            "{verification_channel}", f"<#{config.verification_channel_id}>"
        )
    return text


def default_welcome_description(member: discord.Member, config: GuildConfig) -> str:
    if config.verification_channel_id:
        instructions = (
            f"Please head over to <#{config.verification_channel_id}> and post a "
            "screenshot of your in-game profile so a **moderator** can verify you "
            "and assign the relevant roles."
        )
    else:
        instructions = (
            "Please follow the server instructions to post a screenshot of your "
            "in-game profile so a **moderator** can verify you and assign the "
            "relevant roles."
        )
    return (
        f"Welcome <@{member.id}>!\n\n"
        f"{instructions}\n\n"
        "*Once verified you will be granted access to the remainder of the server.*"
    )


def build_welcome_embed(member: discord.Member, config: GuildConfig) -> discord.Embed:
    description = render_welcome_text(
        config.welcome_description or default_welcome_description(member, config),
        member,
        config,
    )
    return discord.Embed(
        title=config.welcome_title or f"👋 Welcome to {member.guild.name}!",
        description=description,
        color=WELCOME_COLOR,
        timestamp=datetime.now(UTC),
    )


def build_help_view(user_id: int) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            label=HELP_LABEL,
            style=discord.ButtonStyle.danger,
            custom_id=encode(ButtonToken.help(user_id)),
        )
    )
    # Clicks are routed by custom id in on_interaction; a finished view is
    # not kept in the client's view store after sending.
    view.stop()
    return view


class WelcomeFlow:
    def __init__(
        self,
        client: discord.Client,
        store: SettingsStore,
        deduplicator: WelcomeDeduplicator,
        scheduler: Scheduler,
        *,
        delay: float = WELCOME_DELAY_SECONDS,
        shadow=None,
    ) -> None:
        self._client = client
        self._store = store
        self._dedup = deduplicator
        self._scheduler = scheduler
        self._delay = delay
        self._shadow = shadow

    async def _add_not_verified_role(
        self, member: discord.Member, role: discord.Role
    ) -> None:
        action = member.add_roles(role, reason="Auto-assign Not Yet Verified on join")
        if self._shadow is not None and self._shadow.enabled:
            await self._shadow.noop_or_run(
                f"add {role.id} to {member.id}", action, guild=member.guild
            )
            return
        await action

    async def on_member_join(self, member: discord.Member) -> None:
        guild = member.guild
        config = self._store.get(guild.id)
        if config is None:
            log.info("Member joined guild %s, but no config exists yet.", guild.id)
            return

        if config.not_verified_role_id:
            role = guild.get_role(config.not_verified_role_id)
            if role is None:
                log.warning(
                    "notVerifiedRoleId is set but role not found in guild %s", guild.id
                )
            elif await best_effort(
                "add not-verified role", self._add_not_verified_role(member, role)
            ):
                log.info("Added Not Yet Verified role to %s in guild %s", member.id, guild.id)

        log.info("Member joined: %s in guild %s – scheduling welcome.", member.id, guild.id)
        self._scheduler.schedule(
            self._delay,
            lambda: self.maybe_post_welcome(member),
            name=f"welcome-{guild.id}-{member.id}",
        )

    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if self._store.get(after.guild.id) is None:
            return
        if before.pending is True and after.pending is not True:
            log.info(
                "Member %s finished screening in guild %s, trying welcome.",
                after.id,
                after.guild.id,
            )
            await self.maybe_post_welcome(after)

    async def on_member_remove(self, member: discord.Member) -> None:
        if self._dedup.forget(member.guild.id, member.id):
            log.info(
                "Cleared welcome cache for %s in guild %s (member left).",
                member.id,
                member.guild.id,
            )

    async def maybe_post_welcome(self, member: discord.Member) -> bool:
        guild = member.guild
        config = self._store.get(guild.id)
        if config is None or not config.verification_channel_id:
            log.info("No verification channel set for guild %s, skipping welcome.", guild.id)
            return False

        joined = join_timestamp(member)
        if not self._dedup.claim(guild.id, member.id, joined):
            return False

        posted = False
        try:
            posted = await self._post_welcome(member, config)
        finally:
            self._dedup.release(guild.id, member.id, joined, posted=posted)
        return posted

    async def _post_welcome(self, member: discord.Member, config: GuildConfig) -> bool:
        guild = member.guild
        channel = await resolve_text_channel(
            self._client, guild, config.verification_channel_id
        )
        if channel is None:
            log.warning(
                "Configured verification channel not found or not text-based in guild %s",
                guild.id,
            )
            return False

        if not channel.permissions_for(member).view_channel:
            log.info(
                "Member %s cannot see verification channel yet, skipping welcome for now.",
                member.id,
            )
            return False

        view = build_help_view(member.id)
        if (config.welcome_mode or "embed") == "text":
            content = render_welcome_text(
                config.welcome_description or default_welcome_description(member, config),
                member,
                config,
            )
            await channel.send(content=content, view=view)
        else:
            await channel.send(embed=build_welcome_embed(member, config), view=view)

        log.info("Sent welcome for member %s in guild %s", member.id, guild.id)
        return True
