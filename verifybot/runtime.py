"""Discord client wiring for the screenshot verification bot."""

from __future__ import annotations

import logging

import boto3
import discord
from discord import app_commands
from dotenv import load_dotenv

from verification.dispatcher import VerificationDispatcher, reply_ephemeral
from verification.scheduler import DelayedTaskScheduler
from verification.settings import (
    DynamoSettingsBackend,
    JsonFileBackend,
    SettingsBackend,
    SettingsStore,
)
from verification.submissions import SubmissionWatcher
from verification.welcome import WelcomeDeduplicator, WelcomeFlow

from .commands import SetupCommands
from .config import EnvironmentConfig
from .shadow import ShadowReporter

log = logging.getLogger("verify-bot")

GENERIC_FAILURE = "Something went wrong while processing that action."
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class VerificationRuntime:
    def __init__(self, config: EnvironmentConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        self.shadow_config = config.shadow
        self.shadow_reporter = ShadowReporter(self.bot, self.shadow_config)

        self.store = SettingsStore(self._build_backend())
        self.deduplicator = WelcomeDeduplicator(
            retention_seconds=config.welcome_retention_hours * 3600
        )
        self.scheduler = DelayedTaskScheduler()
        self.dispatcher = VerificationDispatcher(
            self.bot, self.store, shadow=self.shadow_reporter
        )
        self.watcher = SubmissionWatcher(self.bot, self.store)
        self.welcome = WelcomeFlow(
            self.bot,
            self.store,
            self.deduplicator,
            self.scheduler,
            delay=config.welcome_delay_seconds,
            shadow=self.shadow_reporter,
        )
        self.setup_commands = SetupCommands(self.store)

        if not config.sync_guild_commands:
            self.tree.add_command(self.setup_commands)
        self.tree.error(self.on_app_command_error)
        self._register_events()

    def _build_backend(self) -> SettingsBackend:
        if self.config.settings_table_name:
            dynamodb = boto3.resource("dynamodb", region_name=self.config.aws_region)
            log.info("Using DynamoDB table %s for guild settings", self.config.settings_table_name)
            return DynamoSettingsBackend(dynamodb.Table(self.config.settings_table_name))
        log.info("Using settings file %s", self.config.settings_path)
        return JsonFileBackend(self.config.settings_path)

    def _register_events(self) -> None:
        for handler in (
            self.on_ready,
            self.on_guild_join,
            self.on_member_join,
            self.on_member_update,
            self.on_member_remove,
            self.on_message,
            self.on_interaction,
        ):
            self.bot.event(handler)

    # ----- command registration -----
    async def register_guild_commands(self, guild: discord.abc.Snowflake) -> None:
        self.tree.add_command(self.setup_commands, guild=guild, override=True)
        try:
            await self.tree.sync(guild=guild)
            log.info("Registered /setup command for guild %s", guild.id)
        except discord.HTTPException as exc:
            log.error("Failed to register /setup for guild %s: %s", guild.id, exc)

    async def on_ready(self) -> None:
        if self.config.sync_guild_commands:
            # Clears global leftovers; /setup is registered per guild below.
            await self.tree.sync()
            for guild in self.bot.guilds:
                await self.register_guild_commands(guild)
        else:
            await self.tree.sync()

        if self.shadow_reporter.enabled:
            await self.shadow_reporter.report(None, "[verify] on_ready shadow mode active")
        log.info("Bot ready as %s (%s)", self.bot.user, self.bot.user.id)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        if self.config.sync_guild_commands:
            await self.register_guild_commands(guild)

    # ----- gateway events -----
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            await self.welcome.on_member_join(member)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Member join handling failed for %s: %s", member.id, exc)

    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        try:
            await self.welcome.on_member_update(before, after)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Member update handling failed for %s: %s", after.id, exc)

    async def on_member_remove(self, member: discord.Member) -> None:
        try:
            await self.welcome.on_member_remove(member)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Member leave handling failed for %s: %s", member.id, exc)

    async def on_message(self, message: discord.Message) -> None:
        try:
            await self.watcher.handle_message(message)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Error handling verification submission %s: %s", message.id, exc)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        try:
            await self.dispatcher.handle_button(interaction)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Error handling interaction: %s", exc)
            await self._report_failure(interaction)

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        log.exception("Error running app command: %s", error, exc_info=error)
        await self._report_failure(interaction)

    async def _report_failure(self, interaction: discord.Interaction) -> None:
        try:
            await reply_ephemeral(interaction, GENERIC_FAILURE)
        except discord.HTTPException as exc:
            log.warning("Could not report failure to interaction user: %s", exc)

    # ----- lifecycle -----
    async def run(self) -> None:
        self.store.load()
        if self.shadow_reporter.enabled:
            log.info("Verification bot running in SHADOW mode")
        try:
            async with self.bot:
                await self.bot.start(self.config.discord_token)
        finally:
            if self.scheduler.pending_count:
                log.info("Cancelling %d scheduled task(s)", self.scheduler.pending_count)
            self.scheduler.cancel_all()

    @classmethod
    def create(cls) -> "VerificationRuntime":
        config = EnvironmentConfig.load()
        return cls(config)


async def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    runtime = VerificationRuntime.create()
    await runtime.run()


__all__ = ["VerificationRuntime", "main"]
