"""Tests for the shadow reporting module."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from verifybot.config import ShadowConfig
from verifybot.shadow import ShadowReporter


def _channel():
    channel = MagicMock(spec=discord.TextChannel)
    channel.send = AsyncMock()
    return channel


class TestShadowReporter:
    """Test shadow reporter functionality."""

    def test_properties(self):
        reporter = ShadowReporter(MagicMock(), ShadowConfig(enabled=True, channel_id=123456))

        assert reporter.enabled is True
        assert reporter.channel_id == 123456

    @pytest.mark.asyncio
    async def test_report_disabled(self):
        """Should not report when disabled."""
        bot = MagicMock()
        reporter = ShadowReporter(bot, ShadowConfig(enabled=False, channel_id=1))

        await reporter.report(None, "test message")

        bot.get_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_report_without_channel_only_logs(self, caplog):
        bot = MagicMock()
        reporter = ShadowReporter(bot, ShadowConfig(enabled=True, channel_id=None))

        with caplog.at_level("INFO"):
            await reporter.report(None, "test message")

        bot.get_channel.assert_not_called()
        assert "[SHADOW] test message" in caplog.text

    @pytest.mark.asyncio
    async def test_report_prefers_guild_channel(self):
        bot = MagicMock()
        channel = _channel()
        guild = MagicMock()
        guild.get_channel.return_value = channel
        reporter = ShadowReporter(bot, ShadowConfig(enabled=True, channel_id=5))

        embed = discord.Embed(title="x")
        await reporter.report(guild, "hello", embeds=[embed])

        bot.get_channel.assert_not_called()
        kwargs = channel.send.await_args.kwargs
        assert kwargs["content"] == "hello"
        assert kwargs["embeds"] == [embed]
        assert kwargs["allowed_mentions"].everyone is False

    @pytest.mark.asyncio
    async def test_report_falls_back_to_fetch(self):
        bot = MagicMock()
        bot.get_channel.return_value = None
        channel = _channel()
        bot.fetch_channel = AsyncMock(return_value=channel)
        reporter = ShadowReporter(bot, ShadowConfig(enabled=True, channel_id=5))

        await reporter.report(None, "hello")

        bot.fetch_channel.assert_awaited_once_with(5)
        assert "embeds" not in channel.send.await_args.kwargs

    @pytest.mark.asyncio
    async def test_noop_or_run_disabled_runs(self):
        reporter = ShadowReporter(MagicMock(), ShadowConfig(enabled=False, channel_id=None))
        action = AsyncMock(return_value="done")

        assert await reporter.noop_or_run("do it", action()) == "done"
        action.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_noop_or_run_enabled_skips(self):
        reporter = ShadowReporter(MagicMock(), ShadowConfig(enabled=True, channel_id=None))
        action = AsyncMock()

        assert await reporter.noop_or_run("do it", action()) is None
        action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_noop_report_names_guild(self):
        channel = _channel()
        guild = MagicMock()
        guild.id = 42
        guild.get_channel.return_value = channel
        reporter = ShadowReporter(MagicMock(), ShadowConfig(enabled=True, channel_id=5))

        await reporter.noop_or_run("DM 500", AsyncMock()(), guild=guild)

        assert channel.send.await_args.kwargs["content"] == "[noop] in guild 42 DM 500"

    @pytest.mark.asyncio
    async def test_fetch_failure_falls_back_to_log(self, caplog):
        bot = MagicMock()
        bot.get_channel.return_value = None
        bot.fetch_channel = AsyncMock(
            side_effect=discord.NotFound(MagicMock(status=404), "missing")
        )
        reporter = ShadowReporter(bot, ShadowConfig(enabled=True, channel_id=5))

        with caplog.at_level("INFO"):
            await reporter.report(None, "hello")

        assert "[SHADOW] hello" in caplog.text
