"""Tests for the welcome flow and its deduplication."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import MagicMock

import discord
import pytest

from fakes import NOT_VERIFIED_ROLE_ID, VERIFY_CHANNEL_ID, make_member, make_store
from verification.buttons import decode
from verification.settings import GuildConfig
from verification.welcome import (
    HELP_LABEL,
    WelcomeDeduplicator,
    WelcomeFlow,
    build_help_view,
    build_welcome_embed,
    join_timestamp,
    render_welcome_text,
)
from verifybot.config import ShadowConfig
from verifybot.shadow import ShadowReporter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeScheduler:
    def __init__(self) -> None:
        self.calls = []

    def schedule(self, delay, factory, *, name="delayed-task"):
        self.calls.append((delay, factory, name))

    async def run_all(self):
        for _, factory, _ in self.calls:
            await factory()


class TestWelcomeDeduplicator:
    def test_same_join_is_posted_once(self):
        dedup = WelcomeDeduplicator()
        assert dedup.should_post(1, 2, 500)
        dedup.mark_posted(1, 2, 500)
        assert not dedup.should_post(1, 2, 500)

    def test_rejoin_with_new_timestamp_is_posted_again(self):
        dedup = WelcomeDeduplicator()
        dedup.mark_posted(1, 2, 500)
        assert dedup.should_post(1, 2, 900)

    def test_forget_on_leave(self):
        dedup = WelcomeDeduplicator()
        dedup.mark_posted(1, 2, 500)
        assert dedup.forget(1, 2)
        assert not dedup.forget(1, 2)
        assert dedup.should_post(1, 2, 500)

    def test_entries_expire_after_retention(self):
        clock = FakeClock()
        dedup = WelcomeDeduplicator(retention_seconds=60, clock=clock)
        dedup.mark_posted(1, 2, 500)

        clock.now += 61

        assert dedup.prune() == 1
        assert dedup.should_post(1, 2, 500)


class TestRendering:
    def test_placeholders_are_replaced(self):
        member = make_member(42)
        config = GuildConfig(verification_channel_id=7)
        text = render_welcome_text("Hi {user}, go to {verification_channel}", member, config)
        assert text == "Hi <@42>, go to <#7>"

    def test_channel_placeholder_kept_without_channel(self):
        member = make_member(42)
        text = render_welcome_text("{verification_channel}", member, GuildConfig())
        assert text == "{verification_channel}"

    def test_join_timestamp_in_milliseconds(self):
        member = make_member(1, joined_at=datetime(2024, 1, 1, tzinfo=UTC))
        assert join_timestamp(member) == 1704067200000
        member.joined_at = None
        assert join_timestamp(member) is None

    def test_default_embed(self, guild):
        member = make_member(42, guild)
        embed = build_welcome_embed(member, GuildConfig(verification_channel_id=7))
        assert embed.title == "👋 Welcome to Test Server!"
        assert "<@42>" in embed.description
        assert "<#7>" in embed.description

    def test_custom_embed(self, guild):
        member = make_member(42, guild)
        config = GuildConfig(welcome_title="Hello", welcome_description="Yo {user}")
        embed = build_welcome_embed(member, config)
        assert embed.title == "Hello"
        assert embed.description == "Yo <@42>"


def _flow(store, client, scheduler=None, dedup=None, shadow=None):
    return WelcomeFlow(
        client,
        store,
        dedup or WelcomeDeduplicator(),
        scheduler or FakeScheduler(),
        delay=30,
        shadow=shadow,
    )


class TestWelcomeFlow:
    @pytest.mark.asyncio
    async def test_join_adds_not_verified_role_and_schedules_welcome(
        self, guild, store, client
    ):
        scheduler = FakeScheduler()
        flow = _flow(store, client, scheduler)
        member = guild.add_member(make_member(500, guild))

        await flow.on_member_join(member)

        member.add_roles.assert_awaited_once()
        assert member.add_roles.await_args.args[0].id == NOT_VERIFIED_ROLE_ID
        assert len(scheduler.calls) == 1
        assert scheduler.calls[0][0] == 30

        await scheduler.run_all()

        channel = guild.get_channel(VERIFY_CHANNEL_ID)
        channel.send.assert_awaited_once()
        kwargs = channel.send.await_args.kwargs
        assert isinstance(kwargs["embed"], discord.Embed)
        button = kwargs["view"].children[0]
        assert button.label == HELP_LABEL
        assert decode(button.custom_id).user_id == 500

    @pytest.mark.asyncio
    async def test_join_without_config_does_nothing(self, guild, client):
        store, _ = make_store()
        scheduler = FakeScheduler()
        flow = _flow(store, client, scheduler)
        member = guild.add_member(make_member(500, guild))

        await flow.on_member_join(member)

        member.add_roles.assert_not_awaited()
        assert scheduler.calls == []

    @pytest.mark.asyncio
    async def test_failed_role_add_still_schedules_welcome(self, guild, store, client):
        scheduler = FakeScheduler()
        flow = _flow(store, client, scheduler)
        member = guild.add_member(make_member(500, guild))
        member.add_roles.side_effect = discord.Forbidden(MagicMock(status=403), "no")

        await flow.on_member_join(member)

        assert len(scheduler.calls) == 1

    @pytest.mark.asyncio
    async def test_join_and_screening_post_only_once(self, guild, store, client):
        scheduler = FakeScheduler()
        flow = _flow(store, client, scheduler)
        before = make_member(500, guild, pending=True)
        after = guild.add_member(make_member(500, guild, pending=False))

        await flow.on_member_join(after)
        await flow.on_member_update(before, after)
        await scheduler.run_all()

        guild.get_channel(VERIFY_CHANNEL_ID).send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_without_screening_change_is_ignored(self, guild, store, client):
        flow = _flow(store, client)
        before = make_member(500, guild, pending=False)
        after = make_member(500, guild, pending=False)

        await flow.on_member_update(before, after)

        guild.get_channel(VERIFY_CHANNEL_ID).send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hidden_channel_skips_without_marking(self, guild, store, client):
        dedup = WelcomeDeduplicator()
        flow = _flow(store, client, dedup=dedup)
        channel = guild.get_channel(VERIFY_CHANNEL_ID)
        channel.permissions_for.return_value.view_channel = False
        member = make_member(500, guild)

        assert await flow.maybe_post_welcome(member) is False
        assert dedup.should_post(guild.id, 500, join_timestamp(member))

        channel.permissions_for.return_value.view_channel = True
        assert await flow.maybe_post_welcome(member) is True
        channel.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_text_mode_sends_plain_content(self, guild, store, client):
        store.update(guild.id, welcome_mode="text", welcome_description="Welcome {user}!")
        flow = _flow(store, client)

        await flow.maybe_post_welcome(make_member(500, guild))

        kwargs = guild.get_channel(VERIFY_CHANNEL_ID).send.await_args.kwargs
        assert kwargs["content"] == "Welcome <@500>!"
        assert "embed" not in kwargs

    @pytest.mark.asyncio
    async def test_leave_and_rejoin_is_welcomed_again(self, guild, store, client):
        flow = _flow(store, client)
        member = make_member(500, guild, joined_at=datetime(2024, 1, 1, tzinfo=UTC))

        assert await flow.maybe_post_welcome(member)
        assert not await flow.maybe_post_welcome(member)

        await flow.on_member_remove(member)
        rejoined = make_member(500, guild, joined_at=datetime(2024, 2, 1, tzinfo=UTC))

        assert await flow.maybe_post_welcome(rejoined)
        assert guild.get_channel(VERIFY_CHANNEL_ID).send.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_channel_skips_welcome(self, guild, client):
        store, _ = make_store({str(guild.id): {"verificationChannelId": "424242"}})
        flow = _flow(store, client)

        assert await flow.maybe_post_welcome(make_member(500, guild)) is False
        client.fetch_channel.assert_awaited_once_with(424242)

    @pytest.mark.asyncio
    async def test_without_verification_channel_no_welcome_is_ever_sent(self, guild, client):
        store, _ = make_store(
            {str(guild.id): {"notVerifiedRoleId": str(NOT_VERIFIED_ROLE_ID)}}
        )
        scheduler = FakeScheduler()
        flow = _flow(store, client, scheduler)
        member = guild.add_member(make_member(500, guild))

        await flow.on_member_join(member)
        await scheduler.run_all()
        await scheduler.run_all()

        member.add_roles.assert_awaited_once()
        guild.get_channel(VERIFY_CHANNEL_ID).send.assert_not_awaited()
        client.fetch_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overlapping_triggers_post_once(self, guild, store, client):
        flow = _flow(store, client)
        channel = guild.get_channel(VERIFY_CHANNEL_ID)

        async def slow_send(**kwargs):
            await asyncio.sleep(0)

        channel.send.side_effect = slow_send
        member = make_member(500, guild)

        results = await asyncio.gather(
            flow.maybe_post_welcome(member), flow.maybe_post_welcome(member)
        )

        assert channel.send.await_count == 1
        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_failed_send_can_be_retried(self, guild, store, client):
        flow = _flow(store, client)
        channel = guild.get_channel(VERIFY_CHANNEL_ID)
        channel.send.side_effect = discord.HTTPException(MagicMock(status=500), "boom")
        member = make_member(500, guild)

        with pytest.raises(discord.HTTPException):
            await flow.maybe_post_welcome(member)

        channel.send.side_effect = None
        assert await flow.maybe_post_welcome(member) is True
        assert channel.send.await_count == 2

    @pytest.mark.asyncio
    async def test_shadow_mode_leaves_join_role_alone(self, guild, store, client):
        scheduler = FakeScheduler()
        reporter = ShadowReporter(client, ShadowConfig(enabled=True, channel_id=None))
        flow = _flow(store, client, scheduler, shadow=reporter)
        member = guild.add_member(make_member(500, guild))

        await flow.on_member_join(member)

        member.add_roles.assert_called_once()
        member.add_roles.assert_not_awaited()
        assert len(scheduler.calls) == 1


class TestHelpView:
    @pytest.mark.asyncio
    async def test_view_is_finished_so_it_is_not_stored(self):
        view = build_help_view(500)

        assert view.is_finished()
        assert decode(view.children[0].custom_id).user_id == 500
