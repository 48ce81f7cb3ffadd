from __future__ import annotations

import pytest

from fakes import (
    MOD_ROLE_ID,
    NOT_VERIFIED_ROLE_ID,
    STAFF_CHANNEL_ID,
    VERIFY_CHANNEL_ID,
    FakeGuild,
    make_client,
    make_role,
    make_store,
    make_text_channel,
)


@pytest.fixture
def guild():
    guild = FakeGuild()
    guild.add_role(make_role(MOD_ROLE_ID, "Moderator", position=20))
    guild.add_role(make_role(NOT_VERIFIED_ROLE_ID, "Not Verified", position=2))
    guild.add_channel(make_text_channel(VERIFY_CHANNEL_ID, guild, name="verify"))
    guild.add_channel(make_text_channel(STAFF_CHANNEL_ID, guild, name="staff"))
    return guild


@pytest.fixture
def client():
    return make_client()


@pytest.fixture
def store(guild):
    store, _ = make_store(
        {
            str(guild.id): {
                "verificationChannelId": str(VERIFY_CHANNEL_ID),
                "staffChannelId": str(STAFF_CHANNEL_ID),
                "modRoleId": str(MOD_ROLE_ID),
                "notVerifiedRoleId": str(NOT_VERIFIED_ROLE_ID),
            }
        }
    )
    return store
