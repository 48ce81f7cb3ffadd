"""Screenshot verification core.

The runtime in ``verifybot`` wires these pieces to a discord.py client; they
only depend on the discord.py objects handed to them, which keeps them easy
to drive from tests.
"""

from .buttons import ButtonAction, ButtonDecodeError, ButtonToken, decode, encode
from .dispatcher import ResolutionGuard, VerificationDispatcher
from .role_sets import resolve_role_sets, role_assignment_issues
from .scheduler import DelayedTaskScheduler, ScheduledTask
from .settings import (
    DuplicateRoleSetError,
    DynamoSettingsBackend,
    GuildConfig,
    JsonFileBackend,
    RoleSet,
    RoleSetLimitError,
    SettingsStore,
)
from .submissions import SubmissionWatcher, is_image_attachment
from .welcome import WelcomeDeduplicator, WelcomeFlow

__all__ = [
    "ButtonAction",
    "ButtonDecodeError",
    "ButtonToken",
    "decode",
    "encode",
    "ResolutionGuard",
    "VerificationDispatcher",
    "resolve_role_sets",
    "role_assignment_issues",
    "DelayedTaskScheduler",
    "ScheduledTask",
    "DuplicateRoleSetError",
    "DynamoSettingsBackend",
    "GuildConfig",
    "JsonFileBackend",
    "RoleSet",
    "RoleSetLimitError",
    "SettingsStore",
    "SubmissionWatcher",
    "is_image_attachment",
    "WelcomeDeduplicator",
    "WelcomeFlow",
]
