"""Per-guild configuration records and the store that persists them."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Final, Protocol

from botocore.exceptions import BotoCoreError, ClientError

log: Final = logging.getLogger("verify-bot")

MAX_ROLES_PER_SET: Final[int] = 3
# Five rows of five buttons, one of which is always the deny button.
MAX_ROLE_SETS: Final[int] = 24

WELCOME_MODES: Final[frozenset[str]] = frozenset({"embed", "text"})


class DuplicateRoleSetError(ValueError):
    """A role-set with the same roles is already configured."""


class RoleSetLimitError(ValueError):
    """The guild already has the maximum number of role-sets."""


def _parse_id(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value))
    except ValueError:
        log.warning("Ignoring non-numeric id %r in settings", value)
        return None


@dataclass(frozen=True, slots=True)
class RoleSet:
    role_ids: tuple[int, ...]
    label: str

    def __post_init__(self) -> None:
        if not self.role_ids:
            raise ValueError("A role-set needs at least one role")
        if len(self.role_ids) > MAX_ROLES_PER_SET:
            raise ValueError(
                f"A role-set holds at most {MAX_ROLES_PER_SET} roles"
            )

    def same_roles(self, other: RoleSet) -> bool:
        return set(self.role_ids) == set(other.role_ids)

    def to_dict(self) -> dict[str, object]:
        return {
            "roleIds": [str(role_id) for role_id in self.role_ids],
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RoleSet | None:
        raw_ids = data.get("roleIds")
        if not isinstance(raw_ids, list) or not raw_ids:
            # Entries written before multi-role buttons carried a single roleId.
            raw_ids = [data.get("roleId")] if data.get("roleId") else []
        role_ids = tuple(
            role_id for role_id in (_parse_id(raw) for raw in raw_ids) if role_id
        )
        if not role_ids:
            return None
        return cls(
            role_ids=role_ids[:MAX_ROLES_PER_SET],
            label=str(data.get("label") or ""),
        )


@dataclass(frozen=True, slots=True)
class GuildConfig:
    verification_channel_id: int | None = None
    staff_channel_id: int | None = None
    role_a_id: int | None = None
    role_b_id: int | None = None
    not_verified_role_id: int | None = None
    mod_role_id: int | None = None
    verify_roles: tuple[RoleSet, ...] = field(default_factory=tuple)
    welcome_title: str | None = None
    welcome_description: str | None = None
    welcome_mode: str | None = None

    ID_FIELDS: ClassVar[dict[str, str]] = {
        "verification_channel_id": "verificationChannelId",
        "staff_channel_id": "staffChannelId",
        "role_a_id": "roleAId",
        "role_b_id": "roleBId",
        "not_verified_role_id": "notVerifiedRoleId",
        "mod_role_id": "modRoleId",
    }
    TEXT_FIELDS: ClassVar[dict[str, str]] = {
        "welcome_title": "welcomeTitle",
        "welcome_description": "welcomeDescription",
        "welcome_mode": "welcomeMode",
    }

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {}
        for attr, key in self.ID_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = str(value)
        if self.verify_roles:
            data["verifyRoles"] = [entry.to_dict() for entry in self.verify_roles]
        for attr, key in self.TEXT_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> GuildConfig:
        kwargs: dict[str, object] = {}
        for attr, key in cls.ID_FIELDS.items():
            kwargs[attr] = _parse_id(data.get(key))
        for attr, key in cls.TEXT_FIELDS.items():
            value = data.get(key)
            kwargs[attr] = str(value) if value is not None else None

        raw_roles = data.get("verifyRoles")
        entries: list[RoleSet] = []
        if isinstance(raw_roles, list):
            for raw in raw_roles:
                if not isinstance(raw, Mapping):
                    continue
                entry = RoleSet.from_dict(raw)
                if entry is not None:
                    entries.append(entry)
        kwargs["verify_roles"] = tuple(entries)
        return cls(**kwargs)


class SettingsBackend(Protocol):
    def load_all(self) -> dict[str, dict]: ...

    def save(self, document: Mapping[str, dict], guild_id: str) -> None: ...


class JsonFileBackend:
    """Keeps every guild in one JSON document, rewritten on each update."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load_all(self) -> dict[str, dict]:
        if not self.path.exists():
            log.info("Creating empty settings file at %s", self.path)
            self._write({})
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
            document = json.loads(raw or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            log.error("Could not read settings file %s: %s", self.path, exc)
            return {}
        if not isinstance(document, dict):
            log.error("Settings file %s does not hold a JSON object", self.path)
            return {}
        log.info("Loaded settings for %d guild(s) from %s", len(document), self.path)
        return document

    def save(self, document: Mapping[str, dict], guild_id: str) -> None:
        self._write(document)
        log.debug("Saved settings file %s after update to guild %s", self.path, guild_id)

    def _write(self, document: Mapping[str, dict]) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class DynamoSettingsBackend:
    """Stores one item per guild in a DynamoDB table keyed by ``guild_id``."""

    def __init__(self, table) -> None:
        self._table = table

    def load_all(self) -> dict[str, dict]:
        document: dict[str, dict] = {}
        scan_kwargs: dict[str, object] = {}
        try:
            while True:
                response = self._table.scan(**scan_kwargs)
                for item in response.get("Items", []):
                    guild_id = str(item.get("guild_id", ""))
                    if not guild_id:
                        continue
                    try:
                        document[guild_id] = json.loads(item.get("config") or "{}")
                    except json.JSONDecodeError:
                        log.warning("Skipping unreadable settings for guild %s", guild_id)
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as exc:
            log.error("Failed to load guild settings from DynamoDB: %s", exc)
            return {}
        return document

    def save(self, document: Mapping[str, dict], guild_id: str) -> None:
        self._table.put_item(
            Item={
                "guild_id": guild_id,
                "config": json.dumps(document.get(guild_id, {}), ensure_ascii=False),
            }
        )


class SettingsStore:
    """In-memory guild settings with write-through persistence.

    Updates are merged into the existing record and persisted before the
    call returns. Persistence failures are logged and leave the in-memory
    state updated, so a restart may come back with the previous record.
    """

    def __init__(self, backend: SettingsBackend) -> None:
        self._backend = backend
        self._configs: dict[int, GuildConfig] = {}

    def load(self) -> None:
        self._configs = {}
        try:
            document = self._backend.load_all()
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Failed to load guild settings: %s", exc)
            return
        for raw_id, raw_config in document.items():
            guild_id = _parse_id(raw_id)
            if guild_id is None or not isinstance(raw_config, Mapping):
                continue
            self._configs[guild_id] = GuildConfig.from_dict(raw_config)

    def get(self, guild_id: int) -> GuildConfig | None:
        return self._configs.get(guild_id)

    def guild_ids(self) -> Iterable[int]:
        return tuple(self._configs)

    def update(self, guild_id: int, **fields: object) -> GuildConfig:
        if "verify_roles" in fields and fields["verify_roles"] is not None:
            fields["verify_roles"] = tuple(fields["verify_roles"])  # type: ignore[arg-type]
        mode = fields.get("welcome_mode")
        if mode is not None and mode not in WELCOME_MODES:
            raise ValueError(f"Unknown welcome mode {mode!r}")

        existing = self._configs.get(guild_id) or GuildConfig()
        updated = dataclasses.replace(existing, **fields)
        self._configs[guild_id] = updated
        log.info("Updated config for guild %s: %s", guild_id, sorted(fields))
        self._persist(guild_id)
        return updated

    def add_role_set(self, guild_id: int, role_set: RoleSet) -> GuildConfig:
        existing = self._configs.get(guild_id) or GuildConfig()
        if any(entry.same_roles(role_set) for entry in existing.verify_roles):
            raise DuplicateRoleSetError("A button with exactly those roles already exists.")
        if len(existing.verify_roles) >= MAX_ROLE_SETS:
            raise RoleSetLimitError(
                f"A server can have at most {MAX_ROLE_SETS} verification role buttons."
            )
        return self.update(guild_id, verify_roles=(*existing.verify_roles, role_set))

    def clear_role_sets(self, guild_id: int) -> GuildConfig:
        return self.update(guild_id, verify_roles=())

    def _persist(self, guild_id: int) -> None:
        document = {
            str(gid): config.to_dict() for gid, config in self._configs.items()
        }
        try:
            self._backend.save(document, str(guild_id))
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Failed to persist settings for guild %s: %s", guild_id, exc)
