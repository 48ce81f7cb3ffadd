"""Custom-id tokens carried by the verification buttons.

Every button round-trips the context it needs inside its custom id, so no
session state is kept between posting a prompt and handling a click.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final

MAX_CUSTOM_ID_LENGTH: Final[int] = 100
SEPARATOR: Final[str] = ":"


class ButtonAction(str, Enum):
    ASSIGN_SET = "assignset"
    ASSIGN_A = "assignA"
    ASSIGN_B = "assignB"
    DENY = "deny"
    HELP = "help"

    @property
    def is_verification(self) -> bool:
        return self is not ButtonAction.HELP

    @property
    def assigns_roles(self) -> bool:
        return self in _ASSIGN_ACTIONS


_ASSIGN_ACTIONS: Final = frozenset(
    {ButtonAction.ASSIGN_SET, ButtonAction.ASSIGN_A, ButtonAction.ASSIGN_B}
)

# Number of fields after the action tag.
_ARITY: Final[dict[ButtonAction, int]] = {
    ButtonAction.ASSIGN_SET: 3,
    ButtonAction.ASSIGN_A: 2,
    ButtonAction.ASSIGN_B: 2,
    ButtonAction.DENY: 2,
    ButtonAction.HELP: 1,
}

_BY_TAG: Final[dict[str, ButtonAction]] = {action.value: action for action in ButtonAction}


class ButtonDecodeError(ValueError):
    """Raised when a custom id is not a well-formed verification token."""


@dataclass(frozen=True, slots=True)
class ButtonToken:
    action: ButtonAction
    user_id: int
    message_id: int | None = None
    role_set_index: int | None = None

    @classmethod
    def help(cls, user_id: int) -> ButtonToken:
        return cls(ButtonAction.HELP, user_id)

    @classmethod
    def assign_set(cls, index: int, message_id: int, user_id: int) -> ButtonToken:
        return cls(ButtonAction.ASSIGN_SET, user_id, message_id, index)

    @classmethod
    def deny(cls, message_id: int, user_id: int) -> ButtonToken:
        return cls(ButtonAction.DENY, user_id, message_id)


def encode(token: ButtonToken) -> str:
    action = token.action
    if action is ButtonAction.HELP:
        fields = [token.user_id]
    else:
        if token.message_id is None:
            raise ValueError(f"{action.value} buttons need a source message id")
        fields = [token.message_id, token.user_id]
        if action is ButtonAction.ASSIGN_SET:
            if token.role_set_index is None or token.role_set_index < 0:
                raise ValueError("assignset buttons need a non-negative role-set index")
            fields.insert(0, token.role_set_index)

    custom_id = SEPARATOR.join([action.value, *(str(value) for value in fields)])
    if len(custom_id) > MAX_CUSTOM_ID_LENGTH:
        raise ValueError(
            f"Encoded custom id is {len(custom_id)} characters; "
            f"the limit is {MAX_CUSTOM_ID_LENGTH}"
        )
    return custom_id


def is_verification_custom_id(custom_id: str | None) -> bool:
    if not custom_id:
        return False
    return custom_id.split(SEPARATOR, 1)[0] in _BY_TAG


def decode(custom_id: str) -> ButtonToken:
    if not custom_id or len(custom_id) > MAX_CUSTOM_ID_LENGTH:
        raise ButtonDecodeError(f"Not a verification button: {custom_id!r}")

    tag, *fields = custom_id.split(SEPARATOR)
    action = _BY_TAG.get(tag)
    if action is None:
        raise ButtonDecodeError(f"Unknown button action {tag!r}")

    expected = _ARITY[action]
    if len(fields) != expected:
        raise ButtonDecodeError(
            f"{tag} buttons carry {expected} field(s), got {len(fields)}"
        )

    try:
        numbers = [int(value) for value in fields]
    except ValueError as exc:
        raise ButtonDecodeError(f"Malformed button id {custom_id!r}") from exc

    if action is ButtonAction.HELP:
        return ButtonToken(action, user_id=numbers[0])
    if action is ButtonAction.ASSIGN_SET:
        index, message_id, user_id = numbers
        if index < 0:
            raise ButtonDecodeError(f"Negative role-set index in {custom_id!r}")
        return ButtonToken(action, user_id, message_id, index)
    message_id, user_id = numbers
    return ButtonToken(action, user_id, message_id)
