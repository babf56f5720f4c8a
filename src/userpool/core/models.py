"""User pool data model.

Records are persisted in the PascalCase JSON layout the wire protocol uses
(``Username``, ``UserStatus``, ``Attributes`` ...). The dataclasses here carry
snake_case fields and convert at the boundary with ``from_dict``/``to_dict``.

Tags:
    userpool, models, dataclasses, schema-mapping
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ValidationError

SUB_ATTRIBUTE = "sub"


class UsernameAttribute(str, Enum):
    """User attributes that may double as alternate lookup keys."""

    EMAIL = "email"
    PHONE_NUMBER = "phone_number"


class UserStatus(str, Enum):
    """Account states. Opaque to the store; kept for callers."""

    UNCONFIRMED = "UNCONFIRMED"
    CONFIRMED = "CONFIRMED"
    ARCHIVED = "ARCHIVED"
    COMPROMISED = "COMPROMISED"
    UNKNOWN = "UNKNOWN"
    RESET_REQUIRED = "RESET_REQUIRED"
    FORCE_CHANGE_PASSWORD = "FORCE_CHANGE_PASSWORD"


@dataclass(frozen=True)
class Attribute:
    """A single ``{Name, Value}`` user attribute."""

    name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"Name": self.name, "Value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Attribute:
        try:
            return cls(name=str(data["Name"]), value=str(data["Value"]))
        except KeyError as exc:
            raise ValidationError(
                f"Attribute is missing {exc.args[0]!r}", field="Attributes", value=dict(data)
            ) from exc


@dataclass
class PoolOptions:
    """
    Pool configuration captured once at creation.

    Attributes:
        username_attributes: Attributes that act as alternate usernames, in the
            order lookups try them. Duplicates are dropped.
    """

    username_attributes: tuple[UsernameAttribute, ...] = ()

    def __post_init__(self) -> None:
        seen: list[UsernameAttribute] = []
        for raw in self.username_attributes:
            try:
                attr = UsernameAttribute(raw)
            except ValueError as exc:
                raise ValidationError(
                    f"Unsupported username attribute: {raw!r}",
                    field="UsernameAttributes",
                    value=raw,
                ) from exc
            if attr not in seen:
                seen.append(attr)
        self.username_attributes = tuple(seen)

    def to_dict(self) -> dict[str, Any]:
        return {"UsernameAttributes": [a.value for a in self.username_attributes]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PoolOptions:
        return cls(username_attributes=tuple(data.get("UsernameAttributes") or ()))


@dataclass
class UserRecord:
    """A user stored in a pool, keyed by ``username``.

    Dates are epoch milliseconds. ``user_status`` keeps whatever string was
    stored, including values outside :class:`UserStatus`.
    """

    username: str
    password: str = ""
    user_status: str = UserStatus.UNCONFIRMED.value
    attributes: list[Attribute] = field(default_factory=list)
    user_create_date: int = 0
    user_last_modified_date: int = 0
    enabled: bool = True
    confirmation_code: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.user_status, UserStatus):
            self.user_status = self.user_status.value
        self.attributes = [
            a if isinstance(a, Attribute) else Attribute.from_dict(a) for a in self.attributes
        ]

    def attribute(self, name: str) -> str | None:
        """Value of the named attribute, or None."""
        for attr in self.attributes:
            if attr.name == name:
                return attr.value
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "Username": self.username,
            "Password": self.password,
            "UserStatus": self.user_status,
        }
        if self.confirmation_code is not None:
            data["ConfirmationCode"] = self.confirmation_code
        data["Attributes"] = [a.to_dict() for a in self.attributes]
        data["UserCreateDate"] = self.user_create_date
        data["UserLastModifiedDate"] = self.user_last_modified_date
        data["Enabled"] = self.enabled
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UserRecord:
        if not data.get("Username"):
            raise ValidationError("User record has no Username", field="Username", value=dict(data))
        return cls(
            username=data["Username"],
            password=data.get("Password", ""),
            user_status=data.get("UserStatus", UserStatus.UNCONFIRMED.value),
            attributes=[Attribute.from_dict(a) for a in data.get("Attributes") or ()],
            user_create_date=data.get("UserCreateDate", 0),
            user_last_modified_date=data.get("UserLastModifiedDate", 0),
            enabled=data.get("Enabled", True),
            confirmation_code=data.get("ConfirmationCode"),
        )


def with_sub_attribute(username: str, attributes: Iterable[Attribute]) -> list[Attribute]:
    """Return ``attributes`` with exactly one ``sub`` entry equal to ``username``.

    An existing ``sub`` keeps its position with its value overwritten; a missing
    one is put first. Other attributes keep the caller's order. Duplicate names
    other than ``sub`` are rejected.
    """
    result: list[Attribute] = []
    seen: set[str] = set()
    for attr in attributes:
        if attr.name == SUB_ATTRIBUTE:
            if SUB_ATTRIBUTE not in seen:
                result.append(Attribute(SUB_ATTRIBUTE, username))
                seen.add(SUB_ATTRIBUTE)
            continue
        if attr.name in seen:
            raise ValidationError(
                f"Duplicate attribute {attr.name!r} for user {username!r}",
                field="Attributes",
                value=attr.name,
            )
        seen.add(attr.name)
        result.append(attr)
    if SUB_ATTRIBUTE not in seen:
        result.insert(0, Attribute(SUB_ATTRIBUTE, username))
    return result


__all__ = [
    "SUB_ATTRIBUTE",
    "UsernameAttribute",
    "UserStatus",
    "Attribute",
    "PoolOptions",
    "UserRecord",
    "with_sub_attribute",
]
