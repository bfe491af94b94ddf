# Vault - Data Model
#
# VaultEntry is the unit of the encrypted collection. Its dict form uses the
# camelCase keys of the persisted/exported JSON documents so that vaults and
# exports stay interchangeable with earlier releases.

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import DecodeError


class VaultPhase(str, Enum):
    """
    Lifecycle phases of the vault engine.

    INITIALIZING and UNLOCKING are transient: the engine resolves them to a
    stable phase before it accepts the next operation.
    """
    INITIALIZING = "initializing"
    SETUP = "setup"
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{moment.microsecond // 1000:03d}Z"
    )


def new_entry_id() -> str:
    return str(uuid.uuid4())


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def clean_optional(value: Optional[str]) -> Optional[str]:
    """Trim an optional string. None and blank strings become absent."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    value = value.strip()
    return value or None


def clean_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Trim tags and drop empty ones. Duplicates are kept."""
    if tags is None:
        return []
    if isinstance(tags, str):
        raise ValueError("tags must be a sequence of strings, not a single string")
    try:
        items = list(tags)
    except TypeError:
        raise ValueError("tags must be a sequence of strings") from None
    if not all(isinstance(tag, str) for tag in items):
        raise ValueError("every tag must be a string")
    return [tag.strip() for tag in items if tag.strip()]


@dataclass(frozen=True)
class VaultEntry:
    """One stored credential."""

    id: str
    title: str
    username: str
    password: str
    created_at: str
    updated_at: str
    url: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "username": self.username,
            "password": self.password,
        }
        if self.url is not None:
            data["url"] = self.url
        if self.notes is not None:
            data["notes"] = self.notes
        data["tags"] = list(self.tags)
        data["createdAt"] = self.created_at
        data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "VaultEntry":
        """
        Build an entry from its persisted dict form.

        Raises:
            DecodeError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise DecodeError("Entry must be a JSON object")

        for name in ("id", "title", "username", "password", "createdAt", "updatedAt"):
            if not isinstance(data.get(name), str):
                raise DecodeError(f"Entry field '{name}' missing or not a string")
        for name in ("url", "notes"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise DecodeError(f"Entry field '{name}' must be a string")

        tags = data.get("tags", [])
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise DecodeError("Entry field 'tags' must be a list of strings")

        return cls(
            id=data["id"],
            title=data["title"],
            username=data["username"],
            password=data["password"],
            url=data.get("url"),
            notes=data.get("notes"),
            tags=list(tags),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )

    def with_changes(self, **changes: Any) -> "VaultEntry":
        return replace(self, **changes)


@dataclass(frozen=True)
class VaultMetadata:
    """Public parameters needed to re-derive the key from a password."""

    salt: bytes
    iterations: int

    def __repr__(self) -> str:
        return f"VaultMetadata(salt_len={len(self.salt)}, iterations={self.iterations})"


@dataclass(frozen=True)
class VaultStats:
    """Read-only summary of the unlocked collection."""

    total: int
    tags: Dict[str, int]
    weak_passwords: int
