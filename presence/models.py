from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any


class SourceKind(str, Enum):
    TWITCH = "twitch"
    KICK = "kick"
    SERVER = "server"

    @classmethod
    def parse(cls, value: str | None) -> "SourceKind | None":
        text = (value or "").strip().lower()
        aliases = {"t": "twitch", "k": "kick", "fivem": "server", "s": "server"}
        text = aliases.get(text, text)
        for kind in cls:
            if kind.value == text:
                return kind
        return None


PLATFORM_LABELS = {
    SourceKind.TWITCH: "Twitch",
    SourceKind.KICK: "Kick",
    SourceKind.SERVER: "Server",
}


@dataclass(slots=True)
class TrackedEntity:
    source: SourceKind
    key: str
    mention_id: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"key": self.key, "mention_id": self.mention_id}


@dataclass(slots=True)
class Snapshot:
    """What an upstream reported for one entity during one poll.

    Never persisted. `session_key` changes exactly when a new live session
    starts (see `presence.snapshots.derive_session_key`).
    """

    source: SourceKind
    key: str
    is_live: bool
    title: str = ""
    category_id: str | None = None
    category_name: str = ""
    session_key: str = ""
    url: str = ""
    display_name: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class MessageLifecycleState:
    channel_id: int
    message_id: int
    session_key: str
    created_at: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "channel_id": int(self.channel_id),
            "message_id": int(self.message_id),
            "session_key": self.session_key,
            "created_at": int(self.created_at),
        }


@dataclass(slots=True)
class UpstreamHealth:
    consecutive_failures: int = 0
    not_before: int = 0
    last_error: str | None = None
    last_error_at: int = 0
    last_success_at: int = 0
    last_logged_at: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "consecutive_failures": int(self.consecutive_failures),
            "not_before": int(self.not_before),
            "last_error": self.last_error,
            "last_error_at": int(self.last_error_at),
            "last_success_at": int(self.last_success_at),
            "last_logged_at": int(self.last_logged_at),
        }


@dataclass(slots=True)
class TickMetadata:
    last_tick_at: int = 0
    last_tick_duration_ms: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "last_tick_at": int(self.last_tick_at),
            "last_tick_duration_ms": int(self.last_tick_duration_ms),
        }


class MessageCheck(str, Enum):
    PRESENT = "present"
    MISSING = "missing"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class EffectResult:
    ok: bool
    message_id: int | None = None
    error: str | None = None

    @classmethod
    def success(cls, message_id: int | None = None) -> "EffectResult":
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failure(cls, error: str) -> "EffectResult":
        return cls(ok=False, error=error)


@dataclass(frozen=True, slots=True)
class LiveMessage:
    content: str
    mention_everyone: bool = False
    mention_user_id: int | None = None
