from __future__ import annotations

import copy
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from presence.models import MessageLifecycleState
from presence.models import SourceKind
from presence.models import TickMetadata
from presence.models import TrackedEntity
from presence.models import UpstreamHealth
from presence.settings import PresenceSettings
from presence.snapshots import normalize_entity_key

STATE_DOCUMENT_VERSION = 2

# channel of a legacy message imported before any notify channel was known
UNPLACED_CHANNEL_ID = 0

LEGACY_STREAM_SECTIONS = {
    SourceKind.TWITCH: ("twitch", "login", "twitchActiveMessages", "twitchHealth"),
    SourceKind.KICK: ("kick", "slug", "kickActiveMessages", "kickHealth"),
}

LEGACY_SETTINGS_MAP = {
    "notifyChannelId": "notify_channel_id",
    "mentionHere": "mention_here",
    "keywordRegex": "keyword_regex",
    "checkIntervalSeconds": "check_interval_seconds",
    "discoveryMode": "discovery_mode",
    "discoveryTwitchPages": "discovery_twitch_pages",
    "discoveryKickLimit": "discovery_kick_limit",
    "twitchGta5GameId": "twitch_game_id",
    "kickGtaCategoryName": "kick_category_name",
}


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _optional_int(value: Any) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class StateDocument:
    """The single mutable document the presence engine works on.

    Owned by the scheduler; the reconciler and health tracker mutate it in
    place during a tick, commands mutate settings/entities between ticks.
    """

    settings: PresenceSettings = field(default_factory=PresenceSettings)
    entities: dict[SourceKind, dict[str, TrackedEntity]] = field(default_factory=dict)
    messages: dict[SourceKind, dict[str, MessageLifecycleState]] = field(default_factory=dict)
    health: dict[SourceKind, UpstreamHealth] = field(default_factory=dict)
    tick: TickMetadata = field(default_factory=TickMetadata)
    version: int = STATE_DOCUMENT_VERSION

    def __post_init__(self) -> None:
        for kind in SourceKind:
            self.entities.setdefault(kind, {})
            self.messages.setdefault(kind, {})
            self.health.setdefault(kind, UpstreamHealth())

    # ---- entities ----

    def tracked_keys(self, source: SourceKind) -> list[str]:
        return list(self.entities[source].keys())

    def keys_to_poll(self, source: SourceKind) -> list[str]:
        keys = self.tracked_keys(source)
        seen = set(keys)
        for key in self.messages[source]:
            if key not in seen:
                keys.append(key)
                seen.add(key)
        return keys

    def entity(self, source: SourceKind, key: str) -> TrackedEntity | None:
        return self.entities[source].get(key)

    def add_entity(self, source: SourceKind, key: str, mention_id: int | None = None) -> bool:
        if key in self.entities[source]:
            return False
        self.entities[source][key] = TrackedEntity(source=source, key=key, mention_id=mention_id)
        return True

    def remove_entity(self, source: SourceKind, key: str) -> bool:
        # lifecycle state stays; the next tick polls it and retires the message
        return self.entities[source].pop(key, None) is not None

    # ---- lifecycle ----

    def lifecycle(self, source: SourceKind, key: str) -> MessageLifecycleState | None:
        return self.messages[source].get(key)

    def set_lifecycle(self, source: SourceKind, key: str, state: MessageLifecycleState) -> None:
        self.messages[source][key] = state

    def clear_lifecycle(self, source: SourceKind, key: str) -> MessageLifecycleState | None:
        return self.messages[source].pop(key, None)

    def place_unplaced_messages(self, channel_id: int | None) -> int:
        if not channel_id:
            return 0
        placed = 0
        for states in self.messages.values():
            for state in states.values():
                if state.channel_id == UNPLACED_CHANNEL_ID:
                    state.channel_id = int(channel_id)
                    placed += 1
        return placed

    def active_message_count(self, source: SourceKind) -> int:
        return len(self.messages[source])

    # ---- serialization ----

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "settings": self.settings.to_payload(),
            "entities": {
                kind.value: [e.to_payload() for e in self.entities[kind].values()] for kind in SourceKind
            },
            "messages": {
                kind.value: {key: st.to_payload() for key, st in self.messages[kind].items()} for kind in SourceKind
            },
            "health": {kind.value: self.health[kind].to_payload() for kind in SourceKind},
            "tick": self.tick.to_payload(),
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any] | None) -> "StateDocument":
        if not isinstance(raw, dict):
            return cls()
        payload = raw if _int(raw.get("version")) >= STATE_DOCUMENT_VERSION else upgrade_legacy_payload(raw)

        doc = cls(settings=PresenceSettings.from_payload(payload.get("settings")))

        entities_raw = payload.get("entities") if isinstance(payload.get("entities"), dict) else {}
        for kind in SourceKind:
            for item in entities_raw.get(kind.value) or []:
                if not isinstance(item, dict):
                    continue
                key = normalize_entity_key(kind, item.get("key"))
                if not key:
                    continue
                doc.add_entity(kind, key, _optional_int(item.get("mention_id")))

        messages_raw = payload.get("messages") if isinstance(payload.get("messages"), dict) else {}
        for kind in SourceKind:
            per_source = messages_raw.get(kind.value)
            if not isinstance(per_source, dict):
                continue
            for key, item in per_source.items():
                state = _lifecycle_from_payload(item)
                norm = normalize_entity_key(kind, key)
                if state is None or not norm:
                    continue
                doc.set_lifecycle(kind, norm, state)

        health_raw = payload.get("health") if isinstance(payload.get("health"), dict) else {}
        for kind in SourceKind:
            item = health_raw.get(kind.value)
            if isinstance(item, dict):
                doc.health[kind] = UpstreamHealth(
                    consecutive_failures=max(0, _int(item.get("consecutive_failures"))),
                    not_before=max(0, _int(item.get("not_before"))),
                    last_error=item.get("last_error") or None,
                    last_error_at=_int(item.get("last_error_at")),
                    last_success_at=_int(item.get("last_success_at")),
                    last_logged_at=_int(item.get("last_logged_at")),
                )

        tick_raw = payload.get("tick") if isinstance(payload.get("tick"), dict) else {}
        doc.tick = TickMetadata(
            last_tick_at=_int(tick_raw.get("last_tick_at")),
            last_tick_duration_ms=_int(tick_raw.get("last_tick_duration_ms")),
        )
        return doc


def _lifecycle_from_payload(item: Any) -> MessageLifecycleState | None:
    if not isinstance(item, dict):
        return None
    message_id = _optional_int(item.get("message_id"))
    channel_id = _optional_int(item.get("channel_id"))
    if not message_id or channel_id is None:
        return None
    return MessageLifecycleState(
        channel_id=channel_id,
        message_id=message_id,
        session_key=str(item.get("session_key") or ""),
        created_at=_int(item.get("created_at")),
    )


def upgrade_legacy_payload(raw: dict[str, Any]) -> dict[str, Any]:
    """Map the legacy camelCase `data.json` layout onto the current one.

    Legacy message records carry no channel id; they are attributed to the
    notify channel configured at the time, or left unplaced until one is
    configured (see `StateDocument.place_unplaced_messages`).
    """
    legacy = copy.deepcopy(raw)
    legacy_settings = legacy.get("settings") if isinstance(legacy.get("settings"), dict) else {}
    settings: dict[str, Any] = {}
    for old, new in LEGACY_SETTINGS_MAP.items():
        if old in legacy_settings:
            settings[new] = legacy_settings[old]
    for name, value in legacy_settings.items():
        if name in PresenceSettings.__dataclass_fields__:
            settings.setdefault(name, value)

    notify_channel_id = _optional_int(settings.get("notify_channel_id"))
    state = legacy.get("state") if isinstance(legacy.get("state"), dict) else {}

    entities: dict[str, list[dict[str, Any]]] = {}
    messages: dict[str, dict[str, Any]] = {}
    health: dict[str, Any] = {}
    for kind, (section, key_field, active_key, health_key) in LEGACY_STREAM_SECTIONS.items():
        block = legacy.get(section) if isinstance(legacy.get(section), dict) else {}
        entities[kind.value] = [
            {"key": s.get(key_field), "mention_id": s.get("discordId")}
            for s in (block.get("streamers") or [])
            if isinstance(s, dict)
        ]
        active = state.get(active_key) if isinstance(state.get(active_key), dict) else {}
        messages[kind.value] = {
            key: {
                "channel_id": notify_channel_id or UNPLACED_CHANNEL_ID,
                "message_id": rec.get("messageId"),
                "session_key": rec.get("sessionKey"),
                "created_at": rec.get("createdAt"),
            }
            for key, rec in active.items()
            if isinstance(rec, dict)
        }
        h = state.get(health_key) if isinstance(state.get(health_key), dict) else {}
        health[kind.value] = {
            "consecutive_failures": h.get("consecutiveFailures"),
            "not_before": h.get("nextAllowedAt"),
            "last_error": h.get("lastError"),
            "last_error_at": h.get("lastErrorAt"),
            "last_success_at": h.get("lastSuccessAt"),
            "last_logged_at": h.get("lastLoggedAt"),
        }

    fivem = legacy.get("fivem") if isinstance(legacy.get("fivem"), dict) else {}
    fivem_settings = fivem.get("settings") if isinstance(fivem.get("settings"), dict) else {}
    base_url = fivem_settings.get("baseUrl")
    entities[SourceKind.SERVER.value] = [{"key": base_url}] if base_url else []
    if fivem_settings.get("timeoutMs"):
        settings["server_timeout_ms"] = fivem_settings.get("timeoutMs")

    return {
        "version": STATE_DOCUMENT_VERSION,
        "settings": settings,
        "entities": entities,
        "messages": messages,
        "health": health,
        "tick": {
            "last_tick_at": state.get("lastTickAt"),
            "last_tick_duration_ms": state.get("lastTickDurationMs"),
        },
    }


def apply_seed(document: StateDocument, seed: dict[str, Any] | None) -> list[str]:
    """Merge a YAML seed into a document; returns a list of what was added."""
    added: list[str] = []
    if not isinstance(seed, dict):
        return added
    seed_settings = seed.get("settings") if isinstance(seed.get("settings"), dict) else {}
    defaults = PresenceSettings()
    merged = PresenceSettings.from_payload({**document.settings.to_payload(), **seed_settings})
    for name in seed_settings:
        if not hasattr(defaults, name):
            continue
        # only fill values still at their defaults; stored edits win
        if getattr(document.settings, name) == getattr(defaults, name) and getattr(merged, name) != getattr(defaults, name):
            setattr(document.settings, name, getattr(merged, name))
            added.append(f"settings.{name}")

    sections = {SourceKind.TWITCH: "twitch", SourceKind.KICK: "kick", SourceKind.SERVER: "servers"}
    for kind, section in sections.items():
        for item in seed.get(section) or []:
            if isinstance(item, str):
                item = {"key": item}
            if not isinstance(item, dict):
                continue
            key = normalize_entity_key(kind, item.get("key"))
            if key and document.add_entity(kind, key, _optional_int(item.get("mention_id"))):
                added.append(f"{kind.value}:{key}")
    return added
