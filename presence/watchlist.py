from __future__ import annotations

import re
from datetime import datetime, timezone

from presence.models import PLATFORM_LABELS
from presence.models import Snapshot
from presence.models import SourceKind
from presence.snapshots import normalize_entity_key
from presence.state_document import StateDocument

SOURCE_USAGE = "twitch | kick | server"


def parse_mention_token(token: str | None) -> tuple[bool, int | None]:
    """Returns (ok, user_id). `none`/`clear` is ok with no id."""
    v = (token or "").strip()
    if v.lower() in {"", "none", "clear", "off", "-"}:
        return (True, None)
    m = re.fullmatch(r"<@!?(\d{15,20})>", v) or re.fullmatch(r"(\d{15,20})", v)
    if not m:
        return (False, None)
    return (True, int(m.group(1)))


def _resolve(source_token: str, key_token: str) -> tuple[SourceKind | None, str | None, str | None]:
    source = SourceKind.parse(source_token)
    if source is None:
        return (None, None, f"Unknown source '{source_token}'. Use {SOURCE_USAGE}.")
    key = normalize_entity_key(source, key_token)
    if key is None:
        if source == SourceKind.SERVER:
            return (source, None, "Server must look like `http(s)://host[:port]`.")
        return (source, None, f"Invalid {PLATFORM_LABELS[source]} name '{key_token}'.")
    return (source, key, None)


def add_watch(document: StateDocument, source_token: str, key_token: str, mention_token: str = "") -> tuple[bool, str]:
    source, key, err = _resolve(source_token, key_token)
    if err:
        return (False, err)
    ok, mention_id = parse_mention_token(mention_token)
    if not ok:
        return (False, "Mention must be a @user, a user id, or `none`.")
    if not document.add_entity(source, key, mention_id):
        return (False, f"{PLATFORM_LABELS[source]} `{key}` is already tracked.")
    suffix = f" (mentions <@{mention_id}>)" if mention_id else ""
    return (True, f"Now tracking {PLATFORM_LABELS[source]} `{key}`{suffix}.")


def remove_watch(document: StateDocument, source_token: str, key_token: str) -> tuple[bool, str]:
    source, key, err = _resolve(source_token, key_token)
    if err:
        return (False, err)
    if not document.remove_entity(source, key):
        return (False, f"{PLATFORM_LABELS[source]} `{key}` is not tracked.")
    note = " Its live message will be removed on the next check." if document.lifecycle(source, key) else ""
    return (True, f"Stopped tracking {PLATFORM_LABELS[source]} `{key}`.{note}")


def set_watch_mention(document: StateDocument, source_token: str, key_token: str, mention_token: str) -> tuple[bool, str]:
    source, key, err = _resolve(source_token, key_token)
    if err:
        return (False, err)
    entity = document.entity(source, key)
    if entity is None:
        return (False, f"{PLATFORM_LABELS[source]} `{key}` is not tracked.")
    ok, mention_id = parse_mention_token(mention_token)
    if not ok:
        return (False, "Mention must be a @user, a user id, or `none`.")
    entity.mention_id = mention_id
    if mention_id:
        return (True, f"{PLATFORM_LABELS[source]} `{key}` now mentions <@{mention_id}>.")
    return (True, f"{PLATFORM_LABELS[source]} `{key}` no longer mentions anyone.")


def format_watch_list(document: StateDocument, source_token: str = "", *, max_lines: int = 50) -> tuple[bool, str]:
    kinds = list(SourceKind)
    if source_token:
        source = SourceKind.parse(source_token)
        if source is None:
            return (False, f"Unknown source '{source_token}'. Use {SOURCE_USAGE}.")
        kinds = [source]

    lines: list[str] = []
    for kind in kinds:
        keys = sorted(document.tracked_keys(kind))
        lines.append(f"{PLATFORM_LABELS[kind]} ({len(keys)} tracked, {document.active_message_count(kind)} live)")
        for key in keys[:max_lines]:
            entity = document.entity(kind, key)
            live = " [LIVE]" if document.lifecycle(kind, key) else ""
            who = f" -> <@{entity.mention_id}>" if entity and entity.mention_id else ""
            lines.append(f"  - {key}{who}{live}")
        if len(keys) > max_lines:
            lines.append(f"  ... and {len(keys) - max_lines} more")
    return (True, "\n".join(lines))


def _fmt_ts(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_config(document: StateDocument) -> str:
    s = document.settings
    return "\n".join(
        [
            f"channel: {f'<#{s.notify_channel_id}>' if s.notify_channel_id else '(not set)'}",
            f"mention_here: {'ON' if s.mention_here else 'OFF'}",
            f"interval: {s.interval_seconds()}s",
            f"keyword_regex: {s.keyword_regex}",
            f"discovery: {'ON' if s.discovery_mode else 'OFF'} "
            f"(twitch_pages={s.discovery_twitch_pages} kick_limit={s.discovery_kick_limit})",
            f"twitch_game_id: {s.twitch_game_id}",
            f"kick_category_name: {s.kick_category_name}",
            f"server_title_pattern: {s.server_title_pattern} (timeout={s.server_timeout_ms}ms)",
            f"last_tick: {_fmt_ts(document.tick.last_tick_at)} ({document.tick.last_tick_duration_ms}ms)",
        ]
    )


def format_health(document: StateDocument, *, now: int) -> str:
    lines: list[str] = []
    for kind in SourceKind:
        h = document.health[kind]
        gated = int(h.not_before or 0) > int(now)
        lines.append(
            f"{PLATFORM_LABELS[kind]}: failures={h.consecutive_failures} "
            f"{'backoff until ' + _fmt_ts(h.not_before) if gated else 'ready'} "
            f"last_ok={_fmt_ts(h.last_success_at)}"
        )
        if h.last_error:
            lines.append(f"  last_error ({_fmt_ts(h.last_error_at)}): {h.last_error[:300]}")
    return "\n".join(lines)


def format_probe(source: SourceKind, key: str, snapshot: Snapshot | None, explain: dict[str, bool], error: str | None) -> str:
    label = PLATFORM_LABELS[source]
    if error:
        return f"{label} `{key}`: {error}"
    if snapshot is None:
        return f"{label} `{key}`: not live (no data returned)."
    yes_no = {True: "yes", False: "no"}
    lines = [
        f"{label} `{key}`",
        f"live: {yes_no[explain['live']]}",
        f"category ok: {yes_no[explain['category']]} ({snapshot.category_name or snapshot.category_id or '-'})",
        f"keyword ok: {yes_no[explain['keyword']]} (title: {snapshot.title[:200] or '-'})",
        f"would announce: {yes_no[explain['qualifies']]}",
    ]
    return "\n".join(lines)


def resolve_probe_target(source_token: str, key_token: str) -> tuple[SourceKind | None, str | None, str | None]:
    return _resolve(source_token, key_token)
