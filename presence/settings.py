from __future__ import annotations

import re
from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import fields
from typing import Any

from config.defaults import DEFAULT_CHECK_INTERVAL_SECONDS
from config.defaults import DEFAULT_KICK_CATEGORY_NAME
from config.defaults import DEFAULT_KEYWORD_REGEX
from config.defaults import DEFAULT_SERVER_TIMEOUT_MS
from config.defaults import DEFAULT_SERVER_TITLE_PATTERN
from config.defaults import DEFAULT_TWITCH_GAME_ID
from config.defaults import MAX_CHECK_INTERVAL_SECONDS
from config.defaults import MIN_CHECK_INTERVAL_SECONDS
from presence.match_filter import validate_title_pattern

ON_VALUES = {"1", "true", "yes", "y", "on", "enable", "enabled"}
OFF_VALUES = {"0", "false", "no", "n", "off", "disable", "disabled"}


@dataclass(slots=True)
class PresenceSettings:
    notify_channel_id: int | None = None
    mention_here: bool = True
    keyword_regex: str = DEFAULT_KEYWORD_REGEX
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_SECONDS
    discovery_mode: bool = False
    discovery_twitch_pages: int = 5
    discovery_kick_limit: int = 100
    twitch_game_id: str = DEFAULT_TWITCH_GAME_ID
    kick_category_name: str = DEFAULT_KICK_CATEGORY_NAME
    server_title_pattern: str = DEFAULT_SERVER_TITLE_PATTERN
    server_timeout_ms: int = DEFAULT_SERVER_TIMEOUT_MS

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, raw: dict[str, Any] | None) -> "PresenceSettings":
        out = cls()
        if not isinstance(raw, dict):
            return out
        for f in fields(cls):
            if f.name not in raw or raw[f.name] is None:
                continue
            try:
                setattr(out, f.name, _coerce(f.name, raw[f.name], getattr(out, f.name)))
            except (TypeError, ValueError):
                continue
        return out

    def interval_seconds(self) -> int:
        return clamp_interval(self.check_interval_seconds)


def clamp_interval(value: Any) -> int:
    try:
        n = int(float(value))
    except (TypeError, ValueError):
        return DEFAULT_CHECK_INTERVAL_SECONDS
    return max(MIN_CHECK_INTERVAL_SECONDS, min(MAX_CHECK_INTERVAL_SECONDS, n))


def parse_on_off(value: Any) -> bool | None:
    v = str(value if value is not None else "").strip().lower()
    if v in ON_VALUES:
        return True
    if v in OFF_VALUES:
        return False
    return None


def parse_channel_token(token: str | None, *, current_channel_id: int | None = None) -> int | None:
    v = (token or "").strip()
    if not v:
        return None
    if v.lower() in {"here", "this"}:
        return int(current_channel_id) if current_channel_id else None
    m = re.fullmatch(r"<#!?(\d{15,20})>", v)
    if m:
        return int(m.group(1))
    if re.fullmatch(r"\d{15,20}", v):
        return int(v)
    return None


def _coerce(name: str, value: Any, default: Any) -> Any:
    if name == "notify_channel_id":
        text = str(value).strip()
        return int(text) if text else None
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        parsed = parse_on_off(value)
        if parsed is None:
            raise ValueError(f"not a boolean: {value!r}")
        return parsed
    if isinstance(default, int):
        return int(float(value))
    text = str(value).strip()
    if not text:
        raise ValueError("empty")
    return text


def apply_env_defaults(settings: PresenceSettings, env_values: dict[str, Any], *, force: bool = False) -> list[str]:
    """Copy env-provided values into stored settings.

    Stored values win unless `force`; only missing/empty stored values are
    filled otherwise. Returns the names that changed.
    """
    changed: list[str] = []
    defaults = PresenceSettings()
    for name, value in env_values.items():
        if value is None or not hasattr(settings, name):
            continue
        try:
            coerced = _coerce(name, value, getattr(defaults, name))
        except (TypeError, ValueError):
            continue
        current = getattr(settings, name)
        missing = current is None or current == ""
        if (force or missing) and current != coerced:
            setattr(settings, name, coerced)
            changed.append(name)
    return changed


SETTING_ALIASES = {
    "channel": "notify_channel_id",
    "mentionhere": "mention_here",
    "interval": "check_interval_seconds",
    "discovery": "discovery_mode",
    "discoverytwitchpages": "discovery_twitch_pages",
    "discoverykicklimit": "discovery_kick_limit",
    "twitchgameid": "twitch_game_id",
    "kickcategoryname": "kick_category_name",
    "regex": "keyword_regex",
    "serverregex": "server_title_pattern",
    "servertimeout": "server_timeout_ms",
}


def apply_setting_change(
    settings: PresenceSettings,
    field_token: str,
    raw_value: str,
    *,
    current_channel_id: int | None = None,
) -> tuple[bool, str, str | None]:
    """Validate and apply one `live.set` change.

    Returns (ok, message, field_name); field_name is None on failure.
    """
    name = SETTING_ALIASES.get((field_token or "").strip().lower())
    if name is None:
        return (False, f"Unknown setting '{field_token}'. Options: {', '.join(sorted(SETTING_ALIASES))}", None)
    value = (raw_value or "").strip()

    if name == "notify_channel_id":
        channel_id = parse_channel_token(value, current_channel_id=current_channel_id)
        if channel_id is None:
            return (False, "Usage: `live.set channel <#channel|id|here>`", None)
        settings.notify_channel_id = channel_id
        return (True, f"Notify channel set to <#{channel_id}>.", name)

    if name in {"mention_here", "discovery_mode"}:
        flag = parse_on_off(value)
        if flag is None:
            return (False, "Value must be on/off.", None)
        setattr(settings, name, flag)
        return (True, f"{field_token} is now {'ON' if flag else 'OFF'}.", name)

    if name == "check_interval_seconds":
        try:
            seconds = int(value)
        except ValueError:
            return (False, "Interval must be a whole number of seconds.", None)
        if seconds < MIN_CHECK_INTERVAL_SECONDS or seconds > MAX_CHECK_INTERVAL_SECONDS:
            return (
                False,
                f"Interval must be between {MIN_CHECK_INTERVAL_SECONDS} and {MAX_CHECK_INTERVAL_SECONDS} seconds.",
                None,
            )
        settings.check_interval_seconds = seconds
        return (True, f"Check interval set to {seconds}s.", name)

    if name in {"discovery_twitch_pages", "discovery_kick_limit", "server_timeout_ms"}:
        bounds = {
            "discovery_twitch_pages": (1, 50),
            "discovery_kick_limit": (1, 100),
            "server_timeout_ms": (500, 30_000),
        }[name]
        try:
            n = int(value)
        except ValueError:
            return (False, "Value must be a whole number.", None)
        if n < bounds[0] or n > bounds[1]:
            return (False, f"Value must be between {bounds[0]} and {bounds[1]}.", None)
        setattr(settings, name, n)
        return (True, f"{field_token} set to {n}.", name)

    if name in {"keyword_regex", "server_title_pattern"}:
        ok, err = validate_title_pattern(value)
        if not ok:
            return (False, err, None)
        setattr(settings, name, value)
        return (True, f"{field_token} set to `{value}`.", name)

    if not value:
        return (False, "Value cannot be empty.", None)
    setattr(settings, name, value)
    return (True, f"{field_token} set to `{value}`.", name)
