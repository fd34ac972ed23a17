from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from presence.models import Snapshot

DEFAULT_TITLE_PATTERN = r"nox\s*rp"
MAX_PATTERN_LENGTH = 200


@dataclass(frozen=True, slots=True)
class MatchRules:
    required_category_id: str | None = None
    title_pattern: str = DEFAULT_TITLE_PATTERN


@lru_cache(maxsize=64)
def compile_title_pattern(pattern: str | None) -> re.Pattern[str]:
    p = (pattern or "").strip()
    if not p or len(p) > MAX_PATTERN_LENGTH:
        return re.compile(DEFAULT_TITLE_PATTERN, re.IGNORECASE)
    try:
        return re.compile(p, re.IGNORECASE)
    except re.error:
        return re.compile(DEFAULT_TITLE_PATTERN, re.IGNORECASE)


def validate_title_pattern(pattern: str | None) -> tuple[bool, str]:
    p = (pattern or "").strip()
    if not p:
        return (False, "Regex cannot be empty.")
    if len(p) > MAX_PATTERN_LENGTH:
        return (False, f"Regex is too long (max {MAX_PATTERN_LENGTH} chars).")
    try:
        re.compile(p, re.IGNORECASE)
    except re.error as e:
        return (False, f"Invalid regex: {e}")
    return (True, "")


def category_matches(snapshot: Snapshot, rules: MatchRules) -> bool:
    required = str(rules.required_category_id or "").strip()
    if not required:
        return True
    return str(snapshot.category_id or "").strip() == required


def title_matches(snapshot: Snapshot, rules: MatchRules) -> bool:
    return compile_title_pattern(rules.title_pattern).search(snapshot.title or "") is not None


def qualifies(snapshot: Snapshot | None, rules: MatchRules) -> bool:
    if snapshot is None or not snapshot.is_live:
        return False
    return category_matches(snapshot, rules) and title_matches(snapshot, rules)


def explain_match(snapshot: Snapshot | None, rules: MatchRules) -> dict[str, bool]:
    if snapshot is None:
        return {"live": False, "category": False, "keyword": False, "qualifies": False}
    return {
        "live": bool(snapshot.is_live),
        "category": category_matches(snapshot, rules),
        "keyword": title_matches(snapshot, rules),
        "qualifies": qualifies(snapshot, rules),
    }
