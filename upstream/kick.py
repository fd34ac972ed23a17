from __future__ import annotations

import time
from typing import Any
from typing import Callable

from config.defaults import KICK_BATCH_SIZE
from config.defaults import KICK_CATEGORY_CACHE_MS
from presence.match_filter import MatchRules
from presence.models import Snapshot
from presence.models import SourceKind
from presence.settings import PresenceSettings
from presence.snapshots import derive_session_key
from presence.snapshots import normalize_key
from upstream.errors import UpstreamError
from upstream.http import JsonHttpClient

KICK_TOKEN_URL = "https://id.kick.com/oauth/token"
KICK_API_BASE = "https://api.kick.com/public/v1"


def _rows(payload: Any, *, context: str) -> list[dict[str, Any]]:
    rows = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise UpstreamError(f"{context}: unexpected payload")
    return [r for r in rows if isinstance(r, dict)]


def parse_kick_channel(item: dict[str, Any]) -> Snapshot | None:
    slug = normalize_key(item.get("slug"))
    if not slug:
        return None
    stream = item.get("stream") if isinstance(item.get("stream"), dict) else {}
    category = item.get("category") if isinstance(item.get("category"), dict) else {}
    title = str(item.get("stream_title") or "")
    category_id = category.get("id")
    return Snapshot(
        source=SourceKind.KICK,
        key=slug,
        is_live=bool(stream.get("is_live")),
        title=title,
        category_id=str(category_id) if category_id not in (None, "") else None,
        category_name=str(category.get("name") or ""),
        session_key=derive_session_key(stream.get("start_time"), title),
        url=f"https://kick.com/{slug}",
        display_name=slug,
        details={"started_at": stream.get("start_time"), "viewer_count": stream.get("viewer_count")},
    )


def parse_kick_livestream(item: dict[str, Any]) -> Snapshot | None:
    slug = normalize_key(item.get("slug"))
    if not slug:
        return None
    category = item.get("category") if isinstance(item.get("category"), dict) else {}
    title = str(item.get("stream_title") or "")
    category_id = category.get("id")
    return Snapshot(
        source=SourceKind.KICK,
        key=slug,
        is_live=True,
        title=title,
        category_id=str(category_id) if category_id not in (None, "") else None,
        category_name=str(category.get("name") or ""),
        session_key=derive_session_key(item.get("started_at"), title),
        url=f"https://kick.com/{slug}",
        display_name=slug,
        details={"started_at": item.get("started_at"), "viewer_count": item.get("viewer_count")},
    )


def pick_category_id(rows: list[dict[str, Any]], name: str) -> str | None:
    """Exact (case-insensitive) name match first, then the first result."""
    wanted = normalize_key(name)
    for row in rows:
        if normalize_key(row.get("name")) == wanted and row.get("id") is not None:
            return str(row["id"])
    for row in rows:
        if row.get("id") is not None:
            return str(row["id"])
    return None


class KickClient:
    def __init__(self, *, client_id: str | None, client_secret: str | None, http: JsonHttpClient | None = None):
        self.client_id = (client_id or "").strip()
        self.client_secret = (client_secret or "").strip()
        self.http = http or JsonHttpClient()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token
        payload = await self.http.post_form(
            KICK_TOKEN_URL,
            context="kick.token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
        )
        token = str((payload or {}).get("access_token") or "")
        if not token:
            raise UpstreamError("kick.token: no access_token in response")
        self._token = token
        self._token_expires_at = time.time() + float((payload or {}).get("expires_in") or 3600)
        return token

    async def _get(self, path: str, params: list[tuple[str, str]], *, context: str) -> Any:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            return await self.http.get_json(f"{KICK_API_BASE}/{path}", context=context, params=params, headers=headers)
        except UpstreamError as e:
            if e.status == 401:
                self._token = None
            raise

    async def get_channels_by_slugs(self, slugs: list[str]) -> list[Snapshot]:
        params = [("slug", slug) for slug in slugs[:KICK_BATCH_SIZE]]
        payload = await self._get("channels", params, context="kick.getChannelsBySlugs")
        out: list[Snapshot] = []
        for row in _rows(payload, context="kick.getChannelsBySlugs"):
            snap = parse_kick_channel(row)
            if snap is not None:
                out.append(snap)
        return out

    async def find_category_id(self, name: str) -> str | None:
        payload = await self._get("categories", [("q", name)], context="kick.findCategoryIdByName")
        return pick_category_id(_rows(payload, context="kick.findCategoryIdByName"), name)

    async def get_livestreams_by_category(self, category_id: str, *, limit: int = 100) -> list[Snapshot]:
        params = [
            ("category_id", str(category_id)),
            ("limit", str(max(1, min(100, int(limit))))),
            ("sort", "started_at"),
        ]
        payload = await self._get("livestreams", params, context="kick.getLivestreamsByCategoryId")
        out: list[Snapshot] = []
        for row in _rows(payload, context="kick.getLivestreamsByCategoryId"):
            snap = parse_kick_livestream(row)
            if snap is not None:
                out.append(snap)
        return out


class KickProvider:
    source_kind = SourceKind.KICK
    batch_size = KICK_BATCH_SIZE

    def __init__(self, client: KickClient, *, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock
        # name -> (category id, resolved at ms)
        self._category_cache: dict[str, tuple[str, int]] = {}

    @property
    def enabled(self) -> bool:
        return self.client.enabled

    async def resolve_category_id(self, name: str) -> str | None:
        wanted = normalize_key(name)
        if not wanted:
            return None
        now = int(self.clock() * 1000)
        cached = self._category_cache.get(wanted)
        if cached and now - cached[1] < KICK_CATEGORY_CACHE_MS:
            return cached[0]
        category_id = await self.client.find_category_id(name)
        if not category_id:
            raise UpstreamError(f"kick: no category named {name!r}")
        self._category_cache[wanted] = (category_id, now)
        print(f"[Kick] category {name!r} resolved to id={category_id}")
        return category_id

    async def match_rules(self, settings: PresenceSettings) -> MatchRules:
        return MatchRules(
            required_category_id=await self.resolve_category_id(settings.kick_category_name),
            title_pattern=settings.keyword_regex,
        )

    async def fetch(self, keys: list[str], settings: PresenceSettings) -> list[Snapshot]:
        return await self.client.get_channels_by_slugs(keys)

    async def discover(self, settings: PresenceSettings, rules: MatchRules) -> list[Snapshot]:
        if not rules.required_category_id:
            return []
        return await self.client.get_livestreams_by_category(
            rules.required_category_id,
            limit=settings.discovery_kick_limit,
        )

    async def close(self) -> None:
        await self.client.http.close()
