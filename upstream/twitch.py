from __future__ import annotations

import time
from typing import Any

from config.defaults import TWITCH_BATCH_SIZE
from presence.match_filter import MatchRules
from presence.models import Snapshot
from presence.models import SourceKind
from presence.settings import PresenceSettings
from presence.snapshots import derive_session_key
from presence.snapshots import normalize_key
from upstream.errors import UpstreamError
from upstream.http import JsonHttpClient

TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
TWITCH_STREAMS_URL = "https://api.twitch.tv/helix/streams"


def parse_twitch_stream(item: dict[str, Any]) -> Snapshot | None:
    login = normalize_key(item.get("user_login"))
    if not login:
        return None
    stream_id = str(item.get("id") or "").strip()
    title = str(item.get("title") or "")
    # helix lists live streams only; the stream id changes per broadcast
    session_key = stream_id or derive_session_key(item.get("started_at"), title)
    return Snapshot(
        source=SourceKind.TWITCH,
        key=login,
        is_live=bool(stream_id) and str(item.get("type") or "live") == "live",
        title=title,
        category_id=str(item.get("game_id") or "") or None,
        category_name=str(item.get("game_name") or ""),
        session_key=session_key,
        url=f"https://twitch.tv/{login}",
        display_name=str(item.get("user_name") or login),
        details={"started_at": item.get("started_at"), "viewer_count": item.get("viewer_count")},
    )


def parse_twitch_streams(payload: Any) -> list[Snapshot]:
    rows = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise UpstreamError("twitch: unexpected streams payload")
    out: list[Snapshot] = []
    for item in rows:
        if isinstance(item, dict):
            snap = parse_twitch_stream(item)
            if snap is not None:
                out.append(snap)
    return out


class TwitchClient:
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
            TWITCH_TOKEN_URL,
            context="twitch.token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
        )
        token = str((payload or {}).get("access_token") or "")
        if not token:
            raise UpstreamError("twitch.token: no access_token in response")
        self._token = token
        self._token_expires_at = time.time() + float((payload or {}).get("expires_in") or 3600)
        return token

    async def _get_streams(self, params: list[tuple[str, str]], *, context: str) -> Any:
        token = await self._access_token()
        headers = {"Client-ID": self.client_id, "Authorization": f"Bearer {token}"}
        try:
            return await self.http.get_json(TWITCH_STREAMS_URL, context=context, params=params, headers=headers)
        except UpstreamError as e:
            if e.status == 401:
                self._token = None
            raise

    async def get_streams_by_logins(self, logins: list[str]) -> list[Snapshot]:
        params = [("user_login", login) for login in logins[:TWITCH_BATCH_SIZE]]
        params.append(("first", str(TWITCH_BATCH_SIZE)))
        payload = await self._get_streams(params, context="twitch.getStreamsByUserLogins")
        return parse_twitch_streams(payload)

    async def get_streams_by_game(self, game_id: str, *, first: int = 100, after: str | None = None) -> tuple[list[Snapshot], str | None]:
        params = [("game_id", str(game_id)), ("first", str(max(1, min(100, int(first)))))]
        if after:
            params.append(("after", after))
        payload = await self._get_streams(params, context="twitch.getStreamsByGameId")
        cursor = ((payload or {}).get("pagination") or {}).get("cursor") if isinstance(payload, dict) else None
        return (parse_twitch_streams(payload), cursor or None)


class TwitchProvider:
    source_kind = SourceKind.TWITCH
    batch_size = TWITCH_BATCH_SIZE

    def __init__(self, client: TwitchClient):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client.enabled

    async def match_rules(self, settings: PresenceSettings) -> MatchRules:
        return MatchRules(
            required_category_id=str(settings.twitch_game_id or "").strip() or None,
            title_pattern=settings.keyword_regex,
        )

    async def fetch(self, keys: list[str], settings: PresenceSettings) -> list[Snapshot]:
        # no game filter here: live in another category must read as "not qualifying"
        return await self.client.get_streams_by_logins(keys)

    async def discover(self, settings: PresenceSettings, rules: MatchRules) -> list[Snapshot]:
        if not rules.required_category_id:
            return []
        pages = max(1, min(50, int(settings.discovery_twitch_pages or 1)))
        found: list[Snapshot] = []
        cursor: str | None = None
        for _ in range(pages):
            streams, cursor = await self.client.get_streams_by_game(rules.required_category_id, after=cursor)
            found.extend(streams)
            if not cursor:
                break
        return found

    async def close(self) -> None:
        await self.client.http.close()
