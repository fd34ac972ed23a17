from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from config.defaults import DEFAULT_SERVER_TIMEOUT_MS
from config.defaults import SERVER_BATCH_SIZE
from presence.match_filter import MatchRules
from presence.models import Snapshot
from presence.models import SourceKind
from presence.settings import PresenceSettings
from presence.snapshots import derive_session_key
from presence.snapshots import normalize_server_url
from upstream.errors import UpstreamError
from upstream.http import JsonHttpClient

SERVER_ENDPOINTS = ("dynamic.json", "info.json", "players.json")

# ^0..^9 colour codes in FiveM hostnames
_COLOR_CODE_RE = re.compile(r"\^[0-9]")


@dataclass(slots=True)
class EndpointResult:
    ok: bool
    status: int = 0
    data: Any = None
    blocked: bool = False
    error: UpstreamError | None = None

    @property
    def overloaded(self) -> bool:
        return self.status == 429 or self.status >= 500


@dataclass(slots=True)
class ServerStatus:
    online: bool
    blocked: bool = False
    dynamic: dict[str, Any] = field(default_factory=dict)
    info: dict[str, Any] = field(default_factory=dict)
    players: list[Any] = field(default_factory=list)


def endpoint_result(status: int, body: str) -> EndpointResult:
    blocked = "nope" in (body or "").lower()[:64]
    if not 200 <= status < 300:
        return EndpointResult(ok=False, status=status, blocked=blocked)
    try:
        data = json.loads(body) if body else None
    except json.JSONDecodeError:
        # a 2xx text answer still means the server is up
        return EndpointResult(ok=True, status=status, data=body, blocked=blocked)
    return EndpointResult(ok=True, status=status, data=data, blocked=blocked)


def server_hostname(status: ServerStatus) -> str:
    vars_ = status.info.get("vars") if isinstance(status.info.get("vars"), dict) else {}
    for candidate in (
        status.dynamic.get("hostname"),
        vars_.get("sv_projectName"),
        vars_.get("sv_hostname"),
        status.info.get("server"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return _COLOR_CODE_RE.sub("", candidate).strip()
    return "FiveM Server"


def parse_server_status(base_url: str, status: ServerStatus) -> Snapshot:
    hostname = server_hostname(status)
    vars_ = status.info.get("vars") if isinstance(status.info.get("vars"), dict) else {}
    try:
        clients = int(status.dynamic.get("clients") or len(status.players) or 0)
    except (TypeError, ValueError):
        clients = 0
    try:
        max_clients = int(status.dynamic.get("sv_maxclients") or vars_.get("sv_maxClients") or 0) or None
    except (TypeError, ValueError):
        max_clients = None
    return Snapshot(
        source=SourceKind.SERVER,
        key=base_url,
        is_live=status.online,
        title=hostname,
        category_id=None,
        category_name="FiveM",
        session_key=derive_session_key(None, hostname),
        url=base_url,
        display_name=hostname,
        details={"clients": clients, "max_clients": max_clients, "blocked": status.blocked},
    )


class ServerStatusClient:
    def __init__(self, *, http: JsonHttpClient | None = None):
        self.http = http or JsonHttpClient()

    async def _endpoint(self, url: str, *, timeout_seconds: float) -> EndpointResult:
        try:
            status, body = await self.http.get_raw(url, context="server.fetch", timeout_seconds=timeout_seconds)
        except UpstreamError as e:
            return EndpointResult(ok=False, error=e)
        return endpoint_result(status, body)

    async def get_status(self, base_url: str, *, timeout_ms: int = DEFAULT_SERVER_TIMEOUT_MS) -> ServerStatus:
        """Query the three endpoints concurrently.

        Unreachable or refusing servers come back as offline. Raises only when
        every endpoint answered 429/5xx, which means the server is there but
        shedding load.
        """
        timeout_seconds = max(0.5, int(timeout_ms) / 1000)
        dyn, inf, ply = await asyncio.gather(
            *(self._endpoint(f"{base_url}/{name}", timeout_seconds=timeout_seconds) for name in SERVER_ENDPOINTS)
        )
        results = (dyn, inf, ply)
        if all(r.overloaded for r in results):
            worst = next((r for r in results if r.status == 429), results[0])
            raise UpstreamError(f"server {base_url}: all endpoints answered {worst.status}", status=worst.status)
        return ServerStatus(
            online=any(r.ok for r in results),
            blocked=any(r.blocked for r in results),
            dynamic=dyn.data if dyn.ok and isinstance(dyn.data, dict) else {},
            info=inf.data if inf.ok and isinstance(inf.data, dict) else {},
            players=ply.data if ply.ok and isinstance(ply.data, list) else [],
        )


class ServerStatusProvider:
    source_kind = SourceKind.SERVER
    batch_size = SERVER_BATCH_SIZE
    enabled = True

    def __init__(self, client: ServerStatusClient | None = None):
        self.client = client or ServerStatusClient()

    async def match_rules(self, settings: PresenceSettings) -> MatchRules:
        return MatchRules(required_category_id=None, title_pattern=settings.server_title_pattern)

    async def fetch(self, keys: list[str], settings: PresenceSettings) -> list[Snapshot]:
        urls = [u for u in (normalize_server_url(k) for k in keys) if u]
        statuses = await asyncio.gather(
            *(self.client.get_status(u, timeout_ms=settings.server_timeout_ms) for u in urls),
            return_exceptions=True,
        )
        out: list[Snapshot] = []
        for url, status in zip(urls, statuses):
            if isinstance(status, BaseException):
                raise status
            out.append(parse_server_status(url, status))
        return out

    async def discover(self, settings: PresenceSettings, rules: MatchRules) -> list[Snapshot]:
        return []

    async def close(self) -> None:
        await self.client.http.close()
