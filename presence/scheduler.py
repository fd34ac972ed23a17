from __future__ import annotations

import asyncio
import time
from typing import Callable
from typing import Protocol

from config.defaults import SAFETY_SAVE_INTERVAL_MS
from jobs.presence import presence_loop
from presence.health import HealthTracker
from presence.match_filter import MatchRules
from presence.match_filter import explain_match
from presence.match_filter import qualifies
from presence.models import Snapshot
from presence.models import SourceKind
from presence.reconciler import PresenceReconciler
from presence.settings import PresenceSettings
from presence.snapshots import chunked
from presence.snapshots import normalize_entity_key
from presence.state_document import StateDocument


class SnapshotProvider(Protocol):
    source_kind: SourceKind
    batch_size: int

    @property
    def enabled(self) -> bool: ...

    async def match_rules(self, settings: PresenceSettings) -> MatchRules: ...

    async def fetch(self, keys: list[str], settings: PresenceSettings) -> list[Snapshot]: ...

    async def discover(self, settings: PresenceSettings, rules: MatchRules) -> list[Snapshot]: ...


class StateStore(Protocol):
    async def load(self) -> StateDocument: ...

    async def save(self, document: StateDocument) -> None: ...


def now_ms() -> int:
    return int(time.time() * 1000)


class PresenceScheduler:
    """Drives presence ticks: gate, fetch, filter, reconcile, persist.

    One tick at a time: a tick requested while another is running returns
    False immediately. Sources are processed sequentially and entities one by
    one so the document is only ever touched by a single writer.
    """

    def __init__(
        self,
        *,
        document: StateDocument,
        store: StateStore,
        providers: list[SnapshotProvider],
        reconciler: PresenceReconciler,
        tracker: HealthTracker | None = None,
        clock: Callable[[], int] = now_ms,
        safety_save_interval_ms: int = SAFETY_SAVE_INTERVAL_MS,
    ) -> None:
        self.document = document
        self.store = store
        self.providers = {p.source_kind: p for p in providers}
        self.reconciler = reconciler
        self.tracker = tracker or HealthTracker(document.health)
        self.clock = clock
        self.safety_save_interval_ms = int(safety_save_interval_ms)

        self.last_save_at = 0
        self._tick_running = False
        self._save_pending = False
        self._timer_task: asyncio.Task | None = None

    @property
    def tick_running(self) -> bool:
        return self._tick_running

    def interval_seconds(self) -> int:
        return self.document.settings.interval_seconds()

    # ---- timer ----

    def start(self, *, run_immediately: bool = True) -> bool:
        if self._timer_task is not None and not self._timer_task.done():
            return False
        self._timer_task = asyncio.create_task(
            presence_loop(
                scheduler=self,
                interval_seconds=self.interval_seconds,
                run_immediately=run_immediately,
            )
        )
        print(f"[Presence] loop started interval={self.interval_seconds()}s")
        return True

    def stop(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    def restart(self) -> None:
        # the re-entrancy flag lives on the scheduler, so an in-flight tick
        # still blocks the first tick of the new loop
        was_running = self._timer_task is not None
        self.stop()
        if was_running:
            self.start(run_immediately=False)

    # ---- tick ----

    async def tick(self) -> bool:
        if self._tick_running:
            return False
        self._tick_running = True

        started_at = self.clock()
        self.document.tick.last_tick_at = started_at
        changed = False
        placed = self.document.place_unplaced_messages(self.document.settings.notify_channel_id)
        if placed:
            print(f"[Presence] attached {placed} imported message(s) to channel {self.document.settings.notify_channel_id}")
            changed = True
        try:
            for source, provider in self.providers.items():
                try:
                    source_changed = await self._run_source(source, provider)
                except Exception as e:
                    print(f"[Presence] unexpected error source={source.value}: {e}")
                    continue
                changed = source_changed or changed
        finally:
            finished_at = self.clock()
            self.document.tick.last_tick_duration_ms = max(0, finished_at - started_at)
            health_dirty = self.tracker.consume_dirty()
            safety_due = finished_at - self.last_save_at >= self.safety_save_interval_ms
            if changed or health_dirty or self._save_pending or safety_due:
                await self._persist(finished_at)
            self._tick_running = False
        return changed

    async def _run_source(self, source: SourceKind, provider: SnapshotProvider) -> bool:
        if not provider.enabled:
            return False
        if self.tracker.is_gated(source, self.clock()):
            return False

        settings = self.document.settings
        try:
            rules = await provider.match_rules(settings)
        except Exception as e:
            self.tracker.record_failure(source, e, self.clock(), context=f"{source.value}.match_rules")
            return False

        changed = False
        polled: set[str] = set()
        for batch in chunked(self.document.keys_to_poll(source), provider.batch_size):
            try:
                snapshots = await provider.fetch(batch, settings)
            except Exception as e:
                self.tracker.record_failure(source, e, self.clock(), context=f"{source.value}.fetch")
                return changed

            by_key: dict[str, Snapshot] = {}
            for snap in snapshots:
                key = normalize_entity_key(source, snap.key)
                if key:
                    by_key[key] = snap
            for key in batch:
                polled.add(key)
                snap = by_key.get(key)
                result = await self.reconciler.reconcile(
                    self.document,
                    source,
                    key,
                    snap,
                    qualified=qualifies(snap, rules),
                    now=self.clock(),
                )
                changed = result.changed or changed

        if settings.discovery_mode:
            try:
                discovered = await provider.discover(settings, rules)
            except Exception as e:
                self.tracker.record_failure(source, e, self.clock(), context=f"{source.value}.discover")
                return changed
            for snap in discovered:
                key = normalize_entity_key(source, snap.key)
                if not key or key in polled or not qualifies(snap, rules):
                    continue
                polled.add(key)
                result = await self.reconciler.reconcile(
                    self.document,
                    source,
                    key,
                    snap,
                    qualified=True,
                    now=self.clock(),
                )
                changed = result.changed or changed

        self.tracker.record_success(source, self.clock())
        return changed

    # ---- persistence ----

    async def _persist(self, now: int) -> bool:
        try:
            await self.store.save(self.document)
        except Exception as e:
            self._save_pending = True
            print(f"[Store] save failed (will retry next tick): {e}")
            return False
        self._save_pending = False
        self.last_save_at = now
        return True

    async def save_now(self) -> bool:
        if self._tick_running:
            # the running tick persists on its way out
            self._save_pending = True
            return True
        return await self._persist(self.clock())

    # ---- diagnostics ----

    async def probe(self, source: SourceKind, key: str) -> tuple[Snapshot | None, dict[str, bool], str | None]:
        provider = self.providers.get(source)
        if provider is None or not provider.enabled:
            return (None, explain_match(None, MatchRules()), f"{source.value} is not configured.")
        settings = self.document.settings
        try:
            rules = await provider.match_rules(settings)
            snapshots = await provider.fetch([key], settings)
        except Exception as e:
            return (None, explain_match(None, MatchRules()), f"{source.value} API error: {e}")
        snap = next((s for s in snapshots if normalize_entity_key(source, s.key) == key), None)
        return (snap, explain_match(snap, rules), None)
