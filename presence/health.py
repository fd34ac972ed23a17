from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from presence.models import SourceKind
from presence.models import UpstreamHealth
from upstream.errors import UpstreamError
from upstream.errors import upstream_error_from_exception

LOG_INTERVAL_MS = 5 * 60_000


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    base_ms: int
    rate_limited_base_ms: int
    cap_ms: int
    jitter_ms: int = 5_000
    max_exponent: int = 6


STREAM_BACKOFF = BackoffPolicy(base_ms=30_000, rate_limited_base_ms=60_000, cap_ms=10 * 60_000)
SERVER_BACKOFF = BackoffPolicy(base_ms=5_000, rate_limited_base_ms=15_000, cap_ms=120_000)

DEFAULT_POLICIES = {
    SourceKind.TWITCH: STREAM_BACKOFF,
    SourceKind.KICK: STREAM_BACKOFF,
    SourceKind.SERVER: SERVER_BACKOFF,
}


def _fmt_ms(ts: int) -> str:
    if not ts:
        return "none"
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat()


def compute_backoff_ms(
    policy: BackoffPolicy,
    error: UpstreamError,
    consecutive_failures: int,
    *,
    rng: random.Random | None = None,
) -> int:
    base = policy.base_ms
    if error.rate_limited:
        base = policy.rate_limited_base_ms
        if error.retry_after_seconds:
            base = max(base, int(error.retry_after_seconds * 1000))
    exponent = min(policy.max_exponent, max(0, int(consecutive_failures) - 1))
    delay = min(policy.cap_ms, base * (2**exponent))
    jitter = (rng or random).randint(0, policy.jitter_ms) if policy.jitter_ms > 0 else 0
    return int(delay + jitter)


class HealthTracker:
    """Source-wide failure bookkeeping and backoff gating.

    Operates on the `health` mapping of a state document; records are
    pre-provisioned per source and mutated in place. `dirty` flips on every
    mutation so the scheduler knows the document needs saving.
    """

    def __init__(
        self,
        health: dict[SourceKind, UpstreamHealth],
        *,
        policies: dict[SourceKind, BackoffPolicy] | None = None,
        rng: random.Random | None = None,
        log: Callable[[str], None] = print,
    ) -> None:
        self.health = health
        self.policies = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)
        self.rng = rng or random.Random()
        self.log = log
        self.dirty = False

    def record_for(self, source: SourceKind) -> UpstreamHealth:
        record = self.health.get(source)
        if record is None:
            record = UpstreamHealth()
            self.health[source] = record
        return record

    def is_gated(self, source: SourceKind, now: int) -> bool:
        record = self.health.get(source)
        if record is None:
            return False
        return int(record.not_before or 0) > int(now)

    def record_failure(self, source: SourceKind, error: BaseException, now: int, *, context: str = "") -> bool:
        err = upstream_error_from_exception(error)
        record = self.record_for(source)
        record.consecutive_failures = int(record.consecutive_failures or 0) + 1

        policy = self.policies.get(source, STREAM_BACKOFF)
        delay_ms = compute_backoff_ms(policy, err, record.consecutive_failures, rng=self.rng)
        # never pull the gate earlier within one failure streak
        record.not_before = max(int(record.not_before or 0), int(now) + delay_ms)

        label = context or source.value
        record.last_error = f"{label}: {err.describe()}"
        record.last_error_at = int(now)
        self.dirty = True

        retryable = err.retryable
        if int(now) - int(record.last_logged_at or 0) > LOG_INTERVAL_MS:
            record.last_logged_at = int(now)
            kind = "API error" if retryable else "non-retryable API error"
            self.log(
                f"[{source.value.capitalize()}] {kind}. failures={record.consecutive_failures} "
                f"backoffUntil={_fmt_ms(record.not_before)} err={record.last_error}"
            )
        return retryable

    def record_success(self, source: SourceKind, now: int) -> None:
        record = self.record_for(source)
        # last_success_at alone is not worth a save; it rides along with the next one
        if record.consecutive_failures or record.not_before:
            self.dirty = True
        record.consecutive_failures = 0
        record.not_before = 0
        record.last_success_at = int(now)

    def consume_dirty(self) -> bool:
        dirty = self.dirty
        self.dirty = False
        return dirty
