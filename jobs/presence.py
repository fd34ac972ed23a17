from __future__ import annotations

import asyncio
from typing import Callable


async def presence_loop(
    *,
    scheduler,
    interval_seconds: Callable[[], int],
    run_immediately: bool = True,
) -> None:
    if not run_immediately:
        await asyncio.sleep(max(10, int(interval_seconds())))

    while True:
        try:
            # a restart cancels this loop, never a tick halfway through reconciling
            await asyncio.shield(scheduler.tick())
        except Exception as e:
            print(f"[Presence] loop error: {e}")
        # re-read every round so a changed interval applies without a restart
        await asyncio.sleep(max(10, int(interval_seconds())))
