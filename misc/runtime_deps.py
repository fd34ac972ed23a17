from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RuntimeDeps:
    # core
    scheduler: Any
    bot_name: str


@dataclass(frozen=True)
class RuntimeBootDeps:
    presence_enabled: bool = True
    startup_tick: bool = True
