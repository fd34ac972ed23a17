from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable


def _default_false(*args, **kwargs) -> bool:
    return False


@dataclass(frozen=True)
class CommandDeps:
    # Core/shared
    scheduler: Any = None
    send_chunked: Callable | None = None
    max_list_lines: int = 50


@dataclass(frozen=True)
class CommandGates:
    can_manage: Callable[[Any], bool] = _default_false
    allowed_role_ids: set[int] = field(default_factory=set)
