from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from typing import Callable
from typing import Protocol

from presence.models import EffectResult
from presence.models import LiveMessage
from presence.models import MessageCheck
from presence.models import MessageLifecycleState
from presence.models import Snapshot
from presence.models import SourceKind
from presence.models import TrackedEntity
from presence.state_document import StateDocument
from presence.state_document import UNPLACED_CHANNEL_ID


class MessageEffector(Protocol):
    async def create(self, channel_id: int, message: LiveMessage) -> EffectResult: ...

    async def delete(self, channel_id: int, message_id: int) -> EffectResult: ...

    async def exists(self, channel_id: int, message_id: int) -> MessageCheck: ...


class Transition(str, Enum):
    ABSENT = "absent"
    TRACKED = "tracked"
    STALE_HANDLE = "stale_handle"
    ROLLED = "rolled"
    NEW = "new"
    RETIRED = "retired"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    transition: Transition
    changed: bool
    created_message_id: int | None = None


def classify(
    state: MessageLifecycleState | None,
    *,
    qualified: bool,
    session_key: str,
    destination_channel_id: int | None,
) -> Transition:
    """Pick the transition before any effector call.

    TRACKED here means "looks tracked"; the reconciler still verifies the
    message exists and may downgrade it to STALE_HANDLE.
    """
    if not qualified:
        return Transition.RETIRED if state is not None else Transition.ABSENT
    if state is None or not state.message_id:
        return Transition.NEW
    if state.session_key != session_key:
        return Transition.ROLLED
    if destination_channel_id and int(state.channel_id) != int(destination_channel_id):
        return Transition.ROLLED
    return Transition.TRACKED


RenderFunc = Callable[[Snapshot, "TrackedEntity | None", Any], LiveMessage]


class PresenceReconciler:
    def __init__(
        self,
        *,
        effector: MessageEffector,
        render: RenderFunc,
        log: Callable[[str], None] = print,
    ) -> None:
        self.effector = effector
        self.render = render
        self.log = log

    async def reconcile(
        self,
        document: StateDocument,
        source: SourceKind,
        key: str,
        snapshot: Snapshot | None,
        *,
        qualified: bool,
        now: int,
    ) -> ReconcileResult:
        state = document.lifecycle(source, key)
        if state is not None and int(state.channel_id) == UNPLACED_CHANNEL_ID:
            # imported handle with no channel yet; nowhere to verify or delete it
            return ReconcileResult(Transition.TRACKED, changed=False)
        destination = document.settings.notify_channel_id
        session_key = snapshot.session_key if snapshot is not None else ""
        transition = classify(
            state,
            qualified=qualified,
            session_key=session_key,
            destination_channel_id=destination,
        )

        if transition == Transition.ABSENT:
            return ReconcileResult(transition, changed=False)

        if transition == Transition.RETIRED:
            if state is not None and state.message_id:
                await self._delete_best_effort(source, key, state)
            document.clear_lifecycle(source, key)
            return ReconcileResult(transition, changed=True)

        if transition == Transition.TRACKED:
            check = await self.effector.exists(int(state.channel_id), int(state.message_id))
            if check != MessageCheck.MISSING:
                return ReconcileResult(transition, changed=False)
            self.log(f"[Presence] {source.value}:{key} message {state.message_id} is gone; re-announcing")
            document.clear_lifecycle(source, key)
            created = await self._create(document, source, key, snapshot, now)
            # state was cleared either way, so the document changed
            return ReconcileResult(Transition.STALE_HANDLE, changed=True, created_message_id=created)

        if transition == Transition.ROLLED:
            # delete strictly before create; never two live messages per entity
            await self._delete_best_effort(source, key, state)
            document.clear_lifecycle(source, key)
            created = await self._create(document, source, key, snapshot, now)
            return ReconcileResult(transition, changed=True, created_message_id=created)

        if state is not None:
            document.clear_lifecycle(source, key)
        created = await self._create(document, source, key, snapshot, now)
        return ReconcileResult(
            Transition.NEW,
            changed=created is not None or state is not None,
            created_message_id=created,
        )

    async def _create(
        self,
        document: StateDocument,
        source: SourceKind,
        key: str,
        snapshot: Snapshot | None,
        now: int,
    ) -> int | None:
        destination = document.settings.notify_channel_id
        if snapshot is None or not destination:
            return None
        message = self.render(snapshot, document.entity(source, key), document.settings)
        result = await self.effector.create(int(destination), message)
        if not result.ok or not result.message_id:
            self.log(f"[Presence] announce failed for {source.value}:{key}: {result.error or 'no message id'}")
            return None
        document.set_lifecycle(
            source,
            key,
            MessageLifecycleState(
                channel_id=int(destination),
                message_id=int(result.message_id),
                session_key=snapshot.session_key,
                created_at=int(now),
            ),
        )
        return int(result.message_id)

    async def _delete_best_effort(self, source: SourceKind, key: str, state: MessageLifecycleState) -> None:
        result = await self.effector.delete(int(state.channel_id), int(state.message_id))
        if not result.ok:
            self.log(f"[Presence] delete failed for {source.value}:{key} message={state.message_id}: {result.error}")
