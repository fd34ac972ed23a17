from __future__ import annotations

from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from misc.commands.commands_presence import register as register_presence
from misc.discord_gates import member_can_manage_presence
from misc.events_runtime import register_runtime_events
from misc.runtime_deps import RuntimeBootDeps
from misc.runtime_deps import RuntimeDeps


def wire_bot_runtime(
    bot,
    *,
    scheduler,
    send_chunked,
    allowed_role_ids: set[int],
    bot_name: str = "Livewatch",
    max_list_lines: int = 50,
    presence_enabled: bool = True,
    startup_tick: bool = True,
) -> None:
    def can_manage(member) -> bool:
        return member_can_manage_presence(member, allowed_role_ids)

    command_deps = CommandDeps(
        scheduler=scheduler,
        send_chunked=send_chunked,
        max_list_lines=max_list_lines,
    )
    command_gates = CommandGates(
        can_manage=can_manage,
        allowed_role_ids=allowed_role_ids,
    )

    register_presence(
        bot,
        deps=command_deps,
        gates=command_gates,
    )

    register_runtime_events(
        bot,
        deps=RuntimeDeps(
            scheduler=scheduler,
            bot_name=bot_name,
        ),
        boot=RuntimeBootDeps(
            presence_enabled=presence_enabled,
            startup_tick=startup_tick,
        ),
    )
