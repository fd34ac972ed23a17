from __future__ import annotations

from discord.ext import commands

from misc.runtime_deps import RuntimeBootDeps
from misc.runtime_deps import RuntimeDeps
from presence.models import PLATFORM_LABELS
from presence.models import SourceKind


def describe_sources(scheduler) -> str:
    parts = []
    for kind in SourceKind:
        provider = scheduler.providers.get(kind)
        enabled = provider is not None and provider.enabled
        tracked = len(scheduler.document.tracked_keys(kind))
        parts.append(f"{PLATFORM_LABELS[kind].lower()}={'on' if enabled else 'off'}({tracked})")
    return " ".join(parts)


def register_runtime_events(
    bot: commands.Bot,
    *,
    deps: RuntimeDeps,
    boot: RuntimeBootDeps,
) -> None:
    @bot.event
    async def on_ready():
        # on_ready fires again after every gateway reconnect
        print(f"{deps.bot_name} is online as {bot.user}")
        scheduler = deps.scheduler
        if not scheduler.document.settings.notify_channel_id:
            print("[Presence] no notify channel set; use live.set channel <#channel> to start announcing")

        if not boot.presence_enabled or getattr(bot, "_presence_started", False):
            return
        bot._presence_started = True
        print(f"[Presence] sources {describe_sources(scheduler)}")
        scheduler.start(run_immediately=boot.startup_tick)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, (commands.CommandNotFound, commands.NoPrivateMessage)):
            return
        if isinstance(error, commands.BadArgument):
            await ctx.send(f"Error: {error}")
            return
        print(f"[Discord] command {getattr(ctx.command, 'name', '?')} failed: {error}")
        await ctx.send("Error: command failed; see logs.")
