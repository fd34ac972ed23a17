from __future__ import annotations

from discord.ext import commands
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from presence.settings import apply_setting_change
from presence.watchlist import add_watch
from presence.watchlist import format_config
from presence.watchlist import format_health
from presence.watchlist import format_probe
from presence.watchlist import format_watch_list
from presence.watchlist import remove_watch
from presence.watchlist import resolve_probe_target
from presence.watchlist import set_watch_mention


def register(
    bot: commands.Bot,
    *,
    deps: CommandDeps,
    gates: CommandGates,
) -> None:
    if deps.scheduler is None:
        return

    scheduler = deps.scheduler

    async def _ensure_manager(ctx: commands.Context) -> bool:
        if gates.can_manage(ctx.author):
            return True
        await ctx.send("You need Manage Server or a live-notifier role for this command.")
        return False

    async def _reply(ctx: commands.Context, ok: bool, msg: str) -> None:
        await ctx.send(msg if ok else f"Error: {msg}")

    async def _save_after(ctx: commands.Context, ok: bool, msg: str) -> None:
        if ok and not await scheduler.save_now():
            msg += " (not saved yet; will retry on the next check)"
        await _reply(ctx, ok, msg)

    async def _send_block(ctx: commands.Context, text: str) -> None:
        await deps.send_chunked(ctx.channel, f"```\n{text[:7000]}\n```")

    @bot.command(name="live.config")
    @commands.guild_only()
    async def live_config(ctx: commands.Context):
        if not await _ensure_manager(ctx):
            return
        await _send_block(ctx, format_config(scheduler.document))

    @bot.command(name="live.health")
    @commands.guild_only()
    async def live_health(ctx: commands.Context):
        if not await _ensure_manager(ctx):
            return
        await _send_block(ctx, format_health(scheduler.document, now=scheduler.clock()))

    @bot.command(name="live.tick")
    @commands.guild_only()
    async def live_tick(ctx: commands.Context):
        if not await _ensure_manager(ctx):
            return
        if scheduler.tick_running:
            await ctx.send("A check is already running.")
            return
        changed = await scheduler.tick()
        await ctx.send("Check finished; notifications updated." if changed else "Check finished; nothing changed.")

    @bot.command(name="live.set")
    @commands.guild_only()
    async def live_set(ctx: commands.Context, field_name: str = "", *, value: str = ""):
        if not await _ensure_manager(ctx):
            return
        ok, msg, changed_field = apply_setting_change(
            scheduler.document.settings,
            field_name,
            value,
            current_channel_id=int(getattr(ctx.channel, "id", 0) or 0) or None,
        )
        if ok and changed_field == "check_interval_seconds":
            scheduler.restart()
        await _save_after(ctx, ok, msg)

    @bot.command(name="watch.add")
    @commands.guild_only()
    async def watch_add(ctx: commands.Context, source: str = "", key: str = "", mention: str = ""):
        if not await _ensure_manager(ctx):
            return
        ok, msg = add_watch(scheduler.document, source, key, mention)
        await _save_after(ctx, ok, msg)

    @bot.command(name="watch.remove")
    @commands.guild_only()
    async def watch_remove(ctx: commands.Context, source: str = "", key: str = ""):
        if not await _ensure_manager(ctx):
            return
        ok, msg = remove_watch(scheduler.document, source, key)
        await _save_after(ctx, ok, msg)

    @bot.command(name="watch.mention")
    @commands.guild_only()
    async def watch_mention(ctx: commands.Context, source: str = "", key: str = "", mention: str = ""):
        if not await _ensure_manager(ctx):
            return
        ok, msg = set_watch_mention(scheduler.document, source, key, mention)
        await _save_after(ctx, ok, msg)

    @bot.command(name="watch.list")
    @commands.guild_only()
    async def watch_list(ctx: commands.Context, source: str = ""):
        if not await _ensure_manager(ctx):
            return
        ok, text = format_watch_list(scheduler.document, source, max_lines=deps.max_list_lines)
        if not ok:
            await _reply(ctx, ok, text)
            return
        await _send_block(ctx, text)

    @bot.command(name="watch.status")
    @commands.guild_only()
    async def watch_status(ctx: commands.Context, source: str = "", key: str = ""):
        if not await _ensure_manager(ctx):
            return
        kind, normalized, err = resolve_probe_target(source, key)
        if err:
            await _reply(ctx, False, err)
            return
        snapshot, explain, probe_err = await scheduler.probe(kind, normalized)
        await _send_block(ctx, format_probe(kind, normalized, snapshot, explain, probe_err))
