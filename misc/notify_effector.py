from __future__ import annotations

import asyncio

import aiohttp
import discord

from presence.models import EffectResult
from presence.models import LiveMessage
from presence.models import MessageCheck
from presence.models import PLATFORM_LABELS
from presence.models import Snapshot
from presence.models import SourceKind
from presence.models import TrackedEntity

# discord.py surfaces raw transport errors next to HTTPException
DELIVERY_ERRORS = (discord.HTTPException, aiohttp.ClientError, asyncio.TimeoutError, OSError)

PLATFORM_DOTS = {
    SourceKind.TWITCH: "\U0001F7E3",
    SourceKind.KICK: "\U0001F7E2",
    SourceKind.SERVER: "\U0001F7E0",
}


def build_live_message(snapshot: Snapshot, mention_id: int | None, mention_here: bool) -> LiveMessage:
    dot = PLATFORM_DOTS.get(snapshot.source, "")
    platform = PLATFORM_LABELS.get(snapshot.source, snapshot.source.value)
    who = f"<@{int(mention_id)}>" if mention_id else (snapshot.display_name or snapshot.key)
    head = "@here " if mention_here else ""

    if snapshot.source == SourceKind.SERVER:
        clients = snapshot.details.get("clients")
        max_clients = snapshot.details.get("max_clients")
        pop = f"{clients}/{max_clients}" if max_clients else f"{clients or 0}"
        lines = [f"{head}{dot} **{who}** is ONLINE ({pop} players)", snapshot.url]
    else:
        lines = [f"{head}{dot} **{who}** is LIVE on **{platform}**", snapshot.url]
        extra = " | ".join(p for p in (snapshot.title.strip(), snapshot.category_name.strip()) if p)
        if extra:
            lines.append(f"> {extra[:300]}")

    return LiveMessage(
        content="\n".join(lines),
        mention_everyone=bool(mention_here),
        mention_user_id=int(mention_id) if mention_id else None,
    )


def render_live_message(snapshot: Snapshot, entity: TrackedEntity | None, settings) -> LiveMessage:
    return build_live_message(
        snapshot,
        entity.mention_id if entity is not None else None,
        bool(getattr(settings, "mention_here", False)),
    )


def allowed_mentions_for(message: LiveMessage) -> discord.AllowedMentions:
    users = [discord.Object(id=int(message.mention_user_id))] if message.mention_user_id else False
    return discord.AllowedMentions(everyone=message.mention_everyone, users=users, roles=False, replied_user=False)


class DiscordMessageEffector:
    """Send/delete/check notification messages through discord.py.

    Never raises for Discord failures: errors come back as EffectResult or
    MessageCheck.UNKNOWN so the reconciler decides what to do.
    """

    def __init__(self, bot):
        self.bot = bot

    async def _channel(self, channel_id: int):
        channel = self.bot.get_channel(int(channel_id))
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(int(channel_id))
        except DELIVERY_ERRORS as e:
            print(f"[Discord] Could not fetch channel {channel_id}: {e}")
            return None

    async def create(self, channel_id: int, message: LiveMessage) -> EffectResult:
        channel = await self._channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            return EffectResult.failure(f"channel {channel_id} unavailable")
        try:
            sent = await channel.send(message.content, allowed_mentions=allowed_mentions_for(message))
        except DELIVERY_ERRORS as e:
            print(f"[Discord] Failed to send notify message status={getattr(e, 'status', '?')}: {e}")
            return EffectResult.failure(str(e))
        return EffectResult.success(int(sent.id))

    async def delete(self, channel_id: int, message_id: int) -> EffectResult:
        channel = await self._channel(channel_id)
        if channel is None or not hasattr(channel, "get_partial_message"):
            return EffectResult.failure(f"channel {channel_id} unavailable")
        try:
            await channel.get_partial_message(int(message_id)).delete()
        except discord.NotFound:
            # already gone
            return EffectResult.success(int(message_id))
        except DELIVERY_ERRORS as e:
            print(f"[Discord] Failed to delete notify message status={getattr(e, 'status', '?')}: {e}")
            return EffectResult.failure(str(e))
        return EffectResult.success(int(message_id))

    async def exists(self, channel_id: int, message_id: int) -> MessageCheck:
        channel = await self._channel(channel_id)
        if channel is None or not hasattr(channel, "fetch_message"):
            return MessageCheck.UNKNOWN
        try:
            await channel.fetch_message(int(message_id))
        except discord.NotFound:
            return MessageCheck.MISSING
        except DELIVERY_ERRORS as e:
            print(f"[Discord] Could not verify message {message_id} status={getattr(e, 'status', '?')}: {e}")
            return MessageCheck.UNKNOWN
        return MessageCheck.PRESENT
