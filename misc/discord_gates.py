from __future__ import annotations

import discord


def member_can_manage_presence(member, allowed_role_ids: set[int]) -> bool:
    # DMs never reach the config commands.
    if member is None or not isinstance(member, discord.Member):
        return False

    perms = getattr(member, "guild_permissions", None)
    if perms is not None and (perms.administrator or perms.manage_guild):
        return True
    role_ids = {int(getattr(role, "id", 0) or 0) for role in getattr(member, "roles", [])}
    return bool(allowed_role_ids and role_ids & set(allowed_role_ids))
