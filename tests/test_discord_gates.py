from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest import mock

try:
    from misc.discord_gates import member_can_manage_presence
except ModuleNotFoundError:
    member_can_manage_presence = None


class FakeMember:
    def __init__(self, *, administrator=False, manage_guild=False, role_ids=()):
        self.guild_permissions = SimpleNamespace(administrator=administrator, manage_guild=manage_guild)
        self.roles = [SimpleNamespace(id=rid) for rid in role_ids]


@unittest.skipIf(member_can_manage_presence is None, "discord.py not installed")
class DiscordGatesTests(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("misc.discord_gates.discord.Member", FakeMember)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_dm_user_is_blocked(self):
        self.assertFalse(member_can_manage_presence(SimpleNamespace(roles=[]), {123}))
        self.assertFalse(member_can_manage_presence(None, {123}))

    def test_manage_server_is_allowed(self):
        self.assertTrue(member_can_manage_presence(FakeMember(manage_guild=True), set()))
        self.assertTrue(member_can_manage_presence(FakeMember(administrator=True), set()))

    def test_configured_role_is_allowed(self):
        self.assertTrue(member_can_manage_presence(FakeMember(role_ids=(1, 123)), {123}))
        self.assertFalse(member_can_manage_presence(FakeMember(role_ids=(1,)), {123}))

    def test_no_roles_configured_means_permission_only(self):
        self.assertFalse(member_can_manage_presence(FakeMember(role_ids=(123,)), set()))


if __name__ == "__main__":
    unittest.main()
