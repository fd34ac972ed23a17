from __future__ import annotations

import unittest

from presence.models import MessageLifecycleState
from presence.models import SourceKind
from presence.settings import apply_env_defaults
from presence.state_document import STATE_DOCUMENT_VERSION
from presence.state_document import UNPLACED_CHANNEL_ID
from presence.state_document import StateDocument
from presence.state_document import apply_seed
from presence.state_document import upgrade_legacy_payload

LEGACY_DATA_JSON = {
    "settings": {
        "notifyChannelId": "111111111111111111",
        "mentionHere": False,
        "keywordRegex": "nox\\s*rp",
        "checkIntervalSeconds": 90,
        "discoveryMode": True,
        "twitchGta5GameId": "32982",
        "kickGtaCategoryName": "Grand Theft Auto V",
    },
    "twitch": {"streamers": [{"login": "Alpha", "discordId": "222222222222222222"}, {"login": "beta"}]},
    "kick": {"streamers": [{"slug": "kickster", "discordId": None}]},
    "state": {
        "twitchActiveMessages": {
            "alpha": {"messageId": "333333333333333333", "sessionKey": "2024-01-01T10:00:00Z", "createdAt": 1704103200000}
        },
        "kickActiveMessages": {"kickster": {"messageId": "444444444444444444", "sessionKey": "live:NoxRP"}},
        "twitchHealth": {"consecutiveFailures": 2, "nextAllowedAt": 1704103300000, "lastError": "HTTP 429"},
        "lastTickAt": 1704103200000,
        "lastTickDurationMs": 812,
    },
    "fivem": {"settings": {"baseUrl": "http://127.0.0.1:30120/", "timeoutMs": 4000}},
}


class StateDocumentTests(unittest.TestCase):
    def test_defaults_provision_every_source(self):
        doc = StateDocument()
        for kind in SourceKind:
            self.assertEqual(doc.tracked_keys(kind), [])
            self.assertEqual(doc.health[kind].consecutive_failures, 0)
        self.assertEqual(doc.version, STATE_DOCUMENT_VERSION)

    def test_payload_round_trip_preserves_state(self):
        doc = StateDocument()
        doc.settings.notify_channel_id = 123456789012345678
        doc.add_entity(SourceKind.KICK, "slug", 987654321098765432)
        doc.set_lifecycle(SourceKind.KICK, "slug", MessageLifecycleState(1, 2, "k1", 3))
        doc.health[SourceKind.KICK].consecutive_failures = 4

        again = StateDocument.from_payload(doc.to_payload())

        self.assertEqual(again.to_payload(), doc.to_payload())

    def test_partial_payload_is_merged_over_defaults(self):
        doc = StateDocument.from_payload(
            {
                "version": 2,
                "settings": {"check_interval_seconds": 30, "unknown": 1},
                "entities": {"twitch": [{"key": "Alpha"}, {"key": "bad key!"}, "junk"], "mystery": [{"key": "x"}]},
                "messages": {"twitch": {"alpha": {"message_id": None}}},
            }
        )
        self.assertEqual(doc.settings.check_interval_seconds, 30)
        self.assertEqual(doc.tracked_keys(SourceKind.TWITCH), ["alpha"])
        self.assertIsNone(doc.lifecycle(SourceKind.TWITCH, "alpha"))
        self.assertIn(SourceKind.SERVER, doc.health)

    def test_keys_to_poll_includes_orphaned_lifecycle(self):
        doc = StateDocument()
        doc.add_entity(SourceKind.TWITCH, "alpha")
        doc.set_lifecycle(SourceKind.TWITCH, "ghost", MessageLifecycleState(1, 2, "s", 0))
        self.assertEqual(doc.keys_to_poll(SourceKind.TWITCH), ["alpha", "ghost"])

    def test_remove_entity_keeps_lifecycle_for_retirement(self):
        doc = StateDocument()
        doc.add_entity(SourceKind.TWITCH, "alpha")
        doc.set_lifecycle(SourceKind.TWITCH, "alpha", MessageLifecycleState(1, 2, "s", 0))
        self.assertTrue(doc.remove_entity(SourceKind.TWITCH, "alpha"))
        self.assertFalse(doc.remove_entity(SourceKind.TWITCH, "alpha"))
        self.assertIsNotNone(doc.lifecycle(SourceKind.TWITCH, "alpha"))


class LegacyUpgradeTests(unittest.TestCase):
    def test_legacy_document_is_upgraded(self):
        doc = StateDocument.from_payload(LEGACY_DATA_JSON)

        self.assertEqual(doc.settings.notify_channel_id, 111111111111111111)
        self.assertFalse(doc.settings.mention_here)
        self.assertEqual(doc.settings.check_interval_seconds, 90)
        self.assertTrue(doc.settings.discovery_mode)
        self.assertEqual(doc.settings.server_timeout_ms, 4000)

        self.assertEqual(doc.tracked_keys(SourceKind.TWITCH), ["alpha", "beta"])
        self.assertEqual(doc.entity(SourceKind.TWITCH, "alpha").mention_id, 222222222222222222)
        self.assertEqual(doc.tracked_keys(SourceKind.KICK), ["kickster"])
        self.assertEqual(doc.tracked_keys(SourceKind.SERVER), ["http://127.0.0.1:30120"])

        alpha = doc.lifecycle(SourceKind.TWITCH, "alpha")
        self.assertEqual(alpha.message_id, 333333333333333333)
        self.assertEqual(alpha.channel_id, 111111111111111111)
        self.assertEqual(alpha.session_key, "2024-01-01T10:00:00Z")
        self.assertEqual(doc.lifecycle(SourceKind.KICK, "kickster").session_key, "live:NoxRP")

        self.assertEqual(doc.health[SourceKind.TWITCH].consecutive_failures, 2)
        self.assertEqual(doc.health[SourceKind.TWITCH].not_before, 1704103300000)
        self.assertEqual(doc.tick.last_tick_duration_ms, 812)

    def test_messages_without_a_channel_wait_for_env_channel(self):
        raw = {
            "settings": {"notifyChannelId": None},
            "twitch": {"streamers": [{"login": "alpha"}]},
            "state": {"twitchActiveMessages": {"alpha": {"messageId": "333333333333333333", "sessionKey": "s1"}}},
        }
        doc = StateDocument.from_payload(raw)
        alpha = doc.lifecycle(SourceKind.TWITCH, "alpha")
        self.assertIsNotNone(alpha)
        self.assertEqual(alpha.channel_id, UNPLACED_CHANNEL_ID)

        # nothing to attach to yet
        self.assertEqual(doc.place_unplaced_messages(doc.settings.notify_channel_id), 0)

        apply_env_defaults(doc.settings, {"notify_channel_id": "111111111111111111"})
        self.assertEqual(doc.place_unplaced_messages(doc.settings.notify_channel_id), 1)
        self.assertEqual(doc.lifecycle(SourceKind.TWITCH, "alpha").channel_id, 111111111111111111)
        self.assertEqual(doc.lifecycle(SourceKind.TWITCH, "alpha").message_id, 333333333333333333)

        # survives a save/load round trip before placement too
        again = StateDocument.from_payload(StateDocument.from_payload(raw).to_payload())
        self.assertEqual(again.lifecycle(SourceKind.TWITCH, "alpha").channel_id, UNPLACED_CHANNEL_ID)

    def test_upgrade_does_not_mutate_input(self):
        before = repr(LEGACY_DATA_JSON)
        upgrade_legacy_payload(LEGACY_DATA_JSON)
        self.assertEqual(repr(LEGACY_DATA_JSON), before)


class SeedTests(unittest.TestCase):
    def test_seed_adds_entities_and_default_settings_only(self):
        doc = StateDocument()
        doc.settings.check_interval_seconds = 120  # edited by a command earlier
        added = apply_seed(
            doc,
            {
                "settings": {"check_interval_seconds": 30, "discovery_mode": True},
                "twitch": ["Alpha", {"key": "beta", "mention_id": "222222222222222222"}],
                "servers": [{"key": "https://play.example.net:30120"}, {"key": "not a url"}],
            },
        )
        self.assertEqual(doc.settings.check_interval_seconds, 120)
        self.assertTrue(doc.settings.discovery_mode)
        self.assertEqual(doc.tracked_keys(SourceKind.TWITCH), ["alpha", "beta"])
        self.assertEqual(doc.entity(SourceKind.TWITCH, "beta").mention_id, 222222222222222222)
        self.assertEqual(doc.tracked_keys(SourceKind.SERVER), ["https://play.example.net:30120"])
        self.assertIn("twitch:alpha", added)

        # seeding again adds nothing
        self.assertEqual(apply_seed(doc, {"twitch": ["alpha"]}), [])


if __name__ == "__main__":
    unittest.main()
