from __future__ import annotations

import unittest

from presence.models import MessageLifecycleState
from presence.models import Snapshot
from presence.models import SourceKind
from presence.state_document import StateDocument
from presence.watchlist import add_watch
from presence.watchlist import format_config
from presence.watchlist import format_health
from presence.watchlist import format_probe
from presence.watchlist import format_watch_list
from presence.watchlist import parse_mention_token
from presence.watchlist import remove_watch
from presence.watchlist import resolve_probe_target
from presence.watchlist import set_watch_mention

USER_ID = 222222222222222222


class WatchlistEditTests(unittest.TestCase):
    def test_mention_tokens(self):
        self.assertEqual(parse_mention_token(f"<@{USER_ID}>"), (True, USER_ID))
        self.assertEqual(parse_mention_token(f"<@!{USER_ID}>"), (True, USER_ID))
        self.assertEqual(parse_mention_token("none"), (True, None))
        self.assertEqual(parse_mention_token("@someone"), (False, None))

    def test_add_normalizes_and_rejects_duplicates(self):
        doc = StateDocument()
        ok, msg = add_watch(doc, "twitch", "https://twitch.tv/Alpha", f"<@{USER_ID}>")
        self.assertTrue(ok, msg)
        self.assertEqual(doc.tracked_keys(SourceKind.TWITCH), ["alpha"])
        self.assertEqual(doc.entity(SourceKind.TWITCH, "alpha").mention_id, USER_ID)

        ok, msg = add_watch(doc, "t", "ALPHA")
        self.assertFalse(ok)
        self.assertIn("already tracked", msg)

    def test_add_validates_source_and_key(self):
        doc = StateDocument()
        self.assertFalse(add_watch(doc, "youtube", "alpha")[0])
        ok, msg = add_watch(doc, "server", "play.example.net")
        self.assertFalse(ok)
        self.assertIn("http", msg)
        self.assertTrue(add_watch(doc, "fivem", "http://127.0.0.1:30120/")[0])
        self.assertEqual(doc.tracked_keys(SourceKind.SERVER), ["http://127.0.0.1:30120"])

    def test_remove_mentions_pending_retirement(self):
        doc = StateDocument()
        add_watch(doc, "kick", "kickster")
        doc.set_lifecycle(SourceKind.KICK, "kickster", MessageLifecycleState(1, 2, "k1", 3))

        ok, msg = remove_watch(doc, "kick", "kickster")
        self.assertTrue(ok)
        self.assertIn("removed on the next check", msg)
        self.assertFalse(remove_watch(doc, "kick", "kickster")[0])

    def test_set_mention(self):
        doc = StateDocument()
        self.assertFalse(set_watch_mention(doc, "kick", "kickster", "none")[0])
        add_watch(doc, "kick", "kickster")
        self.assertTrue(set_watch_mention(doc, "kick", "kickster", str(USER_ID))[0])
        self.assertEqual(doc.entity(SourceKind.KICK, "kickster").mention_id, USER_ID)
        ok, msg = set_watch_mention(doc, "kick", "kickster", "clear")
        self.assertTrue(ok)
        self.assertIn("no longer", msg)
        self.assertIsNone(doc.entity(SourceKind.KICK, "kickster").mention_id)


class WatchlistFormattingTests(unittest.TestCase):
    def test_list_marks_live_entities_and_truncates(self):
        doc = StateDocument()
        for key in ("a1", "a2", "a3"):
            doc.add_entity(SourceKind.TWITCH, key)
        doc.set_lifecycle(SourceKind.TWITCH, "a2", MessageLifecycleState(1, 2, "s", 3))

        ok, text = format_watch_list(doc, "twitch", max_lines=2)
        self.assertTrue(ok)
        self.assertIn("Twitch (3 tracked, 1 live)", text)
        self.assertIn("a2 [LIVE]", text)
        self.assertNotIn("a3", text)
        self.assertIn("... and 1 more", text)
        self.assertFalse(format_watch_list(doc, "nope")[0])

    def test_config_and_health(self):
        doc = StateDocument()
        self.assertIn("channel: (not set)", format_config(doc))
        doc.health[SourceKind.KICK].consecutive_failures = 3
        doc.health[SourceKind.KICK].not_before = 2_000_000
        doc.health[SourceKind.KICK].last_error = "HTTP 429 slow down"
        text = format_health(doc, now=1_000_000)
        self.assertIn("Kick: failures=3 backoff until", text)
        self.assertIn("HTTP 429 slow down", text)
        self.assertIn("Twitch: failures=0 ready", text)

    def test_probe_output(self):
        snap = Snapshot(source=SourceKind.TWITCH, key="alpha", is_live=True, title="chatting", category_name="Just Chatting")
        explain = {"live": True, "category": False, "keyword": False, "qualifies": False}
        text = format_probe(SourceKind.TWITCH, "alpha", snap, explain, None)
        self.assertIn("category ok: no (Just Chatting)", text)
        self.assertIn("would announce: no", text)
        self.assertIn("not live", format_probe(SourceKind.TWITCH, "alpha", None, explain, None))
        self.assertIn("HTTP 500", format_probe(SourceKind.TWITCH, "alpha", None, explain, "HTTP 500 oops"))

    def test_probe_target(self):
        self.assertEqual(resolve_probe_target("kick", "@Kickster"), (SourceKind.KICK, "kickster", None))
        self.assertIsNotNone(resolve_probe_target("bogus", "x")[2])


if __name__ == "__main__":
    unittest.main()
