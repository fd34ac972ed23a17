from __future__ import annotations

import unittest

from presence.match_filter import DEFAULT_TITLE_PATTERN
from presence.match_filter import MatchRules
from presence.match_filter import compile_title_pattern
from presence.match_filter import explain_match
from presence.match_filter import qualifies
from presence.match_filter import validate_title_pattern
from presence.models import Snapshot
from presence.models import SourceKind


def _snap(*, live=True, title="NoxRP | heists tonight", category_id="32982") -> Snapshot:
    return Snapshot(
        source=SourceKind.TWITCH,
        key="alpha",
        is_live=live,
        title=title,
        category_id=category_id,
        session_key="s1",
    )


class MatchFilterTests(unittest.TestCase):
    def test_live_category_and_keyword_qualify(self):
        rules = MatchRules(required_category_id="32982", title_pattern=r"nox\s*rp")
        self.assertTrue(qualifies(_snap(), rules))

    def test_offline_never_qualifies(self):
        rules = MatchRules(required_category_id="32982")
        self.assertFalse(qualifies(_snap(live=False), rules))
        self.assertFalse(qualifies(None, rules))

    def test_wrong_category_does_not_qualify(self):
        rules = MatchRules(required_category_id="32982")
        self.assertFalse(qualifies(_snap(category_id="509658"), rules))

    def test_no_category_rule_accepts_any_category(self):
        rules = MatchRules(required_category_id=None)
        self.assertTrue(qualifies(_snap(category_id=None), rules))

    def test_keyword_is_case_insensitive(self):
        rules = MatchRules(title_pattern=r"nox\s*rp")
        self.assertTrue(qualifies(_snap(title="playing NOX RP again"), rules))
        self.assertFalse(qualifies(_snap(title="just chatting"), rules))

    def test_bad_patterns_fall_back_to_default(self):
        default = compile_title_pattern(DEFAULT_TITLE_PATTERN).pattern
        self.assertEqual(compile_title_pattern("").pattern, default)
        self.assertEqual(compile_title_pattern("(unclosed").pattern, default)
        self.assertEqual(compile_title_pattern("a" * 500).pattern, default)
        # a broken pattern still evaluates instead of raising
        self.assertTrue(qualifies(_snap(title="noxrp"), MatchRules(title_pattern="[")))

    def test_validate_rejects_what_runtime_would_replace(self):
        self.assertFalse(validate_title_pattern("")[0])
        self.assertFalse(validate_title_pattern("(")[0])
        self.assertFalse(validate_title_pattern("x" * 201)[0])
        self.assertEqual(validate_title_pattern(r"nox\s*rp"), (True, ""))

    def test_explain_reports_each_check(self):
        rules = MatchRules(required_category_id="32982", title_pattern="heist")
        explained = explain_match(_snap(category_id="1", title="heist"), rules)
        self.assertEqual(explained, {"live": True, "category": False, "keyword": True, "qualifies": False})


if __name__ == "__main__":
    unittest.main()
