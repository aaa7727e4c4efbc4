import unittest

from registry import Token
from token_filters import FilterFlags, apply_filters, passes_filters
from token_security import SecurityStatus

NOW = 1_700_000_000.0
HOUR = 60 * 60

VOTED_STATUS = SecurityStatus(is_automated_creation=False, platform_tag=None,
                              is_curated_trusted=False, is_community_voted=True)
PLATFORM_STATUS = SecurityStatus(is_automated_creation=True, platform_tag='CLANKER',
                                 is_curated_trusted=True, is_community_voted=False)


def make_token(suffix, first_seen, **fields):
    return Token(address="0x" + suffix * 40, name=suffix, symbol=suffix.upper(),
                 discovered_at=first_seen, first_seen=first_seen, **fields)


class TestTokenFilters(unittest.TestCase):

    def test_no_flags_keeps_everything_newest_first(self):
        tokens = [make_token('a', NOW - 30), make_token('b', NOW - 10), make_token('c', NOW - 20)]
        ranked = apply_filters(tokens, FilterFlags(), now=NOW)
        self.assertEqual([t.symbol for t in ranked], ['B', 'C', 'A'])

    def test_ties_keep_registry_order(self):
        tokens = [make_token('a', NOW), make_token('b', NOW), make_token('c', NOW)]
        ranked = apply_filters(tokens, FilterFlags(), now=NOW)
        self.assertEqual([t.symbol for t in ranked], ['A', 'B', 'C'])

    def test_hide_no_market_cap(self):
        flags = FilterFlags(hide_no_market_cap=True)
        self.assertFalse(passes_filters(make_token('a', NOW), flags, now=NOW))
        self.assertFalse(passes_filters(make_token('a', NOW, market_cap=0), flags, now=NOW))
        self.assertTrue(passes_filters(make_token('a', NOW, market_cap=50000), flags, now=NOW))

    def test_hide_inactive_pairs(self):
        flags = FilterFlags(hide_inactive_pairs=True)
        self.assertFalse(passes_filters(make_token('a', NOW), flags, now=NOW))
        self.assertFalse(passes_filters(make_token('a', NOW, price_change_h1=0.0), flags, now=NOW))
        self.assertTrue(passes_filters(make_token('a', NOW, price_change_h1=-2.0), flags, now=NOW))

    def test_hide_older_than_24h_prefers_pair_age(self):
        flags = FilterFlags(hide_older_than_24h=True)
        old_pair = make_token('a', NOW - HOUR, pair_created_at=NOW - 25 * HOUR)
        old_discovery = make_token('b', NOW - 25 * HOUR)
        fresh_pair = make_token('c', NOW - 25 * HOUR, pair_created_at=NOW - HOUR)

        self.assertFalse(passes_filters(old_pair, flags, now=NOW))
        self.assertFalse(passes_filters(old_discovery, flags, now=NOW))
        self.assertTrue(passes_filters(fresh_pair, flags, now=NOW))

    def test_hide_unverified(self):
        flags = FilterFlags(hide_unverified=True)
        token = make_token('a', NOW)
        self.assertFalse(passes_filters(token, flags, None, now=NOW))
        self.assertTrue(passes_filters(token, flags, PLATFORM_STATUS, now=NOW))

    def test_hide_community_voted(self):
        flags = FilterFlags(hide_community_voted=True)
        self.assertFalse(passes_filters(make_token('a', NOW), flags, VOTED_STATUS, now=NOW))
        self.assertFalse(passes_filters(make_token('a', NOW, is_manually_tracked=True), flags, None, now=NOW))
        self.assertTrue(passes_filters(make_token('a', NOW), flags, PLATFORM_STATUS, now=NOW))

    def test_flags_combine(self):
        print("\nTesting combined filters...")
        tokens = [
            make_token('a', NOW - 50, market_cap=1000, price_change_h1=1.0),
            make_token('b', NOW - 40, market_cap=None, price_change_h1=1.0),
            make_token('c', NOW - 30, market_cap=1000, price_change_h1=None),
            make_token('d', NOW - 20, market_cap=1000, price_change_h1=5.0),
        ]
        statuses = {tokens[3].key: PLATFORM_STATUS}
        flags = FilterFlags(hide_no_market_cap=True, hide_inactive_pairs=True)

        self.assertEqual([t.symbol for t in apply_filters(tokens, flags, statuses, now=NOW)], ['D', 'A'])

        strict = FilterFlags(hide_no_market_cap=True, hide_inactive_pairs=True, hide_unverified=True)
        self.assertEqual([t.symbol for t in apply_filters(tokens, strict, statuses, now=NOW)], ['D'])

    def test_flags_from_config(self):
        flags = FilterFlags.from_config({'hide_inactive_pairs': True, 'hide_old': True, 'hide_unverified': 0})
        self.assertEqual(flags, FilterFlags(hide_inactive_pairs=True))
        self.assertEqual(FilterFlags.from_config(None), FilterFlags())


if __name__ == '__main__':
    unittest.main()
