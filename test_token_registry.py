import json
import os
import tempfile
import unittest

from registry import (
    Token,
    TokenRegistry,
    TrackerStateStore,
    CONTRACTS_NAMESPACE,
    TOKENS_NAMESPACE,
)

A = "0x" + "a" * 40
B = "0x" + "b" * 40


class ClearableCache:
    def __init__(self):
        self.cleared = 0

    def clear(self):
        self.cleared += 1


class TestTokenRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = TokenRegistry()

    def test_first_discovery_wins(self):
        print("\nTesting discovery order A, B, A...")
        self.assertTrue(self.registry.add_discovered(Token(A, 'Foo', 'FOO', first_seen=100, origin_block=10)))
        self.assertTrue(self.registry.add_discovered(Token(B, 'Bar', 'BAR', first_seen=110, origin_block=11)))
        self.assertFalse(self.registry.add_discovered(Token(A.upper().replace("0X", "0x"), 'Foo2', 'FOO2',
                                                           first_seen=120, origin_block=12)))

        self.assertEqual(len(self.registry), 2)
        token = self.registry.get(A)
        self.assertEqual(token.first_seen, 100)
        self.assertEqual(token.origin_block, 10)
        self.assertEqual(token.symbol, 'FOO')
        self.assertEqual(self.registry.get_stats()['duplicate_discoveries'], 1)

    def test_merge_is_idempotent(self):
        self.registry.add_discovered(Token(A, 'Foo', 'FOO', first_seen=100, origin_block=10))
        enrichment = Token(A, first_seen=999, origin_block=0, pair_created_at=90.0,
                           market_cap=50000, price_change_m5=1.5, price_change_h1=-2.0)

        once = self.registry.merge(enrichment)
        twice = self.registry.merge(enrichment)

        self.assertEqual(once, twice)
        self.assertEqual(once.first_seen, 100)
        self.assertEqual(once.origin_block, 10)
        self.assertEqual(once.symbol, 'FOO')
        self.assertEqual(once.market_cap, 50000)

    def test_pair_created_at_never_reverts(self):
        self.registry.add_discovered(Token(A, 'Foo', 'FOO', first_seen=100))
        self.registry.update(A, pair_created_at=90.0, market_cap=1000)

        updated = self.registry.update(A, pair_created_at=None, market_cap=2000)

        self.assertEqual(updated.pair_created_at, 90.0)
        self.assertEqual(updated.market_cap, 2000)

    def test_update_unknown_token(self):
        self.assertIsNone(self.registry.update(A, market_cap=1))
        self.assertNotIn(A, self.registry)

    def test_snapshot_returns_copies(self):
        self.registry.add_discovered(Token(A, 'Foo', 'FOO'))
        self.registry.snapshot()[0].market_cap = 123
        self.assertIsNone(self.registry.get(A).market_cap)

    def test_subscribe_and_unsubscribe(self):
        changes = []
        unsubscribe = self.registry.subscribe(changes.append)

        self.registry.add_discovered(Token(A, 'Foo', 'FOO'))
        self.registry.update(A, market_cap=10)
        self.registry.update(A, market_cap=10)  # no change, no notification
        unsubscribe()
        self.registry.add_discovered(Token(B, 'Bar', 'BAR'))

        self.assertEqual(changes, [[A], [A]])

    def test_listener_errors_are_isolated(self):
        def broken(changed):
            raise RuntimeError("listener failed")

        changes = []
        self.registry.subscribe(broken)
        self.registry.subscribe(changes.append)

        self.assertTrue(self.registry.add_discovered(Token(A, 'Foo', 'FOO')))
        self.assertEqual(changes, [[A]])

    def test_reset_clears_attached_caches(self):
        first, second = ClearableCache(), ClearableCache()
        registry = TokenRegistry(caches=[first])
        registry.attach_cache(second)
        registry.attach_cache(second)
        changes = []
        registry.subscribe(changes.append)
        registry.add_discovered(Token(A, 'Foo', 'FOO'))

        registry.reset()

        self.assertEqual(len(registry), 0)
        self.assertEqual((first.cleared, second.cleared), (1, 1))
        self.assertEqual(changes[-1], [])

    def test_manual_flag_is_sticky(self):
        self.registry.merge(Token(A, 'Foo', 'FOO', is_manually_tracked=True))
        merged = self.registry.merge(Token(A, market_cap=5))
        self.assertTrue(merged.is_manually_tracked)


class TestTrackerStateStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "state", "tracker_state.json")
        self.store = TrackerStateStore(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_large_block_numbers_round_trip(self):
        big_block = 2 ** 70 + 1
        token = Token(A, 'Foo', 'FOO', first_seen=100.5, origin_block=big_block,
                      pair_created_at=90.0, market_cap=50000)
        self.store.save_tokens([token])

        with open(self.path) as f:
            raw = json.load(f)
        self.assertEqual(raw[TOKENS_NAMESPACE][0]['origin_block'], str(big_block))

        restored = self.store.load_tokens()
        self.assertEqual(restored, [token])
        self.assertEqual(restored[0].origin_block, big_block)

    def test_save_keeps_other_namespaces(self):
        self.store.save({CONTRACTS_NAMESPACE: {A: {'name': 'Foo', 'symbol': 'FOO', 'timestamp': 1}}})
        self.store.save_tokens([Token(B, 'Bar', 'BAR')])

        state = self.store.load()
        self.assertIn(A, state[CONTRACTS_NAMESPACE])
        self.assertEqual(len(state[TOKENS_NAMESPACE]), 1)

    def test_missing_or_corrupt_file(self):
        self.assertEqual(self.store.load(), {})

        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, 'w') as f:
            f.write("{not json")
        self.assertEqual(self.store.load(), {})
        self.assertEqual(self.store.load_tokens(), [])

    def test_unreadable_token_entries_are_skipped(self):
        self.store.save({TOKENS_NAMESPACE: [
            {'address': A, 'symbol': 'FOO', 'origin_block': 'not-a-number'},
            {'address': B, 'symbol': 'BAR', 'origin_block': '7', 'unknown_field': 1},
        ]})

        tokens = self.store.load_tokens()
        self.assertEqual([t.address for t in tokens], [B])
        self.assertEqual(tokens[0].origin_block, 7)

    def test_clear_removes_file(self):
        self.store.save_tokens([Token(A)])
        self.store.clear()
        self.assertFalse(os.path.exists(self.path))
        self.assertEqual(self.store.load_tokens(), [])


if __name__ == '__main__':
    unittest.main()
