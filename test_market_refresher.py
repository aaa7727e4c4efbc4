import asyncio
import unittest

from offchain import MarketCheckScheduler, MarketRefresher, MarketSnapshot
from registry import Token, TokenRegistry

NOW = 1_700_000_000.0


class BlockingFetcher:
    """Market-data fetcher that holds every request until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.requests = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, address):
        self.requests.append(address)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return MarketSnapshot(pair_created_at=NOW - 60, price_change_m5=1.0, price_change_h1=2.0,
                              market_cap=1000.0, logo_uri="", fetched_at=NOW)


async def wait_until(predicate, rounds=200):
    for _ in range(rounds):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


class TestMarketRefresher(unittest.TestCase):

    def setUp(self):
        self.registry = TokenRegistry()
        self.scheduler = MarketCheckScheduler(clock=lambda: NOW)
        self.addresses = [f"0x{i:040x}" for i in range(1, 13)]
        for address in self.addresses:
            self.registry.add_discovered(Token(address, f"T{address[-2:]}", f"T{address[-2:]}", first_seen=NOW))
            self.scheduler.mark_new(address, now=NOW)

    def make_refresher(self, fetcher, **config):
        return MarketRefresher(self.registry, self.scheduler, fetcher,
                               {'max_concurrency': 5, **config}, clock=lambda: NOW)

    def test_concurrency_is_bounded(self):
        print("\nTesting refresh concurrency limit...")

        async def run():
            fetcher = BlockingFetcher()
            refresher = self.make_refresher(fetcher)
            tick = asyncio.create_task(refresher.refresh_once())

            await wait_until(lambda: fetcher.active == 5)
            # give the remaining tokens every chance to sneak in
            for _ in range(20):
                await asyncio.sleep(0)
            in_flight_while_blocked = fetcher.active

            fetcher.release.set()
            fetched = await tick
            return fetcher, fetched, in_flight_while_blocked

        fetcher, fetched, in_flight_while_blocked = asyncio.run(run())

        self.assertEqual(fetched, 12)
        self.assertEqual(in_flight_while_blocked, 5)
        self.assertEqual(fetcher.max_active, 5)
        self.assertEqual(sorted(fetcher.requests), sorted(self.addresses))

    def test_concurrent_enrich_of_one_token_makes_one_request(self):
        address = self.addresses[0]

        async def run():
            fetcher = BlockingFetcher()
            refresher = self.make_refresher(fetcher)
            first = asyncio.create_task(refresher.enrich(address))
            await wait_until(lambda: len(fetcher.requests) == 1)

            second = await refresher.enrich(address.upper().replace("0X", "0x"))
            self.assertTrue(refresher.is_in_flight(address))

            fetcher.release.set()
            return fetcher, await first, second, refresher

        fetcher, first, second, refresher = asyncio.run(run())

        self.assertEqual(fetcher.requests, [address])
        self.assertIsNone(second)
        self.assertEqual(first.market_cap, 1000.0)
        self.assertFalse(refresher.is_in_flight(address))

    def test_in_flight_tokens_are_not_due(self):
        address = self.addresses[0]

        async def run():
            fetcher = BlockingFetcher()
            refresher = self.make_refresher(fetcher)
            pending = asyncio.create_task(refresher.enrich(address))
            await wait_until(lambda: len(fetcher.requests) == 1)

            due = refresher.due_addresses(now=NOW)
            fetcher.release.set()
            await pending
            return due

        due = asyncio.run(run())

        self.assertNotIn(address, due)
        self.assertEqual(len(due), 11)

    def test_clear_discards_results_in_flight(self):
        address = self.addresses[0]

        async def run():
            fetcher = BlockingFetcher()
            refresher = self.make_refresher(fetcher)
            pending = asyncio.create_task(refresher.enrich(address))
            await wait_until(lambda: len(fetcher.requests) == 1)

            refresher.clear()
            self.assertFalse(refresher.is_in_flight(address))

            fetcher.release.set()
            return refresher, await pending

        refresher, result = asyncio.run(run())

        self.assertIsNone(result)
        self.assertIsNone(self.registry.get(address).market_cap)
        self.assertEqual(refresher.get_stats()['stale_results_dropped'], 1)


if __name__ == '__main__':
    unittest.main()
