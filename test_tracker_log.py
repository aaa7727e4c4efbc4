import logging
import unittest

from errors import FailureKind, log_failure
from tracker_log import PipelineLogBuffer, RpcLogDebounceFilter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_record(message, level=logging.INFO, **extra):
    record = logging.LogRecord("tracker.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestPipelineLogBuffer(unittest.TestCase):

    def test_newest_first_and_capped(self):
        buffer = PipelineLogBuffer(max_entries=3)
        for i in range(5):
            buffer.handle(make_record(f"event {i}", stage="api", status="success"))

        entries = buffer.recent()
        self.assertEqual([e["message"] for e in entries], ["event 4", "event 3", "event 2"])

    def test_stage_and_status_defaults(self):
        buffer = PipelineLogBuffer()
        buffer.handle(make_record("plain warning", level=logging.WARNING))
        buffer.handle(make_record("odd stage", stage="database", status="weird"))

        odd, warning = buffer.recent()
        self.assertEqual((warning["stage"], warning["status"]), ("system", "error"))
        self.assertEqual((odd["stage"], odd["status"]), ("system", "success"))

    def test_filter_by_stage_and_limit(self):
        buffer = PipelineLogBuffer()
        buffer.handle(make_record("rpc", stage="blockchain"))
        buffer.handle(make_record("api 1", stage="api"))
        buffer.handle(make_record("api 2", stage="api"))

        self.assertEqual([e["message"] for e in buffer.recent(stage="api")], ["api 2", "api 1"])
        self.assertEqual(len(buffer.recent(limit=1)), 1)

        buffer.clear()
        self.assertEqual(buffer.recent(), [])

    def test_failures_carry_context(self):
        buffer = PipelineLogBuffer()
        logger = logging.getLogger("tracker.test.failures")
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.addHandler(buffer)
        try:
            log_failure(logger, FailureKind.TRANSIENT, "api", "0xabc", "DexScreener API error", details="Status: 429")
        finally:
            logger.removeHandler(buffer)

        entry = buffer.recent()[0]
        self.assertEqual(entry["level"], "WARNING")
        self.assertEqual(entry["stage"], "api")
        self.assertEqual(entry["status"], "error")
        self.assertEqual(entry["address"], "0xabc")
        self.assertEqual(entry["details"], "Status: 429")


class TestRpcLogDebounceFilter(unittest.TestCase):

    def test_repeats_inside_window_are_dropped(self):
        clock = FakeClock()
        debounce = RpcLogDebounceFilter(window_seconds=1.0, clock=clock)

        self.assertTrue(debounce.filter(make_record("Mint log poll error")))
        clock.now = 0.5
        self.assertFalse(debounce.filter(make_record("Mint log poll error")))
        self.assertTrue(debounce.filter(make_record("different message")))
        clock.now = 1.6
        self.assertTrue(debounce.filter(make_record("Mint log poll error")))


if __name__ == '__main__':
    unittest.main()
