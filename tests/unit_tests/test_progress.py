"""
Unit tests for ValueStream.
"""

import threading
import unittest

from progress import StreamClosedError, ValueStream


class TestValueStream(unittest.TestCase):
    """Test latest-value broadcast semantics."""

    def test_watch_starts_from_current_value(self):
        stream = ValueStream(1)
        stream.set(2)
        stream.close()

        self.assertEqual(list(stream.watch()), [2])

    def test_watch_sees_updates_until_close(self):
        stream = ValueStream("a")
        seen = []
        first_seen = threading.Event()
        step = threading.Event()

        def consume():
            for value in stream.watch():
                seen.append(value)
                step.set()
                first_seen.set()

        consumer = threading.Thread(target=consume)
        consumer.start()
        self.assertTrue(first_seen.wait(timeout=5))
        for value in ["b", "c"]:
            step.clear()
            stream.set(value)
            self.assertTrue(step.wait(timeout=5))
        stream.close()
        consumer.join(timeout=5)

        self.assertFalse(consumer.is_alive())
        self.assertEqual(seen, ["a", "b", "c"])

    def test_late_watcher_gets_final_value(self):
        stream = ValueStream(0)
        stream.set(5)
        stream.close()

        self.assertEqual(list(stream.watch()), [5])
        self.assertEqual(list(stream.watch()), [5])

    def test_set_after_close(self):
        stream = ValueStream(0)
        stream.close()

        with self.assertRaises(StreamClosedError):
            stream.set(1)
        self.assertEqual(stream.get(), 0)

    def test_wait_closed(self):
        stream = ValueStream(0)
        self.assertFalse(stream.wait_closed(timeout=0.01))

        threading.Timer(0.05, stream.close).start()
        self.assertTrue(stream.wait_closed(timeout=5))
        self.assertTrue(stream.is_closed())


if __name__ == "__main__":
    unittest.main()
