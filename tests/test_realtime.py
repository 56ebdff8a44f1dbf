#!/usr/bin/env python3
"""
Unit tests for table change subscriptions
"""

import threading
import unittest

from common.realtime import ChangeFeed, diff_rows, parse_filter
from fakes import seeded_backend


class TestFilterParsing(unittest.TestCase):

    def test_eq_filter(self):
        self.assertEqual(parse_filter("id=eq.abc-123"), ("id", "abc-123"))
        self.assertEqual(parse_filter("receiver_id=eq.1.5"), ("receiver_id", "1.5"))
        self.assertIsNone(parse_filter(None))

    def test_rejects_unsupported_operators(self):
        for expression in ("id=gt.5", "id", "=eq.5"):
            with self.assertRaises(ValueError):
                parse_filter(expression)


class TestDiff(unittest.TestCase):

    def test_insert_update_delete(self):
        old = {"1": {"id": "1", "status": "CREATED"}, "2": {"id": "2", "status": "CREATED"}}
        new = {"1": {"id": "1", "status": "SUCCESS"}, "3": {"id": "3", "status": "CREATED"}}

        events = {(c["eventType"], (c["new"] or c["old"])["id"]) for c in diff_rows("payments", old, new)}

        self.assertEqual(events, {("UPDATE", "1"), ("INSERT", "3"), ("DELETE", "2")})

    def test_unchanged_rows_emit_nothing(self):
        rows = {"1": {"id": "1", "status": "CREATED"}}
        self.assertEqual(diff_rows("payments", rows, dict(rows)), [])


class TestSubscription(unittest.TestCase):

    def setUp(self):
        self.backend = seeded_backend()
        # Large interval: the watcher thread never fires during a test, poll_once drives delivery
        self.feed = ChangeFeed(self.backend, poll_seconds=60)
        self.received = []

    def tearDown(self):
        self.feed.close()

    def test_update_delivered_for_filtered_row(self):
        sub = self.feed.subscribe("payments", self.received.append, filter="id=eq.pay-pending")

        self.backend.set_status("pay-pending", "SUCCESS")
        self.backend.set_status("pay-sent-ok", "FAILURE")
        sub.poll_once()

        self.assertEqual(len(self.received), 1)
        change = self.received[0]
        self.assertEqual(change["eventType"], "UPDATE")
        self.assertEqual(change["new"]["status"], "SUCCESS")
        self.assertEqual(change["old"]["status"], "PROCESSING")

    def test_event_type_filtering(self):
        sub = self.feed.subscribe("payments", self.received.append, event="INSERT")

        self.backend.set_status("pay-pending", "SUCCESS")
        self.backend.table("payments").insert({"sender_id": "u-bob", "receiver_id": "100200300", "amount": 3})
        sub.poll_once()

        self.assertEqual([c["eventType"] for c in self.received], ["INSERT"])

    def test_callback_errors_do_not_break_delivery(self):
        def explode(change):
            raise RuntimeError("boom")

        sub = self.feed.subscribe("payments", explode)
        self.backend.set_status("pay-pending", "SUCCESS")
        sub.poll_once()

        self.assertTrue(sub.active)

    def test_unsubscribe_is_symmetric_and_idempotent(self):
        sub = self.feed.subscribe("payments", self.received.append, filter="id=eq.pay-pending")
        self.assertTrue(sub.active)
        self.assertEqual(self.feed.subscriptions, [sub])

        sub.unsubscribe()
        sub.unsubscribe()

        self.assertFalse(sub.active)
        self.assertEqual(self.feed.subscriptions, [])
        self.assertFalse(sub._thread.is_alive())

    def test_unsubscribe_from_inside_callback(self):
        """A subscriber may tear itself down once it sees a terminal status"""
        done = threading.Event()
        holder = {}

        def on_change(change):
            if change["new"]["status"] in ("SUCCESS", "FAILURE"):
                holder["sub"].unsubscribe()
                done.set()

        feed = ChangeFeed(self.backend, poll_seconds=0.01)
        holder["sub"] = feed.subscribe("payments", on_change, filter="id=eq.pay-pending")
        self.backend.set_status("pay-pending", "FAILURE", "Insufficient balance")

        self.assertTrue(done.wait(timeout=5))
        holder["sub"]._thread.join(timeout=5)
        self.assertFalse(holder["sub"]._thread.is_alive())
        self.assertEqual(feed.subscriptions, [])

    def test_unknown_event_type_rejected(self):
        with self.assertRaises(ValueError):
            self.feed.subscribe("payments", self.received.append, event="TRUNCATE")


if __name__ == "__main__":
    unittest.main()
