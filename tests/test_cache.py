"""
Tests for sessionkv/cache.py - EntityCache and UpdateNotifier.
"""

import logging

import pytest

from sessionkv.cache import CacheEntry, EntityCache, UpdateNotifier


@pytest.fixture
def cache():
    cache = EntityCache()
    cache.install("a", {"score": 0})
    return cache


def add(points):
    return lambda record: {**record, "score": record["score"] + points}


# ============================================================================
# get / install / remove
# ============================================================================

class TestLookup:

    def test_get_installed(self, cache):
        assert cache.get("a") == {"score": 0}
        assert "a" in cache
        assert len(cache) == 1

    def test_get_missing(self, cache):
        assert cache.get("nope") is None
        assert "nope" not in cache

    def test_entry_has_locked_flag(self, cache):
        assert cache.entry("a") == CacheEntry(record={"score": 0}, locked=True)

    def test_remove(self, cache):
        entry = cache.remove("a")
        assert entry.record == {"score": 0}
        assert cache.get("a") is None
        assert cache.remove("a") is None

    def test_locked_entity_ids_skips_unlocked(self, cache):
        cache.install("b", {}, locked=False)
        assert cache.entity_ids() == ["a", "b"]
        assert cache.locked_entity_ids() == ["a"]

    def test_locked_entity_ids_skips_departing(self, cache):
        cache.install("b", {})
        cache.entry("a").departing = True
        assert cache.locked_entity_ids() == ["b"]

    def test_iteration_is_a_snapshot(self, cache):
        cache.install("b", {})
        for entity_id in cache:
            cache.remove(entity_id)
        assert len(cache) == 0


# ============================================================================
# update + notifications
# ============================================================================

class TestUpdate:

    def test_update_replaces_record(self, cache):
        result = cache.update("a", add(10))
        assert result == {"score": 10}
        assert cache.get("a") == {"score": 10}

    def test_update_missing_is_noop(self, cache, caplog):
        seen = []
        cache.subscribe("ghost", seen.append)

        with caplog.at_level(logging.WARNING, logger="sessionkv"):
            assert cache.update("ghost", add(1)) is None

        assert seen == []
        assert "ghost" not in cache
        assert any("not loaded" in r.getMessage() for r in caplog.records)

    def test_subscribers_see_updates_in_call_order(self, cache):
        seen = []
        cache.subscribe("a", lambda r: seen.append(r["score"]))

        for points in (1, 2, 3, 4):
            cache.update("a", add(points))

        assert seen == [1, 3, 6, 10]
        assert cache.get("a") == {"score": 10}

    def test_subscription_filtered_by_entity(self, cache):
        cache.install("b", {"score": 100})
        seen_a, seen_b = [], []
        cache.subscribe("a", seen_a.append)
        cache.subscribe("b", seen_b.append)

        cache.update("b", add(1))

        assert seen_a == []
        assert seen_b == [{"score": 101}]

    def test_every_subscriber_notified_once(self, cache):
        first, second = [], []
        cache.subscribe("a", first.append)
        cache.subscribe("a", second.append)

        cache.update("a", add(5))

        assert first == [{"score": 5}]
        assert second == [{"score": 5}]

    def test_unsubscribe_stops_delivery(self, cache):
        seen = []
        sub = cache.subscribe("a", seen.append)
        cache.update("a", add(1))
        sub.unsubscribe()
        cache.update("a", add(1))

        assert len(seen) == 1
        assert sub.active is False

    def test_unsubscribe_is_idempotent(self, cache):
        sub = cache.subscribe("a", lambda r: None)
        sub.unsubscribe()
        sub.unsubscribe()
        assert cache.notifier.subscriber_count("a") == 0

    def test_unsubscribe_from_inside_callback(self, cache):
        seen = []
        holder = {}

        def once(record):
            seen.append(record["score"])
            holder["sub"].unsubscribe()

        holder["sub"] = cache.subscribe("a", once)
        after = []
        cache.subscribe("a", lambda r: after.append(r["score"]))

        cache.update("a", add(1))
        cache.update("a", add(1))

        assert seen == [1]
        assert after == [1, 2]

    def test_callback_unsubscribing_a_later_subscriber(self, cache):
        late = []
        holder = {}
        cache.subscribe("a", lambda r: holder["late"].unsubscribe())
        holder["late"] = cache.subscribe("a", late.append)

        cache.update("a", add(1))

        assert late == []

    def test_subscribe_from_inside_callback_starts_next_update(self, cache):
        added = []

        def subscriber(record):
            if not added:
                cache.subscribe("a", lambda r: added.append(r["score"]))
                added.append("subscribed")

        cache.subscribe("a", subscriber)
        cache.update("a", add(1))
        cache.update("a", add(1))

        assert added == ["subscribed", 2]

    def test_failing_subscriber_is_isolated(self, cache, caplog):
        seen = []

        def broken(record):
            raise RuntimeError("ui exploded")

        cache.subscribe("a", broken)
        cache.subscribe("a", seen.append)

        with caplog.at_level(logging.ERROR, logger="sessionkv"):
            result = cache.update("a", add(3))

        assert result == {"score": 3}
        assert seen == [{"score": 3}]
        assert cache.get("a") == {"score": 3}

    def test_subscriptions_survive_eviction(self, cache):
        seen = []
        cache.subscribe("a", seen.append)
        cache.remove("a")
        cache.install("a", {"score": 50})

        cache.update("a", add(1))

        assert seen == [{"score": 51}]

    def test_update_from_inside_callback_keeps_call_order(self, cache):
        first, second = [], []

        def bump_once(record):
            first.append(record["score"])
            if record["score"] == 1:
                cache.update("a", add(1))

        cache.subscribe("a", bump_once)
        cache.subscribe("a", lambda r: second.append(r["score"]))

        assert cache.update("a", add(1)) == {"score": 1}

        assert first == [1, 2]
        assert second == [1, 2]
        assert cache.get("a") == {"score": 2}

    def test_failing_callback_does_not_drop_queued_updates(self, cache):
        seen = []

        def bump_then_fail(record):
            if record["score"] == 1:
                cache.update("a", add(1))
                raise RuntimeError("after update")

        cache.subscribe("a", bump_then_fail)
        cache.subscribe("a", lambda r: seen.append(r["score"]))

        cache.update("a", add(1))
        cache.update("a", add(1))

        assert seen == [1, 2, 3]


class TestUpdateNotifier:

    def test_dispatch_counts_deliveries(self):
        notifier = UpdateNotifier()
        notifier.subscribe("x", lambda r: None)
        notifier.subscribe("x", lambda r: None)
        assert notifier.dispatch("x", {}) == 2
        assert notifier.dispatch("y", {}) == 0

    def test_repr(self):
        notifier = UpdateNotifier()
        sub = notifier.subscribe("x", lambda r: None)
        assert "active" in repr(sub)
        sub.unsubscribe()
        assert "closed" in repr(sub)
