"""Tests for relay filters and the event cache."""

import pytest

from gitrelay.domain import kinds
from gitrelay.domain.filters import filter_fingerprint, matches_filter
from gitrelay.services.event_cache import EventCache, compress_latest

from conftest import BASE_TIME, make_event


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestFilters:
    """Tests for filter matching and fingerprints."""

    def test_fingerprint_ignores_array_and_key_order(self):
        a = [{'kinds': [0, 3], 'authors': ['b', 'a']}]
        b = [{'authors': ['a', 'b'], 'kinds': [3, 0]}]
        assert filter_fingerprint(a) == filter_fingerprint(b)

    def test_fingerprint_ignores_filter_order(self):
        f1 = {'kinds': [0]}
        f2 = {'kinds': [3]}
        assert filter_fingerprint([f1, f2]) == filter_fingerprint([f2, f1])

    def test_fingerprint_distinguishes_queries(self):
        assert filter_fingerprint([{'kinds': [0]}]) != filter_fingerprint([{'kinds': [3]}])

    def test_matches_tag_criteria(self, alice):
        event = make_event(alice, kinds.REPO_ANNOUNCEMENT, [['d', 'demo']])
        assert matches_filter(event, {'kinds': [kinds.REPO_ANNOUNCEMENT], '#d': ['demo']})
        assert not matches_filter(event, {'#d': ['other']})
        assert not matches_filter(event, {'authors': ['ff' * 32]})

    def test_matches_time_bounds(self, alice):
        event = make_event(alice, 1, created_at=BASE_TIME)
        assert matches_filter(event, {'since': BASE_TIME, 'until': BASE_TIME})
        assert not matches_filter(event, {'since': BASE_TIME + 1})
        assert not matches_filter(event, {'until': BASE_TIME - 1})


class TestEventCache:
    """Tests for EventCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return EventCache(default_ttl=300, profile_ttl=1800, max_entries=10, clock=clock)

    def test_miss_then_hit(self, cache, alice):
        """A stored answer is returned for an equivalent filter set."""
        event = make_event(alice, 1)
        filters = [{'kinds': [1], 'authors': [alice.pubkey]}]
        assert cache.get(filters) is None
        cache.set(filters, [event])
        assert cache.get([{'authors': [alice.pubkey], 'kinds': [1]}]) == [event]
        stats = cache.stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1

    def test_empty_answer_is_a_hit(self, cache):
        """An empty result is cached too, and is distinct from a miss."""
        cache.set([{'kinds': [1641]}], [])
        assert cache.get([{'kinds': [1641]}]) == []

    def test_entries_expire(self, cache, clock, alice):
        filters = [{'kinds': [1]}]
        cache.set(filters, [make_event(alice, 1)])
        clock.now += 301
        assert cache.get(filters) is None

    def test_profile_queries_live_longer(self, cache, clock, alice):
        filters = [{'kinds': [kinds.PROFILE], 'authors': [alice.pubkey]}]
        cache.set(filters, [make_event(alice, kinds.PROFILE, content='{}')])
        clock.now += 1000
        assert cache.get(filters) is not None
        clock.now += 1000
        assert cache.get(filters) is None

    def test_latest_value_queries_are_compressed(self, cache, alice):
        """Only the newest replaceable event per author and kind is kept."""
        old = make_event(alice, kinds.RELAY_LIST, [['r', 'wss://old.example']], created_at=BASE_TIME)
        new = make_event(alice, kinds.RELAY_LIST, [['r', 'wss://new.example']], created_at=BASE_TIME + 5)
        filters = [{'kinds': [kinds.RELAY_LIST], 'authors': [alice.pubkey]}]
        cache.set(filters, [old, new])
        assert cache.get(filters) == [new]

    def test_addressable_events_compress_per_identifier(self, alice):
        a1 = make_event(alice, kinds.REPO_ANNOUNCEMENT, [['d', 'a']], created_at=BASE_TIME)
        a2 = make_event(alice, kinds.REPO_ANNOUNCEMENT, [['d', 'a']], created_at=BASE_TIME + 1)
        b1 = make_event(alice, kinds.REPO_ANNOUNCEMENT, [['d', 'b']], created_at=BASE_TIME)
        assert set(e.id for e in compress_latest([a1, a2, b1])) == {a2.id, b1.id}

    def test_compression_tie_keeps_lowest_id(self, alice):
        """Equal timestamps resolve to the lexicographically lowest id."""
        x = make_event(alice, kinds.PROFILE, content='{"name":"x"}')
        y = make_event(alice, kinds.PROFILE, content='{"name":"y"}')
        expected = min(x, y, key=lambda e: e.id)
        assert compress_latest([x, y]) == [expected]
        assert compress_latest([y, x]) == [expected]

    def test_transfers_never_compressed(self, cache, alice, bob):
        """Regular kinds keep every event, however many share an author."""
        t1 = make_event(alice, kinds.OWNERSHIP_TRANSFER, [['p', bob.pubkey]], created_at=BASE_TIME)
        t2 = make_event(alice, kinds.OWNERSHIP_TRANSFER, [['p', alice.pubkey]], created_at=BASE_TIME + 1)
        filters = [{'kinds': [kinds.OWNERSHIP_TRANSFER], 'authors': [alice.pubkey]}]
        cache.set(filters, [t1, t2])
        assert len(cache.get(filters)) == 2

    def test_deletion_removes_events_by_same_author(self, cache, alice, bob):
        target = make_event(alice, 1, content='doomed')
        keep = make_event(alice, 1, content='kept')
        filters = [{'kinds': [1]}]
        cache.set(filters, [target, keep])

        deletion = make_event(alice, kinds.DELETION_REQUEST, [['e', target.id]])
        assert cache.process_deletion_events([deletion]) == 1
        assert cache.get(filters) == [keep]

    def test_deletion_by_other_author_is_ignored(self, cache, alice, bob):
        """Nobody can delete someone else's event."""
        target = make_event(alice, 1, content='mine')
        filters = [{'kinds': [1]}]
        cache.set(filters, [target])

        deletion = make_event(bob, kinds.DELETION_REQUEST, [['e', target.id]])
        assert cache.process_deletion_events([deletion]) == 0
        assert cache.get(filters) == [target]

    def test_deletion_by_address(self, cache, alice):
        announcement = make_event(alice, kinds.REPO_ANNOUNCEMENT, [['d', 'demo']])
        filters = [{'kinds': [kinds.REPO_ANNOUNCEMENT], '#d': ['demo']}]
        cache.set(filters, [announcement])

        deletion = make_event(alice, kinds.DELETION_REQUEST, [['a', f"30617:{alice.pubkey}:demo"]])
        cache.process_deletion_events([deletion])
        assert cache.get(filters) is None

    def test_deletion_touch_does_not_extend_freshness(self, cache, clock, alice):
        """Processing deletions never resets an entry's TTL."""
        target = make_event(alice, 1, content='doomed')
        keep = make_event(alice, 1, content='kept')
        filters = [{'kinds': [1]}]
        cache.set(filters, [target, keep])

        clock.now += 200
        cache.process_deletion_events([make_event(alice, kinds.DELETION_REQUEST, [['e', target.id]])])
        clock.now += 200
        assert cache.get(filters) is None

    def test_eviction_drops_oldest(self, clock, alice):
        cache = EventCache(default_ttl=300, max_entries=10, clock=clock)
        for i in range(10):
            clock.now += 1
            cache.set([{'kinds': [1], 'limit': i}], [])
        clock.now += 1
        cache.set([{'kinds': [1], 'limit': 99}], [])

        assert len(cache) == 10
        assert cache.get([{'kinds': [1], 'limit': 0}]) is None
        assert cache.get([{'kinds': [1], 'limit': 99}]) == []

    def test_invalidate_pubkey(self, cache, alice, bob):
        cache.set([{'kinds': [1], 'authors': [alice.pubkey]}], [make_event(alice, 1)])
        cache.set([{'kinds': [1], 'authors': [bob.pubkey]}], [make_event(bob, 1)])
        assert cache.invalidate_pubkey(alice.pubkey) == 1
        assert cache.get([{'kinds': [1], 'authors': [alice.pubkey]}]) is None
        assert cache.get([{'kinds': [1], 'authors': [bob.pubkey]}]) is not None

    def test_invalidate_event(self, cache, alice):
        doomed = make_event(alice, 1, content='doomed')
        kept = make_event(alice, 1, content='kept')
        cache.set([{'kinds': [1]}], [doomed, kept])
        cache.set([{'kinds': [1], 'limit': 1}], [kept])
        assert cache.invalidate_event(doomed.id) == 1
        assert cache.get([{'kinds': [1]}]) is None
        assert cache.get([{'kinds': [1], 'limit': 1}]) == [kept]

    def test_profile_helpers_keep_newest(self, cache, alice):
        old = make_event(alice, kinds.PROFILE, content='{"name":"old"}', created_at=BASE_TIME)
        new = make_event(alice, kinds.PROFILE, content='{"name":"new"}', created_at=BASE_TIME + 10)
        cache.set_profile(alice.pubkey, new)
        cache.set_profile(alice.pubkey, old)
        assert cache.get_profile(alice.pubkey) == new

    def test_cleanup_and_clear(self, cache, clock):
        cache.set([{'kinds': [1]}], [])
        cache.set([{'kinds': [2]}], [], ttl=1000)
        clock.now += 400
        assert cache.cleanup() == 1
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0
