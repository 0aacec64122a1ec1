"""
In-memory event cache for gitrelay.

Caches the answer to a relay query, keyed by the fingerprint of its
filters, for a bounded time. The cache is only ever a latency
optimization: every failure inside it is reported as a miss so callers
fall through to the relays.

One instance is constructed per process (see ``api.GitRelay``) and shared
by reference; a single re-entrant lock guards all state.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging
import threading
import time

from ..domain import kinds
from ..domain.event import SignedEvent
from ..domain.filters import Filter, filter_fingerprint
from ..domain.records import DeletionRequest
from ..errors import MalformedEventError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60
PROFILE_TTL = 30 * 60
MAX_ENTRIES = 10000
EVICTION_FRACTION = 0.1


@dataclass
class CacheEntry:
    """
    Cached events for one filter set.

    ``stored_at`` drives expiry and never moves; ``touched_at`` drives
    eviction order and moves whenever the entry's content changes.
    """
    events: List[SignedEvent]
    stored_at: float
    touched_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


def _is_latest_value_query(filters: List[Filter]) -> bool:
    """Every filter names authors and only replaceable or addressable kinds."""
    if not filters:
        return False
    for flt in filters:
        kind_list = flt.get('kinds')
        if not kind_list or not flt.get('authors'):
            return False
        if not all(kinds.is_replaceable(k) or kinds.is_addressable(k) for k in kind_list):
            return False
    return True


def _replaceable_key(event: SignedEvent) -> Tuple:
    if kinds.is_addressable(event.kind):
        return (event.pubkey, event.kind, event.d_tag or '')
    return (event.pubkey, event.kind)


def compress_latest(events: Iterable[SignedEvent]) -> List[SignedEvent]:
    """
    Keep the newest event per replaceable key.

    Equal timestamps keep the lexicographically lowest id, so the result
    does not depend on the order relays answered in.
    """
    latest: Dict[Tuple, SignedEvent] = {}
    for event in events:
        key = _replaceable_key(event)
        current = latest.get(key)
        if current is None or event.created_at > current.created_at or (
            event.created_at == current.created_at and event.id < current.id
        ):
            latest[key] = event
    return sorted(latest.values(), key=lambda e: (-e.created_at, e.id))


class EventCache:
    """
    TTL cache of relay query results.

    Example:
        cache = EventCache()
        cache.set([{"kinds": [0], "authors": [pk]}], events)
        cache.get([{"authors": [pk], "kinds": [0]}])  # same entry
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        profile_ttl: float = PROFILE_TTL,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize EventCache.

        Args:
            default_ttl: Seconds an entry stays fresh (default: 5 minutes)
            profile_ttl: Seconds for profile queries (default: 30 minutes)
            max_entries: Entry count that triggers eviction
            clock: Time source, injectable for tests
        """
        self.default_ttl = default_ttl
        self.profile_ttl = profile_ttl
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, filters: List[Filter]) -> Optional[List[SignedEvent]]:
        """Return the cached events for ``filters``, or None on a miss."""
        try:
            key = filter_fingerprint(filters)
        except (TypeError, ValueError) as e:
            logger.debug(f"Uncacheable filters: {e}")
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return list(entry.events)

    def set(self, filters: List[Filter], events: Iterable[SignedEvent], ttl: Optional[float] = None) -> None:
        """
        Store a snapshot of ``events`` as the answer to ``filters``.

        Latest-value queries (authors plus replaceable kinds only) are
        compressed to one event per author and kind (and ``d`` tag).
        """
        try:
            key = filter_fingerprint(filters)
        except (TypeError, ValueError) as e:
            logger.debug(f"Uncacheable filters: {e}")
            return

        events = list(events)
        if _is_latest_value_query(filters):
            events = compress_latest(events)
            if ttl is None and all(set(f['kinds']) == {kinds.PROFILE} for f in filters):
                ttl = self.profile_ttl

        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_oldest()
            now = self._clock()
            self._entries[key] = CacheEntry(
                events=events,
                stored_at=now,
                touched_at=now,
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def invalidate(self, filters: List[Filter]) -> None:
        try:
            key = filter_fingerprint(filters)
        except (TypeError, ValueError):
            return
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_event(self, event_id: str) -> int:
        """Drop every entry containing ``event_id``. Returns entries dropped."""
        return self._drop_where(lambda e: e.id == event_id)

    def invalidate_pubkey(self, pubkey: str) -> int:
        """Drop every entry containing an event by ``pubkey``."""
        return self._drop_where(lambda e: e.pubkey == pubkey)

    def _drop_where(self, predicate: Callable[[SignedEvent], bool]) -> int:
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if any(predicate(e) for e in entry.events)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug(f"Event cache invalidated {len(doomed)} entries")
        return len(doomed)

    def process_deletion_events(self, deletion_events: Iterable[SignedEvent]) -> int:
        """
        Remove events named by deletion requests from every entry.

        A request only deletes events by its own author. Entries left empty
        are dropped; modified entries are touched, which affects eviction
        order but never freshness.

        Returns:
            Number of events removed
        """
        requests = []
        for event in deletion_events:
            if event.kind != kinds.DELETION_REQUEST:
                continue
            try:
                request = DeletionRequest.from_event(event)
            except MalformedEventError:
                continue
            if request.event_ids or request.addresses:
                requests.append(request)
        if not requests:
            return 0

        removed = 0
        with self._lock:
            now = self._clock()
            for key in list(self._entries):
                entry = self._entries[key]
                kept = [e for e in entry.events if not any(r.covers(e) for r in requests)]
                if len(kept) == len(entry.events):
                    continue
                removed += len(entry.events) - len(kept)
                if kept:
                    entry.events = kept
                    entry.touched_at = now
                else:
                    del self._entries[key]

        if removed:
            logger.debug(f"Event cache removed {removed} deleted events")
        return removed

    def get_profile(self, pubkey: str) -> Optional[SignedEvent]:
        """Latest cached profile event for ``pubkey``."""
        cached = self.get(self._profile_filters(pubkey))
        if not cached:
            return None
        return compress_latest(cached)[0]

    def set_profile(self, pubkey: str, event: SignedEvent) -> None:
        """Cache a profile event unless a newer one is already cached."""
        existing = self.get_profile(pubkey)
        if existing is not None and existing.created_at >= event.created_at:
            return
        self.set(self._profile_filters(pubkey), [event], self.profile_ttl)

    @staticmethod
    def _profile_filters(pubkey: str) -> List[Filter]:
        return [{'kinds': [kinds.PROFILE], 'authors': [pubkey], 'limit': 1}]

    def cleanup(self) -> int:
        """Remove expired entries. Returns entries removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)
        if expired:
            logger.debug(f"Event cache cleanup: removed {len(expired)}, {remaining} remaining")
        return len(expired)

    def _evict_oldest(self) -> None:
        """Remove the oldest 10% of entries (at least one) by touch time."""
        ordered = sorted(self._entries.items(), key=lambda item: item[1].touched_at)
        to_remove = max(1, int(len(ordered) * EVICTION_FRACTION))
        for key, _ in ordered[:to_remove]:
            del self._entries[key]
        logger.debug(f"Event cache eviction: removed {to_remove}, {len(self._entries)} remaining")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'entries': len(self._entries),
                'max_entries': self.max_entries,
                'events': sum(len(entry.events) for entry in self._entries.values()),
                'hits': self._hits,
                'misses': self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
