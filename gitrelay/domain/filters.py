"""
Relay query filters.

A filter is a plain dict in relay wire form::

    {"kinds": [30617], "authors": ["<hex>"], "#d": ["my-repo"], "limit": 1}

Array-valued criteria are order-insensitive; the fingerprint sorts them
so semantically identical queries always share a cache key.
"""

from typing import Any, Dict, Iterable, List
import hashlib
import json

from .event import SignedEvent

Filter = Dict[str, Any]


def normalize_filter(flt: Filter) -> Filter:
    """Return a copy with sorted keys, sorted arrays and None values dropped."""
    normalized = {}
    for key in sorted(flt):
        value = flt[key]
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            value = sorted(value, key=lambda v: (str(type(v)), v))
        normalized[key] = value
    return normalized


def filter_fingerprint(filters: Iterable[Filter]) -> str:
    """
    Deterministic cache key for a set of filters.

    Both the filters themselves and the order they were submitted in are
    normalized away.
    """
    parts = sorted(
        json.dumps(normalize_filter(flt), sort_keys=True, separators=(',', ':'), ensure_ascii=False)
        for flt in filters
    )
    return hashlib.sha256('|'.join(parts).encode('utf-8')).hexdigest()


def matches_filter(event: SignedEvent, flt: Filter) -> bool:
    """True if ``event`` satisfies every criterion of ``flt``."""
    ids = flt.get('ids')
    if ids is not None and event.id not in ids:
        return False

    authors = flt.get('authors')
    if authors is not None and event.pubkey not in authors:
        return False

    kinds = flt.get('kinds')
    if kinds is not None and event.kind not in kinds:
        return False

    since = flt.get('since')
    if since is not None and event.created_at < since:
        return False

    until = flt.get('until')
    if until is not None and event.created_at > until:
        return False

    for key, wanted in flt.items():
        if not key.startswith('#') or len(key) != 2:
            continue
        values = set(event.first_values(key[1]))
        if not values.intersection(wanted):
            return False

    return True


def matches_any(event: SignedEvent, filters: List[Filter]) -> bool:
    return any(matches_filter(event, flt) for flt in filters)
