"""
Domain layer for gitrelay.

Contains pure domain objects with no I/O or side effects:
- SignedEvent / EventTemplate: the signed, content-addressed unit of state
- Typed records per event kind: announcements, transfers, deletions, relay lists
- Derived repository state: ownership, maintainers, access decisions
- Operation results: per-target details and summaries

These objects are immutable where possible and provide
serialization methods for JSONL output.
"""

from .event import SignedEvent, EventTemplate, compute_event_id, canonical_serialization
from .filters import Filter, filter_fingerprint, matches_filter, matches_any
from .records import RepoAddress, RepoAnnouncement, OwnershipTransfer, DeletionRequest, RelayList
from .repository import OwnershipInfo, TransferRecord, MaintainerInfo, AccessDecision
from .operation import (
    OperationStatus, TargetResult, OperationSummary, PublishResult,
    TransferResult, ForkResult, ForkFailure, Compensation,
)

__all__ = [
    'SignedEvent',
    'EventTemplate',
    'compute_event_id',
    'canonical_serialization',
    'Filter',
    'filter_fingerprint',
    'matches_filter',
    'matches_any',
    'RepoAddress',
    'RepoAnnouncement',
    'OwnershipTransfer',
    'DeletionRequest',
    'RelayList',
    'OwnershipInfo',
    'TransferRecord',
    'MaintainerInfo',
    'AccessDecision',
    'OperationStatus',
    'TargetResult',
    'OperationSummary',
    'PublishResult',
    'TransferResult',
    'ForkResult',
    'ForkFailure',
    'Compensation',
]
