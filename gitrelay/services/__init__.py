"""
Service layer for gitrelay.

Contains the logic that orchestrates domain objects and infrastructure:
- EventCache: TTL cache of relay query results
- OwnershipService: ownership chain resolution
- TransferService: ownership transfer validation and publishing
- MaintainerService: maintainers, privacy and access decisions
- SyncService: fan-out fetch/push across git remotes
- RepoManager: local bare repositories and provisioning
- ForkService: the fork workflow with compensating rollback

Services receive their collaborators (relay client, caches, git client)
at construction; nothing here is a module-level singleton.
"""

# event_cache first: the relay client imports it while this package loads
from .event_cache import EventCache, compress_latest
from .result_cache import ResultCache
from .ownership_service import OwnershipService, resolve_ownership
from .maintainer_service import MaintainerService
from .user_relays import UserRelayService, combine_relays
from .user_level import UserLevelService, UNLIMITED, RATE_LIMITED, STRICTLY_RATE_LIMITED
from .resource_limits import ResourceLimits
from .audit import AuditLogger
from .sync_service import SyncService
from .repo_manager import RepoManager
from .transfer_service import TransferService
from .fork_service import ForkService

__all__ = [
    'EventCache',
    'compress_latest',
    'ResultCache',
    'OwnershipService',
    'resolve_ownership',
    'MaintainerService',
    'UserRelayService',
    'combine_relays',
    'UserLevelService',
    'UNLIMITED',
    'RATE_LIMITED',
    'STRICTLY_RATE_LIMITED',
    'ResourceLimits',
    'AuditLogger',
    'SyncService',
    'RepoManager',
    'TransferService',
    'ForkService',
]
