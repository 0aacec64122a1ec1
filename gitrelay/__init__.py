"""
gitrelay - Git hosting where ownership and access derive from signed events.

Repositories are announced, transferred and retracted with signed events
published to relays. gitrelay resolves who owns a repository by replaying
its transfer chain, decides who may see or change it, and keeps local bare
repositories mirrored with their remotes.

Quick Start:
    import asyncio
    import gitrelay

    relay = gitrelay.GitRelay()

    # Resolve ownership
    info = asyncio.run(relay.ownership("npub1...", "my-repo"))
    print(info.owner)

    # Check access
    decision = asyncio.run(relay.check_access(None, "npub1...", "my-repo"))

    # Fork under your own key
    signer = gitrelay.LocalKeySigner("nsec1...")
    result = asyncio.run(relay.fork("npub1...", "my-repo", signer))

Domain Objects:
    SignedEvent - The signed, content-addressed unit of state
    RepoAnnouncement, OwnershipTransfer - Typed views of events
    OwnershipInfo, MaintainerInfo, AccessDecision - Derived state

Services:
    OwnershipService - Transfer chain resolution
    MaintainerService - Maintainers, privacy, access
    SyncService - Fan-out fetch/push across git remotes
    ForkService - Fork workflow with rollback
"""

__version__ = "0.1.0"

# High-level API
from .api import GitRelay, create

# Domain objects
from .domain import (
    SignedEvent,
    EventTemplate,
    RepoAddress,
    RepoAnnouncement,
    OwnershipTransfer,
    OwnershipInfo,
    MaintainerInfo,
    AccessDecision,
    OperationSummary,
    ForkResult,
)

# Services (for advanced use)
from .services import (
    EventCache,
    OwnershipService,
    MaintainerService,
    TransferService,
    SyncService,
    ForkService,
)

# Keys and signing
from .crypto import LocalKeySigner, Signer, verify_event
from .keys import npub_encode, npub_decode

# Configuration
from .config import load_config, save_config

__all__ = [
    # Version
    "__version__",
    # High-level API
    "GitRelay",
    "create",
    # Domain objects
    "SignedEvent",
    "EventTemplate",
    "RepoAddress",
    "RepoAnnouncement",
    "OwnershipTransfer",
    "OwnershipInfo",
    "MaintainerInfo",
    "AccessDecision",
    "OperationSummary",
    "ForkResult",
    # Services
    "EventCache",
    "OwnershipService",
    "MaintainerService",
    "TransferService",
    "SyncService",
    "ForkService",
    # Keys and signing
    "LocalKeySigner",
    "Signer",
    "verify_event",
    "npub_encode",
    "npub_decode",
    # Configuration
    "load_config",
    "save_config",
]
