"""
Infrastructure layer for gitrelay.

Contains abstractions for external systems:
- GitClient: git subprocess execution (bare repos, remotes, papertrail)
- RelayClient: relay websocket access (query and publish events)
- Transport: per-remote proxy configuration for onion hosts

These provide clean interfaces that can be replaced with fakes for testing.
"""

from .transport import Transport, DIRECT, transport_for_url, validate_remote_url, is_onion_address
from .git_client import GitClient, GitResult, PAPERTRAIL_REF
from .relay_client import RelayClient

__all__ = [
    'Transport',
    'DIRECT',
    'transport_for_url',
    'validate_remote_url',
    'is_onion_address',
    'GitClient',
    'GitResult',
    'PAPERTRAIL_REF',
    'RelayClient',
]
