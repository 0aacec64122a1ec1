"""
Event kind numbers used by gitrelay.
"""

PROFILE = 0
CONTACT_LIST = 3
DELETION_REQUEST = 5
PUBLIC_MESSAGE = 24
OWNERSHIP_TRANSFER = 1641  # Regular (not replaceable): every chain link is kept
RELAY_LIST = 10002
HTTP_AUTH = 27235
REPO_ANNOUNCEMENT = 30617
REPO_STATE = 30618


def is_replaceable(kind: int) -> bool:
    """Only the newest event per (pubkey, kind) matters."""
    return kind in (PROFILE, CONTACT_LIST) or 10000 <= kind < 20000


def is_addressable(kind: int) -> bool:
    """Only the newest event per (pubkey, kind, d-tag) matters."""
    return 30000 <= kind < 40000
