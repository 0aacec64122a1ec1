"""
Repository verification file.

A small JSON document committed next to a repository's content that ties
it to the announcement event naming it. Anyone holding the announcement
can check the file without trusting the host.
"""

from typing import Optional, Tuple
import json

from .event import SignedEvent
from ..keys import npub_encode

VERIFICATION_FILE_PATH = '.nostr-verification'


def generate_verification_file(announcement: SignedEvent, owner_pubkey: str) -> str:
    """Render the verification file for ``announcement``."""
    verification = {
        'eventId': announcement.id,
        'pubkey': owner_pubkey,
        'npub': npub_encode(owner_pubkey),
        'signature': announcement.sig,
        'timestamp': announcement.created_at,
    }
    return json.dumps(verification, indent=2) + '\n'


def verify_repository_ownership(
    announcement: SignedEvent,
    content: str
) -> Tuple[bool, Optional[str]]:
    """
    Check a verification file against an announcement.

    Returns:
        (valid, error) where error names the first mismatch
    """
    from ..crypto import verify_event

    try:
        verification = json.loads(content)
    except ValueError as e:
        return False, f"Failed to parse verification file: {e}"
    if not isinstance(verification, dict):
        return False, "Verification file must be a JSON object"

    if verification.get('eventId') != announcement.id:
        return False, "Verification file event ID does not match announcement"
    if verification.get('pubkey') != announcement.pubkey:
        return False, "Verification file pubkey does not match announcement author"
    if not verify_event(announcement):
        return False, "Announcement event signature is invalid"
    if verification.get('signature') != announcement.sig:
        return False, "Verification file signature does not match announcement"
    return True, None
