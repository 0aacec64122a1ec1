"""
Bech32 key codec (NIP-19) for gitrelay.

Repositories are addressed by the owner's ``npub`` in URLs and paths;
events carry raw 64-char hex pubkeys. These helpers convert between the
two using the ``bech32`` reference implementation.
"""

from typing import Optional

import bech32

from .errors import ValidationError
from .security import is_hex_pubkey

NPUB_HRP = 'npub'
NSEC_HRP = 'nsec'


def _encode(hrp: str, hex_value: str) -> str:
    data = bech32.convertbits(bytes.fromhex(hex_value), 8, 5, True)
    return bech32.bech32_encode(hrp, data)


def _decode(expected_hrp: str, value: str, field: str) -> str:
    hrp, data = bech32.bech32_decode(value.strip().lower())
    if hrp is None or data is None:
        raise ValidationError(f"Invalid {expected_hrp} encoding", field=field)
    if hrp != expected_hrp:
        raise ValidationError(f"Expected {expected_hrp}, got {hrp}", field=field)
    raw = bech32.convertbits(data, 5, 8, False)
    if raw is None or len(raw) != 32:
        raise ValidationError(f"Invalid {expected_hrp} payload", field=field)
    return bytes(raw).hex()


def npub_encode(pubkey_hex: str) -> str:
    """Encode a 64-char hex pubkey as an npub."""
    if not is_hex_pubkey(pubkey_hex):
        raise ValidationError("Invalid pubkey format. Must be 64-character hex string.", field='pubkey')
    return _encode(NPUB_HRP, pubkey_hex)


def npub_decode(npub: str, field: str = 'npub') -> str:
    """Decode an npub to its 64-char hex pubkey."""
    return _decode(NPUB_HRP, npub, field)


def nsec_decode(nsec: str) -> str:
    """Decode an nsec to its 64-char hex secret."""
    return _decode(NSEC_HRP, nsec, 'secret_key')


def normalize_pubkey(value: Optional[str], field: str = 'pubkey') -> str:
    """
    Accept a hex pubkey or an npub and return lowercase hex.

    Raises:
        ValidationError: if the value is neither
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Pubkey is required", field=field)
    candidate = value.strip()
    if candidate.startswith(NPUB_HRP + '1'):
        return npub_decode(candidate, field=field)
    candidate = candidate.lower()
    if not is_hex_pubkey(candidate):
        raise ValidationError("Invalid pubkey format. Must be npub or 64-character hex.", field=field)
    return candidate


def try_normalize_pubkey(value: Optional[str]) -> Optional[str]:
    """Like normalize_pubkey but returns None instead of raising."""
    try:
        return normalize_pubkey(value)
    except ValidationError:
        return None
