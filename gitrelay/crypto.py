"""
Signature primitives for gitrelay.

Events are signed with BIP-340 Schnorr signatures over the 32 id bytes,
under the author's x-only public key. ``coincurve`` (libsecp256k1)
provides the curve operations.
"""

from abc import ABC, abstractmethod
from typing import Union
import logging
import os

from coincurve import PrivateKey, PublicKeyXOnly

from .domain.event import EventTemplate, SignedEvent
from .errors import ValidationError
from .keys import nsec_decode, NSEC_HRP
from .security import HEX64_RE

logger = logging.getLogger(__name__)


def verify_event(event: SignedEvent) -> bool:
    """
    Check that ``event.id`` is the hash of its fields and ``event.sig``
    verifies for that id under ``event.pubkey``.

    Never raises: anything malformed is simply invalid.
    """
    try:
        if not event.has_valid_id():
            return False
        public_key = PublicKeyXOnly(bytes.fromhex(event.pubkey))
        return bool(public_key.verify(bytes.fromhex(event.sig), bytes.fromhex(event.id)))
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Signature check failed for event: {e}")
        return False


class Signer(ABC):
    """
    Something that can sign event templates for one identity.

    Subclasses may hold a key locally or delegate to an external signer;
    callers only see ``pubkey`` and ``sign``.
    """

    @property
    @abstractmethod
    def pubkey(self) -> str:
        """Hex pubkey of the identity this signer signs for."""

    @abstractmethod
    async def sign(self, template: EventTemplate) -> SignedEvent:
        """Sign ``template`` and return the complete event."""


class LocalKeySigner(Signer):
    """Signs with a secret key held in memory (hex or nsec)."""

    def __init__(self, secret: Union[str, bytes]):
        if isinstance(secret, bytes):
            secret_bytes = secret
        else:
            value = secret.strip()
            if value.startswith(NSEC_HRP + '1'):
                value = nsec_decode(value)
            if not HEX64_RE.match(value.lower()):
                raise ValidationError("Secret key must be nsec or 64-character hex", field='secret_key')
            secret_bytes = bytes.fromhex(value)
        if len(secret_bytes) != 32:
            raise ValidationError("Secret key must be 32 bytes", field='secret_key')

        try:
            self._private_key = PrivateKey(secret_bytes)
        except ValueError:
            raise ValidationError("Secret key is out of range", field='secret_key')
        self._pubkey = PublicKeyXOnly.from_secret(secret_bytes).format().hex()

    @property
    def pubkey(self) -> str:
        return self._pubkey

    def sign_template(self, template: EventTemplate) -> SignedEvent:
        """Synchronous signing, for tests and tooling."""
        if template.pubkey != self._pubkey:
            raise ValidationError("Template pubkey does not match signer", field='pubkey')
        event_id = template.compute_id()
        sig = self._private_key.sign_schnorr(bytes.fromhex(event_id), os.urandom(32))
        return SignedEvent(
            id=event_id,
            pubkey=template.pubkey,
            created_at=template.created_at,
            kind=template.kind,
            tags=template.tags,
            content=template.content,
            sig=sig.hex(),
        )

    async def sign(self, template: EventTemplate) -> SignedEvent:
        return self.sign_template(template)

    def __repr__(self) -> str:
        return f"LocalKeySigner(pubkey={self._pubkey[:8]}...)"
