"""
Repository state derived from events.

These records are what ownership and access resolution hand back to
callers. They are immutable and serializable for JSONL output.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple


@dataclass(frozen=True)
class TransferRecord:
    """One applied link of an ownership chain."""
    from_pubkey: str
    to_pubkey: str
    event_id: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'from': self.from_pubkey,
            'to': self.to_pubkey,
            'eventId': self.event_id,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class OwnershipInfo:
    """
    Resolved ownership of a repository.

    ``history`` lists only the transfers that were applied, oldest first;
    forged or out-of-chain transfers never appear in it.
    """
    address: str
    owner: str
    original_owner: str
    history: Tuple[TransferRecord, ...] = ()

    @property
    def transferred(self) -> bool:
        return self.owner != self.original_owner

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'owner': self.owner,
            'original_owner': self.original_owner,
            'transferred': self.transferred,
            'history': [record.to_dict() for record in self.history],
        }


@dataclass(frozen=True)
class MaintainerInfo:
    """Owner plus announced maintainers, owner first."""
    owner: str
    maintainers: Tuple[str, ...]
    is_private: bool = False
    has_announcement: bool = True

    def includes(self, pubkey: Optional[str]) -> bool:
        if not pubkey:
            return False
        lowered = pubkey.lower()
        return any(m.lower() == lowered for m in self.maintainers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner': self.owner,
            'maintainers': list(self.maintainers),
            'private': self.is_private,
        }


@dataclass(frozen=True)
class AccessDecision:
    """allow, or deny with a reason."""
    allowed: bool
    reason: Optional[str] = None
    role: Optional[str] = None  # owner, maintainer, viewer

    @classmethod
    def allow(cls, role: str = 'viewer') -> 'AccessDecision':
        return cls(allowed=True, role=role)

    @classmethod
    def deny(cls, reason: str) -> 'AccessDecision':
        return cls(allowed=False, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'allowed': self.allowed}
        if self.role:
            result['role'] = self.role
        if self.reason:
            result['reason'] = self.reason
        return result
