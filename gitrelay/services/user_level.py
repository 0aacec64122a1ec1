"""
User access levels.

Three tiers:
- unlimited: proved write access to a default relay, or statically trusted
- rate_limited: identified, without such proof
- strictly_rate_limited: anonymous

Write access is proved with a recent signed event that the user published
to one of the default relays: an HTTP-auth event (kind 27235, at most 60
seconds old) or a public message addressed to themselves (kind 24, at most
five minutes old). The proof is checked by fetching it back by id.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
import logging
import time

from ..crypto import verify_event
from ..domain import kinds
from ..domain.event import EventTemplate, SignedEvent
from ..errors import TransientError
from ..keys import try_normalize_pubkey
from ..security import truncate_pubkey
from .result_cache import ResultCache

logger = logging.getLogger(__name__)

UNLIMITED = 'unlimited'
RATE_LIMITED = 'rate_limited'
STRICTLY_RATE_LIMITED = 'strictly_rate_limited'

LEVEL_ORDER = {STRICTLY_RATE_LIMITED: 0, RATE_LIMITED: 1, UNLIMITED: 2}

HTTP_AUTH_MAX_AGE = 60
PUBLIC_MESSAGE_MAX_AGE = 300


@dataclass(frozen=True)
class ProofCheck:
    valid: bool
    error: Optional[str] = None
    relay_down: bool = False


def level_satisfies(level: str, required: str) -> bool:
    return LEVEL_ORDER.get(level, 0) >= LEVEL_ORDER.get(required, len(LEVEL_ORDER))


def create_proof_event(pubkey: str, content: str = 'gitrelay-write-proof') -> EventTemplate:
    """A self-addressed public message proving relay write access."""
    return EventTemplate(
        pubkey=pubkey,
        kind=kinds.PUBLIC_MESSAGE,
        tags=[['p', pubkey], ['t', 'gitrelay-proof']],
        content=content,
    )


class UserLevelService:
    """Determines and caches access levels."""

    def __init__(
        self,
        client,
        default_relays: Sequence[str],
        unlimited_pubkeys: Iterable[str] = (),
        cache_ttl: float = 3600,
        clock=time.time,
    ):
        self.client = client
        self.default_relays = list(default_relays)
        self.unlimited_pubkeys = {
            pk for pk in (try_normalize_pubkey(v) for v in unlimited_pubkeys) if pk
        }
        self._clock = clock
        self._levels: ResultCache[str] = ResultCache(cache_ttl, clock)

    def get_level(self, pubkey: Optional[str]) -> str:
        """Level from configuration and cached proofs only (no network)."""
        candidate = try_normalize_pubkey(pubkey) if pubkey else None
        if candidate is None:
            return STRICTLY_RATE_LIMITED
        if candidate in self.unlimited_pubkeys:
            return UNLIMITED
        return self._levels.get(candidate) or RATE_LIMITED

    async def verify_write_proof(self, proof: SignedEvent, pubkey: str) -> ProofCheck:
        """Check a proof event; on success the user is cached as unlimited."""
        if not verify_event(proof):
            return ProofCheck(False, "Invalid event signature")
        if proof.pubkey != pubkey:
            return ProofCheck(False, "Event pubkey does not match user pubkey")

        if proof.kind == kinds.HTTP_AUTH:
            max_age = HTTP_AUTH_MAX_AGE
            if not proof.tag_value('u'):
                return ProofCheck(False, "HTTP auth event missing 'u' tag")
            if not proof.tag_value('method'):
                return ProofCheck(False, "HTTP auth event missing 'method' tag")
            if proof.content.strip():
                return ProofCheck(False, "HTTP auth event content should be empty")
        elif proof.kind == kinds.PUBLIC_MESSAGE:
            max_age = PUBLIC_MESSAGE_MAX_AGE
            if proof.tag_value('p') != pubkey:
                return ProofCheck(False, "Public message proof must be addressed to the user themselves")
        else:
            return ProofCheck(False, f"Kind {proof.kind} cannot prove write access")

        age = int(self._clock()) - proof.created_at
        if age > max_age:
            return ProofCheck(False, f"Proof event is too old (must be within {max_age} seconds)")
        if age < 0:
            return ProofCheck(False, "Proof event has future timestamp")

        try:
            events = await self.client.fetch_events(
                [{'ids': [proof.id], 'authors': [pubkey], 'limit': 1}],
                relays=self.default_relays,
                use_cache=False,
            )
        except TransientError as e:
            return ProofCheck(False, f"Failed to verify proof on relays: {e.message}", relay_down=True)

        if not any(e.id == proof.id for e in events):
            return ProofCheck(False, "Proof event not found on any default relay")

        self._levels.set(pubkey, UNLIMITED)
        logger.info(f"Granted unlimited access to {truncate_pubkey(pubkey)}")
        return ProofCheck(True)
