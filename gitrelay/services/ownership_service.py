"""
Ownership resolution for gitrelay.

The owner of a repository is derived, never stored. Starting from the
author of the original announcement, transfer events are applied oldest
first; each one counts only if it is correctly signed, names exactly this
repository, and is signed by whoever owned the repository at that point.
A forged or out-of-chain transfer is ignored, and so is everything a
forger signs afterwards, because the forger never becomes owner.

Transfers with the same ``created_at`` are applied in ascending id order,
so the outcome never depends on the order relays returned them in.
"""

from typing import Iterable, List, Optional
import logging
import time

from ..crypto import verify_event
from ..domain import kinds
from ..domain.event import EventTemplate, SignedEvent
from ..domain.filters import Filter
from ..domain.records import RepoAddress, OwnershipTransfer
from ..domain.repository import OwnershipInfo, TransferRecord
from ..errors import MalformedEventError
from ..keys import normalize_pubkey
from ..security import truncate_pubkey
from .event_cache import EventCache
from .result_cache import ResultCache

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('gitrelay.security')

TRANSFER_QUERY_LIMIT = 100


def transfer_filters(address: RepoAddress) -> List[Filter]:
    return [{'kinds': [kinds.OWNERSHIP_TRANSFER], '#a': [str(address)], 'limit': TRANSFER_QUERY_LIMIT}]


def parse_transfer_for(event: SignedEvent, address: RepoAddress) -> Optional[OwnershipTransfer]:
    """
    The transfer carried by ``event`` if it is well-formed, correctly
    signed and addressed to exactly ``address``; otherwise None.
    """
    if event.kind != kinds.OWNERSHIP_TRANSFER:
        return None
    if not verify_event(event):
        security_logger.warning(
            f"Ignoring transfer {event.id[:8]} with invalid signature for {address.identifier}"
        )
        return None
    if event.tag_value('a') != str(address):
        security_logger.warning(
            f"Ignoring transfer {event.id[:8]} addressed to another repository"
        )
        return None
    try:
        return OwnershipTransfer.from_event(event)
    except MalformedEventError as e:
        logger.info(f"Ignoring malformed transfer {event.id[:8]}: {e.message}")
        return None


def resolve_ownership(address: RepoAddress, events: Iterable[SignedEvent]) -> OwnershipInfo:
    """
    Fold transfer events over the original author.

    Pure: no I/O, no caching. See the module docstring for the rules.
    """
    owner = address.pubkey
    history = []
    seen = set()

    for event in sorted(events, key=lambda e: (e.created_at, e.id)):
        if event.id in seen:
            continue
        seen.add(event.id)

        transfer = parse_transfer_for(event, address)
        if transfer is None:
            continue
        if transfer.from_pubkey != owner:
            security_logger.warning(
                f"Ignoring transfer {event.id[:8]} signed by {truncate_pubkey(transfer.from_pubkey)}, "
                f"who was not the owner of {address.identifier}"
            )
            continue

        history.append(TransferRecord(
            from_pubkey=transfer.from_pubkey,
            to_pubkey=transfer.to_pubkey,
            event_id=event.id,
            timestamp=event.created_at,
        ))
        owner = transfer.to_pubkey

    return OwnershipInfo(
        address=str(address),
        owner=owner,
        original_owner=address.pubkey,
        history=tuple(history),
    )


class OwnershipService:
    """
    Resolves and caches current owners.

    Example:
        service = OwnershipService(relay_client)
        owner = await service.get_current_owner(original_pubkey, "my-repo")
    """

    def __init__(
        self,
        client,
        event_cache: Optional[EventCache] = None,
        cache_ttl: float = 300,
        clock=time.time,
    ):
        """
        Initialize OwnershipService.

        Args:
            client: Relay client (``fetch_events``)
            event_cache: Shared event cache, invalidated alongside results
            cache_ttl: Seconds a resolved owner stays cached
        """
        self.client = client
        self.event_cache = event_cache
        self._results: ResultCache[OwnershipInfo] = ResultCache(cache_ttl, clock)

    async def get_ownership_info(
        self,
        original_owner: str,
        repo_id: str,
        fresh: bool = False
    ) -> OwnershipInfo:
        """
        Resolve the ownership chain of ``original_owner``'s ``repo_id``.

        Args:
            fresh: Bypass both caches

        Raises:
            RelayUnavailableError: if no relay answered; resolution never
                falls back to the original author in that case
        """
        address = RepoAddress(pubkey=normalize_pubkey(original_owner, field='owner'), identifier=repo_id)
        key = (address.pubkey, repo_id)

        if not fresh:
            cached = self._results.get(key)
            if cached is not None:
                return cached

        events = await self.client.fetch_events(transfer_filters(address), use_cache=not fresh)
        info = resolve_ownership(address, events)
        self._results.set(key, info)

        if info.transferred:
            logger.debug(
                f"{repo_id}: owner {truncate_pubkey(info.owner)} after {len(info.history)} transfer(s)"
            )
        return info

    async def get_current_owner(self, original_owner: str, repo_id: str, fresh: bool = False) -> str:
        info = await self.get_ownership_info(original_owner, repo_id, fresh=fresh)
        return info.owner

    async def get_transfer_history(self, original_owner: str, repo_id: str) -> List[TransferRecord]:
        """Applied transfers, most recent first."""
        info = await self.get_ownership_info(original_owner, repo_id)
        return list(reversed(info.history))

    async def can_transfer(self, requester: str, original_owner: str, repo_id: str) -> bool:
        """True iff ``requester`` owns the repository right now (caches bypassed)."""
        owner = await self.get_current_owner(original_owner, repo_id, fresh=True)
        return owner == normalize_pubkey(requester, field='requester')

    def create_transfer_event(
        self,
        from_pubkey: str,
        to_pubkey: str,
        original_owner: str,
        repo_id: str,
        created_at: Optional[int] = None,
    ) -> EventTemplate:
        """
        Build an unsigned transfer. ``to_pubkey`` may be hex or npub; when it
        equals ``from_pubkey`` the result is a self-transfer.
        """
        from_hex = normalize_pubkey(from_pubkey, field='from')
        to_hex = normalize_pubkey(to_pubkey, field='to')
        address = RepoAddress(pubkey=normalize_pubkey(original_owner, field='owner'), identifier=repo_id)

        is_self_transfer = from_hex == to_hex
        if is_self_transfer:
            content = f"Initial ownership proof for repository {repo_id}"
        else:
            content = f"Transferring ownership of repository {repo_id} to {to_hex}"

        tags = [['a', str(address)], ['p', to_hex], ['d', repo_id]]
        if is_self_transfer:
            tags.append(['t', 'self-transfer'])

        return EventTemplate(
            pubkey=from_hex,
            kind=kinds.OWNERSHIP_TRANSFER,
            tags=tags,
            content=content,
            created_at=created_at if created_at is not None else int(time.time()),
        )

    def create_initial_ownership_event(self, owner: str, repo_id: str) -> EventTemplate:
        """The self-transfer anchoring a new repository's ownership chain."""
        return self.create_transfer_event(owner, owner, owner, repo_id)

    def invalidate(self, original_owner: str, repo_id: str) -> None:
        """Forget the resolved owner and the cached transfer query."""
        address = RepoAddress(pubkey=original_owner, identifier=repo_id)
        self._results.invalidate((original_owner, repo_id))
        if self.event_cache is not None:
            self.event_cache.invalidate(transfer_filters(address))
