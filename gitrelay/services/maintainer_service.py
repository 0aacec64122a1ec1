"""
Maintainer and access resolution for gitrelay.

The maintainer set of a repository is its current owner (from ownership
resolution) followed by the pubkeys in the latest announcement's
``maintainers`` tag. A repository is private when its announcement says
so; private repositories are visible to maintainers only.
"""

from typing import List, Optional
import logging
import time

from ..domain import kinds
from ..domain.filters import Filter
from ..domain.records import RepoAnnouncement
from ..domain.repository import AccessDecision, MaintainerInfo
from ..errors import MalformedEventError
from ..keys import normalize_pubkey, try_normalize_pubkey
from .event_cache import EventCache
from .ownership_service import OwnershipService
from .result_cache import ResultCache

logger = logging.getLogger(__name__)

DENIED_MESSAGE = "Repository not found or access denied"


def announcement_filters(author: str, repo_id: str) -> List[Filter]:
    return [{'kinds': [kinds.REPO_ANNOUNCEMENT], 'authors': [author], '#d': [repo_id], 'limit': 1}]


class MaintainerService:
    """
    Resolves maintainers, privacy and access for a repository.

    Example:
        service = MaintainerService(relay_client, ownership_service)
        if await service.can_view(requester, owner, "my-repo"):
            ...
    """

    def __init__(
        self,
        client,
        ownership: OwnershipService,
        event_cache: Optional[EventCache] = None,
        cache_ttl: float = 300,
        clock=time.time,
    ):
        self.client = client
        self.ownership = ownership
        self.event_cache = event_cache
        self._results: ResultCache[MaintainerInfo] = ResultCache(cache_ttl, clock)

    async def get_announcement(self, author: str, repo_id: str) -> Optional[RepoAnnouncement]:
        """Latest well-formed announcement of ``author``'s ``repo_id``."""
        author = normalize_pubkey(author, field='owner')
        events = await self.client.fetch_events(announcement_filters(author, repo_id))

        for event in sorted(events, key=lambda e: (-e.created_at, e.id)):
            if event.pubkey != author or event.d_tag != repo_id:
                continue
            try:
                return RepoAnnouncement.from_event(event)
            except MalformedEventError as e:
                logger.info(f"Skipping malformed announcement {event.id[:8]}: {e.message}")
        return None

    async def get_maintainers(self, owner: str, repo_id: str) -> MaintainerInfo:
        """
        Owner first, then announced maintainers, deduplicated.

        Without an announcement only the owner maintains the repository and
        it is public.

        Raises:
            RelayUnavailableError: if no relay answered
        """
        owner = normalize_pubkey(owner, field='owner')
        key = (owner, repo_id)
        cached = self._results.get(key)
        if cached is not None:
            return cached

        announcement = await self.get_announcement(owner, repo_id)
        current_owner = await self.ownership.get_current_owner(owner, repo_id)

        maintainers = [current_owner]
        seen = {current_owner.lower()}
        if announcement is not None:
            for pubkey in announcement.maintainers:
                if pubkey.lower() not in seen:
                    seen.add(pubkey.lower())
                    maintainers.append(pubkey)

        info = MaintainerInfo(
            owner=current_owner,
            maintainers=tuple(maintainers),
            is_private=announcement.is_private if announcement is not None else False,
            has_announcement=announcement is not None,
        )
        self._results.set(key, info)
        return info

    async def is_maintainer(self, pubkey: str, owner: str, repo_id: str) -> bool:
        candidate = try_normalize_pubkey(pubkey)
        if candidate is None:
            return False
        info = await self.get_maintainers(owner, repo_id)
        return info.includes(candidate)

    async def can_view(self, requester: Optional[str], owner: str, repo_id: str) -> bool:
        """Public: anyone. Private: owner and maintainers only."""
        decision = await self.check_access(requester, owner, repo_id)
        return decision.allowed

    async def check_access(
        self,
        requester: Optional[str],
        owner: str,
        repo_id: str,
        write: bool = False,
    ) -> AccessDecision:
        """
        Decide whether ``requester`` (or an anonymous caller) may read, or
        with ``write`` may modify, the repository.

        Denials for private repositories never reveal whether it exists.
        """
        info = await self.get_maintainers(owner, repo_id)
        candidate = try_normalize_pubkey(requester) if requester else None

        role = None
        if candidate is not None:
            if candidate == info.owner:
                role = 'owner'
            elif info.includes(candidate):
                role = 'maintainer'

        if write:
            if candidate is None:
                return AccessDecision.deny("Authentication required")
            if role is None:
                return AccessDecision.deny(
                    DENIED_MESSAGE if info.is_private else "Only maintainers can modify this repository"
                )
            return AccessDecision.allow(role)

        if not info.is_private:
            return AccessDecision.allow(role or 'viewer')
        if role is None:
            return AccessDecision.deny(DENIED_MESSAGE)
        return AccessDecision.allow(role)

    def invalidate(self, owner: str, repo_id: str) -> None:
        """Forget derived state after a transfer or an announcement edit."""
        self._results.invalidate((owner, repo_id))
        if self.event_cache is not None:
            self.event_cache.invalidate(announcement_filters(owner, repo_id))
