"""
Preferred relays of a user (inbox and outbox).
"""

from typing import Iterable, List, Optional, Tuple
import logging

from ..domain import kinds
from ..domain.records import RelayList
from ..errors import MalformedEventError, TransientError
from ..security import truncate_pubkey

logger = logging.getLogger(__name__)


class UserRelayService:
    """
    Looks up where a user reads and writes.

    Uses the newest relay list (kind 10002), falling back to the relays
    older clients keep in the contact list (kind 3).
    """

    def __init__(self, client):
        self.client = client

    async def get_user_relays(self, pubkey: str) -> Tuple[List[str], List[str]]:
        """
        Returns:
            (inbox, outbox); both empty when nothing is published or no
            relay answered
        """
        try:
            events = await self.client.fetch_events(
                [{'kinds': [kinds.RELAY_LIST], 'authors': [pubkey], 'limit': 10}]
            )
            relay_list = self._newest_list(events)
            if relay_list is None or not (relay_list.inbox or relay_list.outbox):
                events = await self.client.fetch_events(
                    [{'kinds': [kinds.CONTACT_LIST], 'authors': [pubkey], 'limit': 1}]
                )
                relay_list = self._newest_list(events)
        except TransientError as e:
            logger.warning(f"Failed to fetch relays for {truncate_pubkey(pubkey)}: {e.message}")
            return [], []

        if relay_list is None:
            return [], []
        return list(relay_list.inbox), list(relay_list.outbox)

    @staticmethod
    def _newest_list(events) -> Optional[RelayList]:
        for event in sorted(events, key=lambda e: (-e.created_at, e.id)):
            try:
                return RelayList.from_event(event)
            except MalformedEventError:
                continue
        return None


def combine_relays(user_relays: Iterable[str], defaults: Iterable[str]) -> List[str]:
    """User relays first, then defaults, without duplicates."""
    combined = []
    for relay in list(user_relays) + list(defaults):
        relay = relay.strip() if isinstance(relay, str) else ''
        if relay and relay not in combined:
            combined.append(relay)
    return combined
