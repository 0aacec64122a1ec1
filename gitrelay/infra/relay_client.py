"""
Relay client for gitrelay.

Fetches and publishes signed events over the relay websocket protocol:

    -> ["REQ", <sub_id>, <filter>...]      <- ["EVENT", <sub_id>, <event>] ... ["EOSE", <sub_id>]
    -> ["EVENT", <event>]                  <- ["OK", <event_id>, <accepted>, <message>]

Relays are untrusted: every event they return is shape-checked,
signature-checked and matched against the filters that were asked
before it is used or cached.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import json
import logging
import secrets

import websockets

from ..crypto import verify_event
from ..domain import kinds
from ..domain.event import SignedEvent
from ..domain.filters import Filter, matches_any
from ..domain.operation import PublishResult
from ..errors import MalformedEventError, RelayUnavailableError, TransientError
from ..retry import gather_isolated, retry_with_backoff
from ..security import sanitize_error, truncate_pubkey
from ..services.event_cache import EventCache

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('gitrelay.security')


def _is_relay_url(url: str) -> bool:
    return isinstance(url, str) and (url.startswith('wss://') or url.startswith('ws://'))


class RelayClient:
    """
    Websocket client for a set of relays.

    Example:
        client = RelayClient(["wss://relay.example"], cache=EventCache())
        events = await client.fetch_events([{"kinds": [30617], "limit": 10}])
    """

    def __init__(
        self,
        relays: Sequence[str],
        timeout: float = 5.0,
        cache: Optional[EventCache] = None,
        fetch_attempts: int = 2,
        retry_base_delay: float = 0.5,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize RelayClient.

        Args:
            relays: Default relay URLs
            timeout: Seconds allowed per relay round trip
            cache: Shared event cache (optional)
            fetch_attempts: Attempts when every relay fails
            retry_base_delay: First backoff delay in seconds
            connect: Websocket connect factory, injectable for tests
        """
        self.relays = [r for r in relays if _is_relay_url(r)]
        self.timeout = timeout
        self.cache = cache
        self.fetch_attempts = fetch_attempts
        self.retry_base_delay = retry_base_delay
        self._connect = connect or websockets.connect

    async def fetch_events(
        self,
        filters: List[Filter],
        relays: Optional[Sequence[str]] = None,
        use_cache: bool = True,
    ) -> List[SignedEvent]:
        """
        Query relays for events matching any of ``filters``.

        Returns verified, deduplicated events. An empty list means the
        relays answered and had nothing.

        Raises:
            RelayUnavailableError: if no relay answered on any attempt
        """
        if use_cache and self.cache is not None:
            cached = self.cache.get(filters)
            if cached is not None:
                return cached

        targets = self._targets(relays)
        outcome = await retry_with_backoff(
            lambda: self._fetch_once(filters, targets),
            attempts=self.fetch_attempts,
            base_delay=self.retry_base_delay,
            retry_on=(RelayUnavailableError,),
            description="relay fetch",
        )
        if not outcome.succeeded:
            raise RelayUnavailableError(
                f"No relay answered ({len(targets)} tried)",
                context={'relays': len(targets)},
            )

        events = outcome.value
        if self.cache is not None:
            deletions = [e for e in events if e.kind == kinds.DELETION_REQUEST]
            if deletions:
                self.cache.process_deletion_events(deletions)
            self.cache.set(filters, events)
        return events

    async def _fetch_once(self, filters: List[Filter], targets: List[str]) -> List[SignedEvent]:
        if not targets:
            raise RelayUnavailableError("No relays configured")

        results = await gather_isolated(targets, lambda relay: self._query_relay(relay, filters))

        seen: Dict[str, SignedEvent] = {}
        answered = 0
        for relay, raw_events, error in results:
            if error is not None:
                logger.debug(f"Relay {relay} failed: {sanitize_error(error)}")
                continue
            answered += 1
            for raw in raw_events:
                event = self._accept(relay, raw, filters)
                if event is not None and event.id not in seen:
                    seen[event.id] = event

        if answered == 0:
            raise RelayUnavailableError(f"All {len(targets)} relays failed")
        return sorted(seen.values(), key=lambda e: (-e.created_at, e.id))

    def _accept(self, relay: str, raw: Any, filters: List[Filter]) -> Optional[SignedEvent]:
        try:
            event = SignedEvent.from_dict(raw)
        except MalformedEventError as e:
            logger.debug(f"Relay {relay} sent a malformed event: {e.message}")
            return None
        if not verify_event(event):
            security_logger.warning(
                f"Relay {relay} sent event with invalid signature from {truncate_pubkey(event.pubkey)}"
            )
            return None
        if not matches_any(event, filters):
            logger.debug(f"Relay {relay} sent an event outside the requested filters")
            return None
        return event

    async def _query_relay(self, relay: str, filters: List[Filter]) -> List[Dict[str, Any]]:
        sub_id = secrets.token_hex(8)
        events: List[Dict[str, Any]] = []

        async def exchange():
            async with self._connect(relay, open_timeout=self.timeout, close_timeout=self.timeout) as ws:
                await ws.send(json.dumps(['REQ', sub_id, *filters]))
                while True:
                    message = json.loads(await ws.recv())
                    if not isinstance(message, list) or len(message) < 2:
                        continue
                    if message[0] == 'EVENT' and message[1] == sub_id and len(message) > 2:
                        events.append(message[2])
                    elif message[0] == 'EOSE' and message[1] == sub_id:
                        break
                    elif message[0] == 'CLOSED' and message[1] == sub_id:
                        reason = message[2] if len(message) > 2 else ''
                        raise TransientError(f"Subscription closed by relay: {reason}")
                await ws.send(json.dumps(['CLOSE', sub_id]))

        try:
            await asyncio.wait_for(exchange(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransientError(f"Relay {relay} timed out")
        except (OSError, ValueError, websockets.exceptions.WebSocketException) as e:
            raise TransientError(f"Relay {relay} failed: {sanitize_error(e)}")
        return events

    async def publish_event(self, event: SignedEvent, relays: Optional[Sequence[str]] = None) -> PublishResult:
        """
        Send ``event`` to every relay concurrently.

        Never raises for relay failures; they are listed in the result.
        """
        targets = self._targets(relays)
        result = PublishResult(event_id=event.id)
        if not targets:
            result.add_failure('', 'No relays configured')
            return result

        outcomes = await gather_isolated(targets, lambda relay: self._send_event(relay, event))
        for relay, answer, error in outcomes:
            if error is not None:
                result.add_failure(relay, sanitize_error(error))
                continue
            accepted, message = answer
            if accepted:
                result.success.append(relay)
            else:
                result.add_failure(relay, message or 'rejected')

        if result.ok and self.cache is not None:
            self.cache.invalidate_pubkey(event.pubkey)
            if event.kind == kinds.DELETION_REQUEST:
                self.cache.process_deletion_events([event])

        logger.info(
            f"Published {event} to {len(result.success)}/{len(targets)} relays"
        )
        return result

    async def _send_event(self, relay: str, event: SignedEvent) -> Tuple[bool, str]:
        async def exchange():
            async with self._connect(relay, open_timeout=self.timeout, close_timeout=self.timeout) as ws:
                await ws.send(json.dumps(['EVENT', event.to_dict()], ensure_ascii=False))
                while True:
                    message = json.loads(await ws.recv())
                    if (
                        isinstance(message, list) and len(message) >= 3
                        and message[0] == 'OK' and message[1] == event.id
                    ):
                        return bool(message[2]), str(message[3]) if len(message) > 3 else ''

        try:
            return await asyncio.wait_for(exchange(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransientError(f"Relay {relay} timed out")
        except (OSError, ValueError, websockets.exceptions.WebSocketException) as e:
            raise TransientError(f"Relay {relay} failed: {sanitize_error(e)}")

    def _targets(self, relays: Optional[Sequence[str]]) -> List[str]:
        if relays is None:
            return list(self.relays)
        return list(dict.fromkeys(r for r in relays if _is_relay_url(r)))
