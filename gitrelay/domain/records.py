"""
Typed views over raw events.

Downstream logic never looks at ``tags`` directly: each event kind that
gitrelay reasons about is parsed once, at the ingestion boundary, into one
of these records. Parsing failures raise ``MalformedEventError``.
"""

from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple
import json

from . import kinds
from .event import SignedEvent
from ..errors import MalformedEventError, ValidationError
from ..keys import try_normalize_pubkey
from ..security import is_hex_pubkey


@dataclass(frozen=True)
class RepoAddress:
    """
    Durable repository address: ``kind:pubkey:identifier``.

    The identifier is the announcement's ``d`` tag, scoped to its author.
    """

    pubkey: str
    identifier: str
    kind: int = kinds.REPO_ANNOUNCEMENT

    @classmethod
    def parse(cls, value: str) -> 'RepoAddress':
        """Parse ``kind:pubkey:identifier`` (identifier may contain colons)."""
        parts = (value or '').split(':', 2)
        if len(parts) != 3 or not parts[0].isdigit() or not is_hex_pubkey(parts[1]) or not parts[2]:
            raise ValidationError(f"Malformed repository address: {value!r}", field='address')
        return cls(pubkey=parts[1], identifier=parts[2], kind=int(parts[0]))

    def __str__(self) -> str:
        return f"{self.kind}:{self.pubkey}:{self.identifier}"


@dataclass(frozen=True)
class RepoAnnouncement:
    """A repository announcement, parsed."""

    event: SignedEvent
    identifier: str
    name: str
    description: str
    clone_urls: Tuple[str, ...]
    relays: Tuple[str, ...]
    maintainers: Tuple[str, ...]
    is_private: bool
    is_fork: bool
    upstream: Optional[RepoAddress]
    earliest_commit: Optional[str]

    @property
    def address(self) -> RepoAddress:
        return RepoAddress(pubkey=self.event.pubkey, identifier=self.identifier)

    @property
    def author(self) -> str:
        return self.event.pubkey

    @classmethod
    def from_event(cls, event: SignedEvent) -> 'RepoAnnouncement':
        if event.kind != kinds.REPO_ANNOUNCEMENT:
            raise MalformedEventError(
                f"Expected kind {kinds.REPO_ANNOUNCEMENT}, got {event.kind}", field='kind'
            )
        identifier = event.d_tag
        if not identifier:
            raise MalformedEventError("Announcement has no 'd' tag", field='d')

        # Maintainers may be listed as hex or npub; unparseable entries are dropped
        maintainers = []
        for value in event.tag_values('maintainers'):
            pubkey = try_normalize_pubkey(value)
            if pubkey and pubkey not in maintainers:
                maintainers.append(pubkey)

        # The first 'a' tag naming another announcement is the upstream
        upstream = None
        own_address = RepoAddress(event.pubkey, identifier)
        for value in event.first_values('a'):
            try:
                address = RepoAddress.parse(value)
            except ValidationError:
                continue
            if address.kind == kinds.REPO_ANNOUNCEMENT and address != own_address:
                upstream = address
                break

        earliest_commit = None
        for tag in event.tags:
            if len(tag) > 2 and tag[0] == 'r' and tag[2] == 'euc' and tag[1]:
                earliest_commit = tag[1]
                break

        return cls(
            event=event,
            identifier=identifier,
            name=event.tag_value('name') or identifier,
            description=event.tag_value('description') or '',
            clone_urls=tuple(event.tag_values('clone')),
            relays=tuple(event.tag_values('relays')),
            maintainers=tuple(maintainers),
            is_private=event.has_tag('private', 'true') or event.has_tag('t', 'private'),
            is_fork=event.has_tag('t', 'fork'),
            upstream=upstream,
            earliest_commit=earliest_commit,
        )


@dataclass(frozen=True)
class OwnershipTransfer:
    """
    An ownership transfer, parsed.

    ``from_pubkey`` is always the signer: a transfer can only be issued by
    whoever signs it.
    """

    event: SignedEvent
    address: RepoAddress
    from_pubkey: str
    to_pubkey: str

    @property
    def is_self_transfer(self) -> bool:
        return self.from_pubkey == self.to_pubkey

    @property
    def timestamp(self) -> int:
        return self.event.created_at

    @classmethod
    def from_event(cls, event: SignedEvent) -> 'OwnershipTransfer':
        if event.kind != kinds.OWNERSHIP_TRANSFER:
            raise MalformedEventError(
                f"Event must be kind {kinds.OWNERSHIP_TRANSFER} (ownership transfer)", field='kind'
            )
        a_value = event.tag_value('a')
        if not a_value:
            raise MalformedEventError("Transfer event has no 'a' tag", field='a')
        try:
            address = RepoAddress.parse(a_value)
        except ValidationError as e:
            raise MalformedEventError(e.message, field='a')

        to_pubkey = try_normalize_pubkey(event.tag_value('p'))
        if not to_pubkey:
            raise MalformedEventError("Transfer event has no valid 'p' tag", field='p')

        return cls(event=event, address=address, from_pubkey=event.pubkey, to_pubkey=to_pubkey)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'from': self.from_pubkey,
            'to': self.to_pubkey,
            'event_id': self.event.id,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class DeletionRequest:
    """A deletion request: the ids and addresses it asks relays to forget."""

    event: SignedEvent
    event_ids: Tuple[str, ...]
    addresses: Tuple[str, ...]

    @classmethod
    def from_event(cls, event: SignedEvent) -> 'DeletionRequest':
        if event.kind != kinds.DELETION_REQUEST:
            raise MalformedEventError(
                f"Expected kind {kinds.DELETION_REQUEST}, got {event.kind}", field='kind'
            )
        return cls(
            event=event,
            event_ids=tuple(event.first_values('e')),
            addresses=tuple(event.first_values('a')),
        )

    def covers(self, target: SignedEvent) -> bool:
        """
        True if this request deletes ``target``.

        Only the target's own author may delete it.
        """
        if target.pubkey != self.event.pubkey:
            return False
        if target.id in self.event_ids:
            return True
        if target.d_tag is None and not self.addresses:
            return False
        return f"{target.kind}:{target.pubkey}:{target.d_tag}" in self.addresses


@dataclass(frozen=True)
class RelayList:
    """A user's inbox (read) and outbox (write) relays."""

    inbox: Tuple[str, ...]
    outbox: Tuple[str, ...]

    @classmethod
    def from_event(cls, event: SignedEvent) -> 'RelayList':
        inbox: List[str] = []
        outbox: List[str] = []

        if event.kind == kinds.RELAY_LIST:
            for tag in event.tags:
                if len(tag) < 2 or tag[0] not in ('r', 'relay') or not tag[1]:
                    continue
                marker = tag[2] if len(tag) > 2 else ''
                if marker != 'write':
                    inbox.append(tag[1])
                if marker != 'read':
                    outbox.append(tag[1])
        elif event.kind == kinds.CONTACT_LIST:
            # Older clients keep relays in the content JSON
            try:
                content = json.loads(event.content) if event.content else {}
            except ValueError:
                content = {}
            relays = content.get('relays') if isinstance(content, dict) else None
            if isinstance(relays, dict):
                relays = list(relays)
            if isinstance(relays, list):
                inbox.extend(r for r in relays if isinstance(r, str))
                outbox.extend(r for r in relays if isinstance(r, str))
            else:
                for value in event.first_values('relay'):
                    inbox.append(value)
                    outbox.append(value)
        else:
            raise MalformedEventError(f"Kind {event.kind} carries no relay list", field='kind')

        return cls(inbox=tuple(dict.fromkeys(inbox)), outbox=tuple(dict.fromkeys(outbox)))
