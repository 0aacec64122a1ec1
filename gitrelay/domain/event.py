"""
Signed event domain object for gitrelay.

Events are the unit of provenance: immutable, content-addressed and
signed. The id is the SHA-256 of the canonical serialization

    [0, pubkey, created_at, kind, tags, content]

rendered as compact JSON with non-ASCII characters left unescaped. That
byte sequence feeds a cryptographic hash, so it must not change.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
import hashlib
import json
import re
import time

from ..errors import MalformedEventError

_HEX64 = re.compile(r'^[0-9a-f]{64}$')
_HEX128 = re.compile(r'^[0-9a-f]{128}$')

Tags = Tuple[Tuple[str, ...], ...]


def canonical_serialization(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: Tags,
    content: str
) -> str:
    """Serialize the id-relevant fields in the fixed canonical order."""
    return json.dumps(
        [0, pubkey, created_at, kind, [list(tag) for tag in tags], content],
        separators=(',', ':'),
        ensure_ascii=False,
    )


def compute_event_id(pubkey: str, created_at: int, kind: int, tags: Tags, content: str) -> str:
    """Lowercase hex SHA-256 of the canonical serialization."""
    serialized = canonical_serialization(pubkey, created_at, kind, tags, content)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


def _freeze_tags(tags: Any) -> Tags:
    if not isinstance(tags, (list, tuple)):
        raise MalformedEventError("tags must be a list of string lists", field='tags')
    frozen = []
    for tag in tags:
        if not isinstance(tag, (list, tuple)) or not all(isinstance(v, str) for v in tag):
            raise MalformedEventError("tags must be a list of string lists", field='tags')
        frozen.append(tuple(tag))
    return tuple(frozen)


class _TagAccess:
    """Tag lookups shared by templates and signed events."""

    tags: Tags

    def tag_value(self, name: str, index: int = 1) -> Optional[str]:
        """Value at ``index`` of the first tag called ``name``."""
        for tag in self.tags:
            if len(tag) > index and tag[0] == name and tag[index]:
                return tag[index]
        return None

    def tag_values(self, name: str) -> List[str]:
        """Every non-empty value of every tag called ``name``."""
        values = []
        for tag in self.tags:
            if tag and tag[0] == name:
                values.extend(v for v in tag[1:] if v)
        return values

    def first_values(self, name: str) -> List[str]:
        """The first value of every tag called ``name``."""
        return [tag[1] for tag in self.tags if len(tag) > 1 and tag[0] == name and tag[1]]

    def has_tag(self, name: str, value: str) -> bool:
        return any(len(tag) > 1 and tag[0] == name and tag[1] == value for tag in self.tags)

    @property
    def d_tag(self) -> Optional[str]:
        return self.tag_value('d')


@dataclass(frozen=True)
class EventTemplate(_TagAccess):
    """
    An unsigned event, ready to be signed by its author.

    Attributes:
        pubkey: Author's 64-char hex public key
        kind: Integer discriminator
        tags: Positional string records
        content: Opaque payload
        created_at: Unix seconds (defaults to now)
    """

    pubkey: str
    kind: int
    tags: Tags = ()
    content: str = ""
    created_at: int = field(default_factory=lambda: int(time.time()))

    def __post_init__(self):
        object.__setattr__(self, 'tags', _freeze_tags(self.tags))

    def compute_id(self) -> str:
        return compute_event_id(self.pubkey, self.created_at, self.kind, self.tags, self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pubkey': self.pubkey,
            'created_at': self.created_at,
            'kind': self.kind,
            'tags': [list(tag) for tag in self.tags],
            'content': self.content,
        }


@dataclass(frozen=True)
class SignedEvent(_TagAccess):
    """
    A signed, content-addressed event.

    An event is valid only if ``id`` is the hash of its canonical fields and
    ``sig`` verifies against ``pubkey`` for that id (see ``crypto.verify_event``).
    Construction only checks shape, never the signature.
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tags
    content: str
    sig: str

    def __post_init__(self):
        object.__setattr__(self, 'tags', _freeze_tags(self.tags))

    @classmethod
    def from_dict(cls, data: Any) -> 'SignedEvent':
        """
        Build an event from its JSON object form, validating field shapes.

        Raises:
            MalformedEventError: naming the first bad field
        """
        if isinstance(data, SignedEvent):
            return data
        if not isinstance(data, dict):
            raise MalformedEventError("Event must be a JSON object", field='event')

        for name, pattern in (('id', _HEX64), ('pubkey', _HEX64), ('sig', _HEX128)):
            value = data.get(name)
            if not isinstance(value, str) or not value:
                raise MalformedEventError(f"Event is missing '{name}'", field=name)
            if not pattern.match(value):
                raise MalformedEventError(f"Event '{name}' is not lowercase hex of the right length", field=name)

        for name in ('created_at', 'kind'):
            value = data.get(name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise MalformedEventError(f"Event '{name}' must be a non-negative integer", field=name)

        content = data.get('content', '')
        if not isinstance(content, str):
            raise MalformedEventError("Event 'content' must be a string", field='content')

        return cls(
            id=data['id'],
            pubkey=data['pubkey'],
            created_at=data['created_at'],
            kind=data['kind'],
            tags=_freeze_tags(data.get('tags', [])),
            content=content,
            sig=data['sig'],
        )

    def compute_id(self) -> str:
        return compute_event_id(self.pubkey, self.created_at, self.kind, self.tags, self.content)

    def canonical_serialization(self) -> str:
        return canonical_serialization(self.pubkey, self.created_at, self.kind, self.tags, self.content)

    def has_valid_id(self) -> bool:
        return self.compute_id() == self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire (JSON object) form."""
        return {
            'id': self.id,
            'pubkey': self.pubkey,
            'created_at': self.created_at,
            'kind': self.kind,
            'tags': [list(tag) for tag in self.tags],
            'content': self.content,
            'sig': self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def __str__(self) -> str:
        return f"kind {self.kind} event {self.id[:8]} by {self.pubkey[:8]}"
