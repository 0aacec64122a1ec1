"""Tests for typed event records and the verification file."""

import json

import pytest

from gitrelay.domain import kinds
from gitrelay.domain.records import (
    DeletionRequest, OwnershipTransfer, RelayList, RepoAddress, RepoAnnouncement,
)
from gitrelay.domain.verification import generate_verification_file, verify_repository_ownership
from gitrelay.errors import MalformedEventError, ValidationError
from gitrelay.keys import npub_encode

from conftest import make_announcement, make_event, make_transfer


class TestRepoAddress:
    """Tests for RepoAddress."""

    def test_parse_and_format(self, alice):
        value = f"30617:{alice.pubkey}:demo"
        address = RepoAddress.parse(value)
        assert address.pubkey == alice.pubkey
        assert address.identifier == 'demo'
        assert str(address) == value

    def test_identifier_may_contain_colons(self, alice):
        address = RepoAddress.parse(f"30617:{alice.pubkey}:a:b")
        assert address.identifier == 'a:b'

    @pytest.mark.parametrize('value', ['', 'demo', '30617:nothex:demo', 'x:' + 'ab' * 32 + ':demo', '30617:' + 'ab' * 32 + ':'])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValidationError):
            RepoAddress.parse(value)


class TestRepoAnnouncement:
    """Tests for RepoAnnouncement parsing."""

    def test_fields(self, alice, bob):
        event = make_announcement(
            alice, 'demo',
            clone_urls=['https://a.example/demo.git', 'https://b.example/demo.git'],
            maintainers=[npub_encode(bob.pubkey), 'not-a-key'],
            extra_tags=[['relays', 'wss://r.example'], ['r', 'abc123', 'euc']],
        )
        announcement = RepoAnnouncement.from_event(event)

        assert announcement.identifier == 'demo'
        assert announcement.clone_urls == ('https://a.example/demo.git', 'https://b.example/demo.git')
        assert announcement.maintainers == (bob.pubkey,)
        assert announcement.relays == ('wss://r.example',)
        assert announcement.earliest_commit == 'abc123'
        assert not announcement.is_private
        assert announcement.address == RepoAddress(alice.pubkey, 'demo')

    def test_private_and_fork_markers(self, alice, bob):
        upstream = f"30617:{bob.pubkey}:origin"
        event = make_announcement(alice, 'demo', private=True, extra_tags=[['t', 'fork'], ['a', upstream]])
        announcement = RepoAnnouncement.from_event(event)
        assert announcement.is_private
        assert announcement.is_fork
        assert str(announcement.upstream) == upstream

    def test_requires_identifier(self, alice):
        event = make_event(alice, kinds.REPO_ANNOUNCEMENT, [['name', 'x']])
        with pytest.raises(MalformedEventError) as excinfo:
            RepoAnnouncement.from_event(event)
        assert excinfo.value.field == 'd'

    def test_rejects_other_kinds(self, alice):
        with pytest.raises(MalformedEventError):
            RepoAnnouncement.from_event(make_event(alice, 1, [['d', 'demo']]))


class TestOwnershipTransfer:
    """Tests for OwnershipTransfer parsing."""

    def test_sender_is_signer(self, alice, bob):
        transfer = OwnershipTransfer.from_event(make_transfer(alice, alice.pubkey, 'demo', bob.pubkey))
        assert transfer.from_pubkey == alice.pubkey
        assert transfer.to_pubkey == bob.pubkey
        assert not transfer.is_self_transfer

    def test_npub_recipient_accepted(self, alice, bob):
        event = make_transfer(alice, alice.pubkey, 'demo', npub_encode(bob.pubkey))
        assert OwnershipTransfer.from_event(event).to_pubkey == bob.pubkey

    def test_missing_recipient(self, alice):
        event = make_event(alice, kinds.OWNERSHIP_TRANSFER, [['a', f"30617:{alice.pubkey}:demo"]])
        with pytest.raises(MalformedEventError) as excinfo:
            OwnershipTransfer.from_event(event)
        assert excinfo.value.field == 'p'

    def test_bad_address(self, alice, bob):
        event = make_event(alice, kinds.OWNERSHIP_TRANSFER, [['a', 'nonsense'], ['p', bob.pubkey]])
        with pytest.raises(MalformedEventError) as excinfo:
            OwnershipTransfer.from_event(event)
        assert excinfo.value.field == 'a'


class TestDeletionRequest:
    """Tests for DeletionRequest.covers."""

    def test_covers_by_id_and_address(self, alice):
        note = make_event(alice, 1, content='x')
        announcement = make_announcement(alice, 'demo')
        request = DeletionRequest.from_event(make_event(alice, kinds.DELETION_REQUEST, [
            ['e', note.id],
            ['a', f"30617:{alice.pubkey}:demo"],
        ]))
        assert request.covers(note)
        assert request.covers(announcement)
        assert not request.covers(make_announcement(alice, 'other'))

    def test_never_covers_other_authors(self, alice, bob):
        note = make_event(alice, 1, content='x')
        request = DeletionRequest.from_event(make_event(bob, kinds.DELETION_REQUEST, [['e', note.id]]))
        assert not request.covers(note)


class TestRelayList:
    """Tests for RelayList markers and the legacy contact list form."""

    def test_markers(self, alice):
        event = make_event(alice, kinds.RELAY_LIST, [
            ['r', 'wss://both.example'],
            ['r', 'wss://read.example', 'read'],
            ['r', 'wss://write.example', 'write'],
        ])
        relays = RelayList.from_event(event)
        assert relays.inbox == ('wss://both.example', 'wss://read.example')
        assert relays.outbox == ('wss://both.example', 'wss://write.example')

    def test_contact_list_content(self, alice):
        content = json.dumps({'relays': {'wss://a.example': {'read': True}, 'wss://b.example': {}}})
        relays = RelayList.from_event(make_event(alice, kinds.CONTACT_LIST, content=content))
        assert relays.outbox == ('wss://a.example', 'wss://b.example')

    def test_other_kind_rejected(self, alice):
        with pytest.raises(MalformedEventError):
            RelayList.from_event(make_event(alice, 1))


class TestVerificationFile:
    """Tests for the repository verification file."""

    def test_generated_file_verifies(self, alice):
        announcement = make_announcement(alice, 'demo')
        content = generate_verification_file(announcement, alice.pubkey)
        data = json.loads(content)
        assert data['eventId'] == announcement.id
        assert data['npub'] == npub_encode(alice.pubkey)
        assert verify_repository_ownership(announcement, content) == (True, None)

    def test_mismatched_event(self, alice):
        content = generate_verification_file(make_announcement(alice, 'demo'), alice.pubkey)
        other = make_announcement(alice, 'other')
        valid, error = verify_repository_ownership(other, content)
        assert not valid
        assert 'event ID' in error

    def test_unparseable(self, alice):
        valid, error = verify_repository_ownership(make_announcement(alice, 'demo'), '{not json')
        assert not valid
        assert error.startswith('Failed to parse')
