"""Tests for maintainer and access resolution."""

import asyncio

import pytest

from gitrelay.errors import RelayUnavailableError
from gitrelay.keys import npub_encode
from gitrelay.services.maintainer_service import DENIED_MESSAGE, MaintainerService
from gitrelay.services.ownership_service import OwnershipService

from conftest import BASE_TIME, FakeRelayClient, make_announcement, make_transfer


def make_service(events=()):
    client = FakeRelayClient(events)
    return MaintainerService(client, OwnershipService(client)), client


class TestGetMaintainers:
    """Tests for the maintainer set."""

    def test_owner_first_then_announced(self, alice, bob, carol):
        service, _ = make_service([make_announcement(alice, 'demo', maintainers=[carol.pubkey, bob.pubkey])])
        info = asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))
        assert info.maintainers == (alice.pubkey, carol.pubkey, bob.pubkey)
        assert info.owner == alice.pubkey

    def test_no_announcement_means_owner_only_and_public(self, alice):
        service, _ = make_service()
        info = asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))
        assert info.maintainers == (alice.pubkey,)
        assert not info.is_private
        assert not info.has_announcement

    def test_owner_deduplicated(self, alice, bob):
        service, _ = make_service([make_announcement(alice, 'demo', maintainers=[alice.pubkey, bob.pubkey])])
        info = asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))
        assert info.maintainers == (alice.pubkey, bob.pubkey)

    def test_current_owner_follows_transfers(self, alice, bob):
        """After a transfer the new owner leads and the original author is not implied."""
        service, _ = make_service([
            make_announcement(alice, 'demo'),
            make_transfer(alice, alice.pubkey, 'demo', bob.pubkey),
        ])
        info = asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))
        assert info.maintainers == (bob.pubkey,)

    def test_latest_announcement_wins(self, alice, bob, carol):
        service, _ = make_service([
            make_announcement(alice, 'demo', maintainers=[bob.pubkey], created_at=BASE_TIME),
            make_announcement(alice, 'demo', maintainers=[carol.pubkey], created_at=BASE_TIME + 10),
        ])
        info = asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))
        assert info.maintainers == (alice.pubkey, carol.pubkey)

    def test_announcement_by_other_author_ignored(self, alice, bob):
        service, _ = make_service([make_announcement(bob, 'demo', private=True, maintainers=[bob.pubkey])])
        info = asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))
        assert info.maintainers == (alice.pubkey,)
        assert not info.is_private

    def test_relay_errors_propagate(self, alice):
        service, client = make_service()
        client.down = True
        with pytest.raises(RelayUnavailableError):
            asyncio.run(service.get_maintainers(alice.pubkey, 'demo'))

    def test_is_maintainer_accepts_npub(self, alice, bob, carol):
        service, _ = make_service([make_announcement(alice, 'demo', maintainers=[bob.pubkey])])
        assert asyncio.run(service.is_maintainer(npub_encode(bob.pubkey), alice.pubkey, 'demo'))
        assert not asyncio.run(service.is_maintainer(carol.pubkey, alice.pubkey, 'demo'))
        assert not asyncio.run(service.is_maintainer('garbage', alice.pubkey, 'demo'))


class TestCheckAccess:
    """Tests for read and write decisions."""

    def test_public_read_for_anyone(self, alice, carol):
        service, _ = make_service([make_announcement(alice, 'demo')])
        assert asyncio.run(service.can_view(None, alice.pubkey, 'demo'))
        decision = asyncio.run(service.check_access(carol.pubkey, alice.pubkey, 'demo'))
        assert decision.allowed
        assert decision.role == 'viewer'

    def test_private_read_denies_anonymous_without_confirming(self, alice):
        """An anonymous reader gets the outsider answer, not a login prompt."""
        service, _ = make_service([make_announcement(alice, 'demo', private=True)])
        decision = asyncio.run(service.check_access(None, alice.pubkey, 'demo'))
        assert not decision.allowed
        assert decision.reason == DENIED_MESSAGE

    def test_private_read_hides_existence(self, alice, carol):
        """Outsiders get the same answer as for a missing repository."""
        service, _ = make_service([make_announcement(alice, 'demo', private=True)])
        decision = asyncio.run(service.check_access(carol.pubkey, alice.pubkey, 'demo'))
        assert not decision.allowed
        assert decision.reason == DENIED_MESSAGE

    def test_private_read_for_maintainers(self, alice, bob):
        service, _ = make_service([make_announcement(alice, 'demo', private=True, maintainers=[bob.pubkey])])
        assert asyncio.run(service.can_view(bob.pubkey, alice.pubkey, 'demo'))
        decision = asyncio.run(service.check_access(alice.pubkey, alice.pubkey, 'demo'))
        assert decision.role == 'owner'

    def test_write_requires_maintainer(self, alice, bob, carol):
        service, _ = make_service([make_announcement(alice, 'demo', maintainers=[bob.pubkey])])

        decision = asyncio.run(service.check_access(bob.pubkey, alice.pubkey, 'demo', write=True))
        assert decision.allowed
        assert decision.role == 'maintainer'

        decision = asyncio.run(service.check_access(carol.pubkey, alice.pubkey, 'demo', write=True))
        assert not decision.allowed
        assert decision.reason == "Only maintainers can modify this repository"

        decision = asyncio.run(service.check_access(None, alice.pubkey, 'demo', write=True))
        assert decision.reason == "Authentication required"

    def test_private_write_denial_hides_existence(self, alice, carol):
        service, _ = make_service([make_announcement(alice, 'demo', private=True)])
        decision = asyncio.run(service.check_access(carol.pubkey, alice.pubkey, 'demo', write=True))
        assert decision.reason == DENIED_MESSAGE

    def test_decision_serializes(self, alice):
        service, _ = make_service()
        decision = asyncio.run(service.check_access(alice.pubkey, alice.pubkey, 'demo'))
        assert decision.to_dict() == {'allowed': True, 'role': 'owner'}

    def test_invalidate_refreshes(self, alice, bob):
        service, client = make_service([make_announcement(alice, 'demo', created_at=BASE_TIME)])
        assert not asyncio.run(service.is_maintainer(bob.pubkey, alice.pubkey, 'demo'))

        client.events.append(make_announcement(alice, 'demo', maintainers=[bob.pubkey], created_at=BASE_TIME + 1))
        service.invalidate(alice.pubkey, 'demo')
        assert asyncio.run(service.is_maintainer(bob.pubkey, alice.pubkey, 'demo'))
