"""Tests for access levels, user relays, resource limits and the audit log."""

import asyncio
import json
import logging

import pytest

from gitrelay.domain import kinds
from gitrelay.keys import npub_encode
from gitrelay.services.audit import AUDIT_LOGGER_NAME, DENIED, SUCCESS, AuditLogger
from gitrelay.services.resource_limits import ResourceLimits, format_bytes
from gitrelay.services.user_level import (
    RATE_LIMITED, STRICTLY_RATE_LIMITED, UNLIMITED, UserLevelService, create_proof_event,
    level_satisfies,
)
from gitrelay.services.user_relays import UserRelayService, combine_relays

from conftest import BASE_TIME, DEFAULT_RELAYS, FakeRelayClient, make_event


def make_levels(client, now=BASE_TIME + 10, unlimited=()):
    return UserLevelService(client, DEFAULT_RELAYS, unlimited_pubkeys=unlimited, clock=lambda: now)


class TestUserLevels:
    """Tests for UserLevelService."""

    def test_anonymous_and_identified(self, alice, relay_client):
        levels = make_levels(relay_client)
        assert levels.get_level(None) == STRICTLY_RATE_LIMITED
        assert levels.get_level('garbage') == STRICTLY_RATE_LIMITED
        assert levels.get_level(alice.pubkey) == RATE_LIMITED

    def test_configured_unlimited_accepts_npub(self, alice, relay_client):
        levels = make_levels(relay_client, unlimited=[npub_encode(alice.pubkey)])
        assert levels.get_level(alice.pubkey) == UNLIMITED

    def test_level_ordering(self):
        assert level_satisfies(UNLIMITED, RATE_LIMITED)
        assert level_satisfies(RATE_LIMITED, RATE_LIMITED)
        assert not level_satisfies(RATE_LIMITED, UNLIMITED)
        assert not level_satisfies('unknown', RATE_LIMITED)

    def test_public_message_proof_grants_unlimited(self, alice, relay_client):
        template = create_proof_event(alice.pubkey)
        proof = make_event(alice, template.kind, template.tags, template.content, created_at=BASE_TIME)
        relay_client.events.append(proof)
        levels = make_levels(relay_client)

        check = asyncio.run(levels.verify_write_proof(proof, alice.pubkey))
        assert check.valid
        assert levels.get_level(alice.pubkey) == UNLIMITED
        filters, use_cache = relay_client.fetch_calls[-1]
        assert filters[0]['ids'] == [proof.id]
        assert use_cache is False

    def test_proof_must_be_on_relays(self, alice, relay_client):
        proof = make_event(alice, kinds.PUBLIC_MESSAGE, [['p', alice.pubkey]])
        check = asyncio.run(make_levels(relay_client).verify_write_proof(proof, alice.pubkey))
        assert not check.valid
        assert 'not found' in check.error

    def test_proof_for_someone_else(self, alice, bob, relay_client):
        proof = make_event(alice, kinds.PUBLIC_MESSAGE, [['p', alice.pubkey]])
        check = asyncio.run(make_levels(relay_client).verify_write_proof(proof, bob.pubkey))
        assert not check.valid

    def test_public_message_must_be_self_addressed(self, alice, bob, relay_client):
        proof = make_event(alice, kinds.PUBLIC_MESSAGE, [['p', bob.pubkey]])
        check = asyncio.run(make_levels(relay_client).verify_write_proof(proof, alice.pubkey))
        assert not check.valid

    def test_http_auth_age_limit(self, alice, relay_client):
        proof = make_event(alice, kinds.HTTP_AUTH, [['u', 'https://git.example'], ['method', 'POST']])
        relay_client.events.append(proof)
        check = asyncio.run(make_levels(relay_client, now=BASE_TIME + 61).verify_write_proof(proof, alice.pubkey))
        assert not check.valid
        assert 'too old' in check.error

    def test_http_auth_requires_tags(self, alice, relay_client):
        proof = make_event(alice, kinds.HTTP_AUTH, [['u', 'https://git.example']])
        check = asyncio.run(make_levels(relay_client).verify_write_proof(proof, alice.pubkey))
        assert "'method'" in check.error

    def test_future_proof_rejected(self, alice, relay_client):
        proof = make_event(alice, kinds.PUBLIC_MESSAGE, [['p', alice.pubkey]], created_at=BASE_TIME + 100)
        check = asyncio.run(make_levels(relay_client).verify_write_proof(proof, alice.pubkey))
        assert 'future' in check.error

    def test_relays_down_reported(self, alice, relay_client):
        proof = make_event(alice, kinds.PUBLIC_MESSAGE, [['p', alice.pubkey]])
        relay_client.down = True
        check = asyncio.run(make_levels(relay_client).verify_write_proof(proof, alice.pubkey))
        assert not check.valid
        assert check.relay_down


class TestUserRelays:
    """Tests for UserRelayService."""

    def test_relay_list(self, alice, relay_client):
        relay_client.events.append(make_event(alice, kinds.RELAY_LIST, [
            ['r', 'wss://in.example', 'read'],
            ['r', 'wss://out.example', 'write'],
        ]))
        inbox, outbox = asyncio.run(UserRelayService(relay_client).get_user_relays(alice.pubkey))
        assert inbox == ['wss://in.example']
        assert outbox == ['wss://out.example']

    def test_contact_list_fallback(self, alice, relay_client):
        content = json.dumps({'relays': {'wss://legacy.example': {'read': True, 'write': True}}})
        relay_client.events.append(make_event(alice, kinds.CONTACT_LIST, content=content))
        inbox, outbox = asyncio.run(UserRelayService(relay_client).get_user_relays(alice.pubkey))
        assert outbox == ['wss://legacy.example']

    def test_nothing_published(self, alice, relay_client):
        assert asyncio.run(UserRelayService(relay_client).get_user_relays(alice.pubkey)) == ([], [])

    def test_relays_down_means_no_preferences(self, alice, relay_client):
        relay_client.down = True
        assert asyncio.run(UserRelayService(relay_client).get_user_relays(alice.pubkey)) == ([], [])

    def test_combine_relays(self):
        assert combine_relays(['wss://a', 'wss://b', ''], ['wss://b', 'wss://c']) == ['wss://a', 'wss://b', 'wss://c']


class TestResourceLimits:
    """Tests for ResourceLimits."""

    def test_counts_bare_repositories(self, tmp_path):
        user_dir = tmp_path / 'npub1test'
        (user_dir / 'one.git').mkdir(parents=True)
        (user_dir / 'one.git' / 'HEAD').write_text('ref: refs/heads/main\n')
        (user_dir / 'two.git').mkdir()
        (user_dir / 'not-a-repo').mkdir()

        limits = ResourceLimits(str(tmp_path), max_repos=2)
        usage = asyncio.run(limits.get_usage('npub1test'))
        assert usage.repo_count == 2
        assert usage.disk_usage == len('ref: refs/heads/main\n')

        check = asyncio.run(limits.can_create_repo('npub1test'))
        assert not check.allowed
        assert 'Repository limit reached (2/2)' == check.reason

    def test_unknown_user_has_nothing(self, tmp_path):
        limits = ResourceLimits(str(tmp_path))
        assert asyncio.run(limits.can_create_repo('npub1new')).allowed
        assert asyncio.run(limits.has_disk_quota('npub1new')).allowed

    def test_disk_quota(self, tmp_path):
        repo = tmp_path / 'npub1test' / 'big.git'
        repo.mkdir(parents=True)
        (repo / 'pack').write_bytes(b'x' * 2048)
        limits = ResourceLimits(str(tmp_path), max_disk_quota=1024)
        check = asyncio.run(limits.has_disk_quota('npub1test'))
        assert not check.allowed
        assert check.reason == 'Disk quota exceeded (2.0 KB/1.0 KB)'

    def test_usage_cached_until_invalidated(self, tmp_path):
        limits = ResourceLimits(str(tmp_path))
        assert asyncio.run(limits.get_usage('npub1test')).repo_count == 0
        (tmp_path / 'npub1test' / 'new.git').mkdir(parents=True)
        assert asyncio.run(limits.get_usage('npub1test')).repo_count == 0
        limits.invalidate('npub1test')
        assert asyncio.run(limits.get_usage('npub1test')).repo_count == 1

    @pytest.mark.parametrize('size,expected', [(0, '0 B'), (512, '512.0 B'), (1536, '1.5 KB')])
    def test_format_bytes(self, size, expected):
        assert format_bytes(size) == expected


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_record_fields(self, alice, caplog):
        audit = AuditLogger()
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
            record = audit.log('fork', SUCCESS, user=alice.pubkey, resource='npub1x/demo',
                               metadata={'fork': 'demo-fork'})
        assert record['action'] == 'fork'
        assert record['user'] == alice.pubkey[:8] + '...' + alice.pubkey[-4:]
        assert record['metadata'] == {'fork': 'demo-fork'}
        assert json.loads(caplog.records[-1].getMessage())['result'] == SUCCESS

    def test_errors_are_sanitized(self):
        record = AuditLogger().log('transfer', DENIED, error='bad key ' + 'ef' * 32)
        assert 'ef' * 32 not in record['error']

    def test_disabled(self):
        assert AuditLogger(enabled=False).log('fork', SUCCESS) is None

    def test_mirrors_to_file(self, tmp_path):
        log_file = tmp_path / 'logs' / 'audit.log'
        audit = AuditLogger(log_file=str(log_file))
        try:
            audit.log('provision', SUCCESS, resource='demo')
        finally:
            audit.close()
        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)['action'] == 'provision'
