"""Shared fixtures: deterministic keys, an in-memory relay client, git helpers."""

import shutil
import subprocess

import pytest

from gitrelay.api import GitRelay
from gitrelay.crypto import LocalKeySigner
from gitrelay.domain import kinds
from gitrelay.domain.event import EventTemplate
from gitrelay.domain.filters import matches_any
from gitrelay.domain.operation import PublishResult
from gitrelay.errors import RelayUnavailableError

ALICE_SECRET = '11' * 32
BOB_SECRET = '22' * 32
CAROL_SECRET = '33' * 32

BASE_TIME = 1700000000
DEFAULT_RELAYS = ['wss://relay.test']
GIT_DOMAIN = 'localhost:6543'

requires_git = pytest.mark.skipif(shutil.which('git') is None, reason="git is not installed")


def make_event(signer, kind, tags=(), content='', created_at=BASE_TIME):
    """Sign an event for tests."""
    template = EventTemplate(
        pubkey=signer.pubkey,
        kind=kind,
        tags=[list(tag) for tag in tags],
        content=content,
        created_at=created_at,
    )
    return signer.sign_template(template)


def make_transfer(signer, original_owner, repo_id, to_pubkey, created_at=BASE_TIME):
    address = f"{kinds.REPO_ANNOUNCEMENT}:{original_owner}:{repo_id}"
    return make_event(
        signer,
        kinds.OWNERSHIP_TRANSFER,
        [['a', address], ['p', to_pubkey], ['d', repo_id]],
        content=f"Transferring ownership of repository {repo_id}",
        created_at=created_at,
    )


def make_announcement(signer, repo_id, clone_urls=(), maintainers=(), private=False,
                      created_at=BASE_TIME, extra_tags=()):
    tags = [['d', repo_id], ['name', repo_id], ['description', f"The {repo_id} project"]]
    if clone_urls:
        tags.append(['clone', *clone_urls])
    if maintainers:
        tags.append(['maintainers', *maintainers])
    if private:
        tags.append(['private', 'true'])
    tags.extend(extra_tags)
    return make_event(signer, kinds.REPO_ANNOUNCEMENT, tags, created_at=created_at)


class FakeRelayClient:
    """
    In-memory stand-in for RelayClient.

    Published events become visible to later fetches. ``down`` makes every
    call fail as if no relay answered; ``reject_kinds`` makes every relay
    refuse events of those kinds.
    """

    def __init__(self, events=(), relays=None):
        self.events = list(events)
        self.relays = list(relays or DEFAULT_RELAYS)
        self.published = []
        self.publish_targets = []
        self.fetch_calls = []
        self.down = False
        self.reject_kinds = set()

    async def fetch_events(self, filters, relays=None, use_cache=True):
        self.fetch_calls.append((filters, use_cache))
        if self.down:
            raise RelayUnavailableError("No relay answered")
        found = {}
        for event in self.events:
            if matches_any(event, filters):
                found[event.id] = event
        return sorted(found.values(), key=lambda e: (-e.created_at, e.id))

    async def publish_event(self, event, relays=None):
        targets = list(relays) if relays else list(self.relays)
        self.publish_targets.append(targets)
        result = PublishResult(event_id=event.id)
        if self.down or event.kind in self.reject_kinds:
            for relay in targets:
                result.add_failure(relay, 'blocked: rejected by test relay')
            return result
        self.published.append(event)
        self.events.append(event)
        result.success.extend(targets)
        return result

    def published_of_kind(self, kind):
        return [e for e in self.published if e.kind == kind]


async def no_sleep(delay):
    """Replacement for asyncio.sleep that records nothing and waits for nothing."""
    return None


def git(*args, cwd=None):
    """Run git for test setup; raise on failure."""
    return subprocess.run(
        ['git', '-c', 'user.name=Test', '-c', 'user.email=test@example.com', *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )


def make_bare_with_commit(path, work_dir, branch='main', filename='README.md', content='hello\n'):
    """Create a bare repository at ``path`` holding one commit on ``branch``."""
    git('init', '--bare', f"--initial-branch={branch}", str(path))
    git('init', f"--initial-branch={branch}", str(work_dir))
    (work_dir / filename).write_text(content)
    git('add', filename, cwd=str(work_dir))
    git('commit', '-m', 'initial', cwd=str(work_dir))
    git('push', str(path), f"{branch}:{branch}", cwd=str(work_dir))
    return path


@pytest.fixture
def alice():
    return LocalKeySigner(ALICE_SECRET)


@pytest.fixture
def bob():
    return LocalKeySigner(BOB_SECRET)


@pytest.fixture
def carol():
    return LocalKeySigner(CAROL_SECRET)


@pytest.fixture
def relay_client():
    return FakeRelayClient()


def make_gitrelay(tmp_path, client=None, unlimited=(), audit=False, clock=None):
    """A GitRelay over ``tmp_path/repos`` talking to an in-memory relay client."""
    config = {
        'general': {'repo_root': str(tmp_path / 'repos'), 'git_domain': GIT_DOMAIN},
        'relays': {'default': DEFAULT_RELAYS},
        'publish': {'base_delay_seconds': 0},
        'access': {'unlimited_pubkeys': list(unlimited)},
        'audit': {'enabled': audit},
    }
    return GitRelay(
        config=config,
        client=client or FakeRelayClient(),
        sleep=no_sleep,
        clock=clock or (lambda: BASE_TIME + 10),
    )
