"""
High-level Python API for gitrelay.

``GitRelay`` constructs every collaborator exactly once (event cache,
relay client, git client and the services on top of them) and exposes
the user-facing operations as async methods.

Example:
    import asyncio
    import gitrelay

    relay = gitrelay.GitRelay()

    # Who owns a repository right now?
    info = asyncio.run(relay.ownership("npub1...", "my-repo"))
    print(info.owner, len(info.history))

    # Fork it (requires unlimited access)
    signer = gitrelay.LocalKeySigner(os.environ["GITRELAY_SECRET_KEY"])
    result = asyncio.run(relay.fork("npub1...", "my-repo", signer))

    # Low-level access to services
    relay.ownership_service
    relay.sync_service
"""

from typing import Any, Dict, List, Optional, Sequence, Union
import asyncio
import logging
import time

from .config import load_config
from .crypto import Signer, verify_event
from .domain import kinds
from .domain.event import SignedEvent
from .domain.operation import ForkResult, OperationSummary, TransferResult
from .domain.records import RepoAddress, RepoAnnouncement
from .domain.repository import AccessDecision, MaintainerInfo, OwnershipInfo
from .errors import InvariantViolationError, MalformedEventError, ValidationError
from .handlers import operation, requires_level
from .infra import GitClient, RelayClient
from .keys import normalize_pubkey
from .services import (
    AuditLogger, EventCache, ForkService, MaintainerService, OwnershipService,
    RepoManager, ResourceLimits, SyncService, TransferService, UserLevelService,
    UserRelayService, UNLIMITED,
)
from .services.repo_manager import ProvisionResult
from .services.user_level import ProofCheck

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('gitrelay.security')

EventInput = Union[SignedEvent, Dict[str, Any]]


class GitRelay:
    """
    High-level API for gitrelay.

    Construct once per process and share it; every service keeps its
    caches on the instance.

    Example:
        relay = GitRelay(config={"relays": {"default": ["wss://relay.example"]}})
        decision = await relay.check_access(None, owner_npub, "demo")
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        client=None,
        git_client: Optional[GitClient] = None,
        sleep=asyncio.sleep,
        clock=time.time,
    ):
        """
        Initialize GitRelay.

        Args:
            config: Full config dict (loaded from file and env if None)
            client: Relay client replacement (``fetch_events``/``publish_event``)
            git_client: Git client replacement
            sleep: Awaitable sleep used by retry loops
            clock: Time source for caches
        """
        self._config = config if config is not None else load_config()
        general = self._config.get('general', {})
        relays = self._config.get('relays', {})
        cache = self._config.get('cache', {})
        publish = self._config.get('publish', {})
        sync = self._config.get('sync', {})
        limits = self._config.get('limits', {})
        access = self._config.get('access', {})
        audit = self._config.get('audit', {})

        self.default_relays: List[str] = list(relays.get('default', []))
        repo_root = general.get('repo_root', '~/.gitrelay/repos')
        git_domain = general.get('git_domain', 'localhost:6543')
        publish_attempts = publish.get('max_attempts', 3)
        publish_delay = publish.get('base_delay_seconds', 1.0)

        # Infrastructure
        self.event_cache = EventCache(
            default_ttl=cache.get('default_ttl_seconds', 300),
            profile_ttl=cache.get('profile_ttl_seconds', 1800),
            max_entries=cache.get('max_entries', 10000),
            clock=clock,
        )
        self.client = client or RelayClient(
            self.default_relays,
            timeout=relays.get('timeout_seconds', 5),
            cache=self.event_cache,
            fetch_attempts=relays.get('fetch_attempts', 2),
        )
        self.git_client = git_client or GitClient(timeout=sync.get('git_timeout_seconds', 300))
        self.audit = AuditLogger(
            enabled=audit.get('enabled', True),
            log_file=audit.get('log_file') or None,
        )

        # Services
        self.ownership_service = OwnershipService(
            self.client,
            event_cache=self.event_cache,
            cache_ttl=cache.get('ownership_ttl_seconds', 300),
            clock=clock,
        )
        self.maintainer_service = MaintainerService(
            self.client,
            self.ownership_service,
            event_cache=self.event_cache,
            cache_ttl=cache.get('maintainer_ttl_seconds', 300),
            clock=clock,
        )
        self.user_relays = UserRelayService(self.client)
        self.user_levels = UserLevelService(
            self.client,
            self.default_relays,
            unlimited_pubkeys=access.get('unlimited_pubkeys', []),
            cache_ttl=access.get('level_ttl_seconds', 3600),
            clock=clock,
        )
        self.sync_service = SyncService(
            git_client=self.git_client,
            socks_proxy=self._config.get('tor', {}).get('socks_proxy') or None,
            max_attempts=sync.get('max_attempts', 3),
            base_delay=sync.get('base_delay_seconds', 1.0),
            allow_force_push=sync.get('allow_force_push', False),
            sleep=sleep,
        )
        self.repo_manager = RepoManager(
            repo_root,
            git_domain,
            git_client=self.git_client,
            sync_service=self.sync_service,
        )
        self.resource_limits = ResourceLimits(
            str(self.repo_manager.repo_root),
            max_repos=limits.get('max_repos_per_user', 100),
            max_disk_quota=limits.get('max_disk_quota_bytes', 10 * 1024 ** 3),
            cache_ttl=limits.get('cache_ttl_seconds', 300),
            clock=clock,
        )
        self.transfer_service = TransferService(
            self.client,
            self.ownership_service,
            maintainers=self.maintainer_service,
            user_relays=self.user_relays,
            default_relays=self.default_relays,
            repo_manager=self.repo_manager,
            publish_attempts=publish_attempts,
            publish_base_delay=publish_delay,
            sleep=sleep,
        )
        self.fork_service = ForkService(
            self.client,
            self.repo_manager,
            self.ownership_service,
            self.maintainer_service,
            self.resource_limits,
            user_relays=self.user_relays,
            default_relays=self.default_relays,
            git_domain=git_domain,
            audit=self.audit,
            publish_attempts=publish_attempts,
            publish_base_delay=publish_delay,
            sleep=sleep,
        )

    @property
    def config(self) -> Dict[str, Any]:
        """Access the configuration."""
        return self._config

    # =========================================================================
    # OWNERSHIP AND ACCESS
    # =========================================================================

    @operation('ownership')
    async def ownership(self, owner: str, repo_id: str, fresh: bool = False) -> OwnershipInfo:
        """
        Current owner and transfer history of ``owner``'s ``repo_id``.

        Args:
            owner: Original author (hex or npub)
            repo_id: Repository identifier
            fresh: Bypass caches
        """
        return await self.ownership_service.get_ownership_info(owner, repo_id, fresh=fresh)

    @operation('maintainers')
    async def maintainers(self, owner: str, repo_id: str) -> MaintainerInfo:
        return await self.maintainer_service.get_maintainers(owner, repo_id)

    @operation('check_access')
    async def check_access(
        self,
        requester: Optional[str],
        owner: str,
        repo_id: str,
        write: bool = False,
    ) -> AccessDecision:
        return await self.maintainer_service.check_access(requester, owner, repo_id, write=write)

    @operation('prove_write_access')
    async def prove_write_access(self, proof: EventInput, requester: str) -> ProofCheck:
        """Upgrade ``requester`` to unlimited access with a relay write proof."""
        return await self.user_levels.verify_write_proof(
            SignedEvent.from_dict(proof),
            normalize_pubkey(requester, field='requester'),
        )

    # =========================================================================
    # TRANSFER AND FORK
    # =========================================================================

    @operation('transfer', audit=True)
    async def submit_transfer(self, event: EventInput, requester: Optional[str]) -> TransferResult:
        """
        Validate and publish a signed ownership transfer.

        The repository is named by the event's own ``a`` tag.
        """
        signed = SignedEvent.from_dict(event)
        try:
            address = RepoAddress.parse(signed.tag_value('a') or '')
        except ValidationError:
            raise MalformedEventError("Transfer event missing or invalid 'a' tag", field='a') from None
        return await self.transfer_service.submit_transfer(
            signed, requester, address.pubkey, address.identifier
        )

    @operation('fork')
    @requires_level(UNLIMITED)
    async def fork(
        self,
        owner: str,
        repo_id: str,
        signer: Signer,
        fork_name: Optional[str] = None,
    ) -> ForkResult:
        return await self.fork_service.fork(owner, repo_id, signer, fork_name=fork_name)

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    @operation('sync_from_remotes')
    async def sync_from_remotes(self, path: str, urls: Sequence[str]) -> OperationSummary:
        return await self.sync_service.sync_from_remotes(path, urls)

    @operation('sync_to_remotes')
    async def sync_to_remotes(self, path: str, urls: Sequence[str]) -> OperationSummary:
        return await self.sync_service.sync_to_remotes(path, urls)

    @operation('provision', audit=True)
    async def provision(self, announcement: EventInput) -> ProvisionResult:
        """
        Create (or confirm) the local repository for a signed announcement
        and mirror its other clone URLs into it.
        """
        signed = SignedEvent.from_dict(announcement)
        if not verify_event(signed):
            security_logger.warning(f"Rejected announcement {signed.id[:8]}: invalid signature")
            raise InvariantViolationError("Invalid announcement signature")
        if signed.kind != kinds.REPO_ANNOUNCEMENT:
            raise ValidationError(
                f"Event must be kind {kinds.REPO_ANNOUNCEMENT} (repository announcement)", field='kind'
            )
        result = await self.repo_manager.provision_repo(RepoAnnouncement.from_event(signed))
        self.resource_limits.invalidate(result.path.npub)
        return result

    def close(self) -> None:
        self.audit.close()


# Convenience function for quick access
def create(config: Optional[Dict[str, Any]] = None, **kwargs) -> GitRelay:
    """
    Create a GitRelay instance.

    Convenience function for:
        relay = gitrelay.create()

    Args:
        config: Full config dict (loaded from file and env if None)
        **kwargs: Additional arguments passed to GitRelay

    Returns:
        Configured GitRelay instance
    """
    return GitRelay(config=config, **kwargs)
