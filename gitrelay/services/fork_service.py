"""
Fork workflow for gitrelay.

A fork is a multi-step distributed operation:

1. authorize (resource limits, visibility of the source)
2. bare-clone the source repository locally
3. publish the fork's announcement
4. publish the ownership anchor (self-transfer) for the new owner
5. finalize: verification file and papertrail, best effort

Steps 2-4 are strictly sequential. If step 3 fails the clone is removed.
If step 4 fails the clone is removed and a deletion request for the
announcement from step 3 is published, because an announcement without an
ownership anchor is a dangling claim. Both the failure and the outcome of
each compensating action are reported in the result.

Concurrent forks to the same destination are serialized; the second one
finds the repository in place and reports ``already_exists``.
"""

from typing import List, Optional, Sequence
import asyncio
import logging
import os

from ..crypto import Signer
from ..domain import kinds
from ..domain.event import EventTemplate, SignedEvent
from ..domain.operation import Compensation, ForkFailure, ForkResult, PublishResult
from ..domain.records import RepoAddress, RepoAnnouncement
from ..domain.verification import VERIFICATION_FILE_PATH, generate_verification_file
from ..errors import AuthorizationError, NotFoundError
from ..keys import normalize_pubkey, npub_encode
from ..locks import KeyedLocks
from ..retry import retry_with_backoff
from ..security import sanitize_error, truncate_npub, validate_repo_name
from .audit import AuditLogger, DENIED, FAILURE, SUCCESS
from .maintainer_service import DENIED_MESSAGE
from .user_relays import combine_relays

logger = logging.getLogger(__name__)


class ForkService:
    """
    Runs the fork workflow with compensating rollback.

    Example:
        service = ForkService(client, repo_manager, ownership, maintainers,
                              limits, user_relays, default_relays, "git.example.com")
        result = await service.fork(owner_pubkey, "demo", signer)
        if not result.success:
            print(result.failure.step)
    """

    def __init__(
        self,
        client,
        repo_manager,
        ownership,
        maintainers,
        resource_limits,
        user_relays=None,
        default_relays: Sequence[str] = (),
        git_domain: str = 'localhost:6543',
        audit: Optional[AuditLogger] = None,
        publish_attempts: int = 3,
        publish_base_delay: float = 1.0,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.repo_manager = repo_manager
        self.ownership = ownership
        self.maintainers = maintainers
        self.resource_limits = resource_limits
        self.user_relays = user_relays
        self.default_relays = list(default_relays)
        self.git_domain = git_domain
        self.audit = audit or AuditLogger(enabled=False)
        self.publish_attempts = publish_attempts
        self.publish_base_delay = publish_base_delay
        self._sleep = sleep
        self._locks = KeyedLocks()

    def fork_url(self, npub: str, repo: str) -> str:
        scheme = 'http' if self.git_domain.startswith('localhost') else 'https'
        return f"{scheme}://{self.git_domain}/{npub}/{repo}.git"

    async def fork(
        self,
        owner: str,
        repo_id: str,
        signer: Signer,
        fork_name: Optional[str] = None,
    ) -> ForkResult:
        """
        Fork ``owner``'s ``repo_id`` for the identity behind ``signer``.

        Returns a ForkResult; step failures after authorization are reported
        in ``result.failure`` rather than raised.

        Raises:
            ValidationError: bad names or pubkeys
            AuthorizationError: resource limits exceeded
            NotFoundError: source missing or not visible to the requester
        """
        owner = normalize_pubkey(owner, field='owner')
        repo_id = validate_repo_name(repo_id)
        fork_name = validate_repo_name(fork_name or repo_id, field='fork_name')
        requester = signer.pubkey
        user_npub = npub_encode(requester)
        source_label = f"{truncate_npub(npub_encode(owner))}/{repo_id}"
        dest_label = f"{truncate_npub(user_npub)}/{fork_name}"

        limit = await self.resource_limits.can_create_repo(user_npub)
        if not limit.allowed:
            self.audit.log('fork', DENIED, user=requester, resource=dest_label, error=limit.reason)
            raise AuthorizationError(limit.reason or "Resource limit exceeded", context={'repo': fork_name})
        quota = await self.resource_limits.has_disk_quota(user_npub)
        if not quota.allowed:
            self.audit.log('fork', DENIED, user=requester, resource=dest_label, error=quota.reason)
            raise AuthorizationError(quota.reason or "Disk quota exceeded", context={'repo': fork_name})

        if not await self.maintainers.can_view(requester, owner, repo_id):
            self.audit.log('fork', DENIED, user=requester, resource=source_label)
            raise NotFoundError(DENIED_MESSAGE, context={'repo': repo_id})

        source_path = self.repo_manager.repo_path_for(owner, repo_id).full_path
        dest = self.repo_manager.repo_path(user_npub, fork_name)

        async with self._locks.hold(dest.full_path):
            if not self.repo_manager.repo_exists(source_path):
                raise NotFoundError("Original repository not found", context={'repo': repo_id})

            original = await self.maintainers.get_announcement(owner, repo_id)
            if original is None:
                raise NotFoundError("Original repository announcement not found", context={'repo': repo_id})

            result = ForkResult(
                npub=user_npub,
                repo=fork_name,
                address=str(RepoAddress(pubkey=requester, identifier=fork_name)),
                url=self.fork_url(user_npub, fork_name),
            )
            if self.repo_manager.repo_exists(dest.full_path):
                logger.info(f"Fork {dest_label} already exists")
                result.already_exists = True
                return result

            logger.info(f"Forking {source_label} to {dest_label}")
            clone = await self.repo_manager.git.clone_bare(source_path, dest.full_path)
            if not clone.ok:
                removed = await self._remove_clone(dest.full_path)
                result.failure = ForkFailure(
                    step='clone',
                    error=self._scrub(clone.stderr.strip() or "git clone failed", dest.full_path, dest_label),
                    compensations=[removed],
                )
                self.audit.log('fork', FAILURE, user=requester, resource=dest_label, error=result.failure.error)
                return result
            self.resource_limits.invalidate(user_npub)

            try:
                relays = await self._publish_relays(requester)
            except Exception as e:
                logger.error(f"Relay lookup for {dest_label} failed, removing the clone")
                removed = await self._remove_clone(dest.full_path)
                result.failure = ForkFailure(
                    step='announce',
                    error=self._scrub(e, dest.full_path, dest_label),
                    compensations=[removed],
                )
            else:
                await self._announce_and_anchor(result, original, signer, dest.full_path, relays, dest_label)

            if result.failure is not None:
                self.resource_limits.invalidate(user_npub)
                self.audit.log(
                    'fork', FAILURE, user=requester, resource=dest_label,
                    error=result.failure.error, metadata={'step': result.failure.step},
                )
                return result

        self.ownership.invalidate(requester, fork_name)
        self.maintainers.invalidate(requester, fork_name)
        self.audit.log(
            'fork', SUCCESS, user=requester, resource=dest_label,
            metadata={'source': source_label, 'announcement': result.announcement_id},
        )
        logger.info(
            f"Fork {dest_label} complete: announcement on {len(result.announcement_relays.success)} relay(s), "
            f"ownership anchor on {len(result.anchor_relays.success)} relay(s)"
        )
        return result

    async def _announce_and_anchor(
        self,
        result: ForkResult,
        original: RepoAnnouncement,
        signer: Signer,
        dest_path: str,
        relays: List[str],
        dest_label: str,
    ) -> None:
        """
        Steps 3-5. Fills in ``result``, including any failure.

        The signer is external, so anything it raises is a step failure and
        triggers the same compensation as a failed publish.
        """
        requester = signer.pubkey

        # Announce
        try:
            announcement = await signer.sign(self.build_fork_announcement(original, requester, result.repo))
            announce_publish = await self._publish(announcement, relays, 'fork announcement')
        except Exception as e:
            announcement, announce_publish = None, None
            announce_error = self._scrub(e, dest_path, dest_label)
        else:
            announce_error = None if announce_publish.ok else "Failed to publish fork announcement to any relay"

        if announce_error is not None:
            logger.error(f"Fork announcement for {result.repo} failed, removing the clone")
            removed = await self._remove_clone(dest_path)
            result.failure = ForkFailure(
                step='announce',
                error=announce_error,
                compensations=[removed],
                publish=announce_publish,
            )
            return
        result.announcement_id = announcement.id
        result.announcement_relays = announce_publish

        # Anchor ownership
        try:
            anchor = await signer.sign(self.ownership.create_initial_ownership_event(requester, result.repo))
            anchor_publish = await self._publish(anchor, relays, 'ownership anchor')
        except Exception as e:
            anchor, anchor_publish = None, None
            anchor_error = self._scrub(e, dest_path, dest_label)
        else:
            anchor_error = None if anchor_publish.ok else "Failed to publish ownership anchor to any relay"

        if anchor_error is not None:
            logger.error(
                f"Ownership anchor for {result.repo} failed, removing the clone and retracting the announcement"
            )
            removed = await self._remove_clone(dest_path)
            retracted = await self._retract(announcement, result.repo, signer, relays)
            result.failure = ForkFailure(
                step='anchor',
                error=anchor_error,
                compensations=[removed, retracted],
                publish=anchor_publish,
            )
            return
        result.ownership_anchor_id = anchor.id
        result.anchor_relays = anchor_publish

        # Finalize
        try:
            await self.repo_manager.git.write_papertrail(
                dest_path,
                {
                    VERIFICATION_FILE_PATH: generate_verification_file(announcement, requester),
                    'announcement.json': announcement.to_json() + '\n',
                    f"transfer-{anchor.id}.json": anchor.to_json() + '\n',
                },
                f"Fork of {original.address}",
            )
        except Exception as e:
            warning = f"Papertrail not written: {self._scrub(e, dest_path, dest_label)}"
            logger.warning(warning)
            result.warnings.append(warning)

    def build_fork_announcement(self, original: RepoAnnouncement, requester: str, fork_name: str) -> EventTemplate:
        """Announcement for a fork: new clone URL first, back-references to the original."""
        user_npub = npub_encode(requester)
        description = f"Fork of {original.name}"
        if original.description:
            description += f": {original.description}"

        other_urls = [url for url in original.clone_urls if self.git_domain not in url]
        tags = [
            ['d', fork_name],
            ['name', f"{original.name} (fork)"],
            ['description', description],
            ['clone', self.fork_url(user_npub, fork_name), *other_urls],
            ['relays', *self.default_relays],
            ['t', 'fork'],
            ['a', str(original.address)],
            ['p', original.author],
        ]
        if original.earliest_commit:
            tags.append(['r', original.earliest_commit, 'euc'])

        return EventTemplate(pubkey=requester, kind=kinds.REPO_ANNOUNCEMENT, tags=tags, content='')

    async def _retract(self, announcement: SignedEvent, fork_name: str, signer: Signer, relays: List[str]) -> Compensation:
        """Publish a deletion request for an announcement left without an anchor."""
        template = EventTemplate(
            pubkey=announcement.pubkey,
            kind=kinds.DELETION_REQUEST,
            tags=[
                ['a', f"{kinds.REPO_ANNOUNCEMENT}:{announcement.pubkey}:{fork_name}"],
                ['e', announcement.id],
                ['k', str(kinds.REPO_ANNOUNCEMENT)],
            ],
            content=(
                "Fork failed: ownership anchor could not be published. "
                "This announcement is invalid."
            ),
        )
        try:
            deletion = await signer.sign(template)
            publish = await self._publish(deletion, relays, 'deletion request')
        except Exception as e:
            logger.error(f"Deletion request for {fork_name} could not be built: {sanitize_error(e)}")
            return Compensation(action='publish_deletion', success=False, detail=sanitize_error(e))

        if publish.ok:
            logger.info(f"Deletion request for {fork_name} published")
        else:
            logger.error(f"Deletion request for {fork_name} failed on every relay")
        return Compensation(
            action='publish_deletion',
            success=publish.ok,
            event_id=deletion.id,
            relays=publish,
        )

    def _scrub(self, error, path: str, label: str) -> str:
        """Sanitized error text with local paths replaced by ``label``."""
        root = os.path.join(str(self.repo_manager.repo_root), '')
        return sanitize_error(error, paths={path: label, root: ''})

    async def _remove_clone(self, path: str) -> Compensation:
        try:
            removed = await self.repo_manager.delete_repo(path)
        except Exception as e:
            logger.error(f"Could not remove clone: {sanitize_error(e)}")
            return Compensation(action='delete_local_clone', success=False, detail=sanitize_error(e))
        return Compensation(
            action='delete_local_clone',
            success=True,
            detail=None if removed else 'nothing to remove',
        )

    async def _publish(self, event: SignedEvent, relays: List[str], label: str) -> PublishResult:
        outcome = await retry_with_backoff(
            lambda: self.client.publish_event(event, relays),
            attempts=self.publish_attempts,
            base_delay=self.publish_base_delay,
            is_success=lambda r: r.ok,
            description=f"publish {label}",
            sleep=self._sleep,
        )
        if outcome.value is not None:
            return outcome.value
        failed = PublishResult(event_id=event.id)
        for relay in relays:
            failed.add_failure(relay, outcome.error_message or 'publish failed')
        return failed

    async def _publish_relays(self, pubkey: str) -> List[str]:
        outbox = []
        if self.user_relays is not None:
            _, outbox = await self.user_relays.get_user_relays(pubkey)
        return combine_relays(outbox, self.default_relays)
