"""
Ownership transfer submission.

A transfer arrives pre-signed by the current owner. It is validated in a
fixed order, and any failure rejects it as a whole:

1. the signature is valid (forgery is an invariant violation)
2. the kind is the ownership transfer kind
3. the ``a`` tag names exactly this repository (otherwise invariant violation)
4. the ``p`` tag names a valid new owner
5. the requester currently owns the repository
6. the requester is the event's author

Accepted transfers are published to the new owner's outbox relays plus the
default relays; at least one relay has to accept.
"""

from pathlib import Path
from typing import Any, Optional, Sequence
import asyncio
import logging

from ..crypto import verify_event
from ..domain import kinds
from ..domain.event import SignedEvent
from ..domain.operation import TransferResult
from ..domain.records import OwnershipTransfer, RepoAddress
from ..errors import (
    AuthenticationError, AuthorizationError, GitRelayError, InvariantViolationError,
    RelayUnavailableError, ValidationError,
)
from ..keys import normalize_pubkey
from ..retry import retry_with_backoff
from ..security import sanitize_error, truncate_pubkey
from .user_relays import combine_relays

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('gitrelay.security')


class TransferService:
    """
    Validates, publishes and records ownership transfers.

    Example:
        service = TransferService(client, ownership, maintainers, user_relays, defaults)
        result = await service.submit_transfer(event, requester, original_owner, "demo")
    """

    def __init__(
        self,
        client,
        ownership,
        maintainers=None,
        user_relays=None,
        default_relays: Sequence[str] = (),
        repo_manager=None,
        publish_attempts: int = 3,
        publish_base_delay: float = 1.0,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.ownership = ownership
        self.maintainers = maintainers
        self.user_relays = user_relays
        self.default_relays = list(default_relays)
        self.repo_manager = repo_manager
        self.publish_attempts = publish_attempts
        self.publish_base_delay = publish_base_delay
        self._sleep = sleep

    def validate_transfer(self, event: Any, original_owner: str, repo_id: str) -> OwnershipTransfer:
        """
        Structural checks (steps 1-4). No network access.

        Raises:
            MalformedEventError: bad shape or missing ``p`` tag
            InvariantViolationError: forged signature or foreign address
            ValidationError: wrong kind
        """
        event = SignedEvent.from_dict(event)
        address = RepoAddress(pubkey=normalize_pubkey(original_owner, field='owner'), identifier=repo_id)

        if not verify_event(event):
            security_logger.warning(
                f"Rejected transfer {event.id[:8]} for {repo_id}: invalid signature "
                f"(claimed author {truncate_pubkey(event.pubkey)})"
            )
            raise InvariantViolationError("Invalid event signature", context={'repo': repo_id})

        if event.kind != kinds.OWNERSHIP_TRANSFER:
            raise ValidationError(
                f"Event must be kind {kinds.OWNERSHIP_TRANSFER} (ownership transfer)", field='kind'
            )

        if event.tag_value('a') != str(address):
            security_logger.warning(
                f"Rejected transfer {event.id[:8]}: 'a' tag does not match {repo_id}"
            )
            raise InvariantViolationError(
                "Transfer event 'a' tag does not match this repository",
                context={'repo': repo_id},
            )

        return OwnershipTransfer.from_event(event)

    async def submit_transfer(
        self,
        event: Any,
        requester: Optional[str],
        original_owner: str,
        repo_id: str,
    ) -> TransferResult:
        """
        Validate and publish a transfer.

        Raises:
            AuthenticationError: no requester
            AuthorizationError: requester is not the current owner or not the author
            RelayUnavailableError: no relay accepted the event after retries
            (plus everything ``validate_transfer`` raises)
        """
        transfer = self.validate_transfer(event, original_owner, repo_id)
        signed = transfer.event

        if not requester:
            raise AuthenticationError("Authentication required to transfer ownership")
        requester = normalize_pubkey(requester, field='requester')

        if not await self.ownership.can_transfer(requester, transfer.address.pubkey, repo_id):
            logger.info(f"Transfer of {repo_id} denied: {truncate_pubkey(requester)} is not the owner")
            raise AuthorizationError(
                "Only the current repository owner can transfer ownership",
                context={'repo': repo_id},
            )
        if signed.pubkey != requester:
            raise AuthorizationError(
                "Transfer event must be signed by the current owner",
                context={'repo': repo_id},
            )

        relays = await self._publish_relays(transfer.to_pubkey)
        outcome = await retry_with_backoff(
            lambda: self.client.publish_event(signed, relays),
            attempts=self.publish_attempts,
            base_delay=self.publish_base_delay,
            is_success=lambda r: r.ok,
            description=f"publish transfer {signed.id[:8]}",
            sleep=self._sleep,
        )
        if not outcome.succeeded:
            failed = len(outcome.value.failed) if outcome.value is not None else len(relays)
            raise RelayUnavailableError(
                "Failed to publish transfer event to any relays",
                context={'repo': repo_id, 'failed_relays': failed},
            )

        self.ownership.invalidate(transfer.address.pubkey, repo_id)
        if self.maintainers is not None:
            self.maintainers.invalidate(transfer.address.pubkey, repo_id)

        papertrail = await self._write_papertrail(signed, transfer.address.pubkey, repo_id)

        logger.info(
            f"Ownership of {repo_id} transferred from {truncate_pubkey(transfer.from_pubkey)} "
            f"to {truncate_pubkey(transfer.to_pubkey)}"
        )
        return TransferResult(
            event_id=signed.id,
            address=str(transfer.address),
            from_pubkey=transfer.from_pubkey,
            to_pubkey=transfer.to_pubkey,
            publish=outcome.value,
            papertrail=papertrail,
        )

    async def _publish_relays(self, new_owner: str):
        outbox = []
        if self.user_relays is not None:
            _, outbox = await self.user_relays.get_user_relays(new_owner)
        return combine_relays(outbox, self.default_relays)

    async def _write_papertrail(self, event: SignedEvent, original_owner: str, repo_id: str) -> bool:
        """Best effort: a failure is logged, never raised."""
        if self.repo_manager is None:
            return False
        try:
            path = self.repo_manager.repo_path_for(original_owner, repo_id).full_path
            if not Path(path).is_dir():
                return False
            await self.repo_manager.git.write_papertrail(
                path,
                {f"transfer-{event.id}.json": event.to_json() + '\n'},
                f"Ownership transfer {event.id[:8]}",
            )
            return True
        except (GitRelayError, OSError) as e:
            logger.warning(f"Papertrail for {repo_id} not written: {sanitize_error(e)}")
            return False
