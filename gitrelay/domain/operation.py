"""
Operation result domain objects for gitrelay.

Multi-target work (publishing to several relays, syncing several remotes)
rarely fails uniformly, so results are reported as per-target details
collected into a summary with counts, never as a single boolean.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional


class OperationStatus(Enum):
    """Status of an individual target."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TargetResult:
    """
    What happened to one target (a relay or a git remote).

    Used to track each target during fan-out operations.
    """
    target: str
    status: OperationStatus
    action: str  # e.g., "fetched", "pushed", "published"
    attempts: int = 1
    message: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'target': self.target,
            'status': self.status.value,
            'action': self.action,
            'attempts': self.attempts,
        }
        if self.message:
            result['message'] = self.message
        if self.error:
            result['error'] = self.error
        if self.metadata:
            result.update(self.metadata)
        return result


@dataclass
class OperationSummary:
    """
    Summary of a fan-out operation across several targets.

    A summary with zero successes is a soft failure: ``success`` is False
    but nothing was raised.
    """
    operation: str  # e.g., "sync_from_remotes", "sync_to_remotes"
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    details: List[TargetResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if at least one target succeeded, or there was nothing to do."""
        return self.successful > 0 or self.total == self.skipped

    @property
    def partial(self) -> bool:
        return self.successful > 0 and self.failed > 0

    def add_detail(self, detail: TargetResult) -> None:
        """Add a target detail and update counts."""
        self.details.append(detail)
        self.total += 1

        if detail.status == OperationStatus.SUCCESS:
            self.successful += 1
        elif detail.status == OperationStatus.SKIPPED:
            self.skipped += 1
        elif detail.status == OperationStatus.FAILED:
            self.failed += 1
            if detail.error:
                self.errors.append(f"{detail.target}: {detail.error}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'type': 'summary',
            'operation': self.operation,
            'success': self.success,
            'total': self.total,
            'successful': self.successful,
            'skipped': self.skipped,
            'failed': self.failed,
            'errors': self.errors,
        }


@dataclass
class PublishResult:
    """Per-relay outcome of publishing one event."""
    event_id: str
    success: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.success) > 0

    def add_failure(self, relay: str, error: str) -> None:
        self.failed.append({'relay': relay, 'error': error})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_id': self.event_id,
            'success': list(self.success),
            'failed': [dict(f) for f in self.failed],
        }


@dataclass
class TransferResult:
    """Outcome of a transfer submission."""
    event_id: str
    address: str
    from_pubkey: str
    to_pubkey: str
    publish: PublishResult
    papertrail: bool = False

    @property
    def success(self) -> bool:
        return self.publish.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'transfer',
            'success': self.success,
            'event_id': self.event_id,
            'address': self.address,
            'from': self.from_pubkey,
            'to': self.to_pubkey,
            'relays': self.publish.to_dict(),
            'papertrail': self.papertrail,
        }


@dataclass
class Compensation:
    """A compensating action taken after a failed workflow step."""
    action: str  # "delete_local_clone", "publish_deletion"
    success: bool
    detail: Optional[str] = None
    event_id: Optional[str] = None
    relays: Optional[PublishResult] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'action': self.action, 'success': self.success}
        if self.detail:
            result['detail'] = self.detail
        if self.event_id:
            result['event_id'] = self.event_id
        if self.relays is not None:
            result['relays'] = self.relays.to_dict()
        return result


@dataclass
class ForkFailure:
    """Structured failure of a fork: which step failed and what was undone."""
    step: str  # "clone", "announce", "anchor"
    error: str
    compensations: List[Compensation] = field(default_factory=list)
    publish: Optional[PublishResult] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'step': self.step,
            'error': self.error,
            'compensations': [c.to_dict() for c in self.compensations],
        }
        if self.publish is not None:
            result['relays'] = self.publish.to_dict()
        return result


@dataclass
class ForkResult:
    """
    Outcome of a fork request.

    Exactly one of the success fields (``announcement_id``) or ``failure``
    is meaningful. ``already_exists`` marks an idempotent no-op.
    """
    npub: str
    repo: str
    address: Optional[str] = None
    url: Optional[str] = None
    announcement_id: Optional[str] = None
    ownership_anchor_id: Optional[str] = None
    announcement_relays: Optional[PublishResult] = None
    anchor_relays: Optional[PublishResult] = None
    already_exists: bool = False
    failure: Optional[ForkFailure] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failure is None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'type': 'fork',
            'success': self.success,
            'npub': self.npub,
            'repo': self.repo,
            'already_exists': self.already_exists,
        }
        if self.address:
            result['address'] = self.address
        if self.url:
            result['url'] = self.url
        if self.announcement_id:
            result['announcement_id'] = self.announcement_id
        if self.ownership_anchor_id:
            result['ownership_anchor_id'] = self.ownership_anchor_id
        if self.announcement_relays is not None:
            result['announcement_relays'] = {
                'success': len(self.announcement_relays.success),
                'failed': len(self.announcement_relays.failed),
            }
        if self.anchor_relays is not None:
            result['anchor_relays'] = {
                'success': len(self.anchor_relays.success),
                'failed': len(self.anchor_relays.failed),
            }
        if self.failure is not None:
            result['failure'] = self.failure.to_dict()
        if self.warnings:
            result['warnings'] = list(self.warnings)
        return result
