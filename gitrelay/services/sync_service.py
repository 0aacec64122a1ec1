"""
Repository sync service for gitrelay.

Mirrors a local bare repository from or to several git remotes at once.
Each remote is an isolated target: one unreachable remote is recorded in
the summary and never aborts the others. A summary with no successful
remote is a soft failure (``summary.success`` is False), not an exception.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import asyncio
import logging

from ..domain.operation import OperationStatus, OperationSummary, TargetResult
from ..errors import GitCommandError, GitRelayError, NotFoundError, ValidationError
from ..infra.git_client import GitClient, GitResult
from ..infra.transport import Transport, transport_for_url, validate_remote_url
from ..locks import KeyedLocks
from ..retry import gather_isolated, retry_with_backoff
from ..security import redact_url, sanitize_error

logger = logging.getLogger(__name__)


def remote_name(index: int) -> str:
    return f"remote-{index}"


class SyncService:
    """
    Fetches from and pushes to multiple remotes in parallel.

    Example:
        service = SyncService(git_client=GitClient())
        summary = await service.sync_from_remotes(path, [url_a, url_b])
        print(f"Fetched from {summary.successful}/{summary.total} remotes")
    """

    def __init__(
        self,
        git_client: Optional[GitClient] = None,
        socks_proxy: Optional[str] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        allow_force_push: bool = False,
        sleep=asyncio.sleep,
    ):
        """
        Initialize SyncService.

        Args:
            git_client: GitClient instance (creates new if None)
            socks_proxy: host:port for onion remotes (empty disables)
            max_attempts: Attempts per remote
            base_delay: First backoff delay in seconds, doubled per retry
            allow_force_push: Force-push without the safety check
            sleep: Awaitable sleep, injectable for tests
        """
        self.git = git_client or GitClient()
        self.socks_proxy = socks_proxy
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.allow_force_push = allow_force_push
        self._sleep = sleep
        self._repo_locks = KeyedLocks()

    async def _register_remotes(
        self,
        repo_path: str,
        urls: Sequence[str],
        summary: OperationSummary,
        action: str,
    ) -> List[Tuple[str, str, Transport]]:
        """
        Validate URLs and register them as ``remote-<i>``.

        Registration writes the repository config, so it runs one remote at
        a time; invalid URLs are recorded as failed targets.
        """
        registered = []
        async with self._repo_locks.hold(str(Path(repo_path).resolve())):
            for index, url in enumerate(dict.fromkeys(urls)):
                try:
                    url = validate_remote_url(url)
                    transport = transport_for_url(url, self.socks_proxy)
                except ValidationError as e:
                    summary.add_detail(TargetResult(
                        target=redact_url(url or ''),
                        status=OperationStatus.FAILED,
                        action=f"{action}_failed",
                        attempts=0,
                        error=e.message,
                    ))
                    continue

                name = remote_name(index)
                result = await self.git.add_remote(repo_path, name, url)
                if not result.ok:
                    summary.add_detail(TargetResult(
                        target=redact_url(url),
                        status=OperationStatus.FAILED,
                        action=f"{action}_failed",
                        attempts=0,
                        error=sanitize_error(result.stderr.strip() or "could not add remote"),
                    ))
                    continue
                registered.append((name, url, transport))
        return registered

    def _check_repo(self, repo_path: str) -> None:
        if not Path(repo_path).is_dir():
            raise NotFoundError("Local repository does not exist", context={'repo': Path(repo_path).name})

    def _collect(self, summary: OperationSummary, results, action: str) -> None:
        for (name, url, _), detail, error in results:
            if error is not None:
                detail = TargetResult(
                    target=redact_url(url),
                    status=OperationStatus.FAILED,
                    action=f"{action}_failed",
                    error=sanitize_error(error),
                    metadata={'remote': name},
                )
            summary.add_detail(detail)

    async def sync_from_remotes(self, repo_path: str, urls: Sequence[str]) -> OperationSummary:
        """
        Fetch every remote in ``urls`` into ``repo_path``.

        Raises:
            NotFoundError: if the local repository does not exist
        """
        self._check_repo(repo_path)
        summary = OperationSummary(operation="sync_from_remotes")
        remotes = await self._register_remotes(repo_path, urls, summary, "fetch")

        results = await gather_isolated(remotes, lambda remote: self._fetch_one(repo_path, *remote))
        self._collect(summary, results, "fetch")

        self._log_summary(repo_path, summary)
        return summary

    async def _fetch_one(self, repo_path: str, name: str, url: str, transport: Transport) -> TargetResult:
        outcome = await retry_with_backoff(
            lambda: self.git.fetch(repo_path, name, transport),
            attempts=self.max_attempts,
            base_delay=self.base_delay,
            is_success=lambda r: r.ok,
            retry_on=(GitCommandError,),
            description=f"fetch {name}",
            sleep=self._sleep,
        )
        return self._target_result(name, url, outcome, "fetch", transport)

    async def sync_to_remotes(self, repo_path: str, urls: Sequence[str]) -> OperationSummary:
        """
        Push all branches and tags of ``repo_path`` to every remote.

        Raises:
            NotFoundError: if the local repository does not exist
        """
        self._check_repo(repo_path)
        summary = OperationSummary(operation="sync_to_remotes")
        remotes = await self._register_remotes(repo_path, urls, summary, "push")

        results = await gather_isolated(remotes, lambda remote: self._push_one(repo_path, *remote))
        self._collect(summary, results, "push")

        self._log_summary(repo_path, summary)
        return summary

    async def _push_one(self, repo_path: str, name: str, url: str, transport: Transport) -> TargetResult:
        force = self.allow_force_push or await self.is_safe_to_force(repo_path, name, transport)

        outcome = await retry_with_backoff(
            lambda: self.git.push(repo_path, name, force=force, transport=transport),
            attempts=self.max_attempts,
            base_delay=self.base_delay,
            is_success=lambda r: r.ok,
            retry_on=(GitCommandError,),
            description=f"push {name}",
            sleep=self._sleep,
        )
        detail = self._target_result(name, url, outcome, "push", transport)
        detail.metadata['force'] = force
        return detail

    async def is_safe_to_force(self, repo_path: str, name: str, transport: Transport) -> bool:
        """
        True only if no branch on the remote would lose commits.

        Fetches the remote, then requires every branch present on both
        sides to have the remote tip as an ancestor of the local tip. Any
        error means "not safe".
        """
        try:
            fetched = await self.git.fetch(repo_path, name, transport)
            if not fetched.ok:
                return False
            remote_branches = await self.git.list_branches(repo_path, remote=name)
            local_branches = await self.git.list_branches(repo_path)
            for branch, remote_sha in remote_branches.items():
                local_sha = local_branches.get(branch)
                if local_sha is None:
                    continue
                if not await self.git.is_ancestor(repo_path, remote_sha, local_sha):
                    return False
            return True
        except GitRelayError as e:
            logger.debug(f"Safe-to-force check failed for {name}: {sanitize_error(e)}")
            return False

    @staticmethod
    def _target_result(name, url, outcome, verb: str, transport: Transport) -> TargetResult:
        metadata = {'remote': name}
        if transport.via_proxy:
            metadata['proxied'] = True

        if outcome.succeeded:
            return TargetResult(
                target=redact_url(url),
                status=OperationStatus.SUCCESS,
                action=f"{verb}ed",
                attempts=outcome.attempts,
                metadata=metadata,
            )

        if outcome.error is not None:
            error = sanitize_error(outcome.error)
        else:
            last: GitResult = outcome.value
            error = sanitize_error(last.stderr.strip() if last and last.stderr else "git command failed")
        return TargetResult(
            target=redact_url(url),
            status=OperationStatus.FAILED,
            action=f"{verb}_failed",
            attempts=outcome.attempts,
            error=error,
            metadata=metadata,
        )

    @staticmethod
    def _log_summary(repo_path: str, summary: OperationSummary) -> None:
        repo = Path(repo_path).name
        if summary.failed:
            logger.warning(
                f"{summary.operation} {repo}: {summary.successful}/{summary.total} remotes succeeded"
            )
            for error in summary.errors:
                logger.info(f"  {error}")
        else:
            logger.info(f"{summary.operation} {repo}: {summary.successful}/{summary.total} remotes succeeded")
