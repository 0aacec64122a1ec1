"""
Local bare repositories under the repository root.

Layout: ``<repo_root>/<npub>/<repo>.git``. The local copy is a mirror of
what announcements describe, never the source of truth for ownership.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import asyncio
import logging
import re
import shutil

from ..domain.operation import OperationSummary
from ..domain.records import RepoAnnouncement
from ..errors import GitCommandError, ValidationError
from ..infra.git_client import GitClient
from ..keys import npub_encode
from ..security import validate_repo_name
from .sync_service import SyncService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepoPath:
    npub: str
    repo_name: str
    full_path: str


@dataclass
class ProvisionResult:
    path: RepoPath
    created: bool
    sync: Optional[OperationSummary] = None

    def to_dict(self):
        result = {
            'type': 'provision',
            'npub': self.path.npub,
            'repo': self.path.repo_name,
            'created': self.created,
        }
        if self.sync is not None:
            result['sync'] = self.sync.to_dict()
        return result


class RepoManager:
    """
    Creates, finds and removes bare repositories.

    Example:
        manager = RepoManager("/srv/repos", "git.example.com")
        path = manager.repo_path(npub, "demo")
    """

    def __init__(
        self,
        repo_root: str,
        domain: str,
        git_client: Optional[GitClient] = None,
        sync_service: Optional[SyncService] = None,
    ):
        self.repo_root = Path(repo_root).expanduser()
        self.domain = domain
        self.git = git_client or GitClient()
        self.sync = sync_service or SyncService(git_client=self.git)
        self._url_pattern = re.compile(
            re.escape(domain) + r'/(npub1[a-z0-9]+)/([^/]+?)\.git/?$'
        )

    def repo_path(self, npub: str, repo_name: str) -> RepoPath:
        """Path for ``npub``'s ``repo_name``, validated against traversal."""
        repo_name = validate_repo_name(repo_name)
        if not re.fullmatch(r'npub1[a-z0-9]+', npub or ''):
            raise ValidationError("Invalid npub format", field='npub')
        full_path = self.repo_root / npub / f"{repo_name}.git"
        return RepoPath(npub=npub, repo_name=repo_name, full_path=str(full_path))

    def repo_path_for(self, pubkey: str, repo_name: str) -> RepoPath:
        return self.repo_path(npub_encode(pubkey), repo_name)

    def clone_url(self, npub: str, repo_name: str, scheme: str = 'https') -> str:
        return f"{scheme}://{self.domain}/{npub}/{repo_name}.git"

    def is_own_url(self, url: str) -> bool:
        return self.domain in url

    def parse_repo_url(self, url: str) -> Optional[RepoPath]:
        """Recognize this host's own clone URLs: ``<domain>/<npub>/<repo>.git``."""
        match = self._url_pattern.search(url or '')
        if not match:
            return None
        try:
            return self.repo_path(match.group(1), match.group(2))
        except ValidationError:
            return None

    def repo_exists(self, path: str) -> bool:
        return Path(path).is_dir()

    async def provision_repo(self, announcement: RepoAnnouncement) -> ProvisionResult:
        """
        Create the bare repository an announcement points at this host for,
        then mirror its other clone URLs into it.

        Idempotent: an existing repository is left as is. If creation fails
        because a concurrent caller got there first, that is success too.

        Raises:
            ValidationError: if no clone URL names this host
            GitCommandError: if the repository could not be created
        """
        own_url = next((u for u in announcement.clone_urls if self.is_own_url(u)), None)
        if own_url is None:
            raise ValidationError(f"No {self.domain} URL found in repo announcement", field='clone')
        path = self.parse_repo_url(own_url)
        if path is None:
            raise ValidationError(f"Invalid {self.domain} URL format", field='clone')
        if path.npub != npub_encode(announcement.author):
            raise ValidationError("Clone URL does not belong to the announcement author", field='clone')

        created = await self.ensure_bare_repo(path.full_path)

        other_urls = [u for u in announcement.clone_urls if not self.is_own_url(u)]
        sync = None
        if other_urls:
            sync = await self.sync.sync_from_remotes(path.full_path, other_urls)
        return ProvisionResult(path=path, created=created, sync=sync)

    async def ensure_bare_repo(self, full_path: str) -> bool:
        """
        Create a bare repository unless one exists.

        Returns:
            True if this call created it
        """
        if self.repo_exists(full_path):
            return False
        result = await self.git.init_bare(full_path)
        if result.ok:
            logger.info(f"Created bare repository {Path(full_path).name}")
            return True
        # Lost a race with another creator
        if self.repo_exists(full_path) and (Path(full_path) / 'HEAD').exists():
            return False
        raise GitCommandError(
            "Failed to create bare repository",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    async def delete_repo(self, full_path: str) -> bool:
        """
        Remove a repository directory. Refuses anything outside the root.

        Returns:
            True if something was removed
        """
        target = Path(full_path).resolve()
        root = self.repo_root.resolve()
        if target == root or root not in target.parents:
            raise ValidationError("Refusing to delete outside the repository root", field='path')
        if not target.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, target)
        logger.info(f"Deleted repository {target.name}")
        return True

    async def list_repos(self, npub: str) -> List[str]:
        user_dir = self.repo_root / npub
        if not user_dir.is_dir():
            return []
        return sorted(
            entry.name[:-len('.git')]
            for entry in user_dir.iterdir()
            if entry.is_dir() and entry.name.endswith('.git')
        )
