"""
Git client infrastructure for gitrelay.

Provides an asynchronous abstraction over git command execution.
All git operations go through this client, making them:
- Easy to mock for testing
- Consistent in error handling
- Isolated from business logic

Commands are always argument vectors handed to
``asyncio.create_subprocess_exec``; nothing is ever passed through a
shell. Per-call configuration (``-c`` pairs) and environment overlays are
scoped to the one subprocess they are given to.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple
from pathlib import Path
import asyncio
import logging
import os

from ..errors import GitCommandError
from ..security import redact_url, sanitize_error
from .transport import Transport, DIRECT

logger = logging.getLogger(__name__)

PAPERTRAIL_REF = 'refs/nostr/papertrail'

# Always applied: never let a remote URL select the ext:: helper
BASE_CONFIG: Tuple[Tuple[str, str], ...] = (('protocol.ext.allow', 'never'),)


@dataclass
class GitResult:
    """Result of one git invocation."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitClient:
    """
    Asynchronous abstraction over git commands.

    Example:
        client = GitClient()
        await client.init_bare("/srv/repos/npub1.../demo.git")
        result = await client.fetch(path, "remote-0")
        if not result.ok:
            print(result.stderr)
    """

    def __init__(self, timeout: float = 300, git_binary: str = 'git'):
        """
        Initialize GitClient.

        Args:
            timeout: Command timeout in seconds (default: 300)
            git_binary: Executable to run
        """
        self.timeout = timeout
        self.git_binary = git_binary

    async def run(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        config: Iterable[Tuple[str, str]] = (),
        env: Optional[Dict[str, str]] = None,
        input_data: Optional[str] = None,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> GitResult:
        """
        Run a git command.

        Args:
            args: Arguments after ``git`` and the ``-c`` options
            cwd: Working directory
            config: Extra ``-c key=value`` pairs for this call only
            env: Variables overlaid on a copy of the process environment
            input_data: Text written to stdin
            timeout: Override the client timeout
            check: Raise GitCommandError on non-zero exit

        Returns:
            GitResult with decoded output
        """
        argv = [self.git_binary]
        for key, value in tuple(BASE_CONFIG) + tuple(config):
            argv.extend(['-c', f"{key}={value}"])
        argv.extend(args)

        run_env = dict(os.environ)
        run_env.setdefault('GIT_TERMINAL_PROMPT', '0')
        if env:
            run_env.update(env)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=run_env,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GitCommandError(f"Could not start git: {e}", returncode=-1)

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input_data.encode('utf-8') if input_data is not None else None),
                timeout=timeout or self.timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(f"Git command timed out: git {args[0] if args else ''}")
            result = GitResult(returncode=-1, stderr="git command timed out")
        else:
            result = GitResult(
                returncode=proc.returncode,
                stdout=stdout.decode('utf-8', errors='replace'),
                stderr=stderr.decode('utf-8', errors='replace'),
            )

        if check and not result.ok:
            raise GitCommandError(
                f"git {args[0] if args else ''} failed: {sanitize_error(result.stderr.strip())}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    async def init_bare(self, path: str, default_branch: str = 'main') -> GitResult:
        """Create a bare repository at ``path`` (parents created)."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        return await self.run(['init', '--bare', f"--initial-branch={default_branch}", path])

    async def clone_bare(self, source: str, dest: str, transport: Transport = DIRECT) -> GitResult:
        """Bare-clone ``source`` into ``dest``."""
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cloning {redact_url(source)} into {Path(dest).name}")
        return await self.run(
            ['clone', '--bare', '--', source, dest],
            config=transport.config,
            env=transport.env,
        )

    async def add_remote(self, repo_path: str, name: str, url: str) -> GitResult:
        """Register ``url`` as remote ``name``, updating the URL if it exists."""
        existing = await self.run(['remote', 'get-url', name], cwd=repo_path)
        if existing.ok:
            if existing.stdout.strip() == url:
                return existing
            return await self.run(['remote', 'set-url', name, '--', url], cwd=repo_path)
        return await self.run(['remote', 'add', name, '--', url], cwd=repo_path)

    async def fetch(self, repo_path: str, remote: str, transport: Transport = DIRECT) -> GitResult:
        """
        Fetch every branch of ``remote`` into its tracking namespace, plus tags.

        FETCH_HEAD is not written, so fetches from different remotes into
        one repository can run side by side.
        """
        return await self.run(
            ['fetch', '--no-write-fetch-head', '--tags', remote, f"+refs/heads/*:refs/remotes/{remote}/*"],
            cwd=repo_path,
            config=transport.config,
            env=transport.env,
        )

    async def push(
        self,
        repo_path: str,
        remote: str,
        force: bool = False,
        transport: Transport = DIRECT
    ) -> GitResult:
        """
        Push all branches, then all tags.

        Returns the first failing result, or the tags result if both succeed.
        """
        for refs in ('--all', '--tags'):
            args = ['push', '--porcelain', refs]
            if force:
                args.append('--force')
            args.append(remote)
            result = await self.run(args, cwd=repo_path, config=transport.config, env=transport.env)
            if not result.ok:
                return result
        return result

    async def list_branches(self, repo_path: str, remote: Optional[str] = None) -> Dict[str, str]:
        """Map branch name to tip sha, local or for one remote's tracking refs."""
        prefix = f"refs/remotes/{remote}/" if remote else "refs/heads/"
        result = await self.run(
            ['for-each-ref', '--format=%(refname) %(objectname)', prefix],
            cwd=repo_path,
            check=True,
        )
        branches = {}
        for line in result.stdout.splitlines():
            ref, _, sha = line.strip().partition(' ')
            if ref.startswith(prefix) and sha:
                name = ref[len(prefix):]
                if name != 'HEAD':
                    branches[name] = sha
        return branches

    async def is_ancestor(self, repo_path: str, ancestor: str, descendant: str) -> bool:
        """
        True if ``ancestor`` is reachable from ``descendant``.

        Raises:
            GitCommandError: if git could not decide (unknown objects etc.)
        """
        result = await self.run(['merge-base', '--is-ancestor', ancestor, descendant], cwd=repo_path)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise GitCommandError(
            f"merge-base failed: {sanitize_error(result.stderr.strip())}",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    async def rev_parse(self, repo_path: str, ref: str) -> Optional[str]:
        result = await self.run(['rev-parse', '--verify', '--quiet', ref], cwd=repo_path)
        return result.stdout.strip() if result.ok and result.stdout.strip() else None

    async def write_papertrail(
        self,
        repo_path: str,
        files: Dict[str, str],
        message: str,
        author_name: str = 'gitrelay',
        author_email: str = 'gitrelay@localhost',
    ) -> str:
        """
        Commit ``files`` onto the papertrail ref without touching any branch.

        Existing files on the ref are kept unless overwritten. Uses only
        plumbing (hash-object, ls-tree, mktree, commit-tree, update-ref) so
        it works in bare repositories.

        Returns:
            The new commit sha

        Raises:
            GitCommandError: if any plumbing step fails
        """
        parent = await self.rev_parse(repo_path, PAPERTRAIL_REF)

        entries: Dict[str, str] = {}
        if parent:
            listing = await self.run(['ls-tree', parent], cwd=repo_path, check=True)
            for line in listing.stdout.splitlines():
                meta, _, name = line.partition('\t')
                if name:
                    entries[name] = meta

        for name, content in files.items():
            blob = await self.run(
                ['hash-object', '-w', '--stdin'], cwd=repo_path, input_data=content, check=True
            )
            entries[name] = f"100644 blob {blob.stdout.strip()}"

        tree_input = ''.join(f"{meta}\t{name}\n" for name, meta in sorted(entries.items()))
        tree = await self.run(['mktree'], cwd=repo_path, input_data=tree_input, check=True)

        commit_args = ['commit-tree', tree.stdout.strip(), '-m', message]
        if parent:
            commit_args.extend(['-p', parent])
        identity = {
            'GIT_AUTHOR_NAME': author_name,
            'GIT_AUTHOR_EMAIL': author_email,
            'GIT_COMMITTER_NAME': author_name,
            'GIT_COMMITTER_EMAIL': author_email,
        }
        commit = await self.run(commit_args, cwd=repo_path, env=identity, check=True)
        sha = commit.stdout.strip()

        update_args = ['update-ref', PAPERTRAIL_REF, sha]
        if parent:
            update_args.append(parent)
        await self.run(update_args, cwd=repo_path, check=True)
        logger.debug(f"Papertrail updated in {Path(repo_path).name}: {sha[:8]}")
        return sha

    async def read_papertrail_file(self, repo_path: str, name: str) -> Optional[str]:
        result = await self.run(['show', f"{PAPERTRAIL_REF}:{name}"], cwd=repo_path)
        return result.stdout if result.ok else None
