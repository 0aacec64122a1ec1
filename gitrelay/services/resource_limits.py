"""
Per-identity resource limits: repository count and disk usage.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import asyncio
import logging
import os
import time

from .result_cache import ResultCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceUsage:
    repo_count: int
    disk_usage: int
    max_repos: int
    max_disk_quota: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repo_count': self.repo_count,
            'disk_usage': self.disk_usage,
            'max_repos': self.max_repos,
            'max_disk_quota': self.max_disk_quota,
        }


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    usage: ResourceUsage
    reason: Optional[str] = None


def format_bytes(size: int) -> str:
    if size <= 0:
        return '0 B'
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            return f"{round(value, 2)} {unit}"
        value /= 1024
    return f"{size} B"


def _dir_size(path: Path) -> int:
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def _scan(user_dir: Path):
    if not user_dir.is_dir():
        return 0, 0
    count = 0
    size = 0
    for entry in user_dir.iterdir():
        if entry.is_dir() and entry.name.endswith('.git'):
            count += 1
            size += _dir_size(entry)
    return count, size


class ResourceLimits:
    """
    Counts ``*.git`` directories under ``<repo_root>/<npub>/``.

    Usage is cached briefly; call ``invalidate`` after creating or deleting
    a repository.
    """

    def __init__(
        self,
        repo_root: str,
        max_repos: int = 100,
        max_disk_quota: int = 10 * 1024 ** 3,
        cache_ttl: float = 300,
        clock=time.time,
    ):
        self.repo_root = Path(repo_root)
        self.max_repos = max_repos
        self.max_disk_quota = max_disk_quota
        self._usage: ResultCache[ResourceUsage] = ResultCache(cache_ttl, clock)

    async def get_usage(self, npub: str) -> ResourceUsage:
        cached = self._usage.get(npub)
        if cached is not None:
            return cached
        count, size = await asyncio.to_thread(_scan, self.repo_root / npub)
        usage = ResourceUsage(
            repo_count=count,
            disk_usage=size,
            max_repos=self.max_repos,
            max_disk_quota=self.max_disk_quota,
        )
        self._usage.set(npub, usage)
        return usage

    async def can_create_repo(self, npub: str) -> LimitCheck:
        usage = await self.get_usage(npub)
        if usage.repo_count >= usage.max_repos:
            return LimitCheck(
                allowed=False,
                usage=usage,
                reason=f"Repository limit reached ({usage.repo_count}/{usage.max_repos})",
            )
        return LimitCheck(allowed=True, usage=usage)

    async def has_disk_quota(self, npub: str, additional_bytes: int = 0) -> LimitCheck:
        usage = await self.get_usage(npub)
        if usage.disk_usage + additional_bytes > usage.max_disk_quota:
            return LimitCheck(
                allowed=False,
                usage=usage,
                reason=(
                    f"Disk quota exceeded ({format_bytes(usage.disk_usage)}/"
                    f"{format_bytes(usage.max_disk_quota)})"
                ),
            )
        return LimitCheck(allowed=True, usage=usage)

    def invalidate(self, npub: str) -> None:
        self._usage.invalidate(npub)
