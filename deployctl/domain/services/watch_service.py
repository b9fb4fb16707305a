import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from deployctl.domain.entities.revision import Revision
from deployctl.domain.errors import WatchError
from deployctl.infrastructure.scm.github_client import BranchHead
from deployctl.schemas.status import WatcherStatus
from deployctl.schemas.webhook import PushEvent, PushRepository

logger = logging.getLogger(__name__)


class SourceClient(Protocol):
    async def get_branch_head(self, branch: str) -> BranchHead: ...


class WatcherHealth(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"


class SourceWatcher:
    """
    Tracks the head of one branch.

    The last observed sha starts empty, so the first successful poll always
    yields a revision. Polls, webhook deliveries and manual triggers all go
    through the same lock.
    """

    def __init__(
        self,
        client: SourceClient,
        branch: str,
        repository_url: Optional[str] = None,
        repository_slug: Optional[str] = None,
        poll_interval: float = 60.0,
        max_backoff: float = 600.0,
        failure_threshold: int = 5,
    ):
        self.client = client
        self.branch = branch
        self.repository_url = repository_url
        self.repository_slug = repository_slug
        self.poll_interval = poll_interval
        self.max_backoff = max_backoff
        self.failure_threshold = failure_threshold

        self._lock = asyncio.Lock()
        self._last_observed: Optional[str] = None
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.health = WatcherHealth.HEALTHY

    @property
    def last_observed(self) -> Optional[str]:
        return self._last_observed

    def _revision(self, sha: str, timestamp: Optional[datetime], message: Optional[str]) -> Revision:
        return Revision(
            commit_sha=sha,
            branch=self.branch,
            repository_url=self.repository_url,
            timestamp=timestamp or datetime.now(timezone.utc),
            message=message,
        )

    async def poll(self) -> Optional[Revision]:
        """Return a new revision when the branch head moved, else None."""
        async with self._lock:
            try:
                head = await self.client.get_branch_head(self.branch)
            except WatchError as e:
                self._record_failure(e)
                return None

            self._record_success()
            if head.commit_sha == self._last_observed:
                return None

            logger.info(f"🆕 New head on {self.branch}: {head.commit_sha[:12]} (was {self._short(self._last_observed)})")
            self._last_observed = head.commit_sha
            return self._revision(head.commit_sha, head.timestamp, head.message)

    async def observe_push(self, event: PushEvent) -> Optional[Revision]:
        """Same as ``poll`` but for a delivered push event."""
        if event.branch != self.branch:
            logger.info(f"⏭️ Ignoring push to {event.ref}; tracking {self.branch}")
            return None
        if not self.tracks_repository(event.repository):
            logger.warning(
                f"🚫 Ignoring push from untracked repository "
                f"{event.repository.full_name or event.repository.clone_url or 'unknown'}"
            )
            return None
        if event.is_deletion:
            logger.info(f"⏭️ Ignoring deletion of {event.ref}")
            return None

        async with self._lock:
            if event.after == self._last_observed:
                logger.info(f"⏭️ Push {event.after[:12]} already observed")
                return None
            self._last_observed = event.after

        head_commit = event.head_commit
        return self._revision(
            event.after,
            head_commit.timestamp if head_commit else None,
            head_commit.message if head_commit else None,
        )

    def tracks_repository(self, repository: PushRepository) -> bool:
        """True when a push payload names the configured repository by slug or clone URL."""
        if self.repository_slug and repository.full_name:
            if repository.full_name.lower() == self.repository_slug.lower():
                return True
        if self.repository_url:
            expected = self._normalize_url(self.repository_url)
            for url in (repository.clone_url, repository.html_url):
                if url and self._normalize_url(url) == expected:
                    return True
        return False

    @staticmethod
    def _normalize_url(url: str) -> str:
        url = url.strip().lower().rstrip("/")
        return url[: -len(".git")] if url.endswith(".git") else url

    async def resolve(self, commit_sha: Optional[str] = None) -> Revision:
        """Revision for a manual trigger; raises WatchError if the head is unavailable."""
        async with self._lock:
            if commit_sha:
                revision = self._revision(commit_sha, None, "manual deploy")
            else:
                head = await self.client.get_branch_head(self.branch)
                self._record_success()
                revision = self._revision(head.commit_sha, head.timestamp, head.message)
            self._last_observed = revision.commit_sha
            return revision

    def _record_failure(self, error: WatchError) -> None:
        self.consecutive_failures += 1
        self.last_error = str(error)
        if self.consecutive_failures >= self.failure_threshold:
            if self.health != WatcherHealth.DEGRADED:
                logger.error(
                    f"🚨 Source watcher DEGRADED after {self.consecutive_failures} consecutive failures: {error}"
                )
            self.health = WatcherHealth.DEGRADED
        else:
            logger.warning(
                f"⚠️ Poll failed ({self.consecutive_failures}/{self.failure_threshold}), "
                f"retrying in {self.next_delay():.0f}s: {error}"
            )

    def _record_success(self) -> None:
        if self.health == WatcherHealth.DEGRADED:
            logger.info("✅ Source watcher recovered")
        self.consecutive_failures = 0
        self.last_error = None
        self.health = WatcherHealth.HEALTHY

    def next_delay(self) -> float:
        """Seconds until the next poll; grows exponentially while polls fail."""
        if self.consecutive_failures == 0:
            return self.poll_interval
        backoff = self.poll_interval * (2 ** (self.consecutive_failures - 1))
        return min(backoff, self.max_backoff)

    def status(self) -> WatcherStatus:
        return WatcherStatus(
            status=self.health.value,
            branch=self.branch,
            last_observed_sha=self._last_observed,
            consecutive_failures=self.consecutive_failures,
            last_error=self.last_error,
        )

    @staticmethod
    def _short(sha: Optional[str]) -> str:
        return sha[:12] if sha else "nothing"
