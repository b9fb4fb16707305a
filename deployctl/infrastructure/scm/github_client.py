"""GitHub REST client used to read the head of the tracked branch."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx

from deployctl.domain.errors import WatchError

logger = logging.getLogger(__name__)


@dataclass
class BranchHead:
    commit_sha: str
    timestamp: datetime
    message: Optional[str] = None


class GitHubClient:
    def __init__(
        self,
        repository_slug: str,
        api_url: str = "https://api.github.com",
        token: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the HTTP client."""
        self.repository_slug = repository_slug
        self.api_url = api_url.rstrip("/")
        self._token = token
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def get_branch_head(self, branch: str) -> BranchHead:
        url = f"{self.api_url}/repos/{self.repository_slug}/branches/{branch}"
        try:
            response = await self.client.get(url, headers=self._get_headers())
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ GitHub request failed: {e}")
            raise WatchError(f"GitHub request failed: {e}") from e

        if response.status_code != 200:
            raise WatchError(
                f"GitHub returned {response.status_code} for {self.repository_slug}@{branch}"
            )

        try:
            payload = response.json()
            commit = payload["commit"]
            sha = commit["sha"]
            details = commit.get("commit") or {}
            committer = details.get("committer") or {}
            raw_date = committer.get("date")
        except (ValueError, KeyError, TypeError) as e:
            raise WatchError(f"Unexpected GitHub branch payload: {e}") from e

        timestamp = (
            datetime.fromisoformat(raw_date.replace("Z", "+00:00"))
            if raw_date
            else datetime.now(timezone.utc)
        )
        return BranchHead(commit_sha=sha, timestamp=timestamp, message=details.get("message"))

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
