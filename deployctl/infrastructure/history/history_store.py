"""
Append-only deployment history.

Records are kept oldest-first in memory and, when a path is configured,
mirrored to a JSON-lines file. Outcome changes are written as amendment
events rather than rewriting earlier lines; the file is replayed on load.
"""

import json
import logging
import os
from typing import List, Optional

from deployctl.domain.entities.deployment import DeploymentOutcome, DeploymentRecord

logger = logging.getLogger(__name__)


class DeploymentHistory:
    def __init__(self, path: Optional[str] = None, limit: int = 200):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.path = path
        self.limit = limit
        self._records: List[DeploymentRecord] = []
        if path and os.path.exists(path):
            self._load()

    def _load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                    if event["event"] == "append":
                        self._records.append(DeploymentRecord.model_validate(event["record"]))
                    elif event["event"] == "outcome":
                        record = self.get(event["deployment_id"])
                        if record is not None:
                            record.outcome = DeploymentOutcome(event["outcome"])
                except (ValueError, KeyError) as e:
                    logger.warning(f"⚠️ Skipping unreadable history line {line_number}: {e}")
        self._prune()
        logger.info(f"📚 Loaded {len(self._records)} deployment records from {self.path}")

    def _write(self, event: dict) -> None:
        if not self.path:
            return
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(event) + "\n")

    def append(self, record: DeploymentRecord) -> DeploymentRecord:
        self._records.append(record)
        self._write({"event": "append", "record": record.model_dump(mode="json")})
        self._prune()
        return record

    def update_outcome(self, deployment_id: str, outcome: DeploymentOutcome) -> DeploymentRecord:
        record = self.get(deployment_id)
        if record is None:
            raise KeyError(deployment_id)
        record.outcome = outcome
        self._write({"event": "outcome", "deployment_id": deployment_id, "outcome": outcome.value})
        return record

    def _prune(self) -> None:
        # The live success and its rollback target are never pruned, even past the limit
        keep = self._rollback_chain()
        while len(self._records) > self.limit:
            victim = next((r for r in self._records if not any(r is k for k in keep)), None)
            if victim is None:
                break
            self._records.remove(victim)

    def _rollback_chain(self) -> List[DeploymentRecord]:
        latest = self.latest_success()
        if latest is None:
            return []
        target = self.success_before(latest.deployment_id, exclude_digest=latest.artifact.digest)
        return [latest] if target is None else [latest, target]

    def get(self, deployment_id: str) -> Optional[DeploymentRecord]:
        for record in self._records:
            if record.deployment_id == deployment_id:
                return record
        return None

    def list(self, limit: Optional[int] = None) -> List[DeploymentRecord]:
        """Records, most recent first."""
        records = list(reversed(self._records))
        return records[:limit] if limit is not None else records

    def latest(self) -> Optional[DeploymentRecord]:
        return self._records[-1] if self._records else None

    def latest_success(self) -> Optional[DeploymentRecord]:
        for record in reversed(self._records):
            if record.outcome == DeploymentOutcome.SUCCESS:
                return record
        return None

    def success_before(
        self, deployment_id: str, exclude_digest: Optional[str] = None
    ) -> Optional[DeploymentRecord]:
        """Most recent success recorded before ``deployment_id``, optionally of a different image."""
        seen = False
        for record in reversed(self._records):
            if (
                seen
                and record.outcome == DeploymentOutcome.SUCCESS
                and record.artifact.digest != exclude_digest
            ):
                return record
            if record.deployment_id == deployment_id:
                seen = True
        return None

    def __len__(self) -> int:
        return len(self._records)
