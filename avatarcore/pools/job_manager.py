"""
Registry of long-running multi-stage jobs (likeness, voice clone, video).

Invariants enforced here:

* ``progress`` never decreases; a lower value passed to ``advance`` is logged
  and rejected without raising.
* ``status`` leaves ``running`` exactly once. ``complete`` and ``fail`` on a
  terminal job are no-ops, so the first result or error wins.

Each accepted transition publishes one ``job_progress`` event to the job's
scope while the job lock is held, which keeps the delivered order equal to the
transition order.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from avatarcore.enums.orchestration import JobKind, JobStatus
from avatarcore.pools.event_broadcaster import EventBroadcaster
from utils.ml_logging import get_logger

logger = get_logger(__name__)


@dataclass
class Job:
    job_id: str
    owner_id: str
    kind: JobKind
    created_at: float
    updated_at: float
    stage: str = "queued"
    progress: int = 0
    status: JobStatus = JobStatus.RUNNING
    message: str = ""
    result: Any = None
    error: Optional[str] = None
    finished_at: Optional[float] = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def to_event(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "jobId": self.job_id,
            "kind": self.kind.value,
            "stage": self.stage,
            "progress": self.progress,
            "status": self.status.value,
            "message": self.message,
        }
        if self.status is JobStatus.COMPLETED:
            payload["result"] = self.result
        if self.status is JobStatus.FAILED:
            payload["error"] = self.error
        return payload


class JobManager:
    """Concurrency-safe job table with monotonic progress tracking."""

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._broadcaster = broadcaster
        self._clock = clock

    async def create_job(
        self, kind: JobKind, owner_id: str, *, job_id: Optional[str] = None
    ) -> str:
        kind = JobKind(kind)
        now = self._clock()
        base_id = job_id or f"{kind.value}_{owner_id}_{int(now * 1000)}"
        async with self._lock:
            candidate = base_id
            suffix = 1
            while candidate in self._jobs:
                suffix += 1
                candidate = f"{base_id}_{suffix}"
            self._jobs[candidate] = Job(
                job_id=candidate,
                owner_id=owner_id,
                kind=kind,
                created_at=now,
                updated_at=now,
            )
        logger.info(
            "Created %s job %s for %s",
            kind.value,
            candidate,
            owner_id,
            extra={"job_id": candidate},
        )
        return candidate

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            return self._jobs.get(job_id)

    async def progress_view(self, job_id: str) -> Dict[str, Any]:
        """Client-facing progress record, ``status='not_found'`` for unknown ids."""
        job = await self.get(job_id)
        if job is None:
            return {"jobId": job_id, "progress": 0, "status": "not_found"}
        async with job.lock:
            return job.to_event()

    async def advance(
        self, job_id: str, stage: str, progress: int, message: str = ""
    ) -> bool:
        """Move a running job to ``stage``. Returns False when rejected."""
        job = await self.get(job_id)
        if job is None:
            logger.warning("advance on unknown job %s", job_id)
            return False
        progress = int(progress)
        async with job.lock:
            if job.status.is_terminal:
                logger.warning(
                    "Ignoring advance of terminal job %s to %s",
                    job_id,
                    stage,
                    extra={"job_id": job_id},
                )
                return False
            if progress < job.progress:
                logger.warning(
                    "Rejected progress regression for job %s: %s -> %s (%s)",
                    job_id,
                    job.progress,
                    progress,
                    stage,
                    extra={"job_id": job_id},
                )
                return False
            job.stage = stage
            job.progress = min(progress, 100)
            job.message = message
            job.updated_at = self._clock()
            await self._publish(job)
        return True

    async def complete(self, job_id: str, result: Any) -> bool:
        job = await self.get(job_id)
        if job is None:
            return False
        async with job.lock:
            if job.status.is_terminal:
                return False
            job.status = JobStatus.COMPLETED
            job.stage = "completed"
            job.progress = 100
            job.result = result
            job.message = "Job completed"
            job.updated_at = job.finished_at = self._clock()
            await self._publish(job)
        logger.info("Job %s completed", job_id, extra={"job_id": job_id})
        return True

    async def fail(self, job_id: str, error: Any) -> bool:
        job = await self.get(job_id)
        if job is None:
            return False
        async with job.lock:
            if job.status.is_terminal:
                return False
            job.status = JobStatus.FAILED
            job.error = str(error) or type(error).__name__
            job.message = "Job failed"
            job.updated_at = job.finished_at = self._clock()
            await self._publish(job)
        logger.error(
            "Job %s failed at stage %s: %s",
            job_id,
            job.stage,
            job.error,
            extra={"job_id": job_id},
        )
        return True

    async def sweep_stale(
        self, grace_s: float, running_ceiling_s: float = 3600.0
    ) -> Dict[str, List[str]]:
        """
        Purge terminal jobs finished more than ``grace_s`` ago and force-fail
        running jobs older than ``running_ceiling_s``.
        """
        now = self._clock()
        async with self._lock:
            purged = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status.is_terminal
                and job.finished_at is not None
                and now - job.finished_at > grace_s
            ]
            for job_id in purged:
                del self._jobs[job_id]
            overdue = [
                job_id
                for job_id, job in self._jobs.items()
                if not job.status.is_terminal and now - job.created_at > running_ceiling_s
            ]

        force_failed = []
        for job_id in overdue:
            if await self.fail(job_id, f"Job exceeded {int(running_ceiling_s)}s limit"):
                force_failed.append(job_id)
        for job_id in purged:
            await self._broadcaster.close_scope(job_id)

        if purged or force_failed:
            logger.info(
                "Job sweep purged %s jobs, force-failed %s",
                len(purged),
                len(force_failed),
            )
        return {"purged": purged, "force_failed": force_failed}

    async def counts(self) -> Dict[str, int]:
        async with self._lock:
            jobs = list(self._jobs.values())
        counts = {status.value: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status.value] += 1
        counts["total"] = len(jobs)
        return counts

    async def _publish(self, job: Job) -> None:
        """Caller holds ``job.lock``."""
        await self._broadcaster.publish(job.job_id, "job_progress", job.to_event())
