"""
Durable job records (lead_jobs table).
- create_job assigns the id and snapshots the payload
- mark_* transitions are idempotent so duplicate queue deliveries are harmless
- nothing leaves a terminal state
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import update
from sqlmodel import select

from leadscraper.db import session_scope
from leadscraper.errors import InvalidTransitionError, NotFoundError
from leadscraper.models import (
    COMPLETE,
    FAILED,
    QUEUED,
    RUNNING,
    TERMINAL,
    ScrapeJob,
    utcnow,
)

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(self, engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._clock = clock

    def create_job(self, type: str, payload: Dict) -> ScrapeJob:
        now = self._clock()
        job = ScrapeJob(
            type=type,
            payload=dict(payload),
            status=QUEUED,
            enqueue_attempts=1,  # the submitter enqueues right after this write
            created_at=now,
            updated_at=now,
        )
        with session_scope(self.engine) as s:
            s.add(job)
            s.commit()
            s.refresh(job)
        logger.info("Job %s created (type=%s, urls=%d)", job.job_id, type, len(payload.get("urls") or []))
        return job

    def get_job(self, job_id: str) -> Optional[ScrapeJob]:
        with session_scope(self.engine) as s:
            return s.get(ScrapeJob, job_id)

    def mark_running(self, job_id: str) -> ScrapeJob:
        def apply(job: ScrapeJob, now: datetime) -> bool:
            if job.status == RUNNING:
                return False  # redelivery while running; keep the first started_at
            if job.status in TERMINAL:
                logger.info("Job %s is already %s; not resuming", job.job_id, job.status)
                return False
            job.status = RUNNING
            if job.started_at is None:
                job.started_at = max(now, job.created_at)
            return True

        return self._transition(job_id, RUNNING, apply)

    def mark_complete(self, job_id: str, result: List[Dict], failures: Optional[List[Dict]] = None) -> ScrapeJob:
        def apply(job: ScrapeJob, now: datetime) -> bool:
            if job.status == COMPLETE:
                return False
            if job.status != RUNNING:
                raise InvalidTransitionError(f"job {job.job_id}: cannot complete from {job.status}")
            job.status = COMPLETE
            job.result = list(result)
            job.failures = list(failures or [])
            job.error = None
            job.finished_at = self._finish_time(job, now)
            return True

        return self._transition(job_id, COMPLETE, apply)

    def mark_failed(self, job_id: str, error: str, only_if: Optional[str] = None) -> ScrapeJob:
        """Fail the job. With `only_if`, a job no longer in that status is left as is."""

        def apply(job: ScrapeJob, now: datetime) -> bool:
            if job.status == FAILED:
                return False
            if only_if is not None and job.status != only_if:
                logger.info("Job %s is %s, not %s; not failing it", job.job_id, job.status, only_if)
                return False
            if job.status == COMPLETE:
                raise InvalidTransitionError(f"job {job.job_id}: cannot fail a complete job")
            job.status = FAILED
            job.error = error or "error"
            job.result = None
            job.failures = None
            job.finished_at = self._finish_time(job, now)
            return True

        return self._transition(job_id, FAILED, apply)

    def record_enqueue(self, job_id: str) -> Optional[ScrapeJob]:
        """Count a re-enqueue of a still-queued job; None once a worker has it."""
        with session_scope(self.engine) as s:
            self._lock_row(s, job_id)
            stmt = select(ScrapeJob).where(ScrapeJob.job_id == job_id).with_for_update()
            job = s.exec(stmt).first()
            if job is None:
                raise NotFoundError(f"job {job_id} not found")
            if job.status != QUEUED:
                return None
            job.enqueue_attempts += 1
            job.updated_at = self._clock()
            s.add(job)
            s.commit()
            s.refresh(job)
            return job

    def list_stale_queued(self, older_than: datetime) -> List[ScrapeJob]:
        """Queued jobs untouched since `older_than` (no pickup, no re-enqueue)."""
        with session_scope(self.engine) as s:
            stmt = (
                select(ScrapeJob)
                .where(ScrapeJob.status == QUEUED)
                .where(ScrapeJob.updated_at < older_than)
                .order_by(ScrapeJob.created_at)
            )
            return list(s.exec(stmt).all())

    # ----- internals -----

    @staticmethod
    def _lock_row(s, job_id: str) -> None:
        # a no-op UPDATE takes the row's write lock before it is read;
        # SELECT ... FOR UPDATE alone is ignored by sqlite
        s.connection().execute(
            update(ScrapeJob).where(ScrapeJob.job_id == job_id).values(status=ScrapeJob.status)
        )

    @staticmethod
    def _finish_time(job: ScrapeJob, now: datetime) -> datetime:
        floor = job.started_at or job.created_at
        return max(now, floor)

    def _transition(self, job_id: str, target: str, apply) -> ScrapeJob:
        with session_scope(self.engine) as s:
            self._lock_row(s, job_id)
            stmt = select(ScrapeJob).where(ScrapeJob.job_id == job_id).with_for_update()
            job = s.exec(stmt).first()
            if job is None:
                raise NotFoundError(f"job {job_id} not found")
            old = job.status
            now = self._clock()
            if not apply(job, now):
                return job
            job.updated_at = max(now, job.updated_at)
            s.add(job)
            s.commit()
            s.refresh(job)
        logger.info("Job %s: %s -> %s", job_id, old, target)
        return job
