"""
Sweep for jobs whose queue message never arrived (enqueue failed after the
job row was written, or the message was lost). Stale `queued` jobs are
re-enqueued until MAX_ENQUEUE_ATTEMPTS, then marked failed.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from leadscraper.errors import EnqueueError
from leadscraper.job_store import JobStore
from leadscraper.models import FAILED, QUEUED, ScrapeMessage, utcnow
from leadscraper.settings import Settings, settings as default_settings
from leadscraper.transport import QueueTransport

logger = logging.getLogger(__name__)


def reconcile_stale_jobs(
    store: JobStore,
    queue: QueueTransport,
    settings: Settings = default_settings,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    cutoff = (now or utcnow()) - timedelta(minutes=settings.STALE_JOB_MINUTES)
    counts = {"requeued": 0, "failed": 0, "errors": 0}

    for job in store.list_stale_queued(cutoff):
        # the listing is a snapshot; a worker may have picked the job up since
        if job.enqueue_attempts >= settings.MAX_ENQUEUE_ATTEMPTS:
            reason = f"never picked up after {job.enqueue_attempts} enqueue attempt(s)"
            if store.mark_failed(job.job_id, reason, only_if=QUEUED).status == FAILED:
                counts["failed"] += 1
            continue

        if store.record_enqueue(job.job_id) is None:
            logger.info("Job %s picked up before re-enqueue; skipped", job.job_id)
            continue
        try:
            queue.enqueue(ScrapeMessage.for_job(job))
        except EnqueueError as e:
            logger.error("Re-enqueue of job %s failed: %s", job.job_id, e)
            counts["errors"] += 1
            continue
        logger.info("Re-enqueued stale job %s (attempt %d)", job.job_id, job.enqueue_attempts + 1)
        counts["requeued"] += 1

    if any(counts.values()):
        logger.info("Reconcile sweep: %s", counts)
    return counts
