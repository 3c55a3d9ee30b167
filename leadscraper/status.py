from datetime import datetime
from typing import Dict, Optional

from leadscraper.errors import NotFoundError, ValidationError
from leadscraper.job_store import JobStore


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


class StatusService:
    """Read-only job projection for polling clients. Never waits on the worker."""

    def __init__(self, store: JobStore):
        self.store = store

    def get_status(self, job_id: Optional[str]) -> Dict:
        if not job_id:
            raise ValidationError("id param required")
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("not found")
        view = {
            "jobId": job.job_id,
            "status": job.status,
            "started_at": _iso(job.started_at),
            "finished_at": _iso(job.finished_at),
        }
        if job.error:
            view["error"] = job.error
        return view
