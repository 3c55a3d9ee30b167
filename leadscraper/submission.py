"""
Request-facing side of the pipeline.
- submit(): validate, write the job, enqueue, return the handle (never waits)
- scrape_now(): small interactive batches scraped in-process under a hard
  wall-clock budget, bypassing the queue
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Dict, Iterable, List, Optional

from leadscraper.errors import EnqueueError, ScrapeTimeoutError, ValidationError
from leadscraper.job_store import JobStore
from leadscraper.lead_store import LeadStore
from leadscraper.models import JOB_TYPE_SCRAPE, QUEUED, ScrapeMessage, ScrapeRequest, SyncScrapeRequest
from leadscraper.scraper import scrape_targets
from leadscraper.settings import Settings, settings as default_settings
from leadscraper.transport import QueueTransport

logger = logging.getLogger(__name__)


def clean_urls(urls: Optional[Iterable[str]]) -> List[str]:
    """Trim, drop blanks and repeats; submission order kept."""
    out: List[str] = []
    for u in urls or []:
        u = (u or "").strip()
        if u and u not in out:
            out.append(u)
    return out


class SubmissionService:
    def __init__(
        self,
        store: JobStore,
        queue: QueueTransport,
        leads: Optional[LeadStore] = None,
        fetcher=None,
        settings: Settings = default_settings,
    ):
        self.store = store
        self.queue = queue
        self.leads = leads
        self.fetcher = fetcher
        self.settings = settings

    def submit(self, request: ScrapeRequest) -> Dict:
        urls = clean_urls(request.urls)
        if not urls:
            raise ValidationError("urls required")

        payload = request.model_copy(update={"urls": urls}).as_payload()
        job = self.store.create_job(JOB_TYPE_SCRAPE, payload)  # StorageError: nothing enqueued

        try:
            self.queue.enqueue(ScrapeMessage.for_job(job))
        except EnqueueError:
            logger.error("Enqueue failed for job %s; record left queued for the reconcile sweep", job.job_id)
            raise
        return {"status": QUEUED, "jobId": job.job_id}

    def scrape_now(self, request: SyncScrapeRequest) -> Dict:
        urls = clean_urls(request.urls)
        if not urls:
            # free-text `query` search has no target source yet
            raise ValidationError("urls required")
        if self.fetcher is None:
            raise ValidationError("synchronous scraping is not configured")

        params = request.model_copy(update={"urls": urls})
        budget = self.settings.SYNC_SCRAPE_TIMEOUT_S
        deadline = time.monotonic() + budget

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-scrape")
        future = executor.submit(
            scrape_targets,
            params,
            self.fetcher,
            default_limit=self.settings.DEFAULT_URL_LIMIT,
            default_page_limit=self.settings.DEFAULT_PER_SITE_PAGE_LIMIT,
            deadline=deadline,
        )
        try:
            outcome = future.result(timeout=budget)
        except ScrapeTimeoutError:
            raise
        except FuturesTimeout:
            raise ScrapeTimeoutError(f"scrape exceeded {budget}s budget") from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        inserted = self.leads.bulk_upsert(outcome.leads) if self.leads else 0
        return {
            "status": "complete",
            "newLeads": inserted,
            "processedPages": outcome.processed_pages,
            "extracted": len(outcome.leads),
            "errors": outcome.failures,
            "leadsPreview": [lead.company_name for lead in outcome.leads[:10]],
            "leads": [lead.model_dump(mode="json") for lead in outcome.leads],
        }
