"""
Extraction worker: queue message -> scrape -> job result.

Per delivery:
  1. parse + validate the message (malformed -> dead-letter, never marked running)
  2. skip jobs that are already terminal (duplicate delivery), ack
  3. mark_running, scrape every target, upsert leads, mark_complete, ack
  4. an exception on a non-final attempt leaves the message unacked for
     redelivery; on the final attempt the job is failed and dead-lettered
"""

import json
import logging
import threading
import time
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from leadscraper.errors import InvalidTransitionError, LeadScraperError, NotFoundError, WorkerError
from leadscraper.job_store import JobStore
from leadscraper.lead_store import LeadStore
from leadscraper.models import TERMINAL, ScrapeMessage
from leadscraper.scraper import scrape_targets
from leadscraper.settings import Settings, settings as default_settings
from leadscraper.transport import Delivery, QueueTransport

logger = logging.getLogger(__name__)

# handle() outcomes
COMPLETED = "completed"
SKIPPED = "skipped"
RETRY = "retry"
FAILED = "failed"
DEAD_LETTERED = "dead_lettered"


def _peek_job_id(body: str) -> Optional[str]:
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    job_id = data.get("jobId") if isinstance(data, dict) else None
    return job_id if isinstance(job_id, str) and job_id else None


class ExtractionWorker:
    def __init__(
        self,
        store: JobStore,
        queue: QueueTransport,
        fetcher,
        leads: Optional[LeadStore] = None,
        settings: Settings = default_settings,
    ):
        self.store = store
        self.queue = queue
        self.fetcher = fetcher
        self.leads = leads
        self.settings = settings

    @property
    def max_receive_count(self) -> int:
        # the transport owns the redelivery budget; build_queue fills it from MAX_RECEIVE_COUNT
        return self.queue.max_receive_count

    def handle(self, delivery: Delivery) -> str:
        try:
            message = ScrapeMessage.model_validate_json(delivery.body)
        except PydanticValidationError as e:
            reason = f"malformed message: {e.error_count()} validation error(s)"
            self._fail_job(_peek_job_id(delivery.body), reason)
            self.queue.dead_letter(delivery, reason)
            return DEAD_LETTERED

        job_id = message.job_id
        job = self.store.get_job(job_id)
        if job is None:
            self.queue.dead_letter(delivery, f"unknown job {job_id}")
            return DEAD_LETTERED
        if job.status in TERMINAL:
            logger.info("Job %s already %s; duplicate delivery acked", job_id, job.status)
            self.queue.ack(delivery)
            return SKIPPED
        if delivery.receive_count > self.max_receive_count:
            reason = f"exceeded max receive count ({self.max_receive_count})"
            self._fail_job(job_id, reason)
            self.queue.dead_letter(delivery, reason)
            return DEAD_LETTERED

        try:
            self.store.mark_running(job_id)
            outcome = scrape_targets(
                message,
                self.fetcher,
                default_limit=self.settings.DEFAULT_URL_LIMIT,
                default_page_limit=self.settings.DEFAULT_PER_SITE_PAGE_LIMIT,
            )
            if self.leads is not None:
                self.leads.bulk_upsert(outcome.leads)
            self.store.mark_complete(
                job_id,
                [lead.model_dump(mode="json") for lead in outcome.leads],
                outcome.failures,
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            if delivery.receive_count < self.max_receive_count:
                logger.exception(
                    "Job %s attempt %d/%d failed; leaving for redelivery",
                    job_id, delivery.receive_count, self.max_receive_count,
                )
                return RETRY
            logger.exception("Job %s failed on final attempt", job_id)
            self._fail_job(job_id, error)
            self.queue.dead_letter(delivery, error)
            return FAILED

        self.queue.ack(delivery)
        return COMPLETED

    def _fail_job(self, job_id: Optional[str], reason: str) -> None:
        if not job_id:
            return
        try:
            self.store.mark_failed(job_id, reason)
        except (NotFoundError, InvalidTransitionError) as e:
            logger.warning("Could not mark job %s failed: %s", job_id, e)

    def run_once(self, max_messages: int = 1) -> int:
        deliveries = self.queue.receive(max_messages)
        for d in deliveries:
            self.handle(d)
        return len(deliveries)

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        logger.info("Worker started (max receive count %d)", self.max_receive_count)
        while not (stop_event and stop_event.is_set()):
            try:
                handled = self.run_once()
            except LeadScraperError:
                logger.exception("Worker iteration failed; backing off")
                handled = 0
            if not handled:
                time.sleep(self.settings.POLL_INTERVAL_S)
        logger.info("Worker stopped")


# ----- Lambda entrypoint (SQS event source, batch size 1) -----

_lambda_worker: Optional[ExtractionWorker] = None


def _build_default_worker() -> ExtractionWorker:
    from leadscraper.db import get_engine
    from leadscraper.fetcher import PageFetcher
    from leadscraper.transport import build_queue

    s = default_settings
    engine = get_engine()
    return ExtractionWorker(
        JobStore(engine),
        build_queue(s, engine),
        PageFetcher(timeout=s.FETCH_TIMEOUT_S, user_agent=s.USER_AGENT),
        LeadStore(engine, max_contacts=s.MAX_CONTACTS_PER_LEAD),
        s,
    )


def lambda_handler(event, context, worker: Optional[ExtractionWorker] = None):
    global _lambda_worker
    if worker is None:
        if _lambda_worker is None:
            _lambda_worker = _build_default_worker()
        worker = _lambda_worker

    for record in event.get("Records", []):
        delivery = Delivery(
            message_id=record.get("messageId", ""),
            receipt=record.get("receiptHandle", ""),
            body=record.get("body", ""),
            receive_count=int((record.get("attributes") or {}).get("ApproximateReceiveCount", 1)),
        )
        if worker.handle(delivery) == RETRY:
            # surfacing the error is what makes SQS redeliver
            raise WorkerError(f"message {delivery.message_id} will be retried")
    return {"status": "ok"}
