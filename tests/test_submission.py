import json
import threading
import time
from datetime import timedelta

import pytest
from conftest import StubFetcher, acme_pages

from leadscraper.errors import EnqueueError, ScrapeTimeoutError, StorageError, ValidationError
from leadscraper.fetcher import Page
from leadscraper.models import QUEUED, ScrapeRequest, SyncScrapeRequest
from leadscraper.submission import SubmissionService, clean_urls


class BrokenQueue:
    def enqueue(self, message):
        raise EnqueueError("SQS send error: AccessDenied")


class BrokenStore:
    def create_job(self, type, payload):
        raise StorageError("database error: disk I/O error")


class RecordingQueue:
    def __init__(self):
        self.sent = []

    def enqueue(self, message):
        self.sent.append(message)
        return "m-1"


class GatedFetcher:
    """Blocks every fetch until `release` is set."""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()

    def fetch(self, url):
        self.started.set()
        self.release.wait(5)
        return Page(url, 200, "<title>Slow Co</title>")


def test_clean_urls():
    assert clean_urls([" https://a.test ", "", "   ", "https://a.test", "https://b.test"]) == [
        "https://a.test", "https://b.test",
    ]
    assert clean_urls(None) == []


def test_submit_persists_then_enqueues(store, queue, test_settings):
    svc = SubmissionService(store, queue, settings=test_settings)
    out = svc.submit(ScrapeRequest(urls=["https://acme.test/", " https://acme.test/ "], industry="plumbing", deep=True))

    assert out["status"] == QUEUED
    job = store.get_job(out["jobId"])
    assert job.status == QUEUED
    assert job.payload == {"urls": ["https://acme.test/"], "industry": "plumbing", "deep": True}

    [d] = queue.receive()
    body = json.loads(d.body)
    assert body["jobType"] == "scrape"
    assert body["jobId"] == out["jobId"]
    assert body["urls"] == ["https://acme.test/"]


def test_submit_without_urls_creates_nothing(store, clock, test_settings):
    q = RecordingQueue()
    svc = SubmissionService(store, q, settings=test_settings)
    with pytest.raises(ValidationError, match="urls required"):
        svc.submit(ScrapeRequest(urls=[" ", ""]))
    assert q.sent == []
    assert store.list_stale_queued(clock() + timedelta(days=1)) == []


def test_submit_enqueue_failure_leaves_job_queued(store, clock, test_settings):
    svc = SubmissionService(store, BrokenQueue(), settings=test_settings)
    with pytest.raises(EnqueueError):
        svc.submit(ScrapeRequest(urls=["https://acme.test/"]))

    [job] = store.list_stale_queued(clock() + timedelta(days=1))
    assert job.status == QUEUED


def test_submit_storage_failure_enqueues_nothing(test_settings):
    q = RecordingQueue()
    svc = SubmissionService(BrokenStore(), q, settings=test_settings)
    with pytest.raises(StorageError):
        svc.submit(ScrapeRequest(urls=["https://acme.test/"]))
    assert q.sent == []


def test_scrape_now_returns_leads_and_upserts(store, leads, test_settings):
    svc = SubmissionService(store, RecordingQueue(), leads=leads, fetcher=StubFetcher(acme_pages()), settings=test_settings)
    out = svc.scrape_now(SyncScrapeRequest(urls=["https://acme.test/", "https://bad.invalid/"]))

    assert out["status"] == "complete"
    assert out["newLeads"] == 1
    assert out["extracted"] == 1
    assert out["processedPages"] == 3
    assert out["leadsPreview"] == ["Acme Plumbing"]
    assert out["errors"][0]["url"] == "https://bad.invalid/"
    assert out["leads"][0]["company_name"] == "Acme Plumbing"
    assert [l.company_name for l in leads.list_leads()] == ["Acme Plumbing"]


def test_scrape_now_requires_urls(store, test_settings):
    svc = SubmissionService(store, RecordingQueue(), fetcher=StubFetcher(), settings=test_settings)
    with pytest.raises(ValidationError, match="urls required"):
        svc.scrape_now(SyncScrapeRequest(query="plumbers in austin"))


def test_scrape_now_without_fetcher(store, test_settings):
    svc = SubmissionService(store, RecordingQueue(), settings=test_settings)
    with pytest.raises(ValidationError):
        svc.scrape_now(SyncScrapeRequest(urls=["https://acme.test/"]))


def test_scrape_now_times_out(store, leads, test_settings):
    fetcher = GatedFetcher()
    svc = SubmissionService(store, RecordingQueue(), leads=leads, fetcher=fetcher, settings=test_settings)
    started = time.monotonic()
    try:
        with pytest.raises(ScrapeTimeoutError):
            svc.scrape_now(SyncScrapeRequest(urls=["https://slow.test/"]))
        assert time.monotonic() - started < 3
        assert fetcher.started.is_set()
    finally:
        fetcher.release.set()

    assert leads.list_leads() == []
