from datetime import datetime, timedelta

import pytest

from leadscraper.db import init_db, make_engine
from leadscraper.errors import FetchError
from leadscraper.fetcher import Page
from leadscraper.job_store import JobStore
from leadscraper.lead_store import LeadStore
from leadscraper.settings import Settings
from leadscraper.transport import DatabaseQueue


ACME_HOME = """
<html><head>
  <title>Acme Plumbing | Home</title>
  <meta property="og:site_name" content="Acme Plumbing">
</head><body>
  <h1>Welcome</h1>
  <a href="/about-us">About</a>
  <a href="/contact#form">Contact us</a>
  <a href="https://facebook.com/acme">Facebook</a>
  <p>Call <a href="tel:+1 (512) 555-0100">512-555-0100</a></p>
  <script>var support = "noreply@sentry.io";</script>
</body></html>
"""

ACME_ABOUT = """
<html><body>
  <h2>Jane Doe - CEO</h2>
  <p>Reach Jane at jane.doe@acmeplumbing.com</p>
  <h3>John Smith</h3>
  <p>Operations Manager</p>
  <a href="https://www.linkedin.com/company/acme-plumbing">LinkedIn</a>
</body></html>
"""

ACME_CONTACT = """
<html><body>
  <h2>Contact</h2>
  <p>Email: info [at] acmeplumbing [dot] com</p>
  <p>Address</p>
  <p>100 Main Street</p>
  <p>Austin, TX 78701</p>
</body></html>
"""

SIMPLE_PAGE = "<html><head><title>{name}</title></head><body><p>hello</p></body></html>"


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 5, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds=0, minutes=0):
        self.now += timedelta(seconds=seconds, minutes=minutes)


class StubFetcher:
    """url -> html, or an exception instance to raise. Unknown urls fail like a dead host."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        item = self.pages.get(url)
        if item is None:
            raise FetchError(url, "ConnectionError: name or service not known")
        if isinstance(item, Exception):
            raise item
        return Page(url=url, status=200, html=item)


def acme_pages():
    return {
        "https://acme.test/": ACME_HOME,
        "https://acme.test/about-us": ACME_ABOUT,
        "https://acme.test/contact": ACME_CONTACT,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        QUEUE_BACKEND="db",
        VISIBILITY_TIMEOUT_S=120,
        MAX_RECEIVE_COUNT=3,
        SYNC_SCRAPE_TIMEOUT_S=1,
        STALE_JOB_MINUTES=15,
        MAX_ENQUEUE_ATTEMPTS=3,
        POLL_INTERVAL_S=0.0,
    )


@pytest.fixture
def store(engine, clock):
    return JobStore(engine, clock=clock)


@pytest.fixture
def queue(engine, clock):
    return DatabaseQueue(engine, visibility_timeout=120, max_receive_count=3, clock=clock)


@pytest.fixture
def leads(engine):
    return LeadStore(engine)


@pytest.fixture
def fetcher():
    pages = acme_pages()
    pages["https://example.com/a"] = SIMPLE_PAGE.format(name="Example Co")
    return StubFetcher(pages)
