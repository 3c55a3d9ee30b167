import pytest
from conftest import ACME_HOME, SIMPLE_PAGE, StubFetcher, acme_pages

from leadscraper.errors import FetchError, ScrapeTimeoutError
from leadscraper.models import ScrapeRequest
from leadscraper.scraper import internal_links, normalize_root, scrape_targets


@pytest.mark.parametrize("raw,expected", [
    ("acme.test", "https://acme.test/"),
    ("  http://acme.test  ", "http://acme.test/"),
    ("https://acme.test/a/b?x=1", "https://acme.test/a/b?x=1"),
    ("https://acme.test/blog/2024/post?x=1", "https://acme.test/"),
    ("https://acme.test/#top", "https://acme.test/"),
])
def test_normalize_root(raw, expected):
    assert normalize_root(raw) == expected


@pytest.mark.parametrize("raw", ["", "ftp://acme.test/file", "https://"])
def test_normalize_root_rejects(raw):
    with pytest.raises(FetchError):
        normalize_root(raw)


def test_internal_links_same_origin_keywords_only():
    links = internal_links("https://acme.test/", ACME_HOME, 5)
    assert links == ["https://acme.test/about-us", "https://acme.test/contact"]
    assert internal_links("https://acme.test/", ACME_HOME, 1) == ["https://acme.test/about-us"]
    assert internal_links("https://acme.test/", ACME_HOME, 0) == []


def test_scrape_deep_crawls_subpages(fetcher):
    outcome = scrape_targets(ScrapeRequest(urls=["https://acme.test/"]), fetcher)

    assert [l.company_name for l in outcome.leads] == ["Acme Plumbing"]
    assert outcome.processed_pages == 3
    assert outcome.failures == []
    assert outcome.leads[0].email == "jane.doe@acmeplumbing.com"


def test_scrape_shallow_fetches_root_only(fetcher):
    outcome = scrape_targets(ScrapeRequest(urls=["https://acme.test/"], deep=False), fetcher)

    assert fetcher.calls == ["https://acme.test/"]
    assert outcome.processed_pages == 1
    assert outcome.leads[0].company_name == "Acme Plumbing"


def test_scrape_per_site_page_limit(fetcher):
    scrape_targets(ScrapeRequest(urls=["https://acme.test/"], per_site_page_limit=1), fetcher)
    assert fetcher.calls == ["https://acme.test/", "https://acme.test/about-us"]


def test_scrape_target_failure_is_recorded(fetcher):
    outcome = scrape_targets(ScrapeRequest(urls=["https://example.com/a", "https://bad.invalid/"]), fetcher)

    assert [l.company_name for l in outcome.leads] == ["Example Co"]
    assert outcome.failures == [
        {"url": "https://bad.invalid/", "message": "ConnectionError: name or service not known"},
    ]


def test_scrape_invalid_url_is_a_failure_not_a_crash(fetcher):
    outcome = scrape_targets(ScrapeRequest(urls=["ftp://acme.test/x"]), fetcher)
    assert outcome.leads == []
    assert outcome.failures == [{"url": "ftp://acme.test/x", "message": "invalid url"}]
    assert fetcher.calls == []


def test_scrape_subpage_failure_keeps_lead():
    pages = acme_pages()
    del pages["https://acme.test/contact"]
    outcome = scrape_targets(ScrapeRequest(urls=["https://acme.test/"]), StubFetcher(pages))

    assert [l.company_name for l in outcome.leads] == ["Acme Plumbing"]
    assert outcome.processed_pages == 2
    assert [f["url"] for f in outcome.failures] == ["https://acme.test/contact"]


def test_scrape_dedupes_by_company_name(fetcher):
    outcome = scrape_targets(ScrapeRequest(urls=["https://acme.test/", "acme.test"], deep=False), fetcher)
    assert len(outcome.leads) == 1
    assert outcome.processed_pages == 2


def test_scrape_respects_limit():
    pages = {f"https://site{i}.test/": SIMPLE_PAGE.format(name=f"Site {i}") for i in range(5)}
    f = StubFetcher(pages)
    outcome = scrape_targets(ScrapeRequest(urls=list(pages), limit=2), f)
    assert [l.company_name for l in outcome.leads] == ["Site 0", "Site 1"]

    f2 = StubFetcher(pages)
    scrape_targets(ScrapeRequest(urls=list(pages)), f2, default_limit=3)
    assert len(f2.calls) == 3


def test_scrape_deadline(fetcher):
    with pytest.raises(ScrapeTimeoutError):
        scrape_targets(ScrapeRequest(urls=["https://acme.test/"]), fetcher, deadline=10.0, clock=lambda: 11.0)
    assert fetcher.calls == []


def test_deadline_passed_during_last_fetch_raises_before_summary(fetcher, caplog):
    ticks = iter([0.0, 20.0])
    with caplog.at_level("INFO", logger="leadscraper.scraper"):
        with pytest.raises(ScrapeTimeoutError):
            scrape_targets(
                ScrapeRequest(urls=["https://acme.test/"], deep=False),
                fetcher,
                deadline=10.0,
                clock=lambda: next(ticks),
            )
    assert not any(r.getMessage().startswith("Scraped") for r in caplog.records)
