"""
Batch scrape: one lead per target site.
- root page first, then up to `perSitePageLimit` same-site about/team/contact pages
- a failing target becomes a {url, message} failure record; the batch goes on
- leads deduplicated by company name, first one wins
"""

from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from leadscraper.errors import FetchError, ScrapeTimeoutError
from leadscraper.extractor import extract_lead, parse_html
from leadscraper.models import LeadRecord, ScrapeRequest

logger = logging.getLogger(__name__)

LINK_KEYWORDS = ("about", "team", "contact", "company", "who-we-are", "people")
DEFAULT_URL_LIMIT = 20
DEFAULT_PER_SITE_PAGE_LIMIT = 5


@dataclass
class ScrapeOutcome:
    leads: List[LeadRecord] = field(default_factory=list)
    failures: List[Dict] = field(default_factory=list)
    processed_pages: int = 0


def strip_fragment(url: str) -> str:
    u = urllib.parse.urlparse(url)
    return urllib.parse.urlunparse((u.scheme, u.netloc, u.path, u.params, u.query, ""))


def normalize_root(raw: str) -> str:
    """Scheme defaulted to https; paths deeper than two segments collapse to '/'."""
    s = (raw or "").strip()
    if "://" not in s:
        s = "https://" + s
    u = urllib.parse.urlparse(s)
    if u.scheme not in ("http", "https") or not u.netloc:
        raise FetchError(raw, "invalid url")
    path, query = u.path or "/", u.query
    if len([seg for seg in path.split("/") if seg]) > 2:
        path, query = "/", ""
    return urllib.parse.urlunparse((u.scheme, u.netloc, path, "", query, ""))


def internal_links(base_url: str, html: str, limit: int) -> List[str]:
    """Same-origin links whose href or anchor text mentions a contact-ish keyword."""
    if limit <= 0:
        return []
    origin = urllib.parse.urlparse(base_url).netloc.lower()
    out: List[str] = []
    for a in parse_html(html).find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        absolute = strip_fragment(urllib.parse.urljoin(base_url, href))
        if urllib.parse.urlparse(absolute).netloc.lower() != origin:
            continue
        text = a.get_text(" ", strip=True).lower()
        if not any(k in absolute.lower() or k in text for k in LINK_KEYWORDS):
            continue
        if absolute not in out and absolute != strip_fragment(base_url):
            out.append(absolute)
        if len(out) >= limit:
            break
    return out


def _check_deadline(deadline: Optional[float], clock: Callable[[], float]) -> None:
    if deadline is not None and clock() > deadline:
        raise ScrapeTimeoutError("scrape exceeded its time budget")


def crawl_site(
    root_url: str,
    fetcher,
    *,
    extra_pages: int,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Tuple[list, List[Dict]]:
    """Fetch the root and up to `extra_pages` internal pages. Root failure raises FetchError."""
    _check_deadline(deadline, clock)
    root = fetcher.fetch(root_url)
    pages = [root]
    failures: List[Dict] = []
    for link in internal_links(root.url, root.html, extra_pages):
        _check_deadline(deadline, clock)
        try:
            pages.append(fetcher.fetch(link))
        except FetchError as e:
            logger.warning("Sub-page fetch failed for %s: %s", e.url, e)
            failures.append(e.as_record())
    return pages, failures


def scrape_targets(
    params: ScrapeRequest,
    fetcher,
    *,
    default_limit: int = DEFAULT_URL_LIMIT,
    default_page_limit: int = DEFAULT_PER_SITE_PAGE_LIMIT,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ScrapeOutcome:
    outcome = ScrapeOutcome()
    extra_pages = 0 if params.deep is False else (
        params.per_site_page_limit if params.per_site_page_limit is not None else default_page_limit
    )
    seen_names = set()

    for target in params.urls[: params.limit or default_limit]:
        try:
            root = normalize_root(target)
            pages, page_failures = crawl_site(root, fetcher, extra_pages=extra_pages, deadline=deadline, clock=clock)
        except FetchError as e:
            logger.warning("Target %s failed: %s", target, e)
            outcome.failures.append({"url": target, "message": str(e)})
            continue

        outcome.processed_pages += len(pages)
        outcome.failures.extend(page_failures)

        lead = extract_lead(pages, strip_fragment(root), industry=params.industry, location=params.location)
        if lead is None:
            outcome.failures.append({"url": target, "message": "Company name not detected"})
            continue
        key = lead.company_name.lower()
        if key in seen_names:
            logger.info("Duplicate company %r from %s dropped", lead.company_name, target)
            continue
        seen_names.add(key)
        outcome.leads.append(lead)

    _check_deadline(deadline, clock)
    logger.info(
        "Scraped %d target(s): %d lead(s), %d failure(s), %d page(s)",
        min(len(params.urls), params.limit or default_limit),
        len(outcome.leads), len(outcome.failures), outcome.processed_pages,
    )
    return outcome
