import logging
from dataclasses import dataclass
from typing import Optional

import requests

from leadscraper.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class Page:
    url: str
    status: int
    html: str


class PageFetcher:
    """
    Thin requests.Session wrapper: one GET per page, redirects followed.
    Anything that is not a 200 HTML response raises FetchError.
    """

    def __init__(self, timeout: int = 15, user_agent: Optional[str] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def fetch(self, url: str) -> Page:
        try:
            r = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        if r.status_code != 200:
            raise FetchError(url, f"HTTP {r.status_code}", status=r.status_code)

        ctype = (r.headers.get("Content-Type") or "").lower()
        if ctype and "html" not in ctype and "xml" not in ctype:
            raise FetchError(url, f"unsupported content type {ctype.split(';')[0]}", status=r.status_code)

        logger.debug("Fetched %s (%d bytes)", url, len(r.content or b""))
        return Page(url=r.url or url, status=r.status_code, html=r.text)

    def close(self) -> None:
        self.session.close()
