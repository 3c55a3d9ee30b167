"""
Best-effort lead extraction from fetched HTML.
Every helper is pure: HTML/text in, strings out. Nothing here raises for
"not found"; missing fields come back as None or an empty list.
"""

from __future__ import annotations

import html
import re
import urllib.parse
from typing import Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from leadscraper.models import ContactRecord, LeadRecord

_EMAIL_RE = re.compile(r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}\b")
_PHONE_RE = re.compile(r"(\+?\d[\d\s().-]{8,}\d)")
_CITY_STATE_RE = re.compile(r"\b([A-Z][A-Za-z .'-]{2,}),\s*([A-Z]{2})\b")
_LINKEDIN_RE = re.compile(r"https?://([a-z]{2,3}\.)?linkedin\.com/[a-z0-9_\-/]+", re.I)
_TWITTER_RE = re.compile(r"https?://(?:www\.)?(?:twitter|x)\.com/[a-z0-9_]+", re.I)
_NAME_WORD_RE = re.compile(r"^[A-Za-z'.]{2,}$")
_CONTACT_LINE_RE = re.compile(
    r"([A-Z][A-Za-z'.]+\s+[A-Z][A-Za-z'.]+)(?:\s*[–—:,|\-]+\s*(.{2,80}))?"
)

_OBFUSCATED = [
    (re.compile(r"\s*\[\s*at\s*\]\s*", re.I), "@"),
    (re.compile(r"\s*\(\s*at\s*\)\s*", re.I), "@"),
    (re.compile(r"\s*\[\s*dot\s*\]\s*", re.I), "."),
    (re.compile(r"\s*\(\s*dot\s*\)\s*", re.I), "."),
]

# template / vendor addresses that are never a lead
_JUNK_DOMAIN_SUBSTR = (
    "example.",
    "sentry.io",
    "sentry-next.",
    "wixpress.com",
    "godaddy.com",
    "domain.com",
)
_BAD_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js")

TITLE_WORDS = (
    "founder", "co-founder", "ceo", "chief", "officer", "cto", "cfo", "coo", "cmo",
    "president", "director", "manager", "lead", "head", "owner", "partner",
)

# capitalised headings that look like names but are navigation
_NOT_NAME_WORDS = {
    "about", "contact", "our", "us", "team", "services", "home", "welcome", "get",
    "in", "touch", "meet", "company", "people", "who", "we", "are", "the", "find",
}

LOCATION_MARKERS = ("address", "location", "headquarters")
MAX_CONTACTS = 10


def parse_html(raw: str) -> BeautifulSoup:
    return BeautifulSoup(raw or "", "html.parser")


def visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


# ---------- company ----------

def simplify_name(name: str) -> str:
    out = re.sub(r"\s+\|.*$", "", name or "")
    out = re.sub(r"•.*$", "", out)
    return re.sub(r"\s+", " ", out).strip()[:120]


def hostname_of(url: str) -> str:
    host = (urllib.parse.urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def company_name(soup: BeautifulSoup, url: str) -> Optional[str]:
    for attrs in ({"property": "og:site_name"}, {"property": "og:title"}):
        tag = soup.find("meta", attrs=attrs)
        content = (tag.get("content") or "").strip() if tag else ""
        if content:
            return simplify_name(content) or None
    if soup.title and soup.title.get_text(strip=True):
        return simplify_name(soup.title.get_text(" ", strip=True)) or None
    return hostname_of(url) or None


# ---------- emails / phones ----------

def _deobfuscate(text: str) -> str:
    for rx, repl in _OBFUSCATED:
        text = rx.sub(repl, text)
    return text


def _clean_email(raw: str) -> str:
    s = urllib.parse.unquote((raw or "").strip())
    return s.strip(" \t\r\n\"'<>[](){}.,;:").lower()


def _is_junk_email(e: str) -> bool:
    if not e or "@" not in e or any(e.endswith(suf) for suf in _BAD_SUFFIXES):
        return True
    domain = e.split("@", 1)[1]
    return any(bad in domain for bad in _JUNK_DOMAIN_SUBSTR)


def extract_emails(raw_html: str) -> List[str]:
    """Emails in first-seen order, mailto: targets included, junk filtered."""
    if not raw_html:
        return []
    text = _deobfuscate(html.unescape(raw_html))

    found: Dict[str, None] = {}
    candidates = list(_EMAIL_RE.findall(text))
    candidates += [m.split("?")[0] for m in re.findall(r"mailto:([^\"'\s>]+)", text, flags=re.I)]
    for raw in candidates:
        e = _clean_email(raw)
        if _EMAIL_RE.fullmatch(e) and not _is_junk_email(e):
            found.setdefault(e, None)

    # "20info@x.com" next to "info@x.com" is a URL-encoding artifact
    emails = list(found)
    return [e for e in emails if not any(e[:n].isdigit() and e[n:] in found for n in (1, 2, 3))]


def normalize_phone(raw: str) -> str:
    return re.sub(r"[^+\d]", "", raw or "")[:18]


def extract_phones(soup: BeautifulSoup, text: str) -> List[str]:
    found: Dict[str, None] = {}
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if href.lower().startswith("tel:"):
            found.setdefault(normalize_phone(href[4:]), None)
    for m in _PHONE_RE.findall(text or ""):
        found.setdefault(normalize_phone(m), None)
    return [p for p in found if len(p.lstrip("+")) >= 10]


# ---------- location ----------

def extract_location(text: str) -> Optional[str]:
    lower = (text or "").lower()
    hits = [i for i in (lower.find(m) for m in LOCATION_MARKERS) if i > -1]
    if not hits:
        return None
    idx = min(hits)
    m = _CITY_STATE_RE.search(text[idx:idx + 400])
    if not m:
        return None
    return f"{m.group(1).strip()}, {m.group(2)}"


# ---------- people ----------

def looks_like_name(s: str) -> bool:
    words = (s or "").split()
    if not words or len(words) > 4:
        return False
    if any(w.lower() in _NOT_NAME_WORDS for w in words):
        return False
    return all(_NAME_WORD_RE.match(w) for w in words)


def contains_title_word(text: str) -> bool:
    low = (text or "").lower()
    return any(w in low for w in TITLE_WORDS)


def shorten_title(t: str) -> str:
    return " ".join(t.split()[:8])


def _headings(soup: BeautifulSoup):
    return soup.find_all(["h1", "h2", "h3", "h4"])


def extract_person_and_title(soup: BeautifulSoup) -> Optional[Tuple[str, str]]:
    for h in _headings(soup):
        text = h.get_text(" ", strip=True)
        if len(text) < 3 or len(text) > 120 or len(text.split()) > 12:
            continue
        parts = [p.strip() for p in re.split(r"[–—,:|\-]", text) if p.strip()]
        if len(parts) >= 2:
            name, title = parts[0], " ".join(" ".join(parts[1:]).split())
            if looks_like_name(name) and contains_title_word(title):
                return " ".join(name.split()), shorten_title(title)
        if contains_title_word(text):
            guess = re.sub(r"\b(CEO|CTO|CFO|COO|CMO)\b.*$", "", text.split(",")[0], flags=re.I).strip()
            if looks_like_name(guess):
                title = text.replace(guess, "", 1).lstrip(" ,-–").strip()
                if title:
                    return " ".join(guess.split()), shorten_title(title)
    return None


def extract_social_profiles(raw_html: str) -> Dict[str, Optional[str]]:
    li = _LINKEDIN_RE.search(raw_html or "")
    tw = _TWITTER_RE.search(raw_html or "")
    return {"linkedin": li.group(0) if li else None, "twitter": tw.group(0) if tw else None}


def extract_contacts(soup: BeautifulSoup, emails: Sequence[str], limit: int = MAX_CONTACTS) -> List[ContactRecord]:
    """Heading-derived people: "Jane Doe - CEO" or <h3>Jane Doe</h3><p>CEO</p>."""
    out: List[ContactRecord] = []
    seen = set()
    for h in _headings(soup):
        line = h.get_text(" ", strip=True)[:160]
        m = _CONTACT_LINE_RE.search(line)
        if not m:
            continue
        name = " ".join(m.group(1).split())
        if not looks_like_name(name) or name.lower() in seen:
            continue
        title = (m.group(2) or "").strip()
        if not title:
            sib = h.find_next_sibling()
            sib_text = sib.get_text(" ", strip=True)[:80] if sib else ""
            if contains_title_word(sib_text):
                title = sib_text
        dotted = line.lower().replace(" ", ".")
        local_hits = [e for e in emails if len(e.split("@")[0]) >= 3 and e.split("@")[0] in dotted]
        seen.add(name.lower())
        out.append(ContactRecord(
            name=name,
            title=shorten_title(title) if title else None,
            email=local_hits[0] if local_hits else None,
        ))
        if len(out) >= limit:
            break
    return out


# ---------- lead ----------

def extract_lead(
    pages: Sequence,
    website_url: str,
    *,
    industry: Optional[str] = None,
    location: Optional[str] = None,
) -> Optional[LeadRecord]:
    """Fold every fetched page of one site into a single LeadRecord.

    `pages` are fetcher.Page objects, root page first. Returns None when no
    company name can be determined.
    """
    if not pages:
        return None

    first = pages[0]
    soups = [parse_html(p.html) for p in pages]
    name = company_name(soups[0], first.url)
    if not name:
        return None

    raw = "\n".join(f"<!-- PAGE:{p.url} -->\n{p.html}" for p in pages)
    emails = extract_emails(raw)
    socials = extract_social_profiles(raw)

    texts: List[str] = []
    phones: List[str] = []
    person = None
    contacts: List[ContactRecord] = []
    for soup in soups:
        text = visible_text(soup)
        texts.append(text)
        phones.extend(p for p in extract_phones(soup, text) if p not in phones)
        person = person or extract_person_and_title(soup)
        for c in extract_contacts(soup, emails):
            if len(contacts) < MAX_CONTACTS and all(c.name.lower() != o.name.lower() for o in contacts):
                contacts.append(c)

    for c in contacts:
        c.linkedin_url = socials["linkedin"]
        c.twitter_url = socials["twitter"]

    return LeadRecord(
        company_name=name,
        website_url=website_url,
        industry=industry,
        location=extract_location("\n".join(texts)) or location,
        contact_name=person[0] if person else None,
        contact_title=person[1] if person else None,
        email=emails[0] if emails else None,
        phone=phones[0] if phones else None,
        source_url=first.url,
        contacts=contacts,
    )
