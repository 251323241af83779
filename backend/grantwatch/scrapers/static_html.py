"""Static HTML scraper for grant listing pages.

Used for government portals, foundations and NGOs that publish their open
calls as plain HTML. The page is rendered to text, one block per grant
container, blocks separated by blank lines:

    Community Arts Fund
    Link: https://example.org/grants/arts
    Funding up to $25,000. Deadline: 03/01/2026
    Eligibility: registered non-profits

Rendering to paragraphs keeps each candidate intact through relevance
chunking, so ``extract`` works the same on full text and on excerpts.
"""

import logging
import re
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from grantwatch.exceptions import FetchError, ParseError
from grantwatch.models.enums import SourceType
from grantwatch.scrapers.base import BaseScraper, FetchedDocument
from grantwatch.scrapers.registry import register_scraper

logger = logging.getLogger(__name__)

GRANT_CONTAINERS = ".grant-item, .opportunity-item, .funding-item, article.grant, li.grant"
TITLE_TAGS = ["h1", "h2", "h3", "h4", "a"]
NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "form"]
TEXT_TAGS = ["p", "li", "h1", "h2", "h3", "h4", "td", "dd"]

# Keywords indicating a link text names a funding opportunity
GRANT_KEYWORDS = {
    "grant", "grants", "funding", "fund", "award", "awards", "fellowship",
    "opportunity", "opportunities", "call", "rfp", "proposals", "program",
    "scholarship", "prize", "initiative",
}

LINK_PREFIX = "Link:"
AMOUNT = re.compile(r"[$€£]\s?\d[\d,]*(?:\.\d+)?(?:\s?(?:million|m|k)\b)?", re.IGNORECASE)
DEADLINE_LINE = re.compile(r"(?:deadline|due date|closes|closing date)\s*:?\s*(.+)", re.IGNORECASE)
DATE = re.compile(
    r"\b\d{1,2}/\d{1,2}/\d{4}\b|\b\d{4}-\d{2}-\d{2}\b"
    r"|\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.? \d{1,2}(?:, \d{4})?",
    re.IGNORECASE,
)
FUNDER_LINE = re.compile(r"(?:funder|funded by|agency|organization)\s*:\s*(.+)", re.IGNORECASE)


@register_scraper(SourceType.GOV, SourceType.FOUNDATION, SourceType.NGO, SourceType.OTHER, default=True)
class StaticHtmlScraper(BaseScraper):

    def fetch(self) -> FetchedDocument:
        url = self.source.url
        logger.info(f"Fetching grant listing page: {url}")

        try:
            resp = httpx.get(
                url,
                timeout=self.settings.fetch_timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": self.settings.user_agent},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(f"HTTP {e.response.status_code} fetching {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__} fetching {url}: {e}") from e

        content_type = resp.headers.get("content-type", "text/html").split(";")[0].strip().lower()
        if content_type in ("text/html", "application/xhtml+xml"):
            content = self.render_html(resp.text, str(resp.url))
        elif content_type.startswith("text/"):
            content = resp.text
        else:
            raise ParseError(f"Unsupported content type {content_type} at {url}")

        if not content.strip():
            raise ParseError(f"No readable content at {url}")

        return FetchedDocument(url=str(resp.url), content=content, content_type=content_type, status_code=resp.status_code)

    def render_html(self, html: str, base_url: str) -> str:
        """Render a listing page to blank-line separated text blocks."""
        soup = BeautifulSoup(html, "lxml")
        for tag in soup(NOISE_TAGS):
            tag.decompose()

        blocks = []

        # Strategy 1: structured grant containers
        for container in soup.select(GRANT_CONTAINERS):
            block = self._render_container(container, base_url)
            if block:
                blocks.append(block)

        # Strategy 2: grant-like links, with the page's paragraphs as context
        if not blocks:
            seen = set()
            for link in soup.find_all("a", href=True):
                text = link.get_text(" ", strip=True)
                href = link["href"]
                if any(skip in href.lower() for skip in ("#", "mailto:", "javascript:", "facebook.", "twitter.")):
                    continue
                if text and len(text) > 10 and self._looks_like_grant(text):
                    absolute = urljoin(base_url, href)
                    if absolute not in seen:
                        seen.add(absolute)
                        blocks.append(f"{text}\n{LINK_PREFIX} {absolute}")

            for element in soup.find_all(TEXT_TAGS):
                text = element.get_text(" ", strip=True)
                if text and not element.find(TEXT_TAGS):
                    blocks.append(text)

        return "\n\n".join(blocks)

    def _render_container(self, container, base_url: str) -> str | None:
        title_el = container.find(TITLE_TAGS)
        if not title_el:
            return None
        title = title_el.get_text(" ", strip=True)
        if not title:
            return None

        href = title_el.get("href") if title_el.name == "a" else None
        if not href:
            link = container.find("a", href=True)
            href = link["href"] if link else None

        lines = [title, f"{LINK_PREFIX} {urljoin(base_url, href) if href else base_url}"]
        for element in container.find_all(["p", "li", "span", "div", "dd"]):
            if element.find(["p", "li", "div"]):
                continue
            text = element.get_text(" ", strip=True)
            if text and text != title and text not in lines:
                lines.append(text)
        # Blank lines would split the block during chunking
        return "\n".join(line.replace("\n", " ") for line in lines)

    def extract(self, content: str) -> list[dict]:
        candidates = []
        for block in re.split(r"\n\s*\n", content):
            lines = [line.strip() for line in block.strip().splitlines() if line.strip()]
            link_lines = [line for line in lines if line.startswith(LINK_PREFIX)]
            if not link_lines:
                continue
            body = [line for line in lines if not line.startswith(LINK_PREFIX)]
            candidates.append({
                "title": body[0] if body else "",
                "url": link_lines[0][len(LINK_PREFIX):].strip(),
                "lines": body[1:],
            })

        logger.info(f"[{self.source.label}] Found {len(candidates)} grant candidates")
        return candidates

    def normalize(self, raw: dict) -> dict:
        title = (raw.get("title") or "").strip()
        url = (raw.get("url") or "").strip()
        if not title or not url:
            raise ParseError(f"Candidate missing title or link: {raw!r:.200}")

        lines = raw.get("lines") or []
        text = " ".join(lines)

        amount = AMOUNT.search(text)
        deadline = None
        funder = None
        eligibility = None
        for line in lines:
            if deadline is None and (match := DEADLINE_LINE.search(line)):
                deadline = match.group(1).strip()
            if funder is None and (match := FUNDER_LINE.search(line)):
                funder = match.group(1).strip()
            if eligibility is None and "eligib" in line.lower():
                eligibility = line
        if deadline is None and (match := DATE.search(text)):
            deadline = match.group(0)

        return {
            "title": title[:1000],
            "application_url": url,
            "funder": funder[:255] if funder else None,
            "amount_text": amount.group(0) if amount else None,
            "deadline_text": deadline[:255] if deadline else None,
            "eligibility": eligibility,
            "description": text[:5000] or None,
            "extra_data": {"source_type": self.source.type.value},
        }

    @staticmethod
    def _looks_like_grant(text: str) -> bool:
        """Heuristic: does this link text name a funding opportunity?"""
        words = set(re.findall(r"[a-z]+", text.lower()))
        return bool(words & GRANT_KEYWORDS)
