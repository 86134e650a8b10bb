"""Fetch one page and pull out the parts relevant to a query."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

TEXT_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "p", "li", "td", "blockquote"]


@dataclass
class CrawlOutcome:
    """Result of crawling one URL for one query."""
    success: bool
    scraped_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "scraped_data": self.scraped_data,
            "error_message": self.error_message,
        }


@dataclass
class PageExtract:
    title: Optional[str]
    matches: List[str] = field(default_factory=list)
    text_length: int = 0


def query_terms(query: str) -> List[str]:
    """Lower-cased words of the query, without duplicates or one-letter noise."""
    words = re.findall(r"\w+", query.lower())
    return list(dict.fromkeys(w for w in words if len(w) > 1))


def extract_page(html: str, query: str, max_snippets: int = 10) -> PageExtract:
    """
    Extract the page title and the text blocks mentioning any query term.

    Args:
        html: Raw HTML
        query: Free-text query
        max_snippets: Upper bound on returned blocks

    Returns:
        PageExtract: Title, matching blocks in document order, visible text length
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    title = soup.title.get_text(strip=True) if soup.title else None
    terms = query_terms(query)

    matches: List[str] = []
    seen = set()
    for element in soup.find_all(TEXT_BLOCK_TAGS):
        text = " ".join(element.get_text(" ", strip=True).split())
        if not text or text in seen:
            continue
        lowered = text.lower()
        if terms and any(term in lowered for term in terms):
            seen.add(text)
            matches.append(text)
            if len(matches) >= max_snippets:
                break

    visible = soup.get_text(" ", strip=True)
    return PageExtract(title=title, matches=matches, text_length=len(visible))


class CrawlTask:
    """
    Fetches pages with a shared ``httpx.AsyncClient``.

    Every failure mode (timeouts, HTTP errors, non-HTML bodies) becomes a
    failed ``CrawlOutcome``; nothing is raised to the caller.

    Example:
        ```python
        async with httpx.AsyncClient(follow_redirects=True) as client:
            outcome = await CrawlTask(client).run("https://example.com", "pricing")
        ```
    """

    def __init__(self, client: httpx.AsyncClient, max_snippets: int = 10):
        self.client = client
        self.max_snippets = max_snippets

    async def run(self, url: str, query: str) -> CrawlOutcome:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Crawl timed out", extra={"event_data": {"url": url}})
            return CrawlOutcome(success=False, error_message=f"Timed out fetching {url}")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Crawl got HTTP error", extra={"event_data": {"url": url, "status": status}})
            return CrawlOutcome(success=False, error_message=f"HTTP {status} from {url}")
        except httpx.HTTPError as exc:
            logger.warning("Crawl request failed", extra={"event_data": {"url": url, "error": str(exc)}})
            return CrawlOutcome(success=False, error_message=f"Request to {url} failed: {exc}")

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and "xml" not in content_type:
            return CrawlOutcome(success=False, error_message=f"Unsupported content type: {content_type or 'unknown'}")

        extract = extract_page(response.text, query, self.max_snippets)
        return CrawlOutcome(
            success=True,
            scraped_data={
                "url": str(response.url),
                "status_code": response.status_code,
                "title": extract.title,
                "matches": extract.matches,
                "text_length": extract.text_length,
            },
        )
