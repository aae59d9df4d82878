"""
Fetching raw page content and locating job listings on recruiting sites.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import quote

import requests

from data_models import ApiError, RunLog, Site
from llm_handler import GeminiClient

LOGGER = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 15000
RENDER_WAIT_MS = 5000
RELEVANCE_MIN_CHARS = 300
DISCOVERED_MIN_CHARS = 200
LANDING_MIN_CHARS = 100
LANDING_PROMPT_CHARS = 8000
DISCOVERY_MAX_TOKENS = 500

JOB_INDICATORS = ("physician", "doctor", "position", "apply now")

DISCOVERY_PROMPT = """Analyze this career website's landing page content and find the URL where actual job listings/search results live.

WEBSITE: {site_name} ({base_url})
I need to search for "{specialty}" physician positions.

PAGE CONTENT:
{content}

Look for:
- Links to job search pages, ATS systems (ICIMS, Workday, Taleo, Greenhouse, etc.)
- Search/filter URLs with parameters
- "View Careers", "Search Jobs", "Open Positions" type links
- External job board URLs embedded in the page
- iframe sources pointing to job platforms

Return ONLY the best URL to scrape for "{short}" physician job listings.
If you can construct a search URL with the specialty as a keyword, do that.
Return just the URL string, nothing else. If you can't find one, return "NONE"."""


class ContentFetcher:
    """Client for a Firecrawl-compatible scraping API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.firecrawl.dev",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._endpoint = f"{base_url.rstrip('/')}/v1/scrape"
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, url: str, wait_for_ms: int = 0) -> str:
        """
        Scrape a URL into markdown.

        Args:
            url: Page to scrape.
            wait_for_ms: Milliseconds the renderer waits for client-side content.

        Returns:
            Page markdown, or an empty string on any failure.
        """
        body = {"url": url, "formats": ["markdown", "links"]}
        if wait_for_ms > 0:
            body["waitFor"] = wait_for_ms

        try:
            response = self._session.post(
                self._endpoint,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout + wait_for_ms / 1000.0,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as exc:
            LOGGER.debug("Scrape request for %s failed: %s", url, exc)
            return ""
        except ValueError:
            LOGGER.debug("Scrape response for %s was not JSON", url)
            return ""

        if not isinstance(result, dict) or not result.get("success"):
            return ""
        data = result.get("data")
        if not isinstance(data, dict):
            LOGGER.debug("Scrape response for %s has no data object", url)
            return ""
        markdown = data.get("markdown")
        return markdown if isinstance(markdown, str) else ""


def specialty_short_form(specialty: str) -> str:
    """Return the specialty text before the first '&' or '/'."""
    return re.split(r"[&/]", specialty, maxsplit=1)[0].strip()


def has_relevant_listings(content: str, specialty: str) -> bool:
    """
    Cheap gate protecting extraction from empty or off-topic pages.

    Args:
        content: Scraped page text.
        specialty: Target specialty name.

    Returns:
        True when the page is long enough, looks like a job page and mentions
        the specialty.
    """
    if len(content) <= RELEVANCE_MIN_CHARS:
        return False
    lowered = content.lower()
    has_job_indicators = any(term in lowered for term in JOB_INDICATORS)
    has_specialty = (
        specialty.lower() in lowered or specialty_short_form(specialty).lower() in lowered
    )
    return has_job_indicators and has_specialty


def build_search_urls(base_url: str, specialty: str) -> List[str]:
    """
    Build candidate search-endpoint URLs for a site.

    Args:
        base_url: Site root URL.
        specialty: Target specialty name.

    Returns:
        URLs in the order they should be tried.
    """
    base = base_url.rstrip("/")
    full = quote(specialty, safe="")
    spelled = quote(specialty.replace("&", "and"), safe="")
    short = quote(specialty_short_form(specialty), safe="")
    return [
        f"{base}/search-results?keywords={full}",
        f"{base}/search-results?keywords={spelled}",
        f"{base}/search-results?keywords={short}",
        f"{base}/search?q={full}",
        f"{base}/search?q={short}",
        f"{base}/jobs/search?ss=1&searchKeyword={short}&searchRelation=keyword_all",
        f"{base}/jobs?search={full}",
    ]


class SiteProber:
    """Three-phase strategy for turning a site's base URL into listing content."""

    def __init__(self, fetcher: ContentFetcher, llm: GeminiClient) -> None:
        self._fetcher = fetcher
        self._llm = llm

    def probe(self, site: Site, specialty: str, run_log: RunLog) -> str:
        """
        Find the best available listing content for a site.

        Args:
            site: Site record to probe.
            specialty: Target specialty name.
            run_log: Run-scoped log.

        Returns:
            Content truncated to MAX_CONTENT_CHARS, or "" when nothing usable
            was found.
        """
        for phase in (self._try_search_urls, self._try_rendered_base, self._try_discovery):
            try:
                content = phase(site, specialty, run_log)
            except Exception as exc:
                run_log.add("  %s error: %s", phase.__name__.lstrip("_"), exc)
                continue
            if content:
                return content[:MAX_CONTENT_CHARS]

        run_log.add("  No relevant content found for %s", site.site_name)
        return ""

    def _try_search_urls(self, site: Site, specialty: str, run_log: RunLog) -> str:
        for url in build_search_urls(site.base_url, specialty):
            run_log.add("  Trying: %s", url)
            content = self._fetcher.fetch(url)
            if has_relevant_listings(content, specialty):
                run_log.add("  Found listings: %d chars", len(content))
                return content
            if content:
                run_log.add("  Got %d chars but no relevant listings", len(content))
        return ""

    def _try_rendered_base(self, site: Site, specialty: str, run_log: RunLog) -> str:
        base_url = site.base_url.rstrip("/")
        run_log.add("  Phase 2: trying base URL with render wait (%dms)...", RENDER_WAIT_MS)
        content = self._fetcher.fetch(base_url, RENDER_WAIT_MS)
        if has_relevant_listings(content, specialty):
            run_log.add("  Found listings via render wait: %d chars", len(content))
            return content
        if content:
            run_log.add("  Render wait got %d chars but no relevant listings", len(content))
        return ""

    def _try_discovery(self, site: Site, specialty: str, run_log: RunLog) -> str:
        base_url = site.base_url.rstrip("/")
        run_log.add("  Phase 3: discovering job search URL from landing page...")
        landing = self._fetcher.fetch(base_url)
        if len(landing) <= LANDING_MIN_CHARS:
            run_log.add("  Landing page too thin for discovery (%d chars)", len(landing))
            return ""

        discovered = self.discover_search_url(site, specialty, landing, run_log)
        if not discovered:
            run_log.add("  No job search URL discovered")
            return ""

        run_log.add("  Discovered job search URL: %s", discovered)
        content = self._fetcher.fetch(discovered)
        if len(content) < DISCOVERED_MIN_CHARS:
            run_log.add("  Thin result, retrying discovered URL with render wait...")
            content = self._fetcher.fetch(discovered, RENDER_WAIT_MS)
        if len(content) > DISCOVERED_MIN_CHARS:
            run_log.add("  Got %d chars from discovered URL", len(content))
            return content
        return ""

    def discover_search_url(
        self, site: Site, specialty: str, landing: str, run_log: RunLog
    ) -> Optional[str]:
        """
        Ask the fallback model where a site's job search lives.

        Args:
            site: Site being probed.
            specialty: Target specialty name.
            landing: Landing page content.
            run_log: Run-scoped log.

        Returns:
            An absolute URL, or None when the model found nothing or failed.
        """
        prompt = DISCOVERY_PROMPT.format(
            site_name=site.site_name,
            base_url=site.base_url.rstrip("/"),
            specialty=specialty,
            short=specialty_short_form(specialty),
            content=landing[:LANDING_PROMPT_CHARS],
        )
        result = self._llm.complete(
            prompt,
            DISCOVERY_MAX_TOKENS,
            model=self._llm.fallback_model,
            run_log=run_log,
        )
        if isinstance(result, ApiError):
            run_log.add("  Discovery call failed: %s", result.message)
            return None

        url = result.strip().strip("`\"'").strip()
        if not url or url.upper() == "NONE" or not url.startswith("http"):
            return None
        return url
