"""
Core pipeline coordinating site probing, listing extraction and match ranking
for one candidate.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from config import Settings
from data_models import (
    ApiError,
    Candidate,
    CandidateNotFoundError,
    CandidateStatus,
    Listing,
    NoActiveSitesError,
    RunLog,
    RunSummary,
    Site,
)
from listing_extractor import ListingExtractor
from llm_handler import GeminiClient
from match_ranker import MatchRanker
from record_store import RecordStore
from regions import regions_for_states, site_serves_regions
from web_scraper import ContentFetcher, SiteProber

LOGGER = logging.getLogger(__name__)

MIN_SITE_CONTENT_CHARS = 100


def select_sites(sites: Sequence[Site], preferred_states: Sequence[str]) -> List[Site]:
    """
    Keep the sites whose operating regions overlap the candidate's preferences.

    Args:
        sites: Active sites visible to the requester.
        preferred_states: Candidate's preferred state codes.

    Returns:
        Eligible sites; all of them when the candidate has no preference.
    """
    regions = regions_for_states(preferred_states or [])
    if not regions:
        return list(sites)
    return [site for site in sites if site_serves_regions(site.operating_regions, regions)]


def failure_advisory(ai_failures: int) -> str:
    """Non-fatal message attached to a completed run that hit AI failures."""
    return f"Completed with {ai_failures} AI failure(s). Some matches may need manual review."


class CandidateMatcher:
    """Runs the matching pipeline for one candidate at a time."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        llm: Optional[GeminiClient] = None,
        fetcher: Optional[ContentFetcher] = None,
    ) -> None:
        """
        Initialize the pipeline controller.

        Args:
            settings: Application settings dataclass.
            store: Record store holding candidates, sites, listings and matches.
            llm: Completion client; built from settings when omitted.
            fetcher: Scraping client; built from settings when omitted.
        """
        self.settings = settings
        self.store = store
        self.llm = llm or GeminiClient(
            settings.gemini_api_key,
            settings.primary_model,
            settings.fallback_model,
            backoff_base_seconds=settings.backoff_base_seconds,
        )
        self.fetcher = fetcher or ContentFetcher(
            settings.scrape_api_key,
            base_url=settings.scrape_base_url,
            timeout=settings.request_timeout,
        )
        self.prober = SiteProber(self.fetcher, self.llm)
        self.extractor = ListingExtractor(self.llm)
        self.ranker = MatchRanker(self.llm)

    def run(self, candidate_id: str, owner_id: str) -> RunSummary:
        """
        Execute the matching pipeline for a candidate.

        Args:
            candidate_id: Candidate to process.
            owner_id: Requesting owner; decides which private sites are visible.

        Returns:
            RunSummary with counts and the run log. Results themselves are
            written to the record store.
        """
        run_log = RunLog(LOGGER)
        summary = RunSummary(candidate_id=candidate_id, status=CandidateStatus.PROCESSING, log=run_log.entries)
        run_log.add("Starting process for candidate %s", candidate_id)

        try:
            self._run(candidate_id, owner_id, run_log, summary)
        except Exception as exc:
            message = str(exc) or "An unexpected error occurred"
            LOGGER.exception("Pipeline failed for candidate %s", candidate_id)
            run_log.add("FATAL ERROR: %s", message)
            self.store.update_candidate_status(candidate_id, CandidateStatus.ERROR, message)
            summary.status = CandidateStatus.ERROR
            summary.error_message = message
        return summary

    def _run(self, candidate_id: str, owner_id: str, run_log: RunLog, summary: RunSummary) -> None:
        candidate = self.store.get_candidate(candidate_id)
        if candidate is None:
            raise CandidateNotFoundError(f"Candidate not found: {candidate_id}")

        self.store.update_candidate_status(candidate_id, CandidateStatus.PROCESSING, None)
        run_log.add("Specialty: %s", candidate.specialty)

        sites = self.store.list_visible_sites(owner_id)
        run_log.add("Found %d active sites", len(sites))
        if not sites:
            raise NoActiveSitesError("No active sites found for this recruiter")

        eligible = select_sites(sites, candidate.preferred_states)
        run_log.add(
            "Filtered to %d sites after region matching (candidate regions: %s)",
            len(eligible),
            ", ".join(regions_for_states(candidate.preferred_states)) or "all",
        )
        if not eligible:
            raise NoActiveSitesError("No active sites operate in the candidate's preferred regions")

        listings = self._collect_listings(candidate, eligible, run_log, summary)
        run_log.add("Total specialty-relevant jobs across all sites: %d", len(listings))

        inserted = self.store.insert_listings(listings) if listings else []
        summary.listings_found = len(inserted)
        run_log.add("Jobs inserted: %d", len(inserted))

        if not inserted:
            message = f"No {candidate.specialty} listings found across your registered sites."
            if summary.ai_failures:
                message = f"{message} {failure_advisory(summary.ai_failures)}"
            self._finish(candidate_id, message, summary)
            return

        ranking = self.ranker.rank(candidate, inserted, run_log)
        if ranking.api_failed:
            summary.ai_failures += 1
            run_log.add("Gemini API failed for matching (failures: %d)", summary.ai_failures)

        matches = self.store.insert_matches(ranking.matches)
        summary.matches_created = len(matches)
        run_log.add("Total matches: %d", len(matches))

        advisory = failure_advisory(summary.ai_failures) if summary.ai_failures else None
        self._finish(candidate_id, advisory, summary)
        run_log.add(
            "Done! %d jobs, %d matches, %d Gemini failures",
            summary.listings_found,
            summary.matches_created,
            summary.ai_failures,
        )

    def _collect_listings(
        self,
        candidate: Candidate,
        sites: Sequence[Site],
        run_log: RunLog,
        summary: RunSummary,
    ) -> List[Listing]:
        """Probe and extract each site in turn; sites are never processed concurrently."""
        collected: List[Listing] = []
        for site in sites:
            run_log.add("--- Scraping %s (%s) ---", site.site_name, site.base_url)
            content = self.prober.probe(site, candidate.specialty, run_log)
            if len(content) < MIN_SITE_CONTENT_CHARS:
                run_log.add("Skipping %s - no usable content", site.site_name)
                continue

            result = self.extractor.extract(content, site, candidate, run_log)
            if isinstance(result, ApiError):
                summary.ai_failures += 1
                run_log.add(
                    "Gemini API failed for extraction on %s (failures: %d): %s",
                    site.site_name,
                    summary.ai_failures,
                    result.message,
                )
                continue
            collected.extend(result)
        return collected

    def _finish(self, candidate_id: str, message: Optional[str], summary: RunSummary) -> None:
        self.store.update_candidate_status(candidate_id, CandidateStatus.COMPLETE, message)
        summary.status = CandidateStatus.COMPLETE
        summary.error_message = message

    def reprocess(self, candidate_id: str) -> None:
        """
        Clear a candidate's downstream records and return it to pending.

        Matches go first so no match is ever left pointing at a deleted listing.

        Args:
            candidate_id: Candidate to reset.
        """
        if self.store.get_candidate(candidate_id) is None:
            raise CandidateNotFoundError(f"Candidate not found: {candidate_id}")
        removed_matches = self.store.delete_matches(candidate_id)
        removed_listings = self.store.delete_listings(candidate_id)
        self.store.update_candidate_status(candidate_id, CandidateStatus.PENDING, None)
        LOGGER.info(
            "Reset candidate %s (%d listings, %d matches removed)",
            candidate_id,
            removed_listings,
            removed_matches,
        )
