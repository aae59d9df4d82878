"""
Ranking of extracted listings against the candidate, with completeness repair.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from candidate_loader import candidate_to_text
from data_models import UNSCORED_SCORE, ApiError, Candidate, Listing, Match, MatchOrigin, RunLog
from llm_handler import GeminiClient, parse_json_array

LOGGER = logging.getLogger(__name__)

RANKING_MAX_TOKENS = 16000

FALLBACK_STRENGTHS = [
    "Specialty-relevant listing found",
    "Position is currently active",
    "Within registered site network",
]
BACKFILL_REASONING = "This listing could not be evaluated automatically. Please review manually."
BACKFILL_GAPS = ["Requires manual review"]
UNAVAILABLE_REASONING = (
    "AI scoring was temporarily unavailable. This listing was found for the correct "
    "specialty and may be a good fit - please review manually."
)
UNAVAILABLE_GAPS = ["AI scoring unavailable - manual review recommended"]

RANKING_PROMPT = """You are a senior physician recruiter evaluating job matches for a candidate.

CANDIDATE PROFILE (do NOT reference the candidate's name in your output - refer to them as "the candidate" or "this physician"):
{profile}

JOB LISTINGS TO EVALUATE:
{listings}

TASK:
Score each listing based on how well it matches THIS candidate's specialty, location preferences, experience level, and other profile data.
You MUST return one object for EVERY listing. Do NOT skip any.
Do NOT use the candidate's name anywhere in your output - use "the candidate" or "this physician" instead.

Each object must have:
- job_listing_id: (string, must match the id field exactly)
- match_score: (integer 0-100)
- match_reasoning: (string, 2-3 sentences explaining the score based on specialty fit, location, experience)
- strengths: (array of exactly 3 strings - specific match strengths tied to the candidate's profile data)
- gaps: (array of strings - concerns or missing info, can be empty)
- email_summary: (string, a professional paragraph a recruiter could send to the hiring org introducing this candidate - do NOT use the candidate's name, use "our candidate" instead)
- rank: (integer, 1 = best match, unique rank per listing)

Sort by rank ascending. Return ONLY the raw JSON array."""


@dataclass
class RankingResult:
    """Matches for every listing plus whether the ranking call itself failed."""

    matches: List[Match]
    api_failed: bool = False


def listing_summary(listing: Listing) -> Dict[str, str]:
    """Compact view of a listing sent to the ranking model."""
    return {
        "id": listing.id,
        "job_title": listing.job_title,
        "organization": listing.organization,
        "location": listing.location,
        "state": listing.state,
        "specialty": listing.specialty,
        "description": listing.description,
        "job_url": listing.job_url,
    }


def outreach_template(listing: Listing) -> str:
    """Outreach paragraph built from the listing alone, without a model call."""
    return (
        f"A {listing.specialty or 'physician'} position at "
        f"{listing.organization or 'this organization'} in "
        f"{listing.location or 'an unspecified location'} was identified and may "
        "warrant further review."
    )


def _score(value: Any) -> int:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(score):
        return 0
    return int(max(0.0, min(100.0, round(score))))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _rank_key(entry: Dict[str, Any], position: int):
    try:
        rank = float(entry.get("rank"))
    except (TypeError, ValueError):
        rank = math.inf
    if math.isnan(rank):
        rank = math.inf
    return (rank, position)


class MatchRanker:
    """Scores every listing for a candidate and guarantees one match per listing."""

    def __init__(self, llm: GeminiClient) -> None:
        self._llm = llm

    def build_prompt(self, candidate: Candidate, listings: Sequence[Listing]) -> str:
        """Render the ranking prompt."""
        return RANKING_PROMPT.format(
            profile=candidate_to_text(candidate),
            listings=json.dumps([listing_summary(l) for l in listings], indent=2, ensure_ascii=False),
        )

    def rank(self, candidate: Candidate, listings: Sequence[Listing], run_log: RunLog) -> RankingResult:
        """
        Produce exactly one match per listing.

        Args:
            candidate: Candidate being matched.
            listings: Persisted listings (each must carry an id).
            run_log: Run-scoped log.

        Returns:
            RankingResult whose matches cover every listing with ranks 1..N.
        """
        if not listings:
            return RankingResult(matches=[])

        run_log.add("Matching %d jobs against candidate profile...", len(listings))
        result = self._llm.complete(
            self.build_prompt(candidate, listings),
            RANKING_MAX_TOKENS,
            run_log=run_log,
        )

        if isinstance(result, ApiError):
            run_log.add("AI fallback: creating %d unscored matches", len(listings))
            return RankingResult(
                matches=self.unavailable_matches(candidate, listings),
                api_failed=True,
            )

        run_log.add("Match response length: %d", len(result))
        matches = self.model_matches(candidate, listings, parse_json_array(result))
        matches.extend(self.backfill(candidate, listings, matches, run_log))
        return RankingResult(matches=matches)

    def model_matches(
        self, candidate: Candidate, listings: Sequence[Listing], entries: List[Any]
    ) -> List[Match]:
        """
        Keep the usable model entries and renumber their ranks from 1.

        Entries naming an unknown listing, or a listing already covered, are
        discarded. Backfill ranks continue after these renumbered ranks, not
        after the raw ranks the model returned, so model ranks {5, 7} become
        {1, 2} and backfill starts at 3.
        """
        known_ids = {listing.id for listing in listings}
        kept: Dict[str, tuple] = {}
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            listing_id = str(entry.get("job_listing_id", ""))
            if listing_id not in known_ids or listing_id in kept:
                continue
            kept[listing_id] = (_rank_key(entry, position), entry)

        ordered = sorted(kept.items(), key=lambda item: item[1][0])
        matches = []
        for rank, (listing_id, (_, entry)) in enumerate(ordered, start=1):
            matches.append(
                Match(
                    owner_id=candidate.owner_id,
                    candidate_id=candidate.id,
                    job_listing_id=listing_id,
                    match_score=_score(entry.get("match_score")),
                    match_reasoning=str(entry.get("match_reasoning") or ""),
                    strengths=_string_list(entry.get("strengths")),
                    gaps=_string_list(entry.get("gaps")),
                    email_summary=str(entry.get("email_summary") or ""),
                    rank=rank,
                    origin=MatchOrigin.MODEL,
                )
            )
        return matches

    def backfill(
        self,
        candidate: Candidate,
        listings: Sequence[Listing],
        matches: Sequence[Match],
        run_log: RunLog,
    ) -> List[Match]:
        """
        Create placeholder matches for listings the model did not cover.

        Ranks continue after the highest rank already assigned.
        """
        covered = {match.job_listing_id for match in matches}
        missing = [listing for listing in listings if listing.id not in covered]
        if not missing:
            return []

        run_log.add("Backfilling %d missed listings", len(missing))
        max_rank = max((match.rank for match in matches), default=0)
        return [
            Match(
                owner_id=candidate.owner_id,
                candidate_id=candidate.id,
                job_listing_id=listing.id,
                match_score=0,
                match_reasoning=BACKFILL_REASONING,
                strengths=list(FALLBACK_STRENGTHS),
                gaps=list(BACKFILL_GAPS),
                email_summary=outreach_template(listing),
                rank=max_rank + index,
                origin=MatchOrigin.BACKFILL,
            )
            for index, listing in enumerate(missing, start=1)
        ]

    def unavailable_matches(self, candidate: Candidate, listings: Sequence[Listing]) -> List[Match]:
        """Sentinel matches used when the ranking call never succeeded."""
        return [
            Match(
                owner_id=candidate.owner_id,
                candidate_id=candidate.id,
                job_listing_id=listing.id,
                match_score=UNSCORED_SCORE,
                match_reasoning=UNAVAILABLE_REASONING,
                strengths=list(FALLBACK_STRENGTHS),
                gaps=list(UNAVAILABLE_GAPS),
                email_summary=outreach_template(listing),
                rank=index,
                origin=MatchOrigin.UNAVAILABLE,
            )
            for index, listing in enumerate(listings, start=1)
        ]
