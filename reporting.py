"""
Export utilities for ranked matches and run logs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, Sequence

from data_models import Listing, Match, RunSummary

LOGGER = logging.getLogger(__name__)


def write_matches_json(matches: Iterable[Match], listings: Sequence[Listing], output_path: Path) -> None:
    """
    Persist ranked matches joined with their listings to JSON.

    Args:
        matches: Match records for one candidate.
        listings: Listings the matches refer to.
        output_path: Destination file path.
    """
    by_id: Dict[str, Listing] = {listing.id: listing for listing in listings}
    payload = []
    for match in sorted(matches, key=lambda m: m.rank):
        listing = by_id.get(match.job_listing_id)
        payload.append(
            {
                "rank": match.rank,
                "score": match.match_score,
                "origin": match.origin.value,
                "needs_review": match.needs_review,
                "reasoning": match.match_reasoning,
                "strengths": match.strengths,
                "gaps": match.gaps,
                "email_summary": match.email_summary,
                "job": {
                    "title": listing.job_title,
                    "organization": listing.organization,
                    "location": listing.location,
                    "state": listing.state,
                    "specialty": listing.specialty,
                    "description": listing.description,
                    "url": listing.job_url,
                    "source_site": listing.source_site,
                }
                if listing
                else None,
            }
        )

    output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    LOGGER.info("Wrote %d matches to %s", len(payload), output_path)


def write_run_log(summary: RunSummary, output_path: Path) -> None:
    """Persist a run summary, including its log lines, to JSON."""
    data = asdict(summary)
    data["status"] = summary.status.value
    output_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    LOGGER.info("Wrote run log to %s", output_path)
