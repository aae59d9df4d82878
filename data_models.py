"""
Shared data models used across the matching pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

LOGGER = logging.getLogger(__name__)

# Score reserved for matches created while the ranking model was unavailable.
UNSCORED_SCORE = -1


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class CandidateStatus(str, Enum):
    """Processing states of a candidate submission."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class MatchOrigin(str, Enum):
    """How a match record came to exist."""

    MODEL = "model"
    BACKFILL = "backfill"
    UNAVAILABLE = "unavailable"


class PipelineError(Exception):
    """Base class for faults that abort a pipeline run."""


class CandidateNotFoundError(PipelineError):
    """Raised when the requested candidate record does not exist."""


class NoActiveSitesError(PipelineError):
    """Raised when no site is eligible for a run."""


@dataclass
class Candidate:
    """Physician profile submitted for matching."""

    id: str
    owner_id: str
    full_name: str
    specialty: str
    subspecialty: Optional[str] = None
    years_experience: Optional[int] = None
    board_certified: bool = False
    current_state: Optional[str] = None
    preferred_states: List[str] = field(default_factory=list)
    practice_setting: Optional[str] = None
    compensation_min: Optional[int] = None
    notes: Optional[str] = None
    raw_cv_text: Optional[str] = None
    status: CandidateStatus = CandidateStatus.PENDING
    error_message: Optional[str] = None
    created_at: str = field(default_factory=utc_timestamp)


@dataclass
class Site:
    """Recruiting website scraped for listings."""

    id: str
    owner_id: str
    site_name: str
    base_url: str
    notes: Optional[str] = None
    active: bool = True
    is_global: bool = False
    operating_regions: Optional[List[str]] = None


@dataclass
class Listing:
    """Job listing extracted from one site for one candidate."""

    owner_id: str
    candidate_id: str
    source_site: str
    source_url: str
    job_title: str
    organization: str
    location: str
    state: str
    specialty: str
    description: str
    job_url: str
    raw_content: str
    id: Optional[str] = None
    created_at: str = field(default_factory=utc_timestamp)


@dataclass
class Match:
    """Scored pairing of a candidate with one listing."""

    owner_id: str
    candidate_id: str
    job_listing_id: str
    match_score: int
    match_reasoning: str
    strengths: List[str]
    gaps: List[str]
    email_summary: str
    rank: int
    origin: MatchOrigin = MatchOrigin.MODEL
    id: Optional[str] = None
    created_at: str = field(default_factory=utc_timestamp)

    @property
    def needs_review(self) -> bool:
        """True when the score did not come from a model evaluation."""
        return self.origin is not MatchOrigin.MODEL


@dataclass(frozen=True)
class ApiError:
    """Tagged failure returned by the completion client instead of raising."""

    status: int
    message: str


@dataclass
class RunSummary:
    """Counts and log returned to whoever triggered a run."""

    candidate_id: str
    status: CandidateStatus
    listings_found: int = 0
    matches_created: int = 0
    ai_failures: int = 0
    error_message: Optional[str] = None
    log: List[str] = field(default_factory=list)


class RunLog:
    """Append-only message log scoped to a single pipeline run."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER
        self.entries: List[str] = []

    def add(self, message: str, *args) -> None:
        """
        Record a message and forward it to the logger.

        Args:
            message: printf-style message.
            *args: Values interpolated into the message.
        """
        text = message % args if args else message
        self.entries.append(text)
        self._logger.info(text)
