"""
Structured extraction of specialty-relevant job listings from scraped content.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Union

from data_models import ApiError, Candidate, Listing, RunLog, Site
from llm_handler import GeminiClient, parse_json_array

LOGGER = logging.getLogger(__name__)

EXTRACTION_MAX_TOKENS = 8000

# Titles naming these roles are dropped even if the model forwards them.
NON_PHYSICIAN_TITLE_PATTERN = re.compile(
    r"\b("
    r"nurse|rn|lpn|crna|aprn|"
    r"physician assistant|physician associate|pa-c|"
    r"technician|technologist|dietitian|nutritionist|"
    r"medical assistant|therapist|pharmacist|scribe|sonographer|paramedic|emt"
    r")\b",
    re.IGNORECASE,
)

# A title naming the physician role is kept even when it mentions other roles.
# "Physician assistant/associate" does not count; MD and DO must be upper case.
PHYSICIAN_TITLE_PATTERN = re.compile(
    r"(?i:\b(?:physician(?!\s+(?:assistant|associate))|doctor)\b)|\b(?:MD|DO|M\.D\.|D\.O\.)(?!\w)"
)

EXTRACTION_PROMPT = """You are a physician job listing extractor. Your job is to extract ONLY listings that are relevant to the target specialty.

TARGET SPECIALTY: {specialty}
{subspecialty_line}
SITE: {site_name}

SCRAPED CONTENT FROM {base_url}:
{content}

RULES:
1. Extract ONLY job listings for physicians/doctors in "{specialty}" or closely related subspecialties
2. DO NOT include listings for other specialties (e.g. if searching for OBGYN, do not include Cardiology, Family Medicine, etc.)
3. DO NOT include non-physician roles (nurses, PAs, technicians, dietitians, medical assistants, etc.)
4. For each listing extract:
   - job_title (string)
   - organization (string) - the employer name
   - location (string) - city and state
   - state (string) - 2-letter state code
   - specialty (string) - the actual medical specialty of this listing
   - description (string) - first 200 characters of any description
   - job_url (string) - direct URL if visible, otherwise ""

Return ONLY a valid JSON array. No markdown, no explanation. Return [] if no relevant listings found."""


def is_physician_title(title: str) -> bool:
    """Return False for titles that name only a non-physician clinical role."""
    title = title or ""
    if PHYSICIAN_TITLE_PATTERN.search(title):
        return True
    return not NON_PHYSICIAN_TITLE_PATTERN.search(title)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _state_code(value: Any) -> str:
    code = _text(value).upper()
    return code if re.fullmatch(r"[A-Z]{2}", code) else ""


class ListingExtractor:
    """Turns one site's raw content into listing records."""

    def __init__(self, llm: GeminiClient) -> None:
        self._llm = llm

    def build_prompt(self, content: str, site: Site, candidate: Candidate) -> str:
        """Render the extraction prompt for one site."""
        subspecialty_line = (
            f"TARGET SUBSPECIALTY: {candidate.subspecialty}" if candidate.subspecialty else ""
        )
        return EXTRACTION_PROMPT.format(
            specialty=candidate.specialty,
            subspecialty_line=subspecialty_line,
            site_name=site.site_name,
            base_url=site.base_url,
            content=content,
        )

    def extract(
        self, content: str, site: Site, candidate: Candidate, run_log: RunLog
    ) -> Union[List[Listing], ApiError]:
        """
        Extract specialty-relevant listings from scraped content.

        Args:
            content: Raw site content from the prober.
            site: Site the content came from.
            candidate: Candidate whose specialty drives the filter.
            run_log: Run-scoped log.

        Returns:
            Unsaved Listing records (possibly empty), or the ApiError when
            the completion call failed.
        """
        run_log.add("Extracting %s listings from %s...", candidate.specialty, site.site_name)
        result = self._llm.complete(
            self.build_prompt(content, site, candidate),
            EXTRACTION_MAX_TOKENS,
            run_log=run_log,
        )
        if isinstance(result, ApiError):
            return result

        items = [item for item in parse_json_array(result) if isinstance(item, dict)]
        listings = []
        for item in items:
            if not is_physician_title(_text(item.get("job_title"))):
                run_log.add("  Dropped non-physician listing: %s", _text(item.get("job_title")))
                continue
            listings.append(self.to_listing(item, site, candidate))
        run_log.add("Extracted %d relevant listings from %s", len(listings), site.site_name)
        return listings

    @staticmethod
    def to_listing(item: Dict[str, Any], site: Site, candidate: Candidate) -> Listing:
        """Build a Listing from one extracted object, filling source defaults."""
        return Listing(
            owner_id=candidate.owner_id,
            candidate_id=candidate.id,
            source_site=site.site_name,
            source_url=site.base_url,
            job_title=_text(item.get("job_title")),
            organization=_text(item.get("organization")) or site.site_name,
            location=_text(item.get("location")),
            state=_state_code(item.get("state")),
            specialty=_text(item.get("specialty")) or candidate.specialty,
            description=_text(item.get("description")),
            job_url=_text(item.get("job_url")),
            raw_content=json.dumps(item, ensure_ascii=False),
        )
