"""
Utilities for loading candidate and site records and formatting the
candidate profile for LLM consumption.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List

from data_models import Candidate, CandidateStatus, Site

CV_EXCERPT_CHARS = 2000


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def candidate_from_dict(data: Dict[str, Any]) -> Candidate:
    """
    Build a Candidate from a stored or submitted dictionary.

    Args:
        data: Candidate fields; unknown keys are ignored.

    Returns:
        Candidate record.
    """
    specialty = (data.get("specialty") or "").strip()
    if not specialty:
        raise ValueError("Candidate must define 'specialty'.")

    candidate = Candidate(
        id=str(data.get("id") or uuid.uuid4()),
        owner_id=str(data["owner_id"]),
        full_name=data.get("full_name", ""),
        specialty=specialty,
        subspecialty=data.get("subspecialty") or None,
        years_experience=data.get("years_experience"),
        board_certified=bool(data.get("board_certified", False)),
        current_state=data.get("current_state") or None,
        preferred_states=[s.upper() for s in data.get("preferred_states") or []],
        practice_setting=data.get("practice_setting") or None,
        compensation_min=data.get("compensation_min"),
        notes=data.get("notes") or None,
        raw_cv_text=data.get("raw_cv_text") or None,
        status=CandidateStatus(data.get("status", CandidateStatus.PENDING.value)),
        error_message=data.get("error_message"),
    )
    if data.get("created_at"):
        candidate.created_at = data["created_at"]
    return candidate


def site_from_dict(data: Dict[str, Any]) -> Site:
    """Build a Site from a stored or submitted dictionary."""
    base_url = (data.get("base_url") or "").strip()
    if not base_url.startswith("http"):
        raise ValueError(f"Site {data.get('site_name')!r} has no valid base_url.")
    return Site(
        id=str(data.get("id") or uuid.uuid4()),
        owner_id=str(data["owner_id"]),
        site_name=data.get("site_name") or base_url,
        base_url=base_url,
        notes=data.get("notes"),
        active=bool(data.get("active", True)),
        is_global=bool(data.get("is_global", False)),
        operating_regions=data.get("operating_regions") or None,
    )


def load_candidate(path: Path) -> Candidate:
    """
    Load a candidate profile from a JSON file.

    A "cv_file" entry, resolved relative to the profile, supplies the CV text
    when "raw_cv_text" is not given inline.

    Args:
        path: Location of the candidate JSON file.

    Returns:
        Candidate record in the pending state.
    """
    data = _read_json(path)
    cv_file = data.pop("cv_file", None)
    if cv_file and not data.get("raw_cv_text"):
        cv_path = Path(cv_file)
        if not cv_path.is_absolute():
            cv_path = path.parent / cv_path
        data["raw_cv_text"] = cv_path.read_text(encoding="utf-8")
    data["status"] = CandidateStatus.PENDING.value
    data["error_message"] = None
    return candidate_from_dict(data)


def load_sites(path: Path) -> List[Site]:
    """Load a JSON list of site records."""
    data = _read_json(path)
    if not isinstance(data, list):
        raise ValueError(f"Site file must hold a JSON list: {path}")
    return [site_from_dict(item) for item in data]


def candidate_to_text(candidate: Candidate) -> str:
    """
    Convert the candidate profile into a text block for the ranking prompt.

    The candidate's name is deliberately left out.

    Args:
        candidate: Candidate record.

    Returns:
        Multi-line profile description.
    """
    if candidate.compensation_min:
        compensation = f"${candidate.compensation_min:,}"
    else:
        compensation = "Not specified"

    if candidate.raw_cv_text:
        cv_text = candidate.raw_cv_text[:CV_EXCERPT_CHARS]
    else:
        cv_text = "Not provided"

    lines = [
        f"Specialty: {candidate.specialty}",
        f"Subspecialty: {candidate.subspecialty or 'None specified'}",
        f"Years of Experience: {candidate.years_experience or 'Not specified'}",
        f"Board Certified: {'Yes' if candidate.board_certified else 'No/Unknown'}",
        f"Current State: {candidate.current_state or 'Not specified'}",
        f"Preferred States: {', '.join(candidate.preferred_states) or 'Open to any'}",
        f"Practice Setting Preference: {candidate.practice_setting or 'Any'}",
        f"Minimum Compensation: {compensation}",
        f"Additional Notes: {candidate.notes or 'None'}",
        f"CV/Profile Summary: {cv_text}",
    ]
    return "\n".join(lines)
