"""
Shared fakes for the pipeline tests.
"""

import json
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from data_models import Candidate, RunLog, Site
from llm_handler import GeminiClient
from record_store import JsonFileStore

EXTRACTION_PREFIX = "You are a physician job listing extractor"
RANKING_PREFIX = "You are a senior physician recruiter"


class ScriptedGemini(GeminiClient):
    """GeminiClient whose transport is a scripted responder instead of the API."""

    def __init__(self, responder: Callable, primary_model="primary-model", fallback_model="fallback-model"):
        self.sleeps: List[float] = []
        self.calls: List[Tuple[str, int, str]] = []
        self._responder = responder
        super().__init__(
            "test-key",
            primary_model,
            fallback_model,
            backoff_base_seconds=1.0,
            sleep=self.sleeps.append,
        )

    def _send(self, model, max_tokens, prompt):
        self.calls.append((model, max_tokens, prompt))
        return self._responder(model, max_tokens, prompt)


def sequence_responder(responses):
    """Replay statuses or (status, text) tuples in order."""
    queue = list(responses)

    def respond(model, max_tokens, prompt):
        item = queue.pop(0)
        if isinstance(item, int):
            return (item, "ok" if item == 200 else "error body")
        return item

    return respond


def listing_ids_from_prompt(prompt: str) -> List[str]:
    """Pull the listing ids out of a ranking prompt."""
    start = prompt.index("JOB LISTINGS TO EVALUATE:\n") + len("JOB LISTINGS TO EVALUATE:\n")
    end = prompt.index("\n\nTASK:")
    return [item["id"] for item in json.loads(prompt[start:end])]


def routed_responder(extraction="[]", ranking="[]", discovery="NONE"):
    """
    Answer by prompt type. Each value may be text, a status code, or a
    callable receiving the prompt and returning either.
    """

    def respond(model, max_tokens, prompt):
        if prompt.startswith(EXTRACTION_PREFIX):
            value = extraction
        elif prompt.startswith(RANKING_PREFIX):
            value = ranking
        else:
            value = discovery
        if callable(value):
            value = value(prompt)
        if isinstance(value, int):
            return (value, "")
        return (200, value)

    return respond


def full_ranking(prompt: str) -> str:
    """Ranking response covering every listing in the prompt."""
    ids = listing_ids_from_prompt(prompt)
    return json.dumps(
        [
            {
                "job_listing_id": listing_id,
                "match_score": 90 - index,
                "match_reasoning": "Strong specialty fit.",
                "strengths": ["Specialty", "Location", "Experience"],
                "gaps": [],
                "email_summary": "Our candidate is a strong fit.",
                "rank": index + 1,
            }
            for index, listing_id in enumerate(ids)
        ]
    )


class FakeFetcher:
    """ContentFetcher stand-in serving canned pages."""

    def __init__(self, pages: Optional[Dict] = None, resolver: Optional[Callable] = None, default: str = ""):
        self.pages = pages or {}
        self.resolver = resolver
        self.default = default
        self.calls: List[Tuple[str, int]] = []

    def fetch(self, url: str, wait_for_ms: int = 0) -> str:
        self.calls.append((url, wait_for_ms))
        if self.resolver is not None:
            return self.resolver(url, wait_for_ms)
        if (url, wait_for_ms) in self.pages:
            return self.pages[(url, wait_for_ms)]
        return self.pages.get(url, self.default)


def listing_page(specialty: str, extra: str = "") -> str:
    """Page text that passes the relevance gate for a specialty."""
    body = (
        f"Open {specialty} physician position at Mercy Health. Apply now to join a "
        "collaborative team with competitive compensation, full benefits and a "
        "supportive call schedule. "
    )
    return (body * 4) + extra


@pytest.fixture
def run_log():
    return RunLog()


@pytest.fixture
def store():
    return JsonFileStore()


@pytest.fixture
def candidate():
    return Candidate(
        id="cand-1",
        owner_id="owner-1",
        full_name="Dr. Jordan Example",
        specialty="Cardiology",
        subspecialty="Interventional Cardiology",
        years_experience=8,
        board_certified=True,
        current_state="OH",
        preferred_states=["OH", "PA"],
        practice_setting="Hospital",
        compensation_min=450000,
        notes="Prefers no more than 1:4 call.",
        raw_cv_text="Fellowship-trained interventional cardiologist.",
    )


@pytest.fixture
def site():
    return Site(
        id="site-1",
        owner_id="owner-1",
        site_name="Alpha Health Careers",
        base_url="https://alpha.example.com/",
    )
