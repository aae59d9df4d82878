"""
End-to-end tests of the pipeline controller against the in-memory store.
"""

import json

import pytest

from config import Settings
from data_models import UNSCORED_SCORE, CandidateStatus, MatchOrigin, Site
from matcher import CandidateMatcher, failure_advisory, select_sites

from conftest import FakeFetcher, ScriptedGemini, full_ranking, listing_page, routed_responder

EXTRACTED = json.dumps([
    {"job_title": "Interventional Cardiologist", "organization": "Mercy Health", "state": "OH"},
    {"job_title": "Noninvasive Cardiologist", "organization": "UPMC", "state": "PA"},
    {"job_title": "Cardiologist", "organization": "Cleveland Clinic", "state": "OH"},
])


@pytest.fixture
def settings():
    return Settings(store_path=None, gemini_api_key="test-key", scrape_api_key="fc-key")


@pytest.fixture
def second_site():
    return Site(
        id="site-2",
        owner_id="owner-1",
        site_name="Beta Physician Jobs",
        base_url="https://beta.example.com",
        operating_regions=["Midwest"],
    )


@pytest.fixture
def seeded(store, candidate, site, second_site):
    store.add_candidate(candidate)
    store.add_site(site)
    store.add_site(second_site)
    return store


def _matcher(settings, store, fetcher=None, **responses):
    llm = ScriptedGemini(routed_responder(**responses))
    fetcher = fetcher or FakeFetcher(default=listing_page("Cardiology"))
    return CandidateMatcher(settings, store, llm=llm, fetcher=fetcher), llm


def _ranking_calls(llm):
    return [call for call in llm.calls if call[2].startswith("You are a senior physician recruiter")]


class TestPipelineRun:
    """Test CandidateMatcher.run."""

    def test_complete_run(self, settings, seeded):
        matcher, _ = _matcher(settings, seeded, extraction=EXTRACTED, ranking=full_ranking)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert summary.listings_found == 6
        assert summary.matches_created == 6
        assert summary.ai_failures == 0
        assert summary.error_message is None

        stored = seeded.get_candidate("cand-1")
        assert stored.status is CandidateStatus.COMPLETE
        assert stored.error_message is None

        listings = seeded.list_listings("cand-1")
        matches = seeded.list_matches("cand-1")
        assert sorted(m.job_listing_id for m in matches) == sorted(l.id for l in listings)
        assert [m.rank for m in matches] == [1, 2, 3, 4, 5, 6]
        assert all(m.origin is MatchOrigin.MODEL for m in matches)
        assert {l.source_site for l in listings} == {"Alpha Health Careers", "Beta Physician Jobs"}

    def test_status_is_processing_while_running(self, settings, seeded):
        seen = []

        def extraction(prompt):
            seen.append(seeded.get_candidate("cand-1").status)
            return "[]"

        matcher, _ = _matcher(settings, seeded, extraction=extraction)
        matcher.run("cand-1", "owner-1")

        assert seen == [CandidateStatus.PROCESSING, CandidateStatus.PROCESSING]

    def test_partial_ranking_is_backfilled(self, settings, seeded):
        def ranking(prompt):
            entries = json.loads(full_ranking(prompt))
            return json.dumps(entries[:2])

        matcher, _ = _matcher(settings, seeded, extraction=EXTRACTED, ranking=ranking)
        summary = matcher.run("cand-1", "owner-1")
        matches = seeded.list_matches("cand-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert len(matches) == 6
        assert [m.rank for m in matches] == [1, 2, 3, 4, 5, 6]
        assert [m.origin for m in matches[2:]] == [MatchOrigin.BACKFILL] * 4
        assert all(m.match_score == 0 for m in matches[2:])

    def test_ranking_outage_completes_with_advisory(self, settings, seeded):
        matcher, _ = _matcher(settings, seeded, extraction=EXTRACTED, ranking=503)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert summary.ai_failures == 1
        assert summary.error_message == failure_advisory(1)
        matches = seeded.list_matches("cand-1")
        assert len(matches) == 6
        assert all(m.match_score == UNSCORED_SCORE for m in matches)
        assert all(m.needs_review for m in matches)
        assert seeded.get_candidate("cand-1").error_message == failure_advisory(1)

    def test_extraction_outage_on_one_site(self, settings, seeded):
        def extraction(prompt):
            return 500 if "SITE: Alpha Health Careers" in prompt else EXTRACTED

        matcher, _ = _matcher(settings, seeded, extraction=extraction, ranking=full_ranking)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert summary.listings_found == 3
        assert summary.matches_created == 3
        assert summary.ai_failures == 1
        assert "1 AI failure(s)" in summary.error_message

    def test_no_listings_found(self, settings, seeded):
        matcher, llm = _matcher(settings, seeded, extraction="[]", ranking=full_ranking)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert summary.error_message == "No Cardiology listings found across your registered sites."
        assert seeded.list_matches("cand-1") == []
        assert _ranking_calls(llm) == []

    def test_no_listings_with_failures_mentions_both(self, settings, seeded):
        matcher, _ = _matcher(settings, seeded, extraction=500)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert summary.error_message.startswith("No Cardiology listings found")
        assert "2 AI failure(s)" in summary.error_message

    def test_site_without_content_is_skipped(self, settings, seeded):
        def resolver(url, wait):
            return "" if "alpha" in url else listing_page("Cardiology")

        extraction_prompts = []

        def extraction(prompt):
            extraction_prompts.append(prompt)
            return EXTRACTED

        matcher, _ = _matcher(
            settings,
            seeded,
            fetcher=FakeFetcher(resolver=resolver),
            extraction=extraction,
            ranking=full_ranking,
        )
        summary = matcher.run("cand-1", "owner-1")

        assert summary.listings_found == 3
        assert len(extraction_prompts) == 1
        assert "SITE: Beta Physician Jobs" in extraction_prompts[0]

    def test_missing_candidate(self, settings, store):
        matcher, llm = _matcher(settings, store)
        summary = matcher.run("nobody", "owner-1")

        assert summary.status is CandidateStatus.ERROR
        assert "Candidate not found" in summary.error_message
        assert llm.calls == []

    def test_no_sites_is_fatal(self, settings, store, candidate):
        store.add_candidate(candidate)
        matcher, _ = _matcher(settings, store)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.ERROR
        assert summary.error_message == "No active sites found for this recruiter"
        stored = store.get_candidate("cand-1")
        assert stored.status is CandidateStatus.ERROR
        assert stored.error_message == "No active sites found for this recruiter"

    def test_inactive_and_foreign_sites_are_invisible(self, settings, store, candidate):
        store.add_candidate(candidate)
        store.add_site(Site(id="s1", owner_id="owner-1", site_name="Off", base_url="https://off.example.com", active=False))
        store.add_site(Site(id="s2", owner_id="owner-2", site_name="Theirs", base_url="https://theirs.example.com"))
        matcher, _ = _matcher(settings, store)

        summary = matcher.run("cand-1", "owner-1")
        assert summary.error_message == "No active sites found for this recruiter"

    def test_region_filter(self, settings, store, candidate):
        store.add_candidate(candidate)
        store.add_site(Site(id="s1", owner_id="owner-1", site_name="West", base_url="https://west.example.com", operating_regions=["Pacific"]))
        store.add_site(Site(id="s2", owner_id="owner-2", site_name="National", base_url="https://national.example.com", is_global=True))
        fetcher = FakeFetcher(default=listing_page("Cardiology"))
        matcher, _ = _matcher(settings, store, fetcher=fetcher, extraction=EXTRACTED, ranking=full_ranking)

        summary = matcher.run("cand-1", "owner-1")

        assert summary.status is CandidateStatus.COMPLETE
        assert all(url.startswith("https://national.example.com") for url, _ in fetcher.calls)
        assert {l.source_site for l in store.list_listings("cand-1")} == {"National"}

    def test_no_site_in_preferred_regions_is_fatal(self, settings, store, candidate):
        store.add_candidate(candidate)
        store.add_site(Site(id="s1", owner_id="owner-1", site_name="West", base_url="https://west.example.com", operating_regions=["Pacific"]))
        matcher, _ = _matcher(settings, store)

        summary = matcher.run("cand-1", "owner-1")
        assert summary.status is CandidateStatus.ERROR
        assert "preferred regions" in summary.error_message

    def test_log_is_returned(self, settings, seeded):
        matcher, _ = _matcher(settings, seeded, extraction=EXTRACTED, ranking=full_ranking)
        summary = matcher.run("cand-1", "owner-1")

        assert summary.log[0] == "Starting process for candidate cand-1"
        assert "Found 2 active sites" in summary.log
        assert summary.log[-1] == "Done! 6 jobs, 6 matches, 0 Gemini failures"


class TestReprocess:
    """Test CandidateMatcher.reprocess."""

    def test_reset_and_rerun(self, settings, seeded):
        matcher, _ = _matcher(settings, seeded, extraction=EXTRACTED, ranking=503)
        matcher.run("cand-1", "owner-1")
        assert seeded.list_matches("cand-1")

        matcher.reprocess("cand-1")
        stored = seeded.get_candidate("cand-1")
        assert stored.status is CandidateStatus.PENDING
        assert stored.error_message is None
        assert seeded.list_listings("cand-1") == []
        assert seeded.list_matches("cand-1") == []

        matcher, _ = _matcher(settings, seeded, extraction=EXTRACTED, ranking=full_ranking)
        summary = matcher.run("cand-1", "owner-1")
        assert summary.status is CandidateStatus.COMPLETE
        assert summary.error_message is None
        assert len(seeded.list_matches("cand-1")) == 6

    def test_missing_candidate_raises(self, settings, store):
        matcher, _ = _matcher(settings, store)
        with pytest.raises(Exception, match="Candidate not found"):
            matcher.reprocess("nobody")


class TestSelectSites:
    """Test region-based site selection."""

    def _site(self, site_id, regions):
        return Site(id=site_id, owner_id="o", site_name=site_id, base_url="https://x.example.com", operating_regions=regions)

    def test_no_preference_keeps_everything(self):
        sites = [self._site("a", ["Pacific"]), self._site("b", None)]
        assert select_sites(sites, []) == sites

    def test_unknown_states_keep_everything(self):
        sites = [self._site("a", ["Pacific"])]
        assert select_sites(sites, ["ZZ"]) == sites

    def test_overlap_and_national(self):
        sites = [
            self._site("pacific", ["Pacific"]),
            self._site("midwest", ["Midwest", "Southeast"]),
            self._site("national", []),
        ]
        kept = select_sites(sites, ["oh"])
        assert [s.id for s in kept] == ["midwest", "national"]
