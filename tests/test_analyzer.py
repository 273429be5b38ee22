"""
Tests for review sampling, single-app analysis and structured generation retries.
"""

import asyncio
import json
from collections import Counter
from types import SimpleNamespace

import pytest

from review_radar.analyzer import (
    AnalysisProgress,
    analysis_results_event,
    analyze,
    analyze_with_progress,
    balanced_sample,
    bucket_by_rating,
)
from review_radar.errors import AnalysisError
from review_radar.llm_client import LLMClient, StructuredOutputError
from review_radar.models import ReviewRecord
from review_radar.schemas import AppAnalysis


def _review(review_id, score):
    return ReviewRecord(review_id=review_id, user_name="u", date=None, score=score, text="text")


class TestBalancedSample:

    def test_never_exceeds_size_or_repeats(self):
        pools = [
            [_review(f"r{i}", i % 5 + 1) for i in range(200)],
            [_review(f"r{i % 7}", 5) for i in range(40)],      # heavy duplication
            [_review(f"r{i}", 1) for i in range(3)],
            [],
        ]
        for pool in pools:
            for size in (0, 1, 12, 50):
                sample = balanced_sample(pool, size)
                ids = [r.review_id for r in sample]
                assert len(sample) <= size
                assert len(ids) == len(set(ids))

    def test_bucket_targets_lowest_stars_first(self):
        pool = [_review(f"s{score}-{i}", score) for score in range(1, 6) for i in range(20)]
        counts = Counter(r.score for r in balanced_sample(pool, 12))
        assert counts == {1: 10, 2: 2}

    def test_full_sample_uses_every_bucket_target(self):
        pool = [_review(f"s{score}-{i}", score) for score in range(1, 6) for i in range(20)]
        counts = Counter(r.score for r in balanced_sample(pool, 60))
        assert counts == {1: 10, 2: 10, 3: 10, 4: 15, 5: 15}

    def test_shortfall_backfilled_in_original_order(self):
        pool = [_review(f"one-{i}", 1) for i in range(20)] + [_review(f"five-{i}", 5) for i in range(80)]
        sample = balanced_sample(pool, 50)
        counts = Counter(r.score for r in sample)
        assert len(sample) == 50
        assert counts == {1: 20, 5: 30}

    def test_small_pool_is_returned_whole(self):
        pool = [_review(f"r{i}", 5) for i in range(7)]
        assert len(balanced_sample(pool, 50)) == 7

    def test_out_of_range_score_counts_as_three(self):
        buckets = bucket_by_rating([_review("a", 0), _review("b", 9), _review("c", 1)])
        assert [r.review_id for r in buckets[3]] == ["a", "b"]
        assert [r.review_id for r in buckets[1]] == ["c"]


class TestAnalyze:

    def _collect(self, app, reviews, llm, sample_size=20):
        async def run():
            return [u async for u in analyze_with_progress(app, reviews, llm, sample_size=sample_size)]
        return asyncio.run(run())

    def test_progress_then_analysis(self, make_app, make_reviews, llm):
        app = make_app("com.spotify.music")
        updates = self._collect(app, make_reviews(app.app_id, 30), llm)

        progress = [u for u in updates if isinstance(u, AnalysisProgress)]
        assert progress[0].status == "analyzing"
        assert progress[0].message == "Analyzing 20 reviews for Spotify..."
        assert [p.progress for p in progress] == sorted(p.progress for p in progress)
        assert isinstance(updates[-1], AppAnalysis)
        assert updates[-1].app_name == "Spotify"
        assert llm.calls == ["AppAnalysis"]

    def test_failure_raises_analysis_error(self, make_app, make_reviews, llm):
        app = make_app("com.spotify.music")
        llm.fail_for.add("Spotify")
        with pytest.raises(AnalysisError, match="Spotify"):
            asyncio.run(analyze(app, make_reviews(app.app_id), llm))

    def test_analyze_returns_analysis_only(self, make_app, make_reviews, llm):
        app = make_app("com.pandora.android")
        analysis = asyncio.run(analyze(app, make_reviews(app.app_id), llm))
        assert analysis.app_name == "Pandora"

    def test_results_event_shape(self, make_app, make_analysis):
        app = make_app("com.spotify.music")
        event = analysis_results_event(app, make_analysis("Spotify Music"))
        assert event["type"] == "analysis_results"
        assert event["appId"] == "com.spotify.music"
        assert event["appName"] == "Spotify"
        assert "featureAnalysis" in event
        assert "pricingPerception" in event


class _ScriptedCompletions:
    """Replays canned replies in place of the chat completions endpoint."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = 0

    async def create(self, **kwargs):
        self.calls += 1
        content = self.replies.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestStructuredGeneration:

    def test_retries_until_valid(self, make_analysis):
        valid = json.dumps(make_analysis("Spotify").to_wire())
        completions = _ScriptedCompletions(["not json", '{"appName": "Spotify"}', valid])
        llm = LLMClient(client=_client(completions))

        analysis = asyncio.run(llm.generate(AppAnalysis, "system", "user", retries=3))
        assert analysis.app_name == "Spotify"
        assert completions.calls == 3

    def test_gives_up_after_budget(self):
        completions = _ScriptedCompletions(["{}", "{}", "{}"])
        llm = LLMClient(client=_client(completions))

        with pytest.raises(StructuredOutputError):
            asyncio.run(llm.generate(AppAnalysis, "system", "user", retries=2))
        assert completions.calls == 2
