"""
Shared fixtures: in-memory collaborators so no test touches the network or a real LLM.
"""

import asyncio
import re
from datetime import datetime, timedelta, timezone

import pytest

from review_radar.data_store import AppDataStore
from review_radar.errors import FetchError
from review_radar.identifiers import detect_platform
from review_radar.llm_client import LLMClient, StructuredOutputError
from review_radar.models import AppRecord, ReviewRecord
from review_radar.schemas import (
    ActionPlan,
    ActionStep,
    AppAnalysis,
    FeatureInsight,
    Overview,
    PricingPerception,
    RecommendedAction,
)

APP_NAMES = {
    "com.spotify.music": "Spotify",
    "com.apple.android.music": "Apple Music",
    "com.pandora.android": "Pandora",
    "324684580": "Spotify iOS",
}

_APP_NAME_IN_PROMPT = re.compile(r'Set appName to "(.*)"\.')


def _make_app(app_id, name=None, platform=None):
    return AppRecord(
        app_id=app_id,
        platform=platform or detect_platform(app_id),
        name=name or APP_NAMES.get(app_id, app_id),
        developer="Dev Co",
        description="A music streaming app.",
        score=4.3,
        ratings=12000,
        reviews=3400,
        histogram=[100, 50, 80, 900, 2270],
        installs="1,000,000+",
        version="1.0",
    )


def _make_reviews(app_id, count=30):
    base = datetime(2026, 9, 1, tzinfo=timezone.utc)
    return [
        ReviewRecord(
            review_id=f"{app_id}-r{i}",
            user_name=f"user{i}",
            date=base - timedelta(days=i),
            score=i % 5 + 1,
            text=f"Review {i} of {app_id}",
        )
        for i in range(count)
    ]


def _make_analysis(name, features=None, strengths=None, weaknesses=None):
    features = features or [("offline mode", 0.6, 12), ("playlist sharing", 0.4, 8)]
    return AppAnalysis(
        app_name=name,
        overview=Overview(
            strengths=strengths or ["Offline playback", f"{name} catalog"],
            weaknesses=weaknesses or ["Aggressive ads"],
            market_position=f"{name} is a mainstream streaming app",
            target_demographic="Young adults",
        ),
        feature_analysis=[
            FeatureInsight(
                feature=feature,
                sentiment_score=sentiment,
                mention_count=mentions,
                common_feedback="Users mention it often",
                competitive_edge=False,
                improvement_priority="medium",
            )
            for feature, sentiment, mentions in features
        ],
        pricing_perception=PricingPerception(value_for_money=0.2, pricing_complaints=15, willingness="medium"),
        recommended_actions=[RecommendedAction(action="Reduce ad frequency", priority="high", impact="high")],
    )


def _make_plan():
    return ActionPlan(action_plan=[
        ActionStep(step=i, title=f"Step title {i}", description=f"Do thing {i}.", priority_level="High")
        for i in range(1, 8)
    ])


class FakeLLM(LLMClient):
    """Answers structured calls from canned data and streams fixed tokens."""

    def __init__(self):
        super().__init__(client=object())
        self.fail_for: set[str] = set()
        self.fail_plan = False
        self.tokens = ["Spotify ", "leads ", "on ", "playlists."]
        self.calls: list[str] = []

    async def generate(self, schema, system_prompt, user_prompt, temperature=0.2, retries=3):
        self.calls.append(schema.__name__)
        if schema is AppAnalysis:
            name = _APP_NAME_IN_PROMPT.search(user_prompt).group(1)
            if name in self.fail_for:
                raise StructuredOutputError(f"no valid AppAnalysis for {name}")
            return _make_analysis(name)
        if schema is ActionPlan:
            if self.fail_plan:
                raise StructuredOutputError("no valid ActionPlan")
            return _make_plan()
        raise AssertionError(f"unexpected schema {schema.__name__}")

    async def stream_chat(self, messages, temperature=0.7):
        for token in self.tokens:
            yield token


class FakeFetcher:
    """Stands in for the store scrapers."""

    def __init__(self):
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self.delay = 0.0

    async def __call__(self, app_id, platform, review_count):
        self.calls.append(app_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if app_id in self.failing:
            raise FetchError(app_id, "app not found")
        return _make_app(app_id, platform=platform), _make_reviews(app_id)


@pytest.fixture
def make_app():
    return _make_app


@pytest.fixture
def make_reviews():
    return _make_reviews


@pytest.fixture
def make_analysis():
    return _make_analysis


@pytest.fixture
def make_plan():
    return _make_plan


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "review_radar.db")


@pytest.fixture
def store(db_path, fetcher):
    return AppDataStore(db_path=db_path, fetcher=fetcher, ttl_days=30, review_count=30, fetch_timeout=5)
