"""
Tests for the store scrapers, with google-play-scraper and the iTunes endpoints patched out.
"""

import asyncio
from datetime import datetime

import pytest
import requests

from review_radar import config, scraper
from review_radar.errors import FetchError
from review_radar.models import Platform


def _gplay_details(app_id="com.spotify.music"):
    return {
        "appId": app_id,
        "title": "Spotify: Music and Podcasts",
        "icon": "https://play-lh.googleusercontent.com/icon",
        "developer": "Spotify AB",
        "genre": "Music & Audio",
        "genreId": "MUSIC_AND_AUDIO",
        "description": "Listen to songs.",
        "score": 4.4,
        "ratings": 30000000,
        "reviews": 900000,
        "histogram": [1, 2, 3, 4, 5],
        "installs": "1,000,000,000+",
        "version": "8.9.0",
        "released": datetime(2014, 5, 27),
    }


def _gplay_review(review_id, score=4):
    return {
        "reviewId": review_id,
        "userName": "Jane",
        "userImage": "",
        "content": f"Review {review_id}",
        "score": score,
        "thumbsUpCount": 3,
        "reviewCreatedVersion": "8.9.0",
        "at": datetime(2026, 9, 30, 12, 0),
    }


def _rss_entry(review_id, rating="5"):
    return {
        "id": {"label": review_id},
        "author": {"name": {"label": "Sam"}},
        "updated": {"label": "2026-09-30T10:00:00-07:00"},
        "im:rating": {"label": rating},
        "im:version": {"label": "1.2"},
        "im:voteSum": {"label": "2"},
        "title": {"label": "Great"},
        "content": {"label": "Love it"},
    }


class TestGooglePlay:

    @pytest.fixture
    def pages(self, monkeypatch):
        """Patch the library; tests fill in what each sort order returns (or raises)."""
        responses = {}

        def fake_reviews(app_id, lang, country, sort, count):
            result = responses[sort]
            if isinstance(result, Exception):
                raise result
            return result[:count], None

        monkeypatch.setattr(scraper, "gplay_app", lambda app_id, lang, country: _gplay_details(app_id))
        monkeypatch.setattr(scraper, "gplay_reviews", fake_reviews)
        return responses

    def test_merges_both_pages_without_duplicates(self, pages):
        pages[scraper.Sort.NEWEST] = [_gplay_review("a"), _gplay_review("b")]
        pages[scraper.Sort.MOST_RELEVANT] = [_gplay_review("b"), _gplay_review("c")]

        app, reviews = scraper.scrape_google_play("com.spotify.music", review_count=10)

        assert [r.review_id for r in reviews] == ["a", "b", "c"]
        assert app.name == "Spotify: Music and Podcasts"
        assert app.categories == [{"id": "MUSIC_AND_AUDIO", "name": "Music & Audio"}]
        assert app.raw_data["platform"] == "GOOGLE_PLAY"
        assert reviews[0].date.tzinfo is not None

    def test_second_page_failure_keeps_first(self, pages):
        pages[scraper.Sort.NEWEST] = [_gplay_review("a")]
        pages[scraper.Sort.MOST_RELEVANT] = RuntimeError("rate limited")

        _, reviews = scraper.scrape_google_play("com.spotify.music")
        assert [r.review_id for r in reviews] == ["a"]

    def test_first_page_failure_is_not_fatal(self, pages):
        pages[scraper.Sort.NEWEST] = RuntimeError("boom")
        pages[scraper.Sort.MOST_RELEVANT] = [_gplay_review("z")]

        _, reviews = scraper.scrape_google_play("com.spotify.music")
        assert [r.review_id for r in reviews] == ["z"]

    def test_metadata_failure_is_fatal(self, monkeypatch):
        def not_found(app_id, lang, country):
            raise ValueError("App not found(404).")

        monkeypatch.setattr(scraper, "gplay_app", not_found)
        with pytest.raises(FetchError, match="com.missing.app"):
            scraper.scrape_google_play("com.missing.app")


class TestAppStore:

    @pytest.fixture(autouse=True)
    def no_delay(self, monkeypatch):
        monkeypatch.setattr(config, "APP_STORE_PAGE_DELAY", 0)

    @pytest.fixture
    def lookup(self, monkeypatch):
        details = {
            "trackName": "Spotify - Music and Podcasts",
            "artworkUrl512": "https://is1-ssl.mzstatic.com/icon.png",
            "sellerName": "Spotify",
            "genres": ["Music"],
            "genreIds": ["6011"],
            "averageUserRating": 4.8,
            "userRatingCount": 25000000,
            "version": "9.0",
        }
        monkeypatch.setattr(scraper, "lookup_app_store_app", lambda app_id: details)
        return details

    def test_page_count(self):
        assert scraper.app_store_page_count(1) == 1
        assert scraper.app_store_page_count(100) == 2
        assert scraper.app_store_page_count(101) == 3
        assert scraper.app_store_page_count(10000) == 10

    def test_stops_at_failing_page(self, lookup, monkeypatch):
        requested = []

        def fetch_page(app_id, page):
            requested.append(page)
            if page == 2:
                raise requests.ConnectionError("reset")
            return [_rss_entry(f"p{page}-{i}") for i in range(50)]

        monkeypatch.setattr(scraper, "fetch_app_store_page", fetch_page)
        app, reviews = asyncio.run(scraper.scrape_apple_app_store("324684580", review_count=150))

        assert requested == [1, 2]
        assert len(reviews) == 50
        assert app.name == "Spotify - Music and Podcasts"
        assert app.platform == Platform.APP_STORE
        assert app.categories == [{"id": "6011", "name": "Music"}]

    def test_first_page_failure_keeps_metadata(self, lookup, monkeypatch):
        requested = []

        def fetch_page(app_id, page):
            requested.append(page)
            raise requests.HTTPError("503")

        monkeypatch.setattr(scraper, "fetch_app_store_page", fetch_page)
        app, reviews = asyncio.run(scraper.scrape_apple_app_store("324684580", review_count=150))

        assert requested == [1]
        assert reviews == []
        assert app.app_id == "324684580"
        assert app.name == "Spotify - Music and Podcasts"

    def test_stops_at_empty_page(self, lookup, monkeypatch):
        monkeypatch.setattr(
            scraper, "fetch_app_store_page",
            lambda app_id, page: [_rss_entry(f"p{page}-{i}") for i in range(10)] if page == 1 else [],
        )
        _, reviews = asyncio.run(scraper.scrape_apple_app_store("324684580", review_count=500))
        assert len(reviews) == 10

    def test_caps_at_requested_count(self, lookup, monkeypatch):
        monkeypatch.setattr(
            scraper, "fetch_app_store_page",
            lambda app_id, page: [_rss_entry(f"p{page}-{i}") for i in range(50)],
        )
        _, reviews = asyncio.run(scraper.scrape_apple_app_store("324684580", review_count=60))
        assert len(reviews) == 60

    def test_lookup_failure_is_fatal(self, monkeypatch):
        def lookup_fails(app_id):
            raise requests.HTTPError("503")

        monkeypatch.setattr(scraper, "lookup_app_store_app", lookup_fails)
        with pytest.raises(FetchError):
            asyncio.run(scraper.scrape_apple_app_store("324684580"))

    def test_entry_normalization(self):
        review = scraper.normalize_app_store_entry(_rss_entry("r1", rating="2"), "fallback")
        assert review.review_id == "r1"
        assert review.score == 2
        assert review.title == "Great"
        assert review.thumbs_up == 2
        assert review.date.utcoffset().total_seconds() == 0

    def test_dispatch_by_platform(self, lookup, monkeypatch):
        monkeypatch.setattr(scraper, "fetch_app_store_page", lambda app_id, page: [])
        app, reviews = asyncio.run(scraper.fetch_app_data("324684580", Platform.APP_STORE, 10))
        assert app.app_id == "324684580"
        assert reviews == []
