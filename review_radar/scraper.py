"""
Review scraper — fetches app details and a review sample from the stores.

Google Play goes through google-play-scraper; the App Store goes through the public
iTunes lookup + customer-reviews RSS endpoints. Both are blocking libraries, so every
call runs in a worker thread to keep the event loop free.

Failure policy:
    - Metadata failure  -> FetchError, the whole fetch fails.
    - Review failure    -> logged, we keep whatever reviews we already have.
"""

import asyncio
import json
import logging
import math
from datetime import datetime, timezone

import requests
from dateutil import parser as date_parser
from google_play_scraper import Sort, reviews as gplay_reviews, app as gplay_app

from review_radar import config
from review_radar.errors import FetchError
from review_radar.models import AppRecord, Platform, ReviewRecord

logger = logging.getLogger(__name__)

ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
ITUNES_RSS_URL = "https://itunes.apple.com/{country}/rss/customerreviews/page={page}/id={app_id}/sortby=mostrecent/json"

# Apple's RSS feed gives 50 reviews per page, up to 10 pages (~500 reviews)
APP_STORE_PAGE_SIZE = 50
APP_STORE_MAX_PAGES = 10
APP_STORE_MAX_REVIEWS = 500


def _json_safe(payload: dict) -> dict:
    """Round-trip through JSON so datetimes and other objects become plain values."""
    return json.loads(json.dumps(payload, default=str))


def _as_utc(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = date_parser.isoparse(value)
        except ValueError:
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# GOOGLE PLAY
# ============================================================

def _gplay_categories(details: dict) -> list[dict]:
    categories = details.get("categories")
    if categories:
        return [{"id": c.get("id"), "name": c.get("name", "")} for c in categories]
    if details.get("genre"):
        return [{"id": details.get("genreId"), "name": details["genre"]}]
    return []


def normalize_google_play_app(details: dict) -> AppRecord:
    raw = _json_safe(details)
    raw["platform"] = Platform.GOOGLE_PLAY.value
    return AppRecord(
        app_id=details.get("appId", ""),
        platform=Platform.GOOGLE_PLAY,
        name=details.get("title") or "Unknown",
        icon=details.get("icon") or "",
        developer=details.get("developer") or "",
        categories=_gplay_categories(details),
        description=details.get("description") or "",
        score=float(details.get("score") or 0.0),
        ratings=int(details.get("ratings") or 0),
        reviews=int(details.get("reviews") or 0),
        histogram=[int(c or 0) for c in (details.get("histogram") or [])],
        installs=details.get("installs"),
        version=details.get("version") or "",
        raw_data=raw,
    )


def normalize_google_play_review(raw: dict) -> ReviewRecord:
    return ReviewRecord(
        review_id=raw["reviewId"],
        user_name=raw.get("userName") or "Anonymous",
        user_image=raw.get("userImage") or "",
        date=_as_utc(raw.get("at")),
        score=int(raw.get("score") or 0),
        text=raw.get("content") or "",
        thumbs_up=raw.get("thumbsUpCount"),
        version=raw.get("reviewCreatedVersion") or raw.get("appVersion") or "",
    )


def scrape_google_play(app_id: str, review_count: int = 100) -> tuple[AppRecord, list[ReviewRecord]]:
    """
    Fetch app details plus two review pages from Google Play.

    Only the details call is required. Both review pages are best-effort: the newest
    page and a smaller relevance-sorted page that diversifies the sample.
    """
    logger.info("Fetching Google Play app info for %s", app_id)
    try:
        details = gplay_app(app_id, lang=config.STORE_LANGUAGE, country=config.STORE_COUNTRY)
    except Exception as e:
        raise FetchError(app_id, str(e)) from e
    app_record = normalize_google_play_app(details)
    app_record.app_id = app_id

    try:
        newest, _ = gplay_reviews(
            app_id,
            lang=config.STORE_LANGUAGE,
            country=config.STORE_COUNTRY,
            sort=Sort.NEWEST,
            count=review_count,
        )
    except Exception as e:
        logger.warning("Could not fetch reviews for %s: %s", app_id, e)
        newest = []

    helpful = []
    try:
        helpful, _ = gplay_reviews(
            app_id,
            lang=config.STORE_LANGUAGE,
            country=config.STORE_COUNTRY,
            sort=Sort.MOST_RELEVANT,
            count=min(50, max(1, review_count // 2)),
        )
    except Exception as e:
        logger.warning("Could not fetch most relevant reviews for %s: %s", app_id, e)

    # Merge, first occurrence wins
    merged: list[ReviewRecord] = []
    seen = set()
    for raw in list(newest) + list(helpful):
        review_id = raw.get("reviewId")
        if not review_id or review_id in seen:
            continue
        seen.add(review_id)
        merged.append(normalize_google_play_review(raw))

    logger.info("Fetched %d Google Play reviews for %s (%s)", len(merged), app_id, app_record.name)
    return app_record, merged


# ============================================================
# APPLE APP STORE
# ============================================================

def normalize_app_store_app(app_id: str, details: dict) -> AppRecord:
    raw = _json_safe(details)
    raw["platform"] = Platform.APP_STORE.value
    genres = details.get("genres") or []
    genre_ids = details.get("genreIds") or [None] * len(genres)
    return AppRecord(
        app_id=app_id,
        platform=Platform.APP_STORE,
        name=details.get("trackName") or "Unknown",
        icon=details.get("artworkUrl512") or details.get("artworkUrl100") or "",
        developer=details.get("sellerName") or details.get("artistName") or "",
        categories=[{"id": gid, "name": name} for name, gid in zip(genres, genre_ids)],
        description=details.get("description") or "",
        score=float(details.get("averageUserRating") or 0.0),
        ratings=int(details.get("userRatingCount") or 0),
        reviews=int(details.get("userRatingCount") or 0),
        histogram=[],
        installs=None,          # App Store doesn't publish install counts
        version=details.get("version") or "",
        raw_data=raw,
    )


def normalize_app_store_entry(entry: dict, fallback_id: str) -> ReviewRecord:
    votes = entry.get("im:voteSum", {}).get("label")
    return ReviewRecord(
        review_id=entry.get("id", {}).get("label") or fallback_id,
        user_name=entry.get("author", {}).get("name", {}).get("label", "Anonymous"),
        date=_as_utc(entry.get("updated", {}).get("label")),
        score=int(entry.get("im:rating", {}).get("label", 0)),
        title=entry.get("title", {}).get("label", ""),
        text=entry.get("content", {}).get("label", ""),
        thumbs_up=int(votes) if votes not in (None, "") else None,
        version=entry.get("im:version", {}).get("label", ""),
    )


def lookup_app_store_app(app_id: str) -> dict:
    response = requests.get(
        ITUNES_LOOKUP_URL,
        params={"id": app_id, "country": config.STORE_COUNTRY},
        timeout=15,
    )
    response.raise_for_status()
    results = response.json().get("results", [])
    if not results:
        raise FetchError(app_id, "no App Store listing with this ID")
    return results[0]


def fetch_app_store_page(app_id: str, page: int) -> list[dict]:
    """One page of the customer-reviews RSS feed, review entries only."""
    url = ITUNES_RSS_URL.format(country=config.STORE_COUNTRY, page=page, app_id=app_id)
    response = requests.get(url, timeout=10)
    response.raise_for_status()
    entries = response.json().get("feed", {}).get("entry", [])
    # A single entry comes back as a dict, not a list
    if isinstance(entries, dict):
        entries = [entries]
    # The first entry can be app metadata; skip anything without a rating
    return [e for e in entries if "im:rating" in e]


def app_store_page_count(review_count: int) -> int:
    wanted = min(review_count, APP_STORE_MAX_REVIEWS)
    return min(APP_STORE_MAX_PAGES, max(1, math.ceil(wanted / APP_STORE_PAGE_SIZE)))


async def scrape_apple_app_store(app_id: str, review_count: int = 100) -> tuple[AppRecord, list[ReviewRecord]]:
    """
    Fetch listing metadata and recency-sorted reviews from the App Store.

    Pagination stops at the first failing or empty page; whatever came before is kept.
    A failing first page just means zero reviews.
    """
    logger.info("Fetching App Store app info for %s", app_id)
    try:
        details = await asyncio.to_thread(lookup_app_store_app, app_id)
    except FetchError:
        raise
    except Exception as e:
        raise FetchError(app_id, str(e)) from e
    app_record = normalize_app_store_app(app_id, details)

    wanted = min(review_count, APP_STORE_MAX_REVIEWS)
    all_reviews: list[ReviewRecord] = []
    seen = set()
    for page in range(1, app_store_page_count(review_count) + 1):
        if page > 1:
            await asyncio.sleep(config.APP_STORE_PAGE_DELAY)
        try:
            entries = await asyncio.to_thread(fetch_app_store_page, app_id, page)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Error fetching App Store review page %d for %s: %s", page, app_id, e)
            break
        if not entries:
            break

        for i, entry in enumerate(entries):
            review = normalize_app_store_entry(entry, f"apple_{page}_{i}")
            if review.review_id in seen:
                continue
            seen.add(review.review_id)
            all_reviews.append(review)
        logger.debug("App Store page %d for %s: %d entries", page, app_id, len(entries))

        if len(all_reviews) >= wanted:
            break

    logger.info("Fetched %d App Store reviews for %s (%s)", len(all_reviews), app_id, app_record.name)
    return app_record, all_reviews[:wanted]


# ============================================================
# ENTRY POINT
# ============================================================

async def fetch_app_data(app_id: str, platform: Platform,
                         review_count: int = config.REVIEW_COUNT) -> tuple[AppRecord, list[ReviewRecord]]:
    """Fetch (app info, reviews) from whichever store the app lives in."""
    if platform == Platform.APP_STORE:
        return await scrape_apple_app_store(app_id, review_count)
    return await asyncio.to_thread(scrape_google_play, app_id, review_count)
