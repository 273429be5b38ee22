"""
App data store — fetch-or-cache in front of the store scrapers.

An app fetched less than APP_DATA_TTL_DAYS ago is served from the database with
no network call. Anything older (or never seen) is fetched again, and its metadata
and reviews are replaced in a single transaction.

All database work runs in worker threads; the event loop never blocks on SQLite.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from review_radar import config, database
from review_radar.errors import CallTimeoutError
from review_radar.models import AppAnalysisResult, AppRecord, Platform, ReviewRecord
from review_radar.schemas import AppAnalysis
from review_radar.scraper import fetch_app_data

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, Platform, int], Awaitable[tuple[AppRecord, list[ReviewRecord]]]]


def is_fresh(last_fetched: Optional[datetime], ttl_days: int, now: Optional[datetime] = None) -> bool:
    if last_fetched is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - last_fetched < timedelta(days=ttl_days)


class AppDataStore:
    def __init__(self, db_path: str = config.DATABASE_PATH,
                 fetcher: Fetcher = fetch_app_data,
                 ttl_days: int = config.APP_DATA_TTL_DAYS,
                 review_count: int = config.REVIEW_COUNT,
                 fetch_timeout: float = config.FETCH_TIMEOUT_SECONDS):
        self.db_path = db_path
        self.fetcher = fetcher
        self.ttl_days = ttl_days
        self.review_count = review_count
        self.fetch_timeout = fetch_timeout
        # One lock per app ID: concurrent requests for the same app wait for a
        # single refresh instead of both deleting and re-inserting its reviews.
        # Entries vanish once no holder or waiter references the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        database.initialize_database(db_path)

    def _lock_for(self, app_id: str) -> asyncio.Lock:
        lock = self._locks.get(app_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[app_id] = lock
        return lock

    async def get_or_fetch(self, app_id: str, platform: Platform) -> tuple[AppRecord, list[ReviewRecord]]:
        """
        Cached (app, reviews) if fresh, otherwise fetch, persist and return them.
        Fetch errors propagate unchanged; nothing is written when the fetch fails.
        """
        async with self._lock_for(app_id):
            cached = await asyncio.to_thread(database.get_app, self.db_path, app_id)
            if cached is not None and is_fresh(cached[0].last_fetched, self.ttl_days):
                logger.info("Using cached data for %s (fetched %s)", app_id, cached[0].last_fetched)
                return cached

            logger.info("Fetching fresh data for %s from %s", app_id, platform.value)
            try:
                app, reviews = await asyncio.wait_for(
                    self.fetcher(app_id, platform, self.review_count),
                    timeout=self.fetch_timeout,
                )
            except asyncio.TimeoutError as e:
                raise CallTimeoutError(f"Fetching app {app_id}", self.fetch_timeout) from e

            app.last_fetched = await asyncio.to_thread(database.store_app_data, self.db_path, app, reviews)
            return app, reviews

    async def get_cached_analysis(self, app_id: str) -> Optional[AppAnalysis]:
        data = await asyncio.to_thread(database.get_single_analysis, self.db_path, app_id, self.ttl_days)
        return AppAnalysis.model_validate(data) if data else None

    async def store_analysis(self, app_id: str, analysis: AppAnalysis) -> None:
        await asyncio.to_thread(database.store_single_analysis, self.db_path, app_id, analysis.to_wire())

    async def load_previous_result(self, app_id: str) -> Optional[AppAnalysisResult]:
        """An app analyzed in an earlier turn, straight from the cache. No fetching."""
        cached = await asyncio.to_thread(database.get_app, self.db_path, app_id)
        if cached is None:
            return None
        analysis = await self.get_cached_analysis(app_id)
        if analysis is None:
            return None
        return AppAnalysisResult(app=cached[0], analysis=analysis)

    async def get_comparison(self, app_ids: list[str]) -> Optional[dict]:
        return await asyncio.to_thread(database.get_comparison, self.db_path, app_ids, self.ttl_days)

    async def store_comparison(self, app_ids: list[str], comparison: dict) -> None:
        await asyncio.to_thread(database.store_comparison, self.db_path, app_ids, comparison)

    async def grant_access(self, user_id: str, app_ids: list[str], title: str) -> int:
        return await asyncio.to_thread(database.record_analysis, self.db_path, user_id, title, app_ids)

    async def denied_app_ids(self, user_id: str, app_ids: list[str]) -> list[str]:
        """The app IDs (in the given order) this user has never analyzed."""
        allowed = await asyncio.to_thread(database.accessible_app_ids, self.db_path, user_id, app_ids)
        return [app_id for app_id in app_ids if app_id not in allowed]

    async def user_has_access_to_apps(self, user_id: str, app_ids: list[str]) -> bool:
        return not await self.denied_app_ids(user_id, app_ids)
