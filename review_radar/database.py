"""
Database layer — the storage backbone of the review analyzer.

Uses SQLite through the standard sqlite3 module. Unlike a per-app file layout,
all apps share one database so analyses and comparisons can span several apps.

Tables:
    apps             one row per app, overwritten on every re-fetch
    reviews          the current review sample of each app, replaced wholesale
    single_analyses  cached AppAnalysis per app, dropped whenever its reviews change
    analyses         one row per user request (who analyzed what, and when)
    analysis_apps    which apps each analysis covered — this is what grants access
    comparisons      cached cross-app comparisons, keyed by the sorted app-id set

Every function opens its own short-lived connection, so they are safe to call
from worker threads.
"""

import json
import logging
import os
import sqlite3
from contextlib import closing
from datetime import datetime, timedelta, timezone
from typing import Optional

from review_radar import config
from review_radar.models import AppRecord, Platform, ReviewRecord

logger = logging.getLogger(__name__)

REVIEW_BATCH_SIZE = 100

SCHEMA = """
CREATE TABLE IF NOT EXISTS apps (
    app_id        TEXT PRIMARY KEY,
    platform      TEXT NOT NULL,
    name          TEXT NOT NULL,
    icon          TEXT DEFAULT '',
    developer     TEXT DEFAULT '',
    categories    TEXT DEFAULT '[]',
    description   TEXT DEFAULT '',
    score         REAL DEFAULT 0.0,
    ratings       INTEGER DEFAULT 0,
    review_count  INTEGER DEFAULT 0,
    histogram     TEXT DEFAULT '[]',
    installs      TEXT,
    version       TEXT DEFAULT '',
    raw_data      TEXT DEFAULT '{}',
    last_fetched  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reviews (
    app_id      TEXT NOT NULL REFERENCES apps(app_id),
    review_id   TEXT NOT NULL,
    user_name   TEXT,
    user_image  TEXT DEFAULT '',
    date        TEXT,
    score       INTEGER NOT NULL,
    title       TEXT DEFAULT '',
    text        TEXT DEFAULT '',
    thumbs_up   INTEGER,
    version     TEXT DEFAULT '',
    PRIMARY KEY (app_id, review_id)
);

CREATE TABLE IF NOT EXISTS single_analyses (
    app_id      TEXT PRIMARY KEY REFERENCES apps(app_id),
    analysis    TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS analyses (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    title       TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS analysis_apps (
    analysis_id INTEGER NOT NULL REFERENCES analyses(id),
    app_id      TEXT NOT NULL,
    PRIMARY KEY (analysis_id, app_id)
);

CREATE TABLE IF NOT EXISTS comparisons (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    app_ids_key TEXT NOT NULL,
    data        TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_comparisons_key ON comparisons(app_ids_key, created_at);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _cutoff(max_age_days: int) -> str:
    return (_now() - timedelta(days=max_age_days)).isoformat()


def _app_ids_key(app_ids: list[str]) -> str:
    """Order-insensitive key for a set of apps."""
    return ",".join(sorted(set(app_ids)))


def _get_connection(db_path: str) -> sqlite3.Connection:
    """Open a connection that returns rows as dict-like sqlite3.Row objects."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_database(db_path: str = config.DATABASE_PATH) -> None:
    """Create all tables. Safe to call multiple times."""
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with closing(_get_connection(db_path)) as conn:
        conn.executescript(SCHEMA)
        conn.commit()
    logger.info("Database ready at %s", db_path)


# ============================================================
# APPS + REVIEWS
# ============================================================

def _row_to_app(row: sqlite3.Row) -> AppRecord:
    return AppRecord(
        app_id=row["app_id"],
        platform=Platform(row["platform"]),
        name=row["name"],
        icon=row["icon"] or "",
        developer=row["developer"] or "",
        categories=json.loads(row["categories"] or "[]"),
        description=row["description"] or "",
        score=row["score"] or 0.0,
        ratings=row["ratings"] or 0,
        reviews=row["review_count"] or 0,
        histogram=json.loads(row["histogram"] or "[]"),
        installs=row["installs"],
        version=row["version"] or "",
        raw_data=json.loads(row["raw_data"] or "{}"),
        last_fetched=datetime.fromisoformat(row["last_fetched"]),
    )


def _row_to_review(row: sqlite3.Row) -> ReviewRecord:
    return ReviewRecord(
        review_id=row["review_id"],
        user_name=row["user_name"] or "",
        user_image=row["user_image"] or "",
        date=datetime.fromisoformat(row["date"]) if row["date"] else None,
        score=row["score"],
        title=row["title"] or "",
        text=row["text"] or "",
        thumbs_up=row["thumbs_up"],
        version=row["version"] or "",
    )


def get_app(db_path: str, app_id: str) -> Optional[tuple[AppRecord, list[ReviewRecord]]]:
    """The stored app and its reviews, or None if we have never fetched it."""
    with closing(_get_connection(db_path)) as conn:
        row = conn.execute("SELECT * FROM apps WHERE app_id = ?", (app_id,)).fetchone()
        if row is None:
            return None
        review_rows = conn.execute(
            "SELECT * FROM reviews WHERE app_id = ? ORDER BY date DESC", (app_id,)
        ).fetchall()
    return _row_to_app(row), [_row_to_review(r) for r in review_rows]


def store_app_data(db_path: str, app: AppRecord, reviews: list[ReviewRecord]) -> datetime:
    """
    Upsert the app and replace its reviews in ONE transaction.

    Either the new metadata and the new review sample are both visible, or neither is.
    The cached single-app analysis is dropped too, since it described the old sample.
    Returns the new last_fetched timestamp.
    """
    fetched_at = _now()
    review_rows = [
        (
            app.app_id, r.review_id, r.user_name, r.user_image,
            r.date.isoformat() if r.date else None,
            r.score, r.title, r.text, r.thumbs_up, r.version,
        )
        for r in reviews
    ]

    with closing(_get_connection(db_path)) as conn:
        with conn:  # commits on success, rolls back on any exception
            conn.execute("""
                INSERT INTO apps
                (app_id, platform, name, icon, developer, categories, description,
                 score, ratings, review_count, histogram, installs, version, raw_data, last_fetched)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(app_id) DO UPDATE SET
                    platform = excluded.platform,
                    name = excluded.name,
                    icon = excluded.icon,
                    developer = excluded.developer,
                    categories = excluded.categories,
                    description = excluded.description,
                    score = excluded.score,
                    ratings = excluded.ratings,
                    review_count = excluded.review_count,
                    histogram = excluded.histogram,
                    installs = excluded.installs,
                    version = excluded.version,
                    raw_data = excluded.raw_data,
                    last_fetched = excluded.last_fetched
            """, (
                app.app_id, app.platform.value, app.name, app.icon, app.developer,
                json.dumps(app.categories), app.description, app.score, app.ratings,
                app.reviews, json.dumps(app.histogram), app.installs, app.version,
                json.dumps(app.raw_data, default=str), fetched_at.isoformat(),
            ))

            conn.execute("DELETE FROM reviews WHERE app_id = ?", (app.app_id,))
            conn.execute("DELETE FROM single_analyses WHERE app_id = ?", (app.app_id,))

            # INSERT OR IGNORE skips duplicate review IDs within the new sample
            for start in range(0, len(review_rows), REVIEW_BATCH_SIZE):
                conn.executemany("""
                    INSERT OR IGNORE INTO reviews
                    (app_id, review_id, user_name, user_image, date, score, title, text, thumbs_up, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, review_rows[start:start + REVIEW_BATCH_SIZE])

    logger.info("Stored %s with %d reviews", app.app_id, len(review_rows))
    return fetched_at


# ============================================================
# SINGLE-APP ANALYSES
# ============================================================

def store_single_analysis(db_path: str, app_id: str, analysis: dict) -> None:
    with closing(_get_connection(db_path)) as conn:
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO single_analyses (app_id, analysis, created_at) VALUES (?, ?, ?)",
                (app_id, json.dumps(analysis), _now().isoformat()),
            )


def get_single_analysis(db_path: str, app_id: str,
                        max_age_days: int = config.APP_DATA_TTL_DAYS) -> Optional[dict]:
    with closing(_get_connection(db_path)) as conn:
        row = conn.execute(
            "SELECT analysis FROM single_analyses WHERE app_id = ? AND created_at >= ?",
            (app_id, _cutoff(max_age_days)),
        ).fetchone()
    return json.loads(row["analysis"]) if row else None


# ============================================================
# ACCESS (analyses + analysis_apps)
# ============================================================

def record_analysis(db_path: str, user_id: str, title: str, app_ids: list[str]) -> int:
    """Record that a user analyzed these apps. This is what grants them access."""
    with closing(_get_connection(db_path)) as conn:
        with conn:
            cursor = conn.execute(
                "INSERT INTO analyses (user_id, title, created_at) VALUES (?, ?, ?)",
                (user_id, title, _now().isoformat()),
            )
            analysis_id = cursor.lastrowid
            conn.executemany(
                "INSERT OR IGNORE INTO analysis_apps (analysis_id, app_id) VALUES (?, ?)",
                [(analysis_id, app_id) for app_id in app_ids],
            )
    return analysis_id


def accessible_app_ids(db_path: str, user_id: str, app_ids: list[str]) -> set[str]:
    """Which of these apps the user has analyzed before."""
    if not app_ids:
        return set()
    placeholders = ",".join("?" for _ in app_ids)
    with closing(_get_connection(db_path)) as conn:
        rows = conn.execute(f"""
            SELECT DISTINCT aa.app_id FROM analysis_apps aa
            JOIN analyses a ON a.id = aa.analysis_id
            WHERE a.user_id = ? AND aa.app_id IN ({placeholders})
        """, (user_id, *app_ids)).fetchall()
    return {row["app_id"] for row in rows}


# ============================================================
# COMPARISONS
# ============================================================

def store_comparison(db_path: str, app_ids: list[str], comparison: dict) -> None:
    with closing(_get_connection(db_path)) as conn:
        with conn:
            conn.execute(
                "INSERT INTO comparisons (app_ids_key, data, created_at) VALUES (?, ?, ?)",
                (_app_ids_key(app_ids), json.dumps(comparison), _now().isoformat()),
            )


def get_comparison(db_path: str, app_ids: list[str],
                   max_age_days: int = config.APP_DATA_TTL_DAYS) -> Optional[dict]:
    """Most recent comparison covering exactly this set of apps, if still fresh."""
    if len(set(app_ids)) < 2:
        return None
    with closing(_get_connection(db_path)) as conn:
        row = conn.execute("""
            SELECT data FROM comparisons
            WHERE app_ids_key = ? AND created_at >= ?
            ORDER BY created_at DESC, id DESC LIMIT 1
        """, (_app_ids_key(app_ids), _cutoff(max_age_days))).fetchone()
    return json.loads(row["data"]) if row else None
