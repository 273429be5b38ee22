"""
Data models — the structure of our data.
Every app and review, no matter which store it comes from, gets converted into these shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from review_radar.schemas import AppAnalysis


class Platform(str, Enum):
    GOOGLE_PLAY = "GOOGLE_PLAY"
    APP_STORE = "APP_STORE"


@dataclass(frozen=True)
class AppIdentifier:
    """One app the user asked about, resolved from free-form input."""
    raw_input: str
    app_id: str                 # e.g., "com.spotify.music" or "324684580"
    platform: Platform


@dataclass
class ReviewRecord:
    """A single user review from any app store."""
    review_id: str
    user_name: str
    date: Optional[datetime]
    score: int                  # 1 to 5 stars
    text: str
    user_image: str = ""
    title: str = ""             # App Store reviews have titles, Google Play ones don't
    thumbs_up: Optional[int] = None
    version: str = ""


@dataclass
class AppRecord:
    """Snapshot of one app's store listing, as last fetched."""
    app_id: str
    platform: Platform
    name: str
    icon: str = ""
    developer: str = ""
    categories: list[dict] = field(default_factory=list)   # [{"id": ..., "name": ...}]
    description: str = ""
    score: float = 0.0
    ratings: int = 0
    reviews: int = 0
    histogram: list[int] = field(default_factory=list)     # counts for 1★..5★
    installs: Optional[str] = None                          # Google Play only
    version: str = ""
    raw_data: dict = field(default_factory=dict)
    last_fetched: Optional[datetime] = None

    def to_event(self) -> dict:
        """The `app_info` stream event for this app."""
        return {
            "type": "app_info",
            "appId": self.app_id,
            "platform": self.platform.value,
            "name": self.name,
            "icon": self.icon,
            "developer": self.developer,
            "categories": self.categories,
            "description": self.description,
            "score": self.score,
            "ratings": self.ratings,
            "reviews": self.reviews,
            "histogram": self.histogram,
            "installs": self.installs,
            "version": self.version,
            "lastFetched": self.last_fetched.isoformat() if self.last_fetched else None,
        }


@dataclass
class AppAnalysisResult:
    """A finished analysis paired with the app it describes."""
    app: AppRecord
    analysis: "AppAnalysis"
