"""
Identifier resolver — turns whatever the user typed into app IDs.

Accepts comma / "vs" / "versus" separated text, Play Store and App Store URLs,
or bare IDs. Never raises: anything we can't parse is passed through as-is,
so the fetcher gets a chance to reject it with a proper error.
"""

import logging
import re
from typing import Iterable
from urllib.parse import urlparse, parse_qs

from review_radar.models import AppIdentifier, Platform

logger = logging.getLogger(__name__)

# Delimiters are only honoured with surrounding whitespace so "devs" or "vsco" stay intact
_SPLIT_PATTERN = re.compile(r",|\s+vs\s+|\s+versus\s+")
_REVERSE_DOMAIN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$")
_APPLE_PATH_ID = re.compile(r"^id(\d+)$")

GOOGLE_PLAY_HOSTS = {"play.google.com"}
APP_STORE_HOSTS = {"apps.apple.com", "itunes.apple.com"}


def detect_platform(app_id: str) -> Platform:
    """
    Guess the store from the shape of an ID.
    Numeric IDs are App Store track IDs; reverse-domain package names are Google Play.
    Anything else defaults to Google Play.
    """
    if app_id.isdigit():
        return Platform.APP_STORE
    if _REVERSE_DOMAIN.match(app_id):
        return Platform.GOOGLE_PLAY
    return Platform.GOOGLE_PLAY


def _has_delimiter(text: str) -> bool:
    return "," in text or " vs " in text or " versus " in text


def _parse_url(text: str) -> AppIdentifier | None:
    url = urlparse(text)
    host = (url.hostname or "").lower()
    query = parse_qs(url.query)

    if host in GOOGLE_PLAY_HOSTS:
        app_id = (query.get("id") or [""])[0]
        if app_id:
            return AppIdentifier(text, app_id, Platform.GOOGLE_PLAY)
        return None

    if host in APP_STORE_HOSTS:
        app_id = (query.get("id") or [""])[0]
        if app_id:
            return AppIdentifier(text, app_id.removeprefix("id"), Platform.APP_STORE)
        # e.g. https://apps.apple.com/us/app/spotify/id324684580
        for segment in url.path.split("/"):
            match = _APPLE_PATH_ID.match(segment)
            if match:
                return AppIdentifier(text, match.group(1), Platform.APP_STORE)
        return None

    # Unknown host: look for "/id/<value>" or an "id" query parameter
    if query.get("id"):
        app_id = query["id"][0]
        return AppIdentifier(text, app_id, detect_platform(app_id))
    parts = url.path.split("/")
    for i, segment in enumerate(parts[:-1]):
        if segment == "id" and parts[i + 1]:
            return AppIdentifier(text, parts[i + 1], detect_platform(parts[i + 1]))
    return None


def resolve_identifier(text: str) -> AppIdentifier:
    """Resolve a single piece of input (URL or bare ID)."""
    piece = text.strip()

    # Already a bare ID: no slashes, no scheme
    if "/" not in piece and "https" not in piece:
        return AppIdentifier(text, piece, detect_platform(piece))

    try:
        resolved = _parse_url(piece)
    except ValueError as e:
        logger.warning("Could not parse %r as a store URL: %s", piece, e)
        resolved = None

    if resolved is None:
        return AppIdentifier(text, piece, detect_platform(piece))
    return resolved


def resolve_identifiers(text: str) -> list[AppIdentifier]:
    """
    Resolve free-form input into a de-duplicated list of identifiers,
    preserving first-seen order.
    """
    if not text or not text.strip():
        return []

    pieces = _SPLIT_PATTERN.split(text) if _has_delimiter(text) else [text]
    resolved = [resolve_identifier(p) for p in pieces if p and p.strip()]
    return dedupe_identifiers(resolved)


def resolve_path_segments(segments: Iterable[str]) -> list[AppIdentifier]:
    """Resolve a route like /compare/<id>/<id> where every segment is one app."""
    return dedupe_identifiers(resolve_identifier(s) for s in segments if s and s.strip())


def dedupe_identifiers(identifiers: Iterable[AppIdentifier]) -> list[AppIdentifier]:
    seen = set()
    result = []
    for identifier in identifiers:
        if identifier.app_id in seen:
            continue
        seen.add(identifier.app_id)
        result.append(identifier)
    return result


def extract_app_ids(text: str) -> list[str]:
    """Just the IDs, e.g. "com.spotify.music vs com.apple.music" -> both package names."""
    return [i.app_id for i in resolve_identifiers(text)]


def identifiers_from_messages(messages: list[dict]) -> list[AppIdentifier]:
    """Every app mentioned in the user's turns of a conversation, oldest first."""
    found = []
    for message in messages:
        if message.get("role") == "user" and message.get("content"):
            found.extend(resolve_identifiers(message["content"]))
    return dedupe_identifiers(found)
