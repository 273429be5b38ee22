"""
Client stream reducer: folds stream events into the state a UI renders.

The upstream may hand us a growing snapshot that gets replayed (every poll sends
the whole array again), so applying the same event twice must be a no-op. We keep
a set of event fingerprints; an empty snapshot means a new run and clears that set.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from review_radar.events import fingerprint

FETCHING_PATTERN = re.compile(r"Fetching data for app\s+(.*?)\.\.\.$")


@dataclass
class ClientState:
    status_message: str = ""
    status: str = ""
    show_app_skeleton: bool = False
    show_analysis_skeleton: bool = False
    show_comparison_skeleton: bool = False
    loading_app_ids: set = field(default_factory=set)
    apps: list = field(default_factory=list)
    analyses: list = field(default_factory=list)
    comparison: Optional[dict] = None
    errors: list = field(default_factory=list)
    narrative_tokens: dict = field(default_factory=dict)

    @property
    def narrative(self) -> str:
        return "".join(self.narrative_tokens[i] for i in sorted(self.narrative_tokens))

    @property
    def is_loading(self) -> bool:
        return (self.show_app_skeleton or self.show_analysis_skeleton
                or self.show_comparison_skeleton or bool(self.loading_app_ids))


def _identity(event: dict) -> Optional[str]:
    return event.get("appId") or event.get("name") or event.get("appName")


def _upsert(items: list, event: dict) -> None:
    """Replace the entry with the same identity in place, or append."""
    key = _identity(event)
    for i, existing in enumerate(items):
        if key is not None and _identity(existing) == key:
            items[i] = event
            return
    items.append(event)


class StreamReducer:
    def __init__(self, state: Optional[ClientState] = None):
        self.state = state or ClientState()
        self._seen: set[str] = set()

    def reset(self) -> None:
        self.state = ClientState()
        self._seen.clear()

    def apply(self, snapshot: list[dict]) -> ClientState:
        """Fold a (possibly replayed) snapshot of the event array."""
        if not snapshot:
            self._seen.clear()
            self._start_run()
            return self.state
        for event in snapshot:
            self.feed(event)
        return self.state

    def _start_run(self) -> None:
        """Drop per-run state. Apps, analyses and the comparison carry over and get upserted."""
        state = self.state
        state.status = ""
        state.status_message = ""
        state.show_app_skeleton = False
        state.show_analysis_skeleton = False
        state.show_comparison_skeleton = False
        state.loading_app_ids.clear()
        state.errors.clear()
        state.narrative_tokens.clear()

    def feed(self, event: dict) -> bool:
        """Apply one event. Returns False if it was already applied."""
        key = fingerprint(event)
        if key in self._seen:
            return False
        self._seen.add(key)

        handler = getattr(self, f"_on_{event.get('type')}", None)
        if handler is not None:
            handler(event)
        return True

    # ---- per event type ----

    def _on_status(self, event: dict) -> None:
        state = self.state
        message = event.get("message", "")
        state.status_message = message
        state.status = event.get("status", "")

        if state.status == "completed":
            state.show_app_skeleton = False
            state.show_analysis_skeleton = False
            state.show_comparison_skeleton = False
            state.loading_app_ids.clear()
            return

        if state.status == "error":
            state.errors.append(message)
            if event.get("appId"):
                state.loading_app_ids.discard(event["appId"])
            return

        phase = event.get("phase")
        if phase is not None:
            if phase == "fetching":
                state.show_app_skeleton = True
                if event.get("appId"):
                    state.loading_app_ids.add(event["appId"])
            elif phase == "analyzing":
                state.show_analysis_skeleton = True
            elif phase == "comparing":
                state.show_comparison_skeleton = True
            return

        # Older emitters only carry prose
        if "Fetching data for app" in message:
            state.show_app_skeleton = True
            match = FETCHING_PATTERN.search(message)
            if match:
                state.loading_app_ids.add(match.group(1))
        if "Analyzing" in message and "reviews" in message:
            state.show_analysis_skeleton = True
        if "Generating cross-app comparison" in message:
            state.show_comparison_skeleton = True

    def _on_app_info(self, event: dict) -> None:
        _upsert(self.state.apps, event)
        self.state.loading_app_ids.discard(_identity(event))
        if not self.state.loading_app_ids:
            self.state.show_app_skeleton = False

    def _on_analysis_results(self, event: dict) -> None:
        _upsert(self.state.analyses, event)
        self.state.loading_app_ids.discard(_identity(event))

    def _on_comparison_results(self, event: dict) -> None:
        self.state.comparison = event
        self.state.show_comparison_skeleton = False

    def _on_text(self, event: dict) -> None:
        self.state.narrative_tokens[event.get("index", len(self.state.narrative_tokens))] = event.get("content", "")


def reduce(events: Iterable[dict]) -> ClientState:
    """Fold a finished stream in one go."""
    reducer = StreamReducer()
    for event in events:
        reducer.feed(event)
    return reducer.state
