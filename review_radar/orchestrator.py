"""
Stream orchestrator — runs one request from identifiers to final status.

    resolve identifiers
      -> one pipeline per new app, all concurrent (fetch-or-cache -> analyze)
      -> comparison, if at least two apps have analyses
      -> narrative summary streamed from the chat model
      -> final "completed" status

Every pipeline writes into one shared EventChannel, so events from different apps
interleave but each app's own events stay in order. A failing pipeline reports a
scoped error and yields no result; it never cancels its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from review_radar import config
from review_radar.analyzer import AnalysisProgress, analysis_results_event, analyze_with_progress
from review_radar.comparison import generate_comparison
from review_radar.data_store import AppDataStore
from review_radar.errors import AccessDeniedError, ReviewRadarError
from review_radar.events import EventChannel, Phase, status_event, text_event
from review_radar.identifiers import (
    dedupe_identifiers,
    identifiers_from_messages,
    resolve_identifiers,
    resolve_path_segments,
)
from review_radar.llm_client import LLMClient
from review_radar.models import AppAnalysisResult, AppIdentifier
from review_radar.narrative import stream_narrative

logger = logging.getLogger(__name__)


@dataclass
class AnalysisRequest:
    """Which apps to analyze now, and which ones earlier turns already covered."""
    new_identifiers: list[AppIdentifier]
    previous_identifiers: list[AppIdentifier] = field(default_factory=list)

    @classmethod
    def from_messages(cls, messages: list[dict]) -> "AnalysisRequest":
        """Apps in the latest user message are new; apps from earlier user turns stay in context."""
        latest = messages[-1]
        new = resolve_identifiers(latest.get("content") or "")
        new_ids = {i.app_id for i in new}
        previous = [i for i in identifiers_from_messages(messages[:-1]) if i.app_id not in new_ids]
        return cls(new_identifiers=new, previous_identifiers=previous)

    @classmethod
    def from_app_ids(cls, app_ids: list[str]) -> "AnalysisRequest":
        return cls(new_identifiers=resolve_path_segments(app_ids))

    @property
    def all_app_ids(self) -> list[str]:
        return [i.app_id for i in dedupe_identifiers(self.previous_identifiers + self.new_identifiers)]


class StreamOrchestrator:
    def __init__(self, store: AppDataStore, llm: LLMClient,
                 sample_size: int = config.SAMPLE_SIZE,
                 depth: str = config.ANALYSIS_DEPTH):
        self.store = store
        self.llm = llm
        self.sample_size = sample_size
        self.depth = depth

    async def stream(self, request: AnalysisRequest, user_id: Optional[str] = None) -> AsyncIterator[dict]:
        """Yield every event of one request, in stream order."""
        channel = EventChannel()
        task = asyncio.create_task(self._run(request, user_id, channel))
        try:
            async for event in channel:
                yield event
            await task
        finally:
            # Client went away mid-stream: stop whatever is still running
            if not task.done():
                task.cancel()

    async def run(self, request: AnalysisRequest, user_id: Optional[str] = None) -> list[dict]:
        """Collect the whole stream into a list."""
        return [event async for event in self.stream(request, user_id)]

    async def _run(self, request: AnalysisRequest, user_id: Optional[str], channel: EventChannel) -> None:
        try:
            new_ids = [i.app_id for i in request.new_identifiers]
            plural = "s" if len(new_ids) != 1 else ""
            channel.send(status_event(
                "analyzing", f"Analyzing {len(new_ids)} new app{plural}: {', '.join(new_ids)}"
            ))

            previous = await self._load_previous(request.previous_identifiers)

            # "All settle" join: pipelines catch their own errors and return None
            settled = await asyncio.gather(
                *(self._run_app_pipeline(identifier, channel) for identifier in request.new_identifiers),
                return_exceptions=True,
            )
            fresh = []
            for identifier, outcome in zip(request.new_identifiers, settled):
                if isinstance(outcome, BaseException):
                    logger.error("Pipeline for %s raised %r", identifier.app_id, outcome)
                elif outcome is not None:
                    fresh.append(outcome)

            fresh_ids = {r.app.app_id for r in fresh}
            results = [r for r in previous if r.app.app_id not in fresh_ids] + fresh

            comparison = None
            if len(request.all_app_ids) >= 2 and len(results) >= 2:
                comparison = await self._compare(results, user_id, channel)

            await self._summarize(results, comparison, channel)
        except Exception as e:
            logger.exception("Error in app analysis")
            channel.send(status_event("error", f"Error analyzing apps: {e}"))
        finally:
            channel.close()

    async def _load_previous(self, identifiers: list[AppIdentifier]) -> list[AppAnalysisResult]:
        """Apps analyzed in earlier turns come from the cache; they are not re-run."""
        if not identifiers:
            return []
        loaded = await asyncio.gather(*(self.store.load_previous_result(i.app_id) for i in identifiers))
        results = []
        for identifier, result in zip(identifiers, loaded):
            if result is None:
                logger.info("No cached analysis for previously mentioned app %s", identifier.app_id)
            else:
                results.append(result)
        return results

    async def _run_app_pipeline(self, identifier: AppIdentifier, channel: EventChannel) -> Optional[AppAnalysisResult]:
        """Fetch-or-cache one app, analyze it, and stream its events. None on failure."""
        app_id = identifier.app_id
        try:
            channel.send(status_event(
                "analyzing", f"Fetching data for app {app_id}...", Phase.FETCHING, app_id
            ))
            app, reviews = await self.store.get_or_fetch(app_id, identifier.platform)
            app.app_id = app_id
            channel.send(app.to_event())

            cached = await self.store.get_cached_analysis(app_id)
            if cached is not None:
                cached.app_name = app.name
                channel.send(status_event(
                    "processing", f"Retrieved existing analysis for {app.name}...", Phase.ANALYZING, app_id
                ))
                channel.send(analysis_results_event(app, cached))
                return AppAnalysisResult(app=app, analysis=cached)

            analysis = None
            async for update in analyze_with_progress(app, reviews, self.llm, self.sample_size, self.depth):
                if isinstance(update, AnalysisProgress):
                    channel.send(status_event(
                        update.status, update.message, Phase.ANALYZING, app_id, update.progress
                    ))
                else:
                    analysis = update

            try:
                await self.store.store_analysis(app_id, analysis)
            except Exception:
                logger.exception("Could not cache analysis for %s", app_id)
            channel.send(analysis_results_event(app, analysis))
            return AppAnalysisResult(app=app, analysis=analysis)
        except Exception as e:
            logger.exception("Error analyzing app %s", app_id)
            channel.send(status_event("error", f"Failed to analyze app {app_id}: {e}", app_id=app_id))
            return None

    async def _compare(self, results: list[AppAnalysisResult], user_id: Optional[str],
                       channel: EventChannel) -> Optional[dict]:
        """Reuse or build the comparison. Failures are reported and skip the comparison only."""
        channel.send(status_event(
            "analyzing", f"Generating cross-app comparison for {len(results)} apps...", Phase.COMPARING
        ))
        app_ids = [r.app.app_id for r in results]
        try:
            existing = await self.store.get_comparison(app_ids)
            if existing is not None:
                if user_id is not None:
                    denied = await self.store.denied_app_ids(user_id, app_ids)
                    if denied:
                        raise AccessDeniedError(denied)
                logger.info("Reusing stored comparison for %s", ", ".join(app_ids))
                channel.send(status_event(
                    "processing", f"Retrieved existing comparison for {len(results)} apps...", Phase.COMPARING
                ))
                comparison = existing
            else:
                comparison = await generate_comparison(
                    results, self.llm, user_id=user_id, access_check=self.store.denied_app_ids
                )
                await self.store.store_comparison(app_ids, comparison)
        except ReviewRadarError as e:
            logger.error("Comparison failed for %s: %s", ", ".join(app_ids), e)
            channel.send(status_event("error", f"Comparison failed: {e}", Phase.COMPARING))
            return None

        channel.send(comparison)
        return comparison

    async def _summarize(self, results: list[AppAnalysisResult], comparison: Optional[dict],
                         channel: EventChannel) -> None:
        if not results:
            channel.send(status_event("completed", "Analysis completed, but no valid results were found."))
            return

        channel.send(status_event("summarizing", "Writing summary...", Phase.SUMMARIZING))
        index = 0
        async for token in stream_narrative(results, comparison, self.llm):
            channel.send(text_event(index, token))
            index += 1

        names = ", ".join(r.app.name for r in results)
        channel.send(status_event("completed", f"Analysis completed for {names}."))
