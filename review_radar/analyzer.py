"""
Single-app analyzer — turns one app's reviews into a structured AppAnalysis.

Key design decisions:
    1. Stratified sampling: critical reviews are over-represented so the analysis
       isn't drowned out by five-star "great app!" reviews.
    2. Counting is done in code (bucket sizes); the LLM only reads the text.
    3. One structured call per app, low temperature, validated against a schema
       and retried on bad replies.
    4. analyze_with_progress() yields status updates as it works, then exactly one
       final AppAnalysis. analyze() is the same thing without the updates.
"""

import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Literal, Union

import openai

from review_radar import config
from review_radar.errors import AnalysisError
from review_radar.llm_client import LLMClient, StructuredOutputError
from review_radar.models import AppRecord, ReviewRecord
from review_radar.schemas import AppAnalysis

logger = logging.getLogger(__name__)

Depth = Literal["basic", "detailed", "comprehensive"]

# How many reviews to take from each star bucket (before backfilling)
BUCKET_TARGETS = {1: 10, 2: 10, 3: 10, 4: 15, 5: 15}

DEPTH_GUIDANCE = {
    "basic": "Keep it brief: 3 items per SWOT list, the 5 most mentioned features, 3 actions.",
    "detailed": "Be thorough: 4-6 items per SWOT list, up to 10 features, 5 actions.",
    "comprehensive": (
        "Be exhaustive: 6-8 items per SWOT list, every distinct feature users mention, "
        "7 or more actions, and identify user segments."
    ),
}


@dataclass
class AnalysisProgress:
    """One progress update from the analyzer."""
    status: str                 # "analyzing" for the headline update, then "processing"
    message: str
    progress: int               # 0-100


# ============================================================
# PART 1: Sampling (no LLM needed)
# ============================================================

def bucket_by_rating(reviews: list[ReviewRecord]) -> dict[int, list[ReviewRecord]]:
    """Group reviews by star rating. Missing or out-of-range scores count as 3 stars."""
    buckets: dict[int, list[ReviewRecord]] = {score: [] for score in range(1, 6)}
    for review in reviews:
        score = review.score if review.score in buckets else 3
        buckets[score].append(review)
    return buckets


def balanced_sample(reviews: list[ReviewRecord], sample_size: int = config.SAMPLE_SIZE) -> list[ReviewRecord]:
    """
    Pick up to `sample_size` reviews, stratified by rating.

    Each star bucket contributes up to its BUCKET_TARGETS count (lowest stars first),
    then any shortfall is filled from the remaining reviews in their original order.
    Never returns duplicates or more than `sample_size` reviews.
    """
    if sample_size <= 0:
        return []

    # Drop repeated review IDs up front, first occurrence wins
    unique: list[ReviewRecord] = []
    seen_ids = set()
    for review in reviews:
        if review.review_id in seen_ids:
            continue
        seen_ids.add(review.review_id)
        unique.append(review)

    buckets = bucket_by_rating(unique)
    sample: list[ReviewRecord] = []
    for score, target in BUCKET_TARGETS.items():
        sample.extend(buckets[score][:target])
    sample = sample[:sample_size]

    if len(sample) < sample_size:
        picked = {r.review_id for r in sample}
        for review in unique:
            if len(sample) >= sample_size:
                break
            if review.review_id not in picked:
                sample.append(review)
                picked.add(review.review_id)

    return sample


def rating_distribution(reviews: list[ReviewRecord]) -> dict[int, int]:
    return {score: len(items) for score, items in bucket_by_rating(reviews).items()}


# ============================================================
# PART 2: Prompting
# ============================================================

ANALYSIS_SYSTEM_PROMPT = """You are an expert app market analyst specializing in competitive analysis.
You read user reviews of a mobile app and produce a brutally honest, structured assessment
for someone planning to build a competing app.

RULES — follow these exactly:
1. Only report what users actually say. Do NOT invent features or complaints.
2. Strengths and weaknesses are short noun phrases (2-6 words), e.g. "offline playback", "aggressive ads".
3. Feature names are short and lowercase, e.g. "playlist sharing". The same concept always gets the same name.
4. sentimentScore and valueForMoney range from -1 (very negative) to 1 (very positive).
5. mentionCount is the number of sampled reviews that mention the feature.
6. pricingComplaints is the percentage (0-100) of sampled reviews complaining about price.
7. Recommended actions are imperative and specific (what a competitor should do to win these users)."""


def format_review(index: int, review: ReviewRecord) -> str:
    date = review.date.strftime("%Y-%m-%d") if review.date else "unknown date"
    title = f"{review.title} — " if review.title else ""
    return f"[Review {index}] {review.score}/5 ({date}) {title}{review.text[:600]}"


def build_analysis_prompt(app: AppRecord, sample: list[ReviewRecord],
                          distribution: dict[int, int], depth: Depth) -> str:
    categories = ", ".join(c.get("name", "") for c in app.categories) or "Unknown"
    description = app.description[:500]
    if len(app.description) > 500:
        description += "..."
    counts = ", ".join(f"{score}★: {distribution.get(score, 0)}" for score in range(1, 6))
    formatted = "\n".join(format_review(i + 1, r) for i, r in enumerate(sample))

    return f"""## App Context
- App Name: {app.name}
- Developer: {app.developer or "Unknown"}
- Categories: {categories}
- Current Version: {app.version or "Unknown"}
- Installs: {app.installs or "n/a"}
- Overall Rating: {app.score:.1f}/5 from {app.ratings:,} ratings

## App Description
{description}

## Review Sample
Reviews fetched per rating: {counts}.
The sample below deliberately over-represents critical reviews.

{formatted}

## Analysis Depth
{DEPTH_GUIDANCE.get(depth, DEPTH_GUIDANCE["detailed"])}

Set appName to "{app.name}"."""


# ============================================================
# PART 3: Analysis
# ============================================================

async def analyze_with_progress(
    app: AppRecord,
    reviews: list[ReviewRecord],
    llm: LLMClient,
    sample_size: int = config.SAMPLE_SIZE,
    depth: Depth = config.ANALYSIS_DEPTH,
) -> AsyncIterator[Union[AnalysisProgress, AppAnalysis]]:
    """
    Analyze one app, yielding AnalysisProgress updates and finally the AppAnalysis.
    Raises AnalysisError if the LLM can't produce a valid analysis.
    """
    sample = balanced_sample(reviews, sample_size)
    distribution = rating_distribution(reviews)

    yield AnalysisProgress("analyzing", f"Analyzing {len(sample)} reviews for {app.name}...", 0)

    sampled_counts = rating_distribution(sample)
    yield AnalysisProgress(
        "processing",
        "Created balanced sample: " + ", ".join(f"{s}★ x{sampled_counts[s]}" for s in range(1, 6)),
        20,
    )

    prompt = build_analysis_prompt(app, sample, distribution, depth)
    yield AnalysisProgress("processing", f"Sending {app.name} review data to AI for analysis...", 30)

    started = time.monotonic()
    try:
        analysis = await llm.generate(
            AppAnalysis,
            system_prompt=ANALYSIS_SYSTEM_PROMPT,
            user_prompt=prompt,
            temperature=0.1,  # Low temperature = consistent, analytical output
        )
    except (StructuredOutputError, openai.OpenAIError) as e:
        raise AnalysisError(app.name, str(e)) from e
    elapsed = time.monotonic() - started
    logger.info("Analysis for %s took %.1fs (%d reviews sampled)", app.name, elapsed, len(sample))

    # The model sometimes shortens or translates the name
    analysis.app_name = app.name

    yield AnalysisProgress("processing", f"AI analysis of {app.name} finished in {elapsed:.1f} seconds", 90)
    yield analysis


async def analyze(app: AppRecord, reviews: list[ReviewRecord], llm: LLMClient,
                  sample_size: int = config.SAMPLE_SIZE,
                  depth: Depth = config.ANALYSIS_DEPTH) -> AppAnalysis:
    """Analyze one app without progress updates."""
    result = None
    async for update in analyze_with_progress(app, reviews, llm, sample_size, depth):
        if isinstance(update, AppAnalysis):
            result = update
    if result is None:
        raise AnalysisError(app.name, "analysis did not complete")
    return result


def analysis_results_event(app: AppRecord, analysis: AppAnalysis) -> dict:
    """The `analysis_results` stream event for one app."""
    return {
        "type": "analysis_results",
        "appId": app.app_id,
        **analysis.to_wire(),
        "appName": app.name,
    }
