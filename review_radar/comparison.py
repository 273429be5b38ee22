"""
Cross-app comparator — merges N single-app analyses into one comparison.

Everything here is plain aggregation except the 7-step action plan, which is one
structured LLM call. Keys are case-insensitive: "Offline Mode" and "offline mode"
from two different apps count as the same feature.
"""

import json
import logging
from typing import Awaitable, Callable, Optional

import openai

from review_radar.errors import AccessDeniedError, ComparisonError
from review_radar.llm_client import LLMClient, StructuredOutputError
from review_radar.models import AppAnalysisResult
from review_radar.schemas import ActionPlan

logger = logging.getLogger(__name__)

# Returns the subset of app IDs the user may NOT read
AccessCheck = Callable[[str, list[str]], Awaitable[list[str]]]


# ============================================================
# PART 1: Aggregation (no LLM needed)
# ============================================================

def compare_features(results: list[AppAnalysisResult]) -> list[dict]:
    """
    One row per case-folded feature name.

    appCoverage is the share of analyzed apps that mention the feature. Rows are
    sorted by coverage, then total mentions; ties keep first-seen order.
    """
    total_apps = len(results)
    if total_apps == 0:
        return []

    features: dict[str, dict] = {}
    for result in results:
        app_name = result.app.name
        for insight in result.analysis.feature_analysis:
            key = insight.feature.strip().lower()
            if not key:
                continue
            data = features.setdefault(key, {"scores": [], "mentions": [], "app_ids": [], "apps": []})
            data["scores"].append(insight.sentiment_score)
            data["mentions"].append(insight.mention_count)
            if result.app.app_id not in data["app_ids"]:
                data["app_ids"].append(result.app.app_id)
                data["apps"].append(app_name)

    rows = [
        {
            "feature": key,
            "appCoverage": len(data["app_ids"]) / total_apps,
            "averageSentiment": sum(data["scores"]) / len(data["scores"]),
            "totalMentions": sum(data["mentions"]),
            "presentInApps": data["apps"],
        }
        for key, data in features.items()
    ]
    # sorted() is stable, so equal keys keep insertion order
    return sorted(rows, key=lambda r: (-r["appCoverage"], -r["totalMentions"]))


def _partition(results: list[AppAnalysisResult], field: str, label: str) -> dict:
    """
    Split strengths (or weaknesses) into those shared by several apps and those
    only one app has. Keyed case-insensitively; the first wording seen is kept.
    """
    entries: dict[str, dict] = {}
    for result in results:
        app_name = result.app.name
        for text in getattr(result.analysis.overview, field):
            key = text.strip().lower()
            if not key:
                continue
            entry = entries.setdefault(key, {"text": text.strip(), "app_ids": [], "apps": []})
            if result.app.app_id not in entry["app_ids"]:
                entry["app_ids"].append(result.app.app_id)
                entry["apps"].append(app_name)

    common, unique = [], []
    for entry in entries.values():
        if len(entry["app_ids"]) > 1:
            common.append({label: entry["text"], "apps": entry["apps"]})
        else:
            unique.append({label: entry["text"], "app": entry["apps"][0]})
    return {"common": common, "unique": unique}


def compare_strengths(results: list[AppAnalysisResult]) -> dict:
    return _partition(results, "strengths", "strength")


def compare_weaknesses(results: list[AppAnalysisResult]) -> dict:
    return _partition(results, "weaknesses", "weakness")


def compare_market_position(results: list[AppAnalysisResult]) -> list[dict]:
    return [
        {"appName": r.app.name, "marketPosition": r.analysis.overview.market_position}
        for r in results
    ]


def compare_pricing(results: list[AppAnalysisResult]) -> list[dict]:
    return [
        {
            "appName": r.app.name,
            "valueForMoney": r.analysis.pricing_perception.value_for_money,
            "pricingComplaints": r.analysis.pricing_perception.pricing_complaints,
            "willingness": r.analysis.pricing_perception.willingness,
        }
        for r in results
    ]


def compare_user_base(results: list[AppAnalysisResult]) -> list[dict]:
    return [
        {"appName": r.app.name, "demographics": r.analysis.overview.target_demographic}
        for r in results
    ]


def app_summary_rows(results: list[AppAnalysisResult]) -> list[dict]:
    return [
        {
            "appName": r.app.name,
            "appId": r.app.app_id,
            "rating": round(r.app.score or 0.0, 1),
            "reviewCount": r.app.reviews,
        }
        for r in results
    ]


# ============================================================
# PART 2: Action plan (one LLM call)
# ============================================================

RECOMMENDATION_SYSTEM_PROMPT = """You are a product strategy expert. Given a competitive analysis of several
mobile apps, you write a ranked 7-step action plan for building an app that beats all of them.

RULES:
1. Exactly 7 steps, numbered 1 to 7 in priority order.
2. Each step has a one-sentence title and a one-sentence explanation of what to do and why.
3. priorityLevel is one of Critical, High, Medium, Low.
4. Cover: strengths to match, industry-wide pain points to solve, features to prioritize,
   target demographics, pricing strategy, market positioning, user experience principles."""


def build_recommendation_prompt(results: list[AppAnalysisResult], strengths: dict,
                                weaknesses: dict, features: list[dict]) -> str:
    summaries = [
        {
            "name": r.app.name,
            "rating": r.app.score,
            "marketPosition": r.analysis.overview.market_position,
            "targetDemographic": r.analysis.overview.target_demographic,
            "strengths": r.analysis.overview.strengths,
            "weaknesses": r.analysis.overview.weaknesses,
            "topFeatures": [
                {"feature": f.feature, "sentiment": f.sentiment_score, "mentions": f.mention_count}
                for f in r.analysis.feature_analysis
            ],
            "pricing": r.analysis.pricing_perception.to_wire(),
        }
        for r in results
    ]
    names = ", ".join(r.app.name for r in results)

    return f"""Create a 7-step action plan for a new app that outperforms: {names}.

APP INFORMATION:
{json.dumps(summaries, indent=2)}

COMMON STRENGTHS ACROSS APPS:
{json.dumps([s["strength"] for s in strengths["common"]], indent=2)}

COMMON WEAKNESSES ACROSS APPS:
{json.dumps([w["weakness"] for w in weaknesses["common"]], indent=2)}

FEATURE COMPARISON (top 5):
{json.dumps(features[:5], indent=2)}"""


async def generate_recommendations(results: list[AppAnalysisResult], strengths: dict,
                                   weaknesses: dict, features: list[dict],
                                   llm: LLMClient) -> list[str]:
    """Ask the LLM for the action plan and render it as 'STEP n: ...' strings."""
    prompt = build_recommendation_prompt(results, strengths, weaknesses, features)
    try:
        plan = await llm.generate(
            ActionPlan,
            system_prompt=RECOMMENDATION_SYSTEM_PROMPT,
            user_prompt=prompt,
        )
    except (StructuredOutputError, openai.OpenAIError) as e:
        raise ComparisonError(f"Could not generate the action plan: {e}") from e
    return plan.render()


# ============================================================
# PART 3: Entry point
# ============================================================

async def generate_comparison(results: list[AppAnalysisResult], llm: LLMClient,
                              user_id: Optional[str] = None,
                              access_check: Optional[AccessCheck] = None) -> dict:
    """
    Build the `comparison_results` event from two or more successful analyses.

    Raises ComparisonError with fewer than two apps, AccessDeniedError if the user may
    not read one of them, and lets action-plan failures fail the whole comparison.
    """
    if len(results) < 2:
        raise ComparisonError(f"A comparison needs at least 2 analyzed apps, got {len(results)}")

    if access_check is not None and user_id is not None:
        denied = await access_check(user_id, [r.app.app_id for r in results])
        if denied:
            raise AccessDeniedError(denied)

    features = compare_features(results)
    strengths = compare_strengths(results)
    weaknesses = compare_weaknesses(results)
    recommendation_summary = await generate_recommendations(results, strengths, weaknesses, features, llm)

    logger.info("Comparison ready for %s (%d features)", ", ".join(r.app.name for r in results), len(features))
    return {
        "type": "comparison_results",
        "apps": app_summary_rows(results),
        "featureComparison": features,
        "strengthsComparison": strengths,
        "weaknessesComparison": weaknesses,
        "marketPositionComparison": compare_market_position(results),
        "pricingComparison": compare_pricing(results),
        "userBaseComparison": compare_user_base(results),
        "recommendationSummary": recommendation_summary,
    }
