"""
Narrative summary — the freeform text that closes every successful stream.

We first build a compact markdown digest of the results in code, then let the
chat model turn it into a readable write-up, streamed token by token.
"""

from typing import AsyncIterator, Optional

from review_radar.llm_client import LLMClient
from review_radar.models import AppAnalysisResult

NARRATIVE_SYSTEM_PROMPT = (
    "You are a concise product analyst. Turn the analysis digest you are given into a short "
    "markdown report for a founder: lead with the headline finding, then the key points as "
    "bullets, then what to do next. Do not invent facts beyond the digest."
)


def _bullets(items: list[str], limit: int = 5) -> str:
    return "\n".join(f"- {item}" for item in items[:limit]) or "- (none)"


def single_app_digest(result: AppAnalysisResult) -> str:
    app, analysis = result.app, result.analysis
    features = sorted(analysis.feature_analysis, key=lambda f: f.mention_count, reverse=True)
    feature_lines = [
        f"{f.feature} (sentiment {f.sentiment_score:+.2f}, {f.mention_count} mentions)"
        for f in features
    ]
    actions = [f"[{a.priority}] {a.action}" for a in analysis.recommended_actions]
    pricing = analysis.pricing_perception

    return f"""# {app.name}
Rating {app.score:.1f}/5 from {app.ratings:,} ratings.

**Market position:** {analysis.overview.market_position}
**Target users:** {analysis.overview.target_demographic}

## Strengths
{_bullets(analysis.overview.strengths)}

## Weaknesses
{_bullets(analysis.overview.weaknesses)}

## Most discussed features
{_bullets(feature_lines)}

## Pricing
Value for money {pricing.value_for_money:+.2f}, {pricing.pricing_complaints:.0f}% of reviews complain about price, willingness to pay: {pricing.willingness}.

## Recommended actions
{_bullets(actions)}"""


def comparison_digest(results: list[AppAnalysisResult], comparison: dict) -> str:
    apps = [f"{a['appName']} ({a['rating']}/5)" for a in comparison.get("apps", [])]
    shared_features = [
        f"{row['feature']} in {len(row['presentInApps'])} apps, avg sentiment {row['averageSentiment']:+.2f}"
        for row in comparison.get("featureComparison", [])
    ]
    common_strengths = [s["strength"] for s in comparison.get("strengthsComparison", {}).get("common", [])]
    common_weaknesses = [w["weakness"] for w in comparison.get("weaknessesComparison", {}).get("common", [])]
    positions = [f"{p['appName']}: {p['marketPosition']}" for p in comparison.get("marketPositionComparison", [])]

    return f"""# Comparison of {len(results)} apps
{_bullets(apps, limit=len(apps))}

## Market positions
{_bullets(positions, limit=len(positions))}

## Features across apps
{_bullets(shared_features)}

## Strengths they share
{_bullets(common_strengths)}

## Weaknesses they share
{_bullets(common_weaknesses)}

## Action plan
{_bullets(comparison.get("recommendationSummary", []), limit=7)}"""


def build_digest(results: list[AppAnalysisResult], comparison: Optional[dict]) -> str:
    if comparison is not None:
        return comparison_digest(results, comparison)
    return "\n\n".join(single_app_digest(r) for r in results)


async def stream_narrative(results: list[AppAnalysisResult], comparison: Optional[dict],
                           llm: LLMClient) -> AsyncIterator[str]:
    digest = build_digest(results, comparison)
    messages = [
        {"role": "system", "content": NARRATIVE_SYSTEM_PROMPT},
        {"role": "user", "content": digest},
    ]
    async for token in llm.stream_chat(messages):
        yield token
