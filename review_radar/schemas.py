"""
Schemas for everything the LLM produces.

The model is asked for JSON matching these shapes; pydantic validates the reply and
a failed validation triggers a retry. Fields are snake_case in Python and camelCase
on the wire (and in the JSON the model sees).
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Level = Literal["low", "medium", "high"]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Overview(WireModel):
    strengths: list[str] = Field(description="What users consistently praise")
    weaknesses: list[str] = Field(description="Pain points, bugs and missing features")
    opportunities: list[str] = Field(default_factory=list, description="Gaps a competitor could exploit")
    threats: list[str] = Field(default_factory=list, description="Competitive or external risks")
    market_position: str = Field(description="How the app positions itself and its value proposition")
    target_demographic: str = Field(description="Main user demographic")


class FeatureInsight(WireModel):
    feature: str = Field(description="Short feature name, e.g. 'offline mode'")
    sentiment_score: float = Field(description="-1 (hated) to 1 (loved)")
    mention_count: int = Field(ge=0, description="Reviews in the sample mentioning this feature")
    common_feedback: str = Field(description="One-sentence summary of what users say")
    competitive_edge: bool = Field(description="True if this feature sets the app apart")
    improvement_priority: Level

    @field_validator("sentiment_score")
    @classmethod
    def clamp_sentiment(cls, v: float) -> float:
        return _clamp(v, -1.0, 1.0)

    @field_validator("improvement_priority", mode="before")
    @classmethod
    def lower_priority(cls, v):
        return _lower(v)


class PricingPerception(WireModel):
    value_for_money: float = Field(description="-1 (rip-off) to 1 (great value)")
    pricing_complaints: float = Field(description="Percentage of sampled reviews complaining about price")
    willingness: Level = Field(description="Willingness to pay")

    @field_validator("value_for_money")
    @classmethod
    def clamp_value(cls, v: float) -> float:
        return _clamp(v, -1.0, 1.0)

    @field_validator("pricing_complaints")
    @classmethod
    def clamp_percent(cls, v: float) -> float:
        return _clamp(v, 0.0, 100.0)

    @field_validator("willingness", mode="before")
    @classmethod
    def lower_willingness(cls, v):
        return _lower(v)


class RecommendedAction(WireModel):
    action: str
    priority: Level
    impact: Level
    timeframe: Optional[Literal["short", "medium", "long"]] = None

    @field_validator("priority", "impact", "timeframe", mode="before")
    @classmethod
    def lower_levels(cls, v):
        return _lower(v)


class UserSegment(WireModel):
    segment: str = Field(description="Type of user, e.g. 'power user', 'casual'")
    needs: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    size_proportion: float = Field(default=0.0, description="Estimated % of the user base")
    satisfaction_level: Level = "medium"

    @field_validator("size_proportion")
    @classmethod
    def clamp_size(cls, v: float) -> float:
        return _clamp(v, 0.0, 100.0)

    @field_validator("satisfaction_level", mode="before")
    @classmethod
    def lower_satisfaction(cls, v):
        return _lower(v)


class AppAnalysis(WireModel):
    app_name: str
    overview: Overview
    feature_analysis: list[FeatureInsight]
    pricing_perception: PricingPerception
    recommended_actions: list[RecommendedAction]
    user_segments: list[UserSegment] = Field(default_factory=list)


class ActionStep(WireModel):
    step: int = Field(ge=1, le=7)
    title: str = Field(description="Concise, action-oriented title (one sentence)")
    description: str = Field(description="One-sentence explanation of what to do and why")
    priority_level: Literal["Critical", "High", "Medium", "Low"]

    @field_validator("priority_level", mode="before")
    @classmethod
    def capitalize_priority(cls, v):
        return v.strip().capitalize() if isinstance(v, str) else v


class ActionPlan(WireModel):
    action_plan: list[ActionStep] = Field(min_length=7, max_length=7)

    @model_validator(mode="after")
    def steps_are_one_to_seven(self):
        if sorted(s.step for s in self.action_plan) != list(range(1, 8)):
            raise ValueError("action plan steps must be numbered 1 to 7")
        return self

    def render(self) -> list[str]:
        """The plan as 'STEP n: title. description' lines, in step order."""
        steps = sorted(self.action_plan, key=lambda s: s.step)
        return [
            f"STEP {s.step}: {s.title.strip().rstrip('.')}. {s.description.strip()}"
            for s in steps
        ]
