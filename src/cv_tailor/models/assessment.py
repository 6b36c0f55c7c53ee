"""Pydantic models for CV quality assessment output."""

from __future__ import annotations

import math

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class Recommendation(BaseModel):
    issue: str = ""
    suggestion: str = ""
    examples: list[str] = []
    ai_generated_improvement: str | None = None
    can_apply: bool = False
    improvement_type: str = "guidance_only"  # "professional_summary" | "work_description" | ...


class QualityAssessment(BaseModel):
    overall_score: int = 0  # 0-100
    ats_score: int = 0
    content_score: int = 0
    formatting_score: int = 0
    keyword_match_score: int | None = None  # only when a job description was given
    strengths: list[str] = []
    weaknesses: list[str] = []
    recommendations: list[str] = []
    enhanced_recommendations: list[Recommendation] = Field(default_factory=list)

    @field_validator(
        "overall_score", "ats_score", "content_score", "formatting_score", "keyword_match_score",
        mode="before",
    )
    @classmethod
    def _clamp_scores(cls, value, info: ValidationInfo):
        if value is None:
            # only the keyword score is optional
            return None if info.field_name == "keyword_match_score" else 0
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0
        if math.isnan(number):
            return 0
        # clamp before int() so infinity lands on a bound
        return int(max(0.0, min(100.0, number)))
