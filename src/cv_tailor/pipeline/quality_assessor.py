"""CV quality assessment - scores, strengths, weaknesses and concrete improvements."""

from __future__ import annotations

import logging
import re

from cv_tailor.errors import ParseError
from cv_tailor.models.assessment import QualityAssessment, Recommendation
from cv_tailor.models.document import CvDocument, parse_cv_date
from cv_tailor.models.generation import (
    ContextClass,
    GenerationParams,
    GenerationResult,
    GenerationStatus,
    TenantIdentity,
)
from cv_tailor.pipeline.execution import ExecutionController
from cv_tailor.pipeline.prompts import truncate
from cv_tailor.utils.json_parser import normalize

default_logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a CV assessment system. Your response MUST be valid JSON only. Do not include "
    "any markdown formatting, explanatory text, or code blocks. Return ONLY a valid JSON object."
)

GAP_THRESHOLD_DAYS = 30
MAX_CV_TEXT = 2000

_PLACEHOLDER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\[Improved.*?\]",
        r"\[.*?based on.*?CV.*?\]",
        r"\[.*?text.*?\]",
        r"placeholder",
        r"example.*?text",
        r"improved.*?version.*?here",
        r"your.*?improved.*?text.*?here",
    )
]
_DESCRIPTIVE_OPENING = re.compile(r"^(This|Here|The|An|A)\s+(improved|better|enhanced)", re.IGNORECASE)
_MIN_IMPROVEMENT_CHARS = 50

ASSESSMENT_CRITERIA = """\
Assess the following (provide scores 0-100):
1. Overall quality - completeness, professionalism, clarity
2. ATS compatibility - Focus on USER-CONTROLLABLE aspects: keyword usage, content structure (headings, sections), and how well content can be parsed. DO NOT penalize for template formatting which is app-controlled.
3. Content quality - relevance, impact, specificity, use of quantifiable achievements
4. Content consistency - Focus on USER-CONTROLLABLE aspects: date formatting consistency, description completeness, missing information. DO NOT penalize for visual formatting which is template-controlled.
"""

GAP_INSTRUCTIONS = """
CRITICAL: Analyze employment history for:
- Gaps between jobs (periods with no employment listed)
- Missing or incomplete dates (start dates, end dates)
- Overlapping employment dates (if any)
- Unexplained periods that should be addressed in the CV
For any gaps or missing dates found, include specific recommendations in the weaknesses and enhanced_recommendations sections.
"""

IMPROVEMENT_RULES = """
For each recommendation, provide:
1. The issue/problem identified
2. A clear suggestion for improvement
3. Examples or options showing what the improvement could look like
4. For content that can be improved (like professional summary, work descriptions), provide an AI-generated improved version based on the actual CV content
5. Indicate whether the improvement can be automatically applied

CRITICAL RULES FOR ai_generated_improvement:
1. You MUST write the actual improved text, not a description or placeholder
2. DO NOT use brackets [ ] or placeholder text
3. DO NOT write 'Here is an improved version:' or similar - just write the actual text
4. The text must be complete and ready to use (e.g., for professional summary, write 2-4 complete sentences)
5. If you cannot generate actual improved text based on the CV content, set ai_generated_improvement to null
6. Extract real information from the CV (job titles, companies, achievements, metrics) and use it in the improvement
"""


def employment_gaps(document: CvDocument) -> list[str]:
    """Describe gaps of more than a month between consecutive dated positions."""
    dated = []
    for work in document.work_experience:
        start, end = parse_cv_date(work.start_date), parse_cv_date(work.end_date)
        if start and end:
            dated.append((start, end, f"{work.position} at {work.company_name}"))
    dated.sort(key=lambda entry: entry[1], reverse=True)

    gaps = []
    for (later_start, _, later), (_, earlier_end, earlier) in zip(dated, dated[1:]):
        days = (later_start - earlier_end).days
        if days > GAP_THRESHOLD_DAYS:
            gaps.append(
                f"{round(days / 30)} month gap between {earlier} (ended {earlier_end:%Y-%m}) "
                f"and {later} (started {later_start:%Y-%m})"
            )
    return gaps


def format_cv_for_assessment(document: CvDocument) -> str:
    """Plain-text CV with dates and gap analysis, kept to roughly MAX_CV_TEXT chars."""
    lines: list[str] = []
    summary = document.professional_summary
    if summary and summary.description:
        lines += [f"Professional Summary: {summary.description[:500]}", ""]

    if document.work_experience:
        lines.append("Work Experience (in chronological order, most recent first):")
        shown = 0
        for work in document.work_experience:
            if sum(len(line) + 1 for line in lines) > MAX_CV_TEXT:
                break
            shown += 1
            start = _month(work.start_date) or "Unknown start"
            end = _month(work.end_date) or "Present"
            lines.append(f"- {work.position} at {work.company_name} ({start} to {end})")
            if work.description:
                lines.append(f"  {work.description[:300]}")
        if shown < len(document.work_experience):
            lines.append(f"... ({len(document.work_experience) - shown} more entries)")

        gaps = employment_gaps(document)
        if gaps:
            lines += ["", "Date Gaps Identified:"] + [f"  - {gap}" for gap in gaps]
        lines.append("")

    if document.skills:
        names = [s.name for s in document.skills[:20]]
        line = "Skills: " + ", ".join(names)
        if len(document.skills) > 20:
            line += f" (and {len(document.skills) - 20} more)"
        lines += [line, ""]

    if document.education:
        lines.append("Education:")
        for edu in document.education[:5]:
            lines.append(f"- {edu.degree} from {edu.institution}")
        if len(document.education) > 5:
            lines.append(f"... ({len(document.education) - 5} more entries)")
    return "\n".join(lines)


def _month(value: str | None) -> str | None:
    parsed = parse_cv_date(value)
    return f"{parsed:%Y-%m}" if parsed else None


def build_assessment_prompt(
    document: CvDocument, context_text: str | None = None, context_chars: int | None = None
) -> str:
    if context_text and context_chars:
        context_text = truncate(context_text, context_chars)
    prompt = f"CV Data:\n{format_cv_for_assessment(document)}\n\n"
    if context_text:
        prompt += f"Job Description:\n{context_text}\n\n"
    prompt += ASSESSMENT_CRITERIA
    if context_text:
        prompt += "5. Keyword matching - alignment with job requirements (user-controllable through content)\n"
    prompt += GAP_INSTRUCTIONS + IMPROVEMENT_RULES
    keyword_line = '  "keyword_match_score": 85,\n' if context_text else ""
    prompt += (
        "\nReturn ONLY a JSON object, starting with { and ending with }, in this format:\n"
        "{\n"
        '  "overall_score": 85,\n'
        '  "ats_score": 80,\n'
        '  "content_score": 90,\n'
        '  "formatting_score": 75,\n'
        f"{keyword_line}"
        '  "strengths": ["..."],\n'
        '  "weaknesses": ["..."],\n'
        '  "recommendations": ["..."],\n'
        '  "enhanced_recommendations": [\n'
        '    {"issue": "...", "suggestion": "...", "examples": ["..."], '
        '"ai_generated_improvement": "complete improved text or null", '
        '"can_apply": true, "improvement_type": "professional_summary"}\n'
        "  ]\n"
        "}\n"
    )
    return prompt


def is_placeholder(text: str) -> bool:
    """True when an 'improvement' describes a rewrite instead of being one."""
    if any(p.search(text) for p in _PLACEHOLDER_PATTERNS):
        return True
    stripped = text.strip()
    return len(stripped) < _MIN_IMPROVEMENT_CHARS or bool(_DESCRIPTIVE_OPENING.match(stripped))


def _clean_recommendation(raw, logger: logging.Logger) -> Recommendation:
    if not isinstance(raw, dict):
        return Recommendation(issue=str(raw))

    improvement = raw.get("ai_generated_improvement")
    if not isinstance(improvement, str) or not improvement.strip():
        improvement = None
    can_apply = bool(raw.get("can_apply", False))
    improvement_type = raw.get("improvement_type") or "guidance_only"

    if improvement and is_placeholder(improvement):
        logger.info("Dropped placeholder improvement for %r", raw.get("issue", ""))
        improvement = None
        if can_apply and improvement_type == "professional_summary":
            can_apply = False
            improvement_type = "guidance_only"

    examples = raw.get("examples")
    return Recommendation(
        issue=str(raw.get("issue") or ""),
        suggestion=str(raw.get("suggestion") or ""),
        examples=[str(e) for e in examples] if isinstance(examples, list) else [],
        ai_generated_improvement=improvement,
        can_apply=can_apply,
        improvement_type=str(improvement_type),
    )


def validate_assessment(data: dict, logger: logging.Logger | None = None) -> QualityAssessment:
    """Coerce model output into a QualityAssessment with clamped scores and no placeholders."""
    logger = logger or default_logger

    def string_list(key: str) -> list[str]:
        value = data.get(key)
        return [str(v) for v in value] if isinstance(value, list) else []

    raw_recs = data.get("enhanced_recommendations")
    return QualityAssessment(
        overall_score=data.get("overall_score", 0),
        ats_score=data.get("ats_score", 0),
        content_score=data.get("content_score", 0),
        formatting_score=data.get("formatting_score", 0),
        keyword_match_score=data.get("keyword_match_score"),
        strengths=string_list("strengths"),
        weaknesses=string_list("weaknesses"),
        recommendations=string_list("recommendations"),
        enhanced_recommendations=[
            _clean_recommendation(r, logger) for r in (raw_recs if isinstance(raw_recs, list) else [])
        ],
    )


class QualityAssessor:
    def __init__(self, execution: ExecutionController, logger: logging.Logger | None = None):
        self.execution = execution
        self.logger = logger or default_logger

    async def assess(
        self,
        document: CvDocument,
        tenant: TenantIdentity,
        context_text: str | None = None,
        execution_result_text: str | None = None,
    ) -> GenerationResult:
        """Score a CV, optionally against a job description."""
        if execution_result_text is None:
            gen = self.execution.config.generation
            caps = self.execution.config.prompt

            def build_prompt(context_class: ContextClass) -> str:
                limit = caps.context_chars if context_class is ContextClass.CONSTRAINED else None
                return build_assessment_prompt(document, context_text, limit)

            self.logger.info("Assessing CV quality...")
            phase_one = await self.execution.run(
                tenant,
                build_prompt,
                GenerationParams(
                    temperature=gen.assessment_temperature,
                    max_tokens=gen.assessment_max_tokens,
                    system=SYSTEM_PROMPT,
                ),
            )
            if phase_one.terminal is not None:
                return phase_one.terminal
            raw = phase_one.text
        else:
            raw = execution_result_text

        try:
            data = normalize(raw)
        except ParseError as e:
            self.logger.warning("Assessment response unusable: %s", e.message)
            return GenerationResult.failure(e, raw_text=raw)
        if not data:
            return GenerationResult.failure(ParseError("AI response contained an empty object", raw), raw)

        assessment = validate_assessment(data, self.logger)
        return GenerationResult(
            status=GenerationStatus.SUCCESS,
            raw_text=raw,
            parsed_payload=assessment.model_dump(),
            outcome="assessed",
        )
