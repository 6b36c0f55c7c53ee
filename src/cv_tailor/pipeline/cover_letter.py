"""Cover letter writer - plain-text letter from a CV and a job posting."""

from __future__ import annotations

import json
import logging
import re

from cv_tailor.errors import ParseError, ValidationError
from cv_tailor.models.document import CvDocument
from cv_tailor.models.generation import (
    ContextClass,
    GenerationParams,
    GenerationResult,
    GenerationStatus,
    TenantIdentity,
)
from cv_tailor.models.job import JobPosting
from cv_tailor.pipeline.execution import ExecutionController
from cv_tailor.pipeline.prompts import truncate
from cv_tailor.utils.prompt_guard import sanitize_instructions

default_logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a professional cover letter writer. You write plain text only."

INSTRUCTIONS = """\
Write a professional cover letter that:
1. Addresses the hiring manager or company directly
2. Opens with a strong, engaging introduction that shows genuine interest in the role
3. Highlights 2-3 most relevant experiences or achievements from the candidate's background
4. Demonstrates knowledge of the company or role (if information is available)
5. Connects the candidate's skills and experience to the job requirements
6. Closes with enthusiasm and a clear call to action
7. Is professional, concise (3-4 paragraphs), and well-structured
8. Uses a professional but personable tone
9. Includes specific examples and achievements where relevant
10. Does NOT include placeholders, brackets, or generic text
11. Uses British English spelling (e.g., 'organised' not 'organized', 'colour' not 'color', 'centre' not 'center')

CRITICAL FORMATTING RULES:
- Return ONLY plain text - NO JSON, NO markdown, NO code blocks
- Do NOT wrap the text in curly braces { } or quotation marks
- Do NOT use markdown formatting (no **bold**, no headers, no lists)
- Do NOT include explanatory text before or after the letter
- Do NOT include the words 'Cover Letter' as a title
- Start directly with the greeting (e.g., 'Dear Hiring Manager,')
- End with a professional closing (e.g., 'Sincerely,' followed by the candidate's name)
- Write the letter as plain text paragraphs, separated by blank lines
"""

_LETTER_KEYS = ("letter", "cover_letter", "text", "content", "message")
_QUOTED_VALUE = r'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)"'

_BRITISH_SPELLINGS = {
    "organized": "organised",
    "organization": "organisation",
    "organizing": "organising",
    "color": "colour",
    "colors": "colours",
    "center": "centre",
    "centers": "centres",
    "realize": "realise",
    "realized": "realised",
    "recognize": "recognise",
    "recognized": "recognised",
    "analyze": "analyse",
    "analyzed": "analysed",
    "favor": "favour",
    "favors": "favours",
    "honor": "honour",
    "honors": "honours",
    "labor": "labour",
    "neighbor": "neighbour",
    "neighbors": "neighbours",
}
_AMERICAN_WORD = re.compile(r"\b(" + "|".join(_BRITISH_SPELLINGS) + r")\b", re.IGNORECASE)

_PREAMBLE = re.compile(
    r"^(?i:here is|here's|this is|i've written|i'll write)[\s\S]*?(?=Dear\b|To\b)"
)
_TITLE = re.compile(r"^(?i:cover letter|letter)[\s\S]*?(?=Dear\b|To\b)")


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value.replace("\\n", "\n").replace('\\"', '"')


def _from_json(text: str) -> str:
    """Unwrap a letter the model returned inside a JSON object anyway."""
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        decoded = None

    if isinstance(decoded, dict):
        for key in _LETTER_KEYS:
            if isinstance(decoded.get(key), str):
                return decoded[key]
        values = decoded.values()
    elif isinstance(decoded, list):
        values = decoded
    else:
        for key in _LETTER_KEYS[:4]:
            match = re.search(_QUOTED_VALUE.format(key=key), text, re.DOTALL)
            if match:
                return _unescape(match.group(1))
        return text

    strings = [v for v in values if isinstance(v, str) and len(v) > 10]
    return "\n\n".join(strings) if strings else text


def _to_british(match: re.Match) -> str:
    word = match.group(0)
    british = _BRITISH_SPELLINGS[word.lower()]
    if word.isupper():
        return british.upper()
    if word[0].isupper():
        return british.capitalize()
    return british


def clean_cover_letter_text(text: str) -> str:
    """Strip JSON wrappers, markdown and chatty preambles from a generated letter."""
    text = _from_json(text.strip())
    text = text.replace("\\n", "\n")

    text = re.sub(r"^\s*\{\s*", "", text)
    text = re.sub(r"\s*\}\s*$", "", text)
    text = re.sub(r"^[\"']?\w+[\"']?\s*:\s*", "", text)
    text = re.sub(r'^"([^"\n]+)"\s*$', r"\1", text, flags=re.MULTILINE)

    text = re.sub(r"```[\s\S]*?```", "", text)
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    text = re.sub(r"\*(.*?)\*", r"\1", text)
    text = re.sub(r"^#+\s*(.*?)$", r"\1", text, flags=re.MULTILINE)

    text = _PREAMBLE.sub("", text.lstrip())
    text = _TITLE.sub("", text)
    text = _AMERICAN_WORD.sub(_to_british, text)

    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def build_cover_letter_prompt(
    document: CvDocument,
    job: JobPosting,
    custom_instructions: str | None = None,
    context_chars: int | None = None,
) -> str:
    description = job.job_description
    if context_chars:
        description = truncate(description, context_chars)

    lines = [
        "You are a professional cover letter writer. Write a compelling, personalized "
        "cover letter for this job application.",
        "",
        "Job Application Details:",
        f"- Company: {job.company_name}",
        f"- Job Title: {job.job_title}",
    ]
    if description:
        lines.append(f"- Job Description:\n{description}")
    if job.job_location:
        lines.append(f"- Location: {job.job_location}")

    profile = document.profile
    lines += ["", "Candidate Information (from CV):", f"- Name: {profile.full_name or 'Candidate'}"]
    for label, value in (("Email", profile.email), ("Phone", profile.phone), ("Location", profile.location)):
        if value:
            lines.append(f"- {label}: {value}")

    if document.professional_summary and document.professional_summary.description:
        lines.append(f"\n- Professional Summary: {document.professional_summary.description}")

    if document.work_experience:
        lines.append("\n- Work Experience:")
        for work in document.work_experience[:5]:
            lines.append(f"  * {work.position} at {work.company_name}")
            if work.start_date:
                lines.append(f"    Period: {work.start_date} to {work.end_date or 'Present'}")
            if work.description:
                lines.append(f"    {work.description[:200]}")
            for category in work.responsibility_categories[:2]:
                for item in category.items[:2]:
                    lines.append(f"    - {item.content[:150]}")

    if document.skills:
        lines.append("\n- Key Skills: " + ", ".join(s.name for s in document.skills[:15]))

    if document.education:
        lines.append("\n- Education:")
        for edu in document.education[:3]:
            lines.append(f"  * {edu.degree} from {edu.institution}")

    instructions = INSTRUCTIONS
    if custom_instructions:
        instructions += f"\n\nAdditional User Instructions:\n{custom_instructions}"
    lines += [
        "",
        f"Instructions:\n{instructions}",
        "IMPORTANT: Write the cover letter as plain text. Do NOT use JSON format.",
        "Start directly with the greeting and write the letter as normal paragraphs.",
        "",
        "Now write the cover letter:",
    ]
    return "\n".join(lines)


class CoverLetterWriter:
    def __init__(self, execution: ExecutionController, logger: logging.Logger | None = None):
        self.execution = execution
        self.logger = logger or default_logger

    async def generate(
        self,
        document: CvDocument,
        job: JobPosting,
        tenant: TenantIdentity,
        custom_instructions: str | None = None,
        execution_result_text: str | None = None,
    ) -> GenerationResult:
        """Write a cover letter; the payload is ``{"cover_letter_text": ...}``."""
        if custom_instructions:
            guarded = sanitize_instructions(custom_instructions, self.logger)
            if guarded.blocked:
                return GenerationResult.failure(
                    ValidationError("Custom instructions were blocked: they try to override the cover letter")
                )
            custom_instructions = guarded.text or None

        if execution_result_text is None:
            gen = self.execution.config.generation
            caps = self.execution.config.prompt

            def build_prompt(context_class: ContextClass) -> str:
                if context_class is ContextClass.CONSTRAINED:
                    custom = truncate(custom_instructions, caps.custom_instruction_chars) or None
                    return build_cover_letter_prompt(document, job, custom, caps.context_chars)
                return build_cover_letter_prompt(document, job, custom_instructions)

            self.logger.info("Writing cover letter for %s at %s", job.job_title, job.company_name)
            phase_one = await self.execution.run(
                tenant,
                build_prompt,
                GenerationParams(
                    temperature=gen.cover_letter_temperature,
                    max_tokens=gen.cover_letter_max_tokens,
                    system=SYSTEM_PROMPT,
                    expect_json=False,
                ),
            )
            if phase_one.terminal is not None:
                return phase_one.terminal
            raw = phase_one.text
        else:
            raw = execution_result_text

        letter = clean_cover_letter_text(raw or "")
        if not letter:
            return GenerationResult.failure(ParseError("AI returned an empty cover letter", raw), raw)
        return GenerationResult(
            status=GenerationStatus.SUCCESS,
            raw_text=raw,
            parsed_payload={"cover_letter_text": letter},
            outcome="generated",
        )
