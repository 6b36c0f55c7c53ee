"""Keyword extraction from a job description."""

from __future__ import annotations

import logging

from cv_tailor.errors import ParseError
from cv_tailor.models.generation import (
    ContextClass,
    GenerationParams,
    GenerationResult,
    GenerationStatus,
    TenantIdentity,
)
from cv_tailor.pipeline.execution import ExecutionController
from cv_tailor.pipeline.prompts import CONTEXT_TRUNCATED_MARKER, truncate
from cv_tailor.utils.json_parser import extract_json

default_logger = logging.getLogger(__name__)

PROMPT = (
    "Extract the most important keywords, skills, and requirements from this job "
    "description. Return a JSON array of strings.\n\nJob Description:\n{context}"
)


def keywords_from_json(data) -> list[str]:
    """Accept a bare array or an object wrapping one under ``keywords``."""
    if isinstance(data, dict):
        data = data.get("keywords", [])
    if not isinstance(data, list):
        return []
    seen: set[str] = set()
    keywords = []
    for item in data:
        if not isinstance(item, str) or not item.strip():
            continue
        if item.strip().lower() in seen:
            continue
        seen.add(item.strip().lower())
        keywords.append(item.strip())
    return keywords


class KeywordExtractor:
    def __init__(self, execution: ExecutionController, logger: logging.Logger | None = None):
        self.execution = execution
        self.logger = logger or default_logger

    async def extract_keywords(
        self,
        context_text: str,
        tenant: TenantIdentity,
        execution_result_text: str | None = None,
    ) -> GenerationResult:
        """Payload is ``{"keywords": [...]}``."""
        if execution_result_text is None:
            gen = self.execution.config.generation
            limit = self.execution.config.prompt.context_chars

            def build_prompt(context_class: ContextClass) -> str:
                context = context_text
                if context_class is ContextClass.CONSTRAINED:
                    context = truncate(context, limit, CONTEXT_TRUNCATED_MARKER)
                return PROMPT.format(context=context)

            phase_one = await self.execution.run(
                tenant,
                build_prompt,
                GenerationParams(
                    temperature=gen.keywords_temperature,
                    max_tokens=gen.keywords_max_tokens,
                    # a bare array is not a valid JSON-mode answer
                    expect_json=False,
                ),
            )
            if phase_one.terminal is not None:
                return phase_one.terminal
            raw = phase_one.text
        else:
            raw = execution_result_text

        try:
            keywords = keywords_from_json(extract_json(raw))
        except ParseError as e:
            return GenerationResult.failure(e, raw_text=raw)
        if not keywords:
            return GenerationResult.failure(ParseError("No keywords found in AI response", raw), raw)

        self.logger.info("Extracted %d keywords", len(keywords))
        return GenerationResult(
            status=GenerationStatus.SUCCESS,
            raw_text=raw,
            parsed_payload={"keywords": keywords},
            outcome="extracted",
        )
