"""Tests for keyword extraction."""

from __future__ import annotations

import httpx
import pytest

from cv_tailor.clients.resolver import TierSettings
from cv_tailor.models.generation import GenerationStatus
from cv_tailor.pipeline.execution import ExecutionController
from cv_tailor.pipeline.keywords import KeywordExtractor, keywords_from_json
from cv_tailor.pipeline.prompts import CONTEXT_TRUNCATED_MARKER


class TestKeywordsFromJson:
    def test_array(self):
        assert keywords_from_json(["Python", "python", " SQL ", 3, ""]) == ["Python", "SQL"]

    def test_wrapped_object(self):
        assert keywords_from_json({"keywords": ["Kafka"]}) == ["Kafka"]

    def test_other_shapes(self):
        assert keywords_from_json({"skills": ["Kafka"]}) == []
        assert keywords_from_json("Kafka") == []


class TestKeywordExtractor:
    @pytest.mark.asyncio
    async def test_extract_on_server(self, make_resolver, make_transport, tenant):
        transport = make_transport(
            lambda request: httpx.Response(200, json={"response": '```json\n["Python", "Kafka"]\n```'})
        )
        extractor = KeywordExtractor(ExecutionController(make_resolver(), transport=transport))

        result = await extractor.extract_keywords("Python and Kafka engineer", tenant)

        assert result.status is GenerationStatus.SUCCESS
        assert result.outcome == "extracted"
        assert result.parsed_payload == {"keywords": ["Python", "Kafka"]}
        body = transport.json_body()
        assert "format" not in body
        assert body["prompt"].endswith("Job Description:\nPython and Kafka engineer")

    @pytest.mark.asyncio
    async def test_deferred_prompt_truncated(self, make_resolver, tenant):
        resolver = make_resolver(user=TierSettings(provider="local-device"))
        result = await KeywordExtractor(ExecutionController(resolver)).extract_keywords("k" * 2500, tenant)
        assert result.status is GenerationStatus.DEFERRED
        assert result.deferred.prompt.endswith("k" * 2000 + CONTEXT_TRUNCATED_MARKER)

    @pytest.mark.asyncio
    async def test_no_keywords(self, make_resolver, tenant):
        result = await KeywordExtractor(ExecutionController(make_resolver())).extract_keywords(
            "anything", tenant, execution_result_text="[]"
        )
        assert result.status is GenerationStatus.FAILED
        assert result.error_kind == "ParseError"

    @pytest.mark.asyncio
    async def test_unparseable(self, make_resolver, tenant):
        result = await KeywordExtractor(ExecutionController(make_resolver())).extract_keywords(
            "anything", tenant, execution_result_text="Python, Kafka"
        )
        assert result.error_kind == "ParseError"
        assert result.raw_text == "Python, Kafka"
