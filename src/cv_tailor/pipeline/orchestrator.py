"""CV rewrite pipeline - resolve, dispatch or defer, normalize, merge, save."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from cv_tailor.clients.resolver import ConfigurationResolver
from cv_tailor.config import AppConfig
from cv_tailor.errors import ParseError, ValidationError, VariantExistsError
from cv_tailor.models.document import CvDocument
from cv_tailor.models.generation import (
    ContextClass,
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    ImageAttachment,
)
from cv_tailor.pipeline.execution import ExecutionController
from cv_tailor.pipeline.merge import merge_payload
from cv_tailor.pipeline.prompts import REWRITE_SYSTEM, build_rewrite_prompt
from cv_tailor.utils.json_parser import normalize

default_logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def load_document(self, ref: str) -> CvDocument: ...

    def save_document(self, ref: str, document: CvDocument) -> None: ...

    def find_variant(self, user_id: str, context_key: str) -> str | None: ...

    def create_variant(
        self,
        user_id: str,
        context_key: str,
        document: CvDocument,
        *,
        source_ref: str,
        name: str | None = None,
    ) -> str: ...


class CvRewritePipeline:
    """Rewrites targeted sections of a stored CV document with the tenant's AI backend.

    A run either finishes on the server (dispatch, normalize, merge, save) or
    returns a Deferred contract for on-device inference. The caller then calls
    ``run`` again with ``execution_result_text`` set, and that second call only
    normalizes and merges.
    """

    def __init__(
        self,
        store: DocumentStore,
        resolver: ConfigurationResolver,
        config: AppConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.config = config or resolver.config
        self.logger = logger or default_logger
        self.execution = ExecutionController(
            resolver, self.config, transport=transport, logger=self.logger
        )

    def generation_params(self) -> GenerationParams:
        gen = self.config.generation
        return GenerationParams(
            temperature=gen.rewrite_temperature,
            max_tokens=gen.rewrite_max_tokens,
            system=REWRITE_SYSTEM,
        )

    async def run(
        self, request: GenerationRequest, image: ImageAttachment | None = None
    ) -> GenerationResult:
        """Rewrite the document named by ``request.target_document_ref`` in place."""
        ref = request.target_document_ref
        document = self.store.load_document(ref)

        result = await self._generate(request, document, document, image)
        if result.status is GenerationStatus.SUCCESS and result.outcome == "merged":
            self.store.save_document(ref, result.document)
            self.logger.info("Saved rewritten document %s", ref)
        return result

    async def run_for_variant(
        self,
        request: GenerationRequest,
        context_key: str,
        name: str | None = None,
        image: ImageAttachment | None = None,
    ) -> GenerationResult:
        """Create one tailored variant of the source document per context (e.g. job application).

        The existence check runs before any dispatch and again inside the
        store's insert. Two concurrent submissions can both pass the first
        check; the store's check narrows but does not close that window.
        """
        user_id = request.tenant.user_id
        existing = self.store.find_variant(user_id, context_key)
        if existing:
            return GenerationResult.failure(
                VariantExistsError("A tailored CV already exists for this context", existing)
            )

        source_ref = request.target_document_ref
        master = self.store.load_document(source_ref)
        variant = master.derive_variant()

        result = await self._generate(request, master, variant, image)
        if result.status is not GenerationStatus.SUCCESS:
            return result

        try:
            variant_id = self.store.create_variant(
                user_id, context_key, result.document, source_ref=source_ref, name=name
            )
        except VariantExistsError as e:
            return GenerationResult.failure(e, raw_text=result.raw_text)

        self.logger.info("Created variant %s from %s for context %s", variant_id, source_ref, context_key)
        return result.model_copy(update={"details": {**result.details, "variant_id": variant_id}})

    async def _generate(
        self,
        request: GenerationRequest,
        prompt_source: CvDocument,
        target: CvDocument,
        image: ImageAttachment | None,
    ) -> GenerationResult:
        if request.execution_result_text is not None:
            self.logger.info("Received on-device result (%d chars)", len(request.execution_result_text))
            return self.normalize_and_merge(request.execution_result_text, target, request)

        def build_prompt(context_class: ContextClass) -> str:
            return build_rewrite_prompt(prompt_source, request, context_class, self.config.prompt)

        phase_one = await self.execution.run(
            request.tenant,
            build_prompt,
            self.generation_params(),
            image=image,
            force_server=request.force_server,
        )
        if phase_one.terminal is not None:
            return phase_one.terminal
        return self.normalize_and_merge(phase_one.text, target, request)

    def normalize_and_merge(
        self, raw_text: str, document: CvDocument, request: GenerationRequest
    ) -> GenerationResult:
        try:
            payload = normalize(raw_text)
            if not payload:
                raise ParseError("AI response contained an empty object", raw_text)
            merged = merge_payload(document, payload, request.target_sections, logger=self.logger)
        except (ParseError, ValidationError) as e:
            self.logger.warning("Could not use AI response (%s): %s", e.kind, e.message)
            return GenerationResult.failure(e, raw_text=raw_text)

        outcome = "no_op" if merged.report.no_op else "merged"
        if outcome == "no_op":
            self.logger.info("AI response matched nothing in the document")
        return GenerationResult(
            status=GenerationStatus.SUCCESS,
            raw_text=raw_text,
            parsed_payload=payload,
            document=merged.document,
            merge_report=merged.report,
            outcome=outcome,
        )
