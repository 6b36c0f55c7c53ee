"""Pydantic models for generation requests, provider settings and results."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from cv_tailor.utils.prompt_guard import sanitize_instructions

MAX_CUSTOM_INSTRUCTIONS = 2000


class SectionId(str, Enum):
    PROFESSIONAL_SUMMARY = "professional_summary"
    WORK_EXPERIENCE = "work_experience"
    EDUCATION = "education"
    SKILLS = "skills"
    PROJECTS = "projects"
    CERTIFICATIONS = "certifications"
    MEMBERSHIPS = "memberships"
    INTERESTS = "interests"

    @property
    def payload_keys(self) -> tuple[str, ...]:
        """Keys a model may use for this section in its JSON answer."""
        camel = {
            "professional_summary": "professionalSummary",
            "work_experience": "workExperience",
        }
        keys = [self.value]
        if self.value in camel:
            keys.append(camel[self.value])
        if self is SectionId.MEMBERSHIPS:
            keys.append("professional_memberships")
        return tuple(keys)


DEFAULT_SECTIONS = frozenset(
    {SectionId.PROFESSIONAL_SUMMARY, SectionId.WORK_EXPERIENCE, SectionId.SKILLS}
)


class ProviderId(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROK = "grok"
    LOCAL_DEVICE = "local-device"

    @classmethod
    def parse(cls, value: str) -> ProviderId:
        """Parse a stored preference string, tolerating inline comments and case."""
        cleaned = value.split("#", 1)[0].strip().lower()
        # older settings rows stored the on-device option as "browser"
        if cleaned == "browser":
            cleaned = cls.LOCAL_DEVICE.value
        return cls(cleaned)


class ContextClass(str, Enum):
    FULL = "full"
    CONSTRAINED = "constrained"


class ConfigTier(str, Enum):
    USER = "user"
    ORGANISATION = "organisation"
    DEFAULT = "default"


class TenantIdentity(BaseModel):
    user_id: str
    organisation_id: str | None = None


class GenerationParams(BaseModel):
    temperature: float = 0.7
    max_tokens: int = 8000
    system: str | None = None
    expect_json: bool = True  # ask providers with a JSON mode to use it


class ImageAttachment(BaseModel):
    mime_type: str
    data: bytes


class ProviderConfig(BaseModel):
    """Fully resolved backend for one request. Credentials live only as long as it does."""

    provider_id: ProviderId
    credentials: SecretStr | None = None
    model: str
    base_endpoint: str = ""
    supports_image_attachment: bool = False
    context_class: ContextClass = ContextClass.FULL
    tier: ConfigTier = ConfigTier.DEFAULT

    @property
    def client_deferred(self) -> bool:
        return self.provider_id is ProviderId.LOCAL_DEVICE


class GenerationRequest(BaseModel):
    target_document_ref: str
    tenant: TenantIdentity
    target_sections: set[SectionId] = Field(default_factory=lambda: set(DEFAULT_SECTIONS))
    context_text: str = ""
    custom_instructions: str | None = None
    execution_result_text: str | None = None  # set on the second round trip only
    force_server: bool = False

    @field_validator("target_sections")
    @classmethod
    def _summary_always_targeted(cls, sections: set[SectionId]) -> set[SectionId]:
        return set(sections) | {SectionId.PROFESSIONAL_SUMMARY}

    @field_validator("custom_instructions")
    @classmethod
    def _bounded_instructions(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if len(value.strip()) > MAX_CUSTOM_INSTRUCTIONS:
            raise ValueError(
                f"custom instructions must be {MAX_CUSTOM_INSTRUCTIONS} characters or less"
            )
        cleaned = sanitize_instructions(value)
        if cleaned.blocked:
            raise ValueError("custom instructions were blocked: they try to override the CV rewrite")
        return cleaned.text or None


class DispatchResult(BaseModel):
    success: bool
    text: str | None = None
    error_kind: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, text: str) -> DispatchResult:
        return cls(success=True, text=text)

    @classmethod
    def failed(cls, error_kind: str, message: str) -> DispatchResult:
        return cls(success=False, error_kind=error_kind, message=message)


class DeferredExecution(BaseModel):
    """Contract handed to the caller when inference must run on its own device."""

    prompt: str
    model_id: str
    model_class: ContextClass
    generation_params: GenerationParams = Field(default_factory=GenerationParams)


class MergeReport(BaseModel):
    matched_by_id: int = 0
    matched_by_source_id: int = 0
    matched_by_natural_key: int = 0
    discarded: int = 0
    skills_appended: list[str] = []
    summary_updated: bool = False
    sections_touched: list[str] = []

    @property
    def matched(self) -> int:
        return self.matched_by_id + self.matched_by_source_id + self.matched_by_natural_key

    @property
    def no_op(self) -> bool:
        return self.matched == 0 and not self.skills_appended and not self.summary_updated


class GenerationStatus(str, Enum):
    SUCCESS = "success"
    DEFERRED = "deferred"
    FAILED = "failed"


class GenerationResult(BaseModel):
    status: GenerationStatus
    raw_text: str | None = None
    parsed_payload: dict[str, Any] | None = None
    document: Any = None  # merged CvDocument on success
    deferred: DeferredExecution | None = None
    merge_report: MergeReport | None = None
    outcome: str | None = None  # "merged" | "no_op"
    error_kind: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = {}

    @model_validator(mode="after")
    def _terminal_state_is_consistent(self):
        if self.status is GenerationStatus.SUCCESS and not self.parsed_payload:
            raise ValueError("a successful result needs a non-empty payload")
        if self.status is GenerationStatus.DEFERRED and self.deferred is None:
            raise ValueError("a deferred result needs the execution contract")
        if self.status is GenerationStatus.FAILED and not self.error_kind:
            raise ValueError("a failed result needs an error kind")
        return self

    @classmethod
    def failure(cls, error, raw_text: str | None = None) -> GenerationResult:
        """Build a Failed result from a CvTailorError."""
        info = error.to_dict()
        return cls(
            status=GenerationStatus.FAILED,
            raw_text=raw_text,
            error_kind=info.pop("error_kind"),
            error_message=info.pop("message"),
            details=info,
        )

    def to_response(self) -> dict:
        """Caller-facing shape: deferred contract, merged document or typed failure."""
        if self.status is GenerationStatus.DEFERRED:
            return {
                "success": True,
                "deferred": True,
                "prompt": self.deferred.prompt,
                "modelId": self.deferred.model_id,
                "modelClass": self.deferred.model_class.value,
            }
        if self.status is GenerationStatus.FAILED:
            return {
                "success": False,
                "errorKind": self.error_kind,
                "error": self.error_message,
                **self.details,
            }
        body: dict = {"success": True, "outcome": self.outcome}
        if self.document is not None and hasattr(self.document, "model_dump"):
            body["document"] = self.document.model_dump(mode="json")
        else:
            body["payload"] = self.parsed_payload
        return body
