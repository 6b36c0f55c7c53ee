"""Data models for the CV generation pipeline."""

from cv_tailor.models.assessment import QualityAssessment, Recommendation
from cv_tailor.models.job import JobPosting
from cv_tailor.models.document import (
    Certification,
    CvDocument,
    Education,
    Interest,
    Membership,
    ProfessionalSummary,
    Profile,
    Project,
    ResponsibilityCategory,
    ResponsibilityItem,
    Skill,
    Strength,
    WorkExperience,
)
from cv_tailor.models.generation import (
    ConfigTier,
    ContextClass,
    DeferredExecution,
    DispatchResult,
    GenerationParams,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    ImageAttachment,
    MergeReport,
    ProviderConfig,
    ProviderId,
    SectionId,
    TenantIdentity,
)

__all__ = [
    "Certification",
    "ConfigTier",
    "ContextClass",
    "CvDocument",
    "DeferredExecution",
    "DispatchResult",
    "Education",
    "GenerationParams",
    "GenerationRequest",
    "GenerationResult",
    "GenerationStatus",
    "ImageAttachment",
    "Interest",
    "JobPosting",
    "Membership",
    "MergeReport",
    "ProfessionalSummary",
    "Profile",
    "Project",
    "ProviderConfig",
    "ProviderId",
    "QualityAssessment",
    "Recommendation",
    "ResponsibilityCategory",
    "ResponsibilityItem",
    "SectionId",
    "Skill",
    "Strength",
    "TenantIdentity",
    "WorkExperience",
]
