"""Pydantic models for the structured CV document."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Callable, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def new_entity_id() -> str:
    return uuid.uuid4().hex


def parse_cv_date(value: str | None) -> date | None:
    """Parse YYYY-MM-DD, YYYY-MM or YYYY; anything else is unknown."""
    if not value:
        return None
    value = value.strip()
    for length, suffix in ((10, ""), (7, "-01"), (4, "-01-01")):
        if len(value) >= length:
            try:
                return date.fromisoformat(value[:length] + suffix)
            except ValueError:
                continue
    return None


class CvModel(BaseModel):
    # camelCase accepted on input; unknown fields kept so nothing is dropped on save
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Entity(CvModel):
    """A list entry with a stable id and an optional link to its master copy."""

    entity_id: str = Field(default_factory=new_entity_id)
    source_entity_id: str | None = None  # id of the entity in the master document
    description: str | None = None

    NATURAL_KEY: ClassVar[tuple[str, ...]] = ()
    OPTIONAL_KEY_PARTS: ClassVar[frozenset[str]] = frozenset()  # blank on both sides still matches
    IDENTITY_FIELDS: ClassVar[frozenset[str]] = frozenset({"entity_id", "source_entity_id"})

    def natural_key(self) -> tuple[str, ...] | None:
        return self.build_natural_key(lambda name: getattr(self, name, None))

    @classmethod
    def build_natural_key(cls, lookup: Callable[[str], object]) -> tuple[str, ...] | None:
        """Case-folded natural key, or None when a required part is blank.

        Blank optional parts become "" so two entries that both leave them
        out still compare equal.
        """
        parts = []
        for name in cls.NATURAL_KEY:
            value = lookup(name)
            text = value.strip().lower() if isinstance(value, str) else ""
            if not text and name not in cls.OPTIONAL_KEY_PARTS:
                return None
            parts.append(text)
        return tuple(parts) if parts else None


class Profile(CvModel):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    location: str | None = None


class Strength(CvModel):
    entity_id: str = Field(default_factory=new_entity_id)
    text: str


class ProfessionalSummary(CvModel):
    entity_id: str = Field(default_factory=new_entity_id)
    description: str = ""
    strengths: list[Strength] = []

    @model_validator(mode="before")
    @classmethod
    def _coerce_strengths(cls, data):
        # Models usually return strengths as plain strings
        if isinstance(data, dict) and isinstance(data.get("strengths"), list):
            data = dict(data)
            data["strengths"] = [
                {"text": s} if isinstance(s, str) else s for s in data["strengths"]
            ]
        return data


class ResponsibilityItem(CvModel):
    entity_id: str = Field(default_factory=new_entity_id)
    content: str = ""


class ResponsibilityCategory(CvModel):
    entity_id: str = Field(default_factory=new_entity_id)
    name: str = ""
    items: list[ResponsibilityItem] = []


class WorkExperience(Entity):
    position: str = ""
    company_name: str = ""
    start_date: str | None = None
    end_date: str | None = None  # None means current position
    responsibility_categories: list[ResponsibilityCategory] = []

    NATURAL_KEY = ("position", "company_name")


class Education(Entity):
    degree: str = ""
    field_of_study: str | None = None
    institution: str = ""
    start_date: str | None = None
    end_date: str | None = None

    NATURAL_KEY = ("degree", "institution")


class Skill(Entity):
    name: str
    category: str | None = None
    level: str | None = None

    NATURAL_KEY = ("name",)


class Project(Entity):
    title: str = ""
    url: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    NATURAL_KEY = ("title",)


class Certification(Entity):
    name: str = ""
    issuer: str | None = None
    date_obtained: str | None = None

    NATURAL_KEY = ("name", "issuer")
    OPTIONAL_KEY_PARTS = frozenset({"issuer"})


class Membership(Entity):
    name: str = ""
    organisation: str | None = None
    start_date: str | None = None

    NATURAL_KEY = ("name", "organisation")
    OPTIONAL_KEY_PARTS = frozenset({"organisation"})


class Interest(Entity):
    name: str = ""

    NATURAL_KEY = ("name",)


LIST_SECTIONS: dict[str, type[Entity]] = {
    "work_experience": WorkExperience,
    "education": Education,
    "skills": Skill,
    "projects": Project,
    "certifications": Certification,
    "memberships": Membership,
    "interests": Interest,
}


class CvDocument(CvModel):
    profile: Profile = Field(default_factory=Profile)
    professional_summary: ProfessionalSummary | None = None
    work_experience: list[WorkExperience] = []
    education: list[Education] = []
    skills: list[Skill] = []
    projects: list[Project] = []
    certifications: list[Certification] = []
    memberships: list[Membership] = []
    interests: list[Interest] = []

    @model_validator(mode="after")
    def _unique_entity_ids(self):
        seen: set[str] = set()
        for section in LIST_SECTIONS:
            for entity in getattr(self, section):
                if entity.entity_id in seen:
                    raise ValueError(f"duplicate entity id {entity.entity_id!r} in {section}")
                seen.add(entity.entity_id)
        return self

    def recent_work(self) -> list[WorkExperience]:
        """Work entries newest first: current positions, then by end and start date.

        Entries that tie, including undated ones, keep their stored order.
        """

        def recency(work: WorkExperience) -> tuple[date, date]:
            end = date.max if not work.end_date else (parse_cv_date(work.end_date) or date.min)
            return end, parse_cv_date(work.start_date) or date.min

        return sorted(self.work_experience, key=recency, reverse=True)

    def find_entity(self, section: str, entity_id: str) -> Entity | None:
        for entity in getattr(self, section):
            if entity.entity_id == entity_id:
                return entity
        return None

    def derive_variant(self) -> CvDocument:
        """Copy this document as a variant: fresh entity ids, each pointing back here."""
        variant = self.model_copy(deep=True)
        for section in LIST_SECTIONS:
            for entity in getattr(variant, section):
                entity.source_entity_id = entity.entity_id
                entity.entity_id = new_entity_id()
        return variant
