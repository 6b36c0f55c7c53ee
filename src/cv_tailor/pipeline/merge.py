"""Reconciliation merge: apply a partial AI update onto a full CV document.

For each targeted list section, every payload entity is matched against the
document in strict priority order:

1. ``entity_id`` equals the payload id
2. ``source_entity_id`` equals the payload id (variants carry master ids)
3. case-insensitive natural key (e.g. position + company name)

A matched entity receives only the fields present in the payload. Unmatched
payload entities are dropped: the model cannot invent a new job or degree.
Skills are the exception. Any skill whose name is not already present is
appended, so skills are the only section that can grow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pydantic
from pydantic.alias_generators import to_camel

from cv_tailor.errors import ValidationError
from cv_tailor.models.document import (
    LIST_SECTIONS,
    CvDocument,
    Entity,
    ProfessionalSummary,
    Skill,
)
from cv_tailor.models.generation import MergeReport, SectionId

_PAYLOAD_ID_KEYS = ("id", "entity_id", "entityId")

default_logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    document: CvDocument
    report: MergeReport


def merge_payload(
    document: CvDocument,
    payload: dict,
    target_sections: set[SectionId],
    logger: logging.Logger | None = None,
) -> MergeResult:
    """Merge ``payload`` into a copy of ``document``.

    The input document is never mutated. Sections outside ``target_sections``
    are carried over untouched even when the payload contains them.

    Raises:
        ValidationError: the payload is not an object, contains none of the
            targeted sections, or a targeted section has the wrong shape.
    """
    return _Merger(document, target_sections, logger or default_logger).merge(payload)


def section_payloads(payload: dict, target_sections: set[SectionId]) -> dict[SectionId, object]:
    """Pick the targeted sections out of a payload, accepting alternate key spellings."""
    found: dict[SectionId, object] = {}
    for section in SectionId:
        if section not in target_sections:
            continue
        for key in section.payload_keys:
            if key in payload:
                found[section] = payload[key]
                break
    return found


class _Merger:
    def __init__(self, document: CvDocument, target_sections: set[SectionId], logger: logging.Logger):
        self.original = document
        self.document = document.model_copy(deep=True)
        self.target_sections = target_sections
        self.logger = logger
        self.report = MergeReport()

    def merge(self, payload: dict) -> MergeResult:
        if not isinstance(payload, dict):
            raise ValidationError("AI response must be a JSON object")
        sections = section_payloads(payload, self.target_sections)
        if not sections:
            wanted = ", ".join(sorted(s.value for s in self.target_sections))
            raise ValidationError(f"AI response contains none of the requested sections ({wanted})")

        for section, value in sections.items():
            if section is SectionId.PROFESSIONAL_SUMMARY:
                self._merge_summary(value)
            elif section is SectionId.SKILLS:
                self._merge_skills(_require_list(section, value))
            else:
                self._merge_entities(section, _require_list(section, value))

        self.logger.info(
            "Merge finished: %d matched (id=%d, source=%d, key=%d), %d discarded, %d skills added",
            self.report.matched,
            self.report.matched_by_id,
            self.report.matched_by_source_id,
            self.report.matched_by_natural_key,
            self.report.discarded,
            len(self.report.skills_appended),
        )
        return MergeResult(document=self.document, report=self.report)

    def _touch(self, section: SectionId) -> None:
        if section.value not in self.report.sections_touched:
            self.report.sections_touched.append(section.value)

    # -- professional summary -------------------------------------------

    def _merge_summary(self, value) -> None:
        if isinstance(value, str):
            value = {"description": value}
        if not isinstance(value, dict):
            raise ValidationError("professional_summary must be an object")

        current = self.document.professional_summary or ProfessionalSummary()
        updates = _known_fields(ProfessionalSummary, value, exclude=frozenset({"entity_id"}))
        if not updates:
            return
        merged = _revalidate(ProfessionalSummary, current, updates, "professional_summary")
        if merged != current:
            self.document.professional_summary = merged
            self.report.summary_updated = True
            self._touch(SectionId.PROFESSIONAL_SUMMARY)

    # -- skills ---------------------------------------------------------

    def _merge_skills(self, items: list) -> None:
        known = {skill.name.strip().lower() for skill in self.document.skills}
        for item in items:
            if isinstance(item, str):
                item = {"name": item}
            name = item.get("name") if isinstance(item, dict) else None
            if not isinstance(name, str) or not name.strip():
                self.report.discarded += 1
                self.logger.info("Discarded skill entry without a name")
                continue
            if name.strip().lower() in known:
                continue
            category = item.get("category")
            self.document.skills.append(
                Skill(name=name.strip(), category=category if isinstance(category, str) else None)
            )
            known.add(name.strip().lower())
            self.report.skills_appended.append(name.strip())
            self._touch(SectionId.SKILLS)

    # -- matched list sections ------------------------------------------

    def _merge_entities(self, section: SectionId, items: list) -> None:
        entities: list[Entity] = getattr(self.document, section.value)
        model = LIST_SECTIONS[section.value]

        for item in items:
            if not isinstance(item, dict):
                self.report.discarded += 1
                self.logger.info("Discarded non-object %s entry", section.value)
                continue

            index = self._match(entities, model, item)
            if index is None:
                self.report.discarded += 1
                self.logger.info(
                    "Discarded unmatched %s entry (id=%s)", section.value, _payload_id(item)
                )
                continue

            updates = _known_fields(model, item, exclude=frozenset(model.NATURAL_KEY))
            if updates:
                entities[index] = _revalidate(model, entities[index], updates, section.value)
            self._touch(section)

    def _match(self, entities: list[Entity], model: type[Entity], item: dict) -> int | None:
        payload_id = _payload_id(item)
        if payload_id:
            for i, entity in enumerate(entities):
                if entity.entity_id == payload_id:
                    self.report.matched_by_id += 1
                    return i
            for i, entity in enumerate(entities):
                if entity.source_entity_id and entity.source_entity_id == payload_id:
                    self.report.matched_by_source_id += 1
                    return i

        key = _payload_natural_key(model, item)
        if key is not None:
            for i, entity in enumerate(entities):
                if entity.natural_key() == key:
                    self.report.matched_by_natural_key += 1
                    return i
        return None


def _require_list(section: SectionId, value) -> list:
    if not isinstance(value, list):
        raise ValidationError(f"{section.value} must be a list, got {type(value).__name__}")
    return value


def _payload_id(item: dict) -> str | None:
    for key in _PAYLOAD_ID_KEYS:
        value = item.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _payload_value(item: dict, field_name: str):
    if field_name in item:
        return item[field_name]
    return item.get(to_camel(field_name))


def _payload_natural_key(model: type[Entity], item: dict) -> tuple[str, ...] | None:
    return model.build_natural_key(lambda name: _payload_value(item, name))


def _known_fields(model: type[pydantic.BaseModel], item: dict, exclude: frozenset[str]) -> dict:
    """Payload values for declared, writable fields of ``model``; unknown keys are ignored."""
    updates = {}
    for name in model.model_fields:
        if name in exclude or name in Entity.IDENTITY_FIELDS:
            continue
        for key in (name, to_camel(name)):
            if key in item:
                updates[name] = item[key]
                break
    return updates


def _revalidate(model, current, updates: dict, section: str):
    try:
        return model.model_validate({**current.model_dump(), **updates})
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid {section} entry in AI response: {e.errors()[0]['msg']}") from e
