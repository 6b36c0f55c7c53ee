"""Rewrite prompt builders.

Two variants are built from the same document. The full prompt carries every
entry of every section. The constrained prompt, used for on-device models,
caps each part so its size stays bounded whatever the document size.
"""

from __future__ import annotations

from cv_tailor.config import PromptConfig
from cv_tailor.models.document import CvDocument, WorkExperience
from cv_tailor.models.generation import ContextClass, GenerationRequest, SectionId

REWRITE_SYSTEM = "You are a professional CV writer. Always return valid JSON responses."

CONTEXT_TRUNCATED_MARKER = "\n\n[Job description truncated for on-device AI context limits]"

_INTRO = (
    "You are a professional CV writer. Rewrite the following CV sections to better "
    "match this job description while maintaining factual accuracy.\n\n"
)

_BASE_INSTRUCTIONS = [
    "Maintain factual accuracy - do not invent experiences, dates, or qualifications",
    "ENHANCE and EXPAND content with relevant details, achievements, and metrics. "
    "Do NOT simplify or reduce content.",
    "Emphasize relevant skills and experiences that match the job description",
    "Use keywords from the job description naturally throughout",
    "Keep the same structure and format",
    "Maintain professional tone",
]

_FULL_INSTRUCTIONS = _BASE_INSTRUCTIONS + [
    "For work experience, rewrite descriptions and responsibility items to highlight "
    "relevant achievements with specific examples and quantifiable results",
    "For professional summary, tailor it to emphasize alignment with the job while "
    "maintaining or increasing detail level",
    "Ensure skills section includes relevant keywords from the job description",
    "When rewriting, add context, metrics, and achievements where appropriate - make "
    "content more compelling, not less",
]

# JSON shape requested per section; order matches SectionId declaration order
_SECTION_SHAPES: dict[SectionId, str] = {
    SectionId.PROFESSIONAL_SUMMARY: (
        '  "professional_summary": {"description": "rewritten professional summary text", '
        '"strengths": ["strength1", "strength2"]}'
    ),
    SectionId.WORK_EXPERIENCE: (
        '  "work_experience": [{"id": "id from the CV data", '
        '"position": "exact position from original CV", '
        '"company_name": "exact company from original CV", '
        '"description": "rewritten description", '
        '"responsibility_categories": [{"name": "category name", '
        '"items": [{"content": "rewritten item"}]}]}]'
    ),
    SectionId.SKILLS: '  "skills": [{"name": "skill name", "category": "category name"}]',
    SectionId.EDUCATION: '  "education": [{"id": "id from the CV data", "description": "..."}]',
    SectionId.PROJECTS: '  "projects": [{"id": "id from the CV data", "description": "..."}]',
    SectionId.CERTIFICATIONS: (
        '  "certifications": [{"id": "id from the CV data", "description": "..."}]'
    ),
    SectionId.MEMBERSHIPS: '  "memberships": [{"id": "id from the CV data", "description": "..."}]',
    SectionId.INTERESTS: '  "interests": [{"id": "id from the CV data", "description": "..."}]',
}

_CLOSING = (
    "\nIMPORTANT: You MUST include ALL requested sections in your response. Keep original "
    "IDs for all items. Enhance content with more detail, achievements, and metrics - do "
    "not reduce or simplify.\n"
    '\nCRITICAL FOR WORK EXPERIENCE: The "position" and "company_name" fields MUST match '
    "EXACTLY (case-insensitive) the position and company name from the original CV data. "
    "Do NOT modify these fields - they are used to match your rewritten content to the "
    "original entries."
)


def truncate(text: str | None, limit: int, marker: str = "...") -> str:
    """Cut text to ``limit`` characters, appending ``marker`` when cut."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + marker


def build_rewrite_prompt(
    document: CvDocument,
    request: GenerationRequest,
    context_class: ContextClass,
    caps: PromptConfig | None = None,
) -> str:
    """Build the rewrite prompt for the given context class."""
    if context_class is ContextClass.CONSTRAINED:
        return _ConstrainedPrompt(document, request, caps or PromptConfig()).build()
    return _FullPrompt(document, request).build()


class _FullPrompt:
    """Every entry of every section, untruncated."""

    instructions = _FULL_INSTRUCTIONS

    def __init__(self, document: CvDocument, request: GenerationRequest):
        self.document = document
        self.request = request
        self.lines: list[str] = []

    def build(self) -> str:
        self.lines.append(_INTRO + f"Job Description:\n{self.context_text()}\n")
        self.lines.append("Current CV Data:")
        self.summary()
        self.work_experience()
        self.skills()
        self.other_sections()
        self.lines.append("")
        self.lines.append(self.instructions_block())
        self.lines.append(self.json_structure())
        return "\n".join(self.lines) + _CLOSING

    def context_text(self) -> str:
        return self.request.context_text

    def custom_instructions(self) -> str | None:
        return self.request.custom_instructions

    def summary_text(self, text: str) -> str:
        return text

    def summary(self) -> None:
        summary = self.document.professional_summary
        if summary is None:
            return
        self.lines.append(f"- Professional Summary: {self.summary_text(summary.description)}")
        if summary.strengths:
            self.lines.append("  Strengths:")
            for strength in summary.strengths:
                self.lines.append(f"    - {strength.text}")

    def work_entries(self) -> list[WorkExperience]:
        return self.document.work_experience

    def work_experience(self) -> None:
        if not self.document.work_experience:
            return
        self.lines.append("- Work Experience:")
        for work in self.work_entries():
            self.work_entry(work)
        hidden = len(self.document.work_experience) - len(self.work_entries())
        if hidden > 0:
            self.lines.append(f"  ... ({hidden} more positions)")

    def work_entry(self, work: WorkExperience) -> None:
        self.lines.append(f"  * {work.position} at {work.company_name} [id: {work.entity_id}]")
        if work.description:
            self.lines.append(f"    Description: {self.description_text(work.description)}")
        for category in work.responsibility_categories:
            self.lines.append(f"    {category.name}:")
            shown = self.category_items(category.items)
            for item in shown:
                self.lines.append(f"      - {self.item_text(item.content)}")
            if len(category.items) > len(shown):
                self.lines.append(f"      ... ({len(category.items) - len(shown)} more items)")

    def description_text(self, text: str) -> str:
        return text

    def category_items(self, items: list) -> list:
        return items

    def item_text(self, text: str) -> str:
        return text

    def skill_names(self) -> tuple[list[str], int]:
        names = [skill.name for skill in self.document.skills]
        return names, 0

    def skills(self) -> None:
        if not self.document.skills:
            return
        names, hidden = self.skill_names()
        line = "- Skills: " + ", ".join(names)
        if hidden:
            line += f" (and {hidden} more)"
        self.lines.append(line)

    def included_sections(self) -> list[SectionId]:
        return [
            SectionId.EDUCATION,
            SectionId.PROJECTS,
            SectionId.CERTIFICATIONS,
            SectionId.MEMBERSHIPS,
            SectionId.INTERESTS,
        ]

    def other_sections(self) -> None:
        doc = self.document
        for section in self.included_sections():
            entities = getattr(doc, section.value)
            if not entities:
                continue
            self.lines.append(f"- {section.value.replace('_', ' ').title()}:")
            for entity in entities:
                line = f"  * {_entity_title(section, entity)} [id: {entity.entity_id}]"
                if entity.description:
                    line += f": {self.description_text(entity.description)}"
                self.lines.append(line)

    def instructions_block(self) -> str:
        numbered = "\n".join(f"{i}. {text}" for i, text in enumerate(self.instructions, 1))
        block = f"Instructions:\n{numbered}"
        custom = self.custom_instructions()
        if custom:
            block += f"\n\nAdditional User Instructions:\n{custom}"
        return block + "\n"

    def json_structure(self) -> str:
        shapes = [
            shape for section, shape in _SECTION_SHAPES.items()
            if section in self.request.target_sections
        ]
        return (
            "CRITICAL: You MUST return ALL requested sections in the JSON response. "
            "Do not omit any section that is requested.\n\n"
            "Return a JSON object with the rewritten sections. Structure:\n"
            "{\n" + ",\n".join(shapes) + "\n}"
        )


class _ConstrainedPrompt(_FullPrompt):
    """Size-capped variant for models with a small context window."""

    instructions = _BASE_INSTRUCTIONS

    def __init__(self, document: CvDocument, request: GenerationRequest, caps: PromptConfig):
        super().__init__(document, request)
        self.caps = caps

    def context_text(self) -> str:
        return truncate(self.request.context_text, self.caps.context_chars, CONTEXT_TRUNCATED_MARKER)

    def custom_instructions(self) -> str | None:
        custom = self.request.custom_instructions
        return truncate(custom, self.caps.custom_instruction_chars) if custom else None

    def summary_text(self, text: str) -> str:
        return truncate(text, self.caps.summary_chars)

    def work_entries(self) -> list[WorkExperience]:
        return self.document.recent_work()[: self.caps.work_entries]

    def description_text(self, text: str) -> str:
        return truncate(text, self.caps.work_description_chars)

    def category_items(self, items: list) -> list:
        return items[: self.caps.items_per_category]

    def item_text(self, text: str) -> str:
        return truncate(text, self.caps.item_chars)

    def skill_names(self) -> tuple[list[str], int]:
        skills = self.document.skills
        shown = [skill.name for skill in skills[: self.caps.skills]]
        return shown, len(skills) - len(shown)

    def included_sections(self) -> list[SectionId]:
        # only what the model is asked to rewrite
        return [s for s in super().included_sections() if s in self.request.target_sections]


def _entity_title(section: SectionId, entity) -> str:
    if section is SectionId.EDUCATION:
        title = entity.degree
        if entity.field_of_study:
            title += f" in {entity.field_of_study}"
        return f"{title} from {entity.institution}"
    if section is SectionId.PROJECTS:
        return entity.title
    if section is SectionId.CERTIFICATIONS:
        return f"{entity.name} from {entity.issuer}" if entity.issuer else entity.name
    if section is SectionId.MEMBERSHIPS:
        return f"{entity.name} - {entity.organisation}" if entity.organisation else entity.name
    return entity.name
