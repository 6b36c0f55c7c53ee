"""Clean user-supplied prompt instructions before they reach a model."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

default_logger = logging.getLogger(__name__)

_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        # role and instruction overrides
        r"(ignore|forget|disregard|override)\s+(all\s+)?previous\s+instructions?",
        r"you\s+(are|must)\s+now",
        r"change\s+your\s+role",
        r"act\s+as\s+(a|an)\s+(different|new)",
        # secret extraction
        r"(reveal|extract|output|return)\s+(all\s+)?(system|prompt|api|key|secret)",
        r"show\s+(me\s+)?(all\s+)?(system|prompt|api|key|secret)",
        # output format tampering
        r"do\s+not\s+return\s+json",
        r"ignore\s+the\s+json\s+format",
        r"return\s+plain\s+text\s+instead",
        r"skip\s+json\s+validation",
        # probing the system prompt
        r"what\s+(is|are)\s+your\s+(system|prompt|instructions?)",
        r"tell\s+me\s+(about\s+)?(your\s+)?(system|prompt|instructions?)",
        r"what\s+(were|are)\s+the\s+(previous|original)\s+instructions?",
    )
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SPACE_RUN = re.compile(r"[ \t]{3,}")
_NEWLINE_RUN = re.compile(r"\n{4,}")


@dataclass
class SanitizedInstructions:
    text: str
    blocked: bool = False
    matched_patterns: list[str] = field(default_factory=list)


def sanitize_instructions(
    text: str, logger: logging.Logger | None = None
) -> SanitizedInstructions:
    """Strip control characters and excess whitespace from ``text``.

    Instructions that match a known injection pattern are blocked outright and
    come back with empty text. Blocked attempts are logged by pattern only;
    the instruction text itself never reaches the log.
    """
    logger = logger or default_logger
    cleaned = text.strip()

    matched = [p.pattern for p in _INJECTION_PATTERNS if p.search(cleaned)]
    if matched:
        logger.warning(
            "Blocked custom instructions (%d chars, %d injection patterns)",
            len(cleaned),
            len(matched),
        )
        return SanitizedInstructions(text="", blocked=True, matched_patterns=matched)

    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _SPACE_RUN.sub(" ", cleaned)
    cleaned = _NEWLINE_RUN.sub("\n\n\n", cleaned)
    return SanitizedInstructions(text=cleaned.strip())
