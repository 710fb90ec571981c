"""Pure parsers turning raw model text into structured records.

Usage:
    from wafr_engine.core.response_parser import parse_verdict_payload, map_verdicts

    payload = parse_verdict_payload(model_text)
    verdicts = map_verdicts(payload, question_group)
"""

import json
import re

from pydantic import ValidationError
from rapidfuzz import fuzz

from wafr_engine.core.errors import ResponseMalformed
from wafr_engine.core.logging import get_logger
from wafr_engine.core.schemas_analysis import (
    BestPracticeVerdict,
    ModelVerdict,
    ModelVerdictPayload,
    QuestionGroup,
)
from wafr_engine.core.schemas_iac import (
    DEFAULT_SECTION_ORDER,
    DETAILS_TRUNCATED,
    END_OF_DETAILS_GENERATION,
    END_OF_IAC_GENERATION,
    DetailsChunk,
    DocumentSection,
    SectionBatch,
)

logger = get_logger(__name__)

# Minimum rapidfuzz ratio for a returned name to count as the requested practice
NAME_MATCH_THRESHOLD = 90

SECTION_PATTERN = re.compile(r"#\s*Section\s*\d+.*?(?=#\s*Section|\s*$)", re.DOTALL)
SECTION_ORDER = re.compile(r"^#\s*Section\s*(\d+)")
SECTION_DESCRIPTION = re.compile(r"^#\s*Section\s*\d+\s*-\s*(.+?)\n")
SECTION_HEADER = re.compile(r"^#\s*Section\s*\d+.*?\n")
TRUNCATION_TAIL = re.compile(re.escape("<message_truncated>") + r"\s*$")


# =============================================================================
# JSON verdicts
# =============================================================================


def clean_json_string(raw: str) -> str:
    """Normalize model JSON so that ``json.loads`` accepts it.

    Trims to the outermost brace pair, collapses whitespace, drops spaces next to
    colons, commas and brackets, and lowercases Python-style booleans. Applying it
    twice gives the same string as applying it once.
    """
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last != -1:
        raw = raw[first : last + 1]

    cleaned = re.sub(r"\s+", " ", raw)

    # Spaces after a key's closing quote are kept
    cleaned = re.sub(r'(?<!"):\s+', ":", cleaned)
    cleaned = re.sub(r"\s+:", ":", cleaned)
    cleaned = re.sub(r'(?<!"),\s+', ",", cleaned)
    cleaned = re.sub(r"\s+,", ",", cleaned)

    cleaned = re.sub(r"{\s+", "{", cleaned)
    cleaned = re.sub(r"\s+}", "}", cleaned)
    cleaned = re.sub(r"\[\s+", "[", cleaned)
    cleaned = re.sub(r"\s+\]", "]", cleaned)

    cleaned = re.sub(r"(:\s?)True\b", r"\1true", cleaned)
    cleaned = re.sub(r"(:\s?)False\b", r"\1false", cleaned)

    return cleaned


def parse_verdict_payload(raw_text: str) -> ModelVerdictPayload:
    """
    Parse an analysis response into its verdict list.

    Args:
        raw_text: Text block returned by the model

    Returns:
        Validated payload

    Raises:
        ResponseMalformed: If the cleaned text is not valid JSON or lacks verdicts
    """
    cleaned = clean_json_string(raw_text)
    try:
        parsed = json.loads(cleaned)
        return ModelVerdictPayload.model_validate(parsed)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Unparseable verdict response: {cleaned[:200]}")
        raise ResponseMalformed(f"Failed to parse analysis results: {e}", cause=e) from e


def _normalize_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", name.lower()).strip()


def _names_match(returned: str, requested: str) -> bool:
    return fuzz.ratio(_normalize_name(returned), _normalize_name(requested)) >= NAME_MATCH_THRESHOLD


def _align_by_name(verdicts: list[ModelVerdict], group: QuestionGroup) -> list[int]:
    """Map each returned verdict to the index of the requested practice it names."""
    requested = [_normalize_name(n) for n in group.ordered_practice_names]
    taken: set[int] = set()
    positions: list[int] = []

    for verdict in verdicts:
        returned = _normalize_name(verdict.name)
        best_index = -1
        best_score = 0.0
        for index, name in enumerate(requested):
            if index in taken:
                continue
            score = fuzz.token_sort_ratio(returned, name)
            if score > best_score:
                best_index, best_score = index, score

        if best_index == -1 or best_score < NAME_MATCH_THRESHOLD:
            raise ResponseMalformed(
                f'Model returned best practice "{verdict.name}" which was not requested '
                f'for question "{group.question_title}"'
            )
        taken.add(best_index)
        positions.append(best_index)

    return positions


def map_verdicts(payload: ModelVerdictPayload, group: QuestionGroup) -> list[BestPracticeVerdict]:
    """
    Attach taxonomy ids to the verdicts of one question group.

    Verdicts are expected in request order. A count mismatch fails loudly; verdicts
    returned in a different order are re-aligned by practice name.

    Raises:
        ResponseMalformed: On count mismatch or a verdict naming no requested practice
    """
    verdicts = payload.best_practices
    expected = len(group.ordered_practice_ids)

    if len(verdicts) != expected:
        raise ResponseMalformed(
            f"Model returned {len(verdicts)} verdicts for {expected} best practices "
            f'of question "{group.question_title}"'
        )

    in_order = all(
        _names_match(v.name, requested)
        for v, requested in zip(verdicts, group.ordered_practice_names)
    )
    if in_order:
        positions = list(range(expected))
    else:
        logger.info(f'Re-aligning verdicts by name for question "{group.question_title}"')
        positions = _align_by_name(verdicts, group)

    mapped: list[BestPracticeVerdict] = []
    for verdict, position in zip(verdicts, positions):
        mapped.append(
            BestPracticeVerdict(
                practice_id=group.ordered_practice_ids[position],
                name=verdict.name or group.ordered_practice_names[position],
                applied=verdict.applied,
                reason_applied=verdict.reason_applied,
                reason_not_applied=verdict.reason_not_applied,
                recommendations=verdict.recommendations,
            )
        )

    # Keep the requested order regardless of response order
    return [v for _, v in sorted(zip(positions, mapped), key=lambda pair: pair[0])]


# =============================================================================
# IaC sections
# =============================================================================


def parse_section_response(text: str) -> SectionBatch:
    """Split one generation turn into numbered sections and detect the end marker."""
    is_complete = END_OF_IAC_GENERATION in text
    clean = text.replace(END_OF_IAC_GENERATION, "").strip()

    sections: list[DocumentSection] = []
    for raw_section in SECTION_PATTERN.findall(clean):
        order_match = SECTION_ORDER.match(raw_section)
        description_match = SECTION_DESCRIPTION.match(raw_section)

        content = SECTION_HEADER.sub("", raw_section, count=1)
        content = TRUNCATION_TAIL.sub("", content).strip()

        sections.append(
            DocumentSection(
                content=content,
                order=int(order_match.group(1)) if order_match else DEFAULT_SECTION_ORDER,
                description=(
                    description_match.group(1).strip() if description_match else "Unnamed Section"
                ),
            )
        )

    return SectionBatch(is_complete=is_complete, sections=sections)


def sort_sections(sections: list[DocumentSection]) -> list[DocumentSection]:
    """Order sections by their header number; equal numbers keep arrival order."""
    return sorted(sections, key=lambda s: s.order)


def assemble_sections(sections: list[DocumentSection], note: str = "") -> str:
    """Concatenate sections in order, each under its description header."""
    body = "\n\n".join(f"# {s.description}\n{s.content}" for s in sort_sections(sections))
    return note + body


def iac_extension(template_type: str) -> str:
    """File extension for a generated document of the given template type."""
    lowered = template_type.lower()
    if "yaml" in lowered:
        return "yaml"
    if "json" in lowered:
        return "json"
    return "tf"


# =============================================================================
# Best-practice details
# =============================================================================


def parse_details_response(text: str) -> DetailsChunk:
    """Extract the usable markdown of one details turn.

    A truncated turn drops its trailing ``# `` section, which is likely cut off.
    """
    is_complete = END_OF_DETAILS_GENERATION in text
    clean = text.replace(END_OF_DETAILS_GENERATION, "").replace(DETAILS_TRUNCATED, "").strip()

    if not is_complete and "#" in clean:
        parts = re.split(r"(?=# )", clean)
        parts.pop()
        clean = "".join(parts)

    return DetailsChunk(content=clean, is_complete=is_complete)
