from __future__ import annotations

import json
import re
from typing import Any

from essaycoach.domain.dto import FeedbackTaskResult
from essaycoach.domain.errors import ResponseParseError
from essaycoach.domain.models import (
    CRITIQUE_PLACEHOLDER,
    EXAM_SCORE_RANGES,
    Annotation,
    Critiques,
    ExamType,
    SubScores,
)

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
NUMBER_RE = re.compile(r"(-?\d+(?:\.\d+)?)")

# Vendor key aliases, camelCase first because that is what the prompts ask for.
SCORE_KEYS: dict[str, tuple[str, ...]] = {
    "task_response": ("scoreTR", "score_tr", "task_response_score"),
    "coherence_cohesion": ("scoreCC", "score_cc", "coherence_cohesion_score"),
    "lexical_resource": ("scoreLR", "score_lr", "lexical_resource_score"),
    "grammatical_range": ("scoreGRA", "score_gra", "grammatical_range_score"),
}
CRITIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "task_response": ("feedbackTR", "feedback_tr"),
    "coherence_cohesion": ("feedbackCC", "feedback_cc"),
    "lexical_resource": ("feedbackLR", "feedback_lr"),
    "grammatical_range": ("feedbackGRA", "feedback_gra"),
    "overall": ("overallFeedback", "overall_feedback"),
}
EXAMPLE_CONTENT_KEYS = ("exampleEssay", "example_essay", "essay", "content", "example", "sampleEssay", "text", "result")
IMPROVEMENT_KEYS = ("improvement", "improvements", "improvementNotes")


def extract_json(content: str) -> Any | None:
    """Best-effort JSON extraction from a vendor reply that may wrap it in prose."""
    if not content or not content.strip():
        return None
    stripped = content.strip()
    candidates = [stripped]
    candidates.extend(match.group(1) for match in CODE_FENCE_RE.finditer(stripped))
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = stripped.find(open_char)
        end = stripped.rfind(close_char)
        if start != -1 and end > start:
            candidates.append(stripped[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


def normalize_score(value: object, *, exam_type: ExamType = ExamType.IELTS) -> float:
    if isinstance(value, bool):
        score = 0.0
    elif isinstance(value, (int, float)):
        score = float(value)
    elif isinstance(value, str):
        match = NUMBER_RE.search(value)
        score = float(match.group(1)) if match else 0.0
    else:
        score = 0.0
    low, high = EXAM_SCORE_RANGES.get(exam_type, (0.0, 9.0))
    return min(max(score, low), high)


def parse_feedback_response(content: str, *, exam_type: ExamType = ExamType.IELTS) -> FeedbackTaskResult:
    payload = extract_json(content)
    if isinstance(payload, dict) and isinstance(payload.get("result"), dict) and not _has_any(payload, SCORE_KEYS):
        payload = payload["result"]
    if not isinstance(payload, dict):
        raise ResponseParseError("feedback response does not contain a JSON object")

    scores = SubScores(
        **{
            name: normalize_score(_first_present(payload, keys), exam_type=exam_type)
            for name, keys in SCORE_KEYS.items()
        }
    )
    critiques = Critiques(
        **{name: _critique(_first_present(payload, keys)) for name, keys in CRITIQUE_KEYS.items()}
    )
    return FeedbackTaskResult(scores=scores, critiques=critiques)


def parse_annotation_response(content: str, *, paragraph_index: int) -> tuple[Annotation, ...]:
    payload = extract_json(content)
    items = _annotation_items(payload)
    if items is None:
        raise ResponseParseError("annotation response does not contain an annotations array")

    annotations: list[Annotation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        annotation = Annotation.from_dict({**item, "paragraph_index": paragraph_index})
        if not annotation.original_content and not annotation.suggestion:
            continue
        annotations.append(annotation)
    return tuple(annotations)


def parse_example_essay_response(content: str) -> tuple[str, str | None]:
    """Return (example essay text, improvement notes)."""
    if not content or not content.strip():
        raise ResponseParseError("example essay response is empty")

    payload = extract_json(content)
    if isinstance(payload, dict):
        essay = _first_text(payload, EXAMPLE_CONTENT_KEYS)
        improvement = _first_text(payload, IMPROVEMENT_KEYS)
        if essay:
            return essay, improvement
    # Plain prose replies are the essay itself.
    return content.strip(), None


def _annotation_items(payload: Any) -> list[Any] | None:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("annotations"), list):
        return payload["annotations"]
    result = payload.get("result")
    if isinstance(result, dict) and isinstance(result.get("annotations"), list):
        return result["annotations"]
    if isinstance(result, list):
        return result
    return None


def _has_any(payload: dict[str, Any], key_map: dict[str, tuple[str, ...]]) -> bool:
    return any(key in payload for keys in key_map.values() for key in keys)


def _first_present(payload: dict[str, Any], keys: tuple[str, ...]) -> object:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _first_text(payload: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, list) and value:
            joined = "\n".join(str(item).strip() for item in value if str(item).strip())
            if joined:
                return joined
    return None


def _critique(value: object) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return CRITIQUE_PLACEHOLDER
