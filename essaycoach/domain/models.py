from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class ProjectStatus(StrEnum):
    # Authoring
    DRAFT = "draft"
    SUBMITTED = "submitted"
    # Review cycle
    PROCESSING = "processing"
    REVIEWED = "reviewed"
    REVISING = "revising"
    # Terminal
    COMPLETED = "completed"


class FeedbackStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(StrEnum):
    FEEDBACK = "feedback"
    ANNOTATION = "annotation"
    EXAMPLE_ESSAY = "example_essay"


class ProgressStage(StrEnum):
    NONE = "NONE"
    QUEUED = "QUEUED"
    STARTED = "STARTED"
    TASKS_BUILT = "TASKS_BUILT"
    EXECUTING = "EXECUTING"
    AGGREGATING = "AGGREGATING"
    PERSISTED = "PERSISTED"
    FAILED = "FAILED"


class ExamType(StrEnum):
    IELTS = "ielts"
    TOEFL = "toefl"
    GRE = "gre"


class AnnotationType(StrEnum):
    SUGGESTION = "suggestion"
    CORRECTION = "correction"
    HIGHLIGHT = "highlight"


# Inclusive score bounds per exam; sub-scores are clamped into these.
EXAM_SCORE_RANGES: dict[ExamType, tuple[float, float]] = {
    ExamType.IELTS: (0.0, 9.0),
    ExamType.TOEFL: (0.0, 30.0),
    ExamType.GRE: (0.0, 6.0),
}

CRITIQUE_PLACEHOLDER = "No feedback was generated for this criterion."


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class Annotation:
    type: AnnotationType
    original_content: str
    suggestion: str
    correction_content: str | None = None
    paragraph_index: int | None = None

    def is_anchored(self, paragraph: str) -> bool:
        """True when the annotated span can be located verbatim in the paragraph."""
        return bool(self.original_content) and self.original_content in paragraph

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "original_content": self.original_content,
            "correction_content": self.correction_content,
            "suggestion": self.suggestion,
            "paragraph_index": self.paragraph_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Annotation:
        raw_type = str(data.get("type", AnnotationType.SUGGESTION.value))
        try:
            annotation_type = AnnotationType(raw_type)
        except ValueError:
            annotation_type = AnnotationType.SUGGESTION
        # Stored rows use snake_case; vendor replies follow the prompt's camelCase.
        original = data.get("original_content") or data.get("originalContent")
        correction = data.get("correction_content") or data.get("correctionContent")
        paragraph_index = data.get("paragraph_index")
        if paragraph_index is None:
            paragraph_index = data.get("paragraphIndex")
        return cls(
            type=annotation_type,
            original_content=str(original or ""),
            suggestion=str(data.get("suggestion") or ""),
            correction_content=str(correction) if correction else None,
            paragraph_index=int(paragraph_index) if isinstance(paragraph_index, int) else None,
        )


@dataclass(frozen=True)
class SubScores:
    task_response: float
    coherence_cohesion: float
    lexical_resource: float
    grammatical_range: float

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (
            self.task_response,
            self.coherence_cohesion,
            self.lexical_resource,
            self.grammatical_range,
        )


@dataclass(frozen=True)
class Critiques:
    task_response: str
    coherence_cohesion: str
    lexical_resource: str
    grammatical_range: str
    overall: str

    def as_tuple(self) -> tuple[str, str, str, str, str]:
        return (
            self.task_response,
            self.coherence_cohesion,
            self.lexical_resource,
            self.grammatical_range,
            self.overall,
        )


@dataclass(frozen=True)
class EssayMetadata:
    title: str
    prompt: str
    exam_type: ExamType
    essay_category: str
    target_score: str | None = None


@dataclass(frozen=True)
class ProjectSnapshot:
    project_id: str
    title: str
    prompt: str
    exam_type: ExamType
    essay_category: str
    target_score: str | None
    status: ProjectStatus
    current_version: int
    total_versions: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def metadata(self) -> EssayMetadata:
        return EssayMetadata(
            title=self.title,
            prompt=self.prompt,
            exam_type=self.exam_type,
            essay_category=self.essay_category,
            target_score=self.target_score,
        )


@dataclass(frozen=True)
class EssayVersionSnapshot:
    project_id: str
    version_number: int
    content: tuple[str, ...]
    word_count: int
    status: ProjectStatus
    created_at: datetime | None = None


@dataclass(frozen=True)
class FeedbackSnapshot:
    feedback_id: str
    project_id: str
    version_number: int
    status: FeedbackStatus
    scores: SubScores | None
    overall_score: float | None
    critiques: Critiques | None
    annotations: tuple[Annotation, ...] = ()
    error_code: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ExampleEssaySnapshot:
    example_id: str
    project_id: str
    version_number: int
    example_content: str
    improvement: str | None
    word_count: int
    created_at: datetime | None = None


@dataclass(frozen=True)
class PromptLogEntry:
    request_id: str
    service_type: str
    model_name: str
    request_type: TaskType
    paragraph_info: str
    prompt_content: str
    response_content: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ms: int = 0
    status: str = "success"
    error_message: str | None = None
    project_id: str | None = None
    version_number: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class PromptLogGroup:
    """Counters for one (service_type, request_type) pair of prompt logs."""

    service_type: str
    request_type: str
    total: int
    success: int
    failed: int
    total_duration_ms: int
    total_tokens: int


@dataclass(frozen=True)
class PromptLogStats:
    total: int
    success: int
    failed: int
    total_tokens: int
    avg_duration_ms: float
    by_service_type: dict[str, dict[str, float]]
    by_request_type: dict[str, dict[str, float]]

    @classmethod
    def from_groups(cls, groups: list[PromptLogGroup]) -> PromptLogStats:
        by_service: dict[str, dict[str, float]] = {}
        by_request: dict[str, dict[str, float]] = {}
        for group in groups:
            for bucket, key in ((by_service, group.service_type), (by_request, group.request_type)):
                item = bucket.setdefault(
                    key or "unknown",
                    {"total": 0, "success": 0, "failed": 0, "total_duration_ms": 0, "total_tokens": 0},
                )
                item["total"] += group.total
                item["success"] += group.success
                item["failed"] += group.failed
                item["total_duration_ms"] += group.total_duration_ms
                item["total_tokens"] += group.total_tokens
        for bucket in (by_service, by_request):
            for item in bucket.values():
                duration = item.pop("total_duration_ms")
                item["avg_duration_ms"] = round(duration / item["total"], 2) if item["total"] else 0.0

        total = sum(group.total for group in groups)
        duration = sum(group.total_duration_ms for group in groups)
        return cls(
            total=total,
            success=sum(group.success for group in groups),
            failed=sum(group.failed for group in groups),
            total_tokens=sum(group.total_tokens for group in groups),
            avg_duration_ms=round(duration / total, 2) if total else 0.0,
            by_service_type=by_service,
            by_request_type=by_request,
        )
