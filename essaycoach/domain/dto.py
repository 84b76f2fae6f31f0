from __future__ import annotations

from dataclasses import dataclass

from essaycoach.domain.models import (
    Annotation,
    Critiques,
    EssayMetadata,
    FeedbackStatus,
    ProgressStage,
    SubScores,
    TokenUsage,
)


@dataclass(frozen=True)
class VendorRequest:
    system_prompt: str
    user_prompt: str
    model: str
    temperature: float = 0.3
    max_tokens: int | None = None


@dataclass(frozen=True)
class VendorResponse:
    content: str
    token_usage: TokenUsage
    latency_ms: int
    raw_text: str = ""


@dataclass(frozen=True)
class FeedbackRequest:
    essay_text: str
    paragraphs: tuple[str, ...]
    metadata: EssayMetadata


@dataclass(frozen=True)
class AnnotationContext:
    """Read-only context handed to each paragraph's annotation call."""

    paragraph_index: int
    all_paragraphs: tuple[str, ...]
    metadata: EssayMetadata
    feedback_so_far: str = ""


@dataclass(frozen=True)
class ExampleEssayContext:
    metadata: EssayMetadata
    essay_text: str = ""


@dataclass(frozen=True)
class CallTrace:
    """Where a vendor call sits inside an orchestration run, for prompt logs."""

    project_id: str | None = None
    version_number: int | None = None
    paragraph_info: str = ""


@dataclass(frozen=True)
class FeedbackTaskResult:
    scores: SubScores
    critiques: Critiques


@dataclass(frozen=True)
class AnnotationTaskResult:
    paragraph_index: int
    annotations: tuple[Annotation, ...]


@dataclass(frozen=True)
class ExampleEssayTaskResult:
    example_content: str
    improvement: str | None
    word_count: int
    token_usage: TokenUsage


@dataclass(frozen=True)
class StartOrchestrationCommand:
    feedback_id: str
    project_id: str
    version_number: int
    essay_content: str | tuple[str, ...] | list[str]
    metadata: EssayMetadata
    generate_example_essay: bool = False
    vendor: str | None = None


@dataclass(frozen=True)
class FeedbackUpdate:
    scores: SubScores
    critiques: Critiques
    annotations: tuple[Annotation, ...]
    status: FeedbackStatus = FeedbackStatus.COMPLETED


@dataclass(frozen=True)
class ProgressSnapshot:
    stage: ProgressStage
    total_items: int
    current_item: int


@dataclass(frozen=True)
class FeedbackProgress:
    feedback_id: str
    stage: ProgressStage
    total_items: int
    current_item: int
    status: FeedbackStatus
    stale: bool = False


@dataclass(frozen=True)
class SubmitFeedbackResult:
    feedback_id: str
    status: FeedbackStatus
    resubmitted: bool
