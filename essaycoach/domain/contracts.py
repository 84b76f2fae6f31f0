from __future__ import annotations

from typing import Protocol, runtime_checkable

from essaycoach.domain.dto import (
    AnnotationContext,
    CallTrace,
    ExampleEssayContext,
    FeedbackRequest,
    FeedbackTaskResult,
    FeedbackUpdate,
    ExampleEssayTaskResult,
    ProgressSnapshot,
    VendorRequest,
    VendorResponse,
)
from essaycoach.domain.models import (
    Annotation,
    EssayMetadata,
    EssayVersionSnapshot,
    ExampleEssaySnapshot,
    FeedbackSnapshot,
    FeedbackStatus,
    ProgressStage,
    ProjectSnapshot,
    ProjectStatus,
    PromptLogEntry,
    PromptLogGroup,
    TaskType,
)


MAX_CONCURRENT_TASKS_KEY = "maxConcurrentTasks"

# Prompt-log columns that may be listed as filter facets.
PROMPT_LOG_FACET_COLUMNS = frozenset({"service_type", "model_name"})


@runtime_checkable
class EssayRepository(Protocol):
    """Persistence contract for projects, versions, feedback and their side records.

    Writes are individually awaited and not transactional across calls.
    """

    async def create_project(
        self,
        *,
        title: str,
        prompt: str,
        exam_type: str,
        essay_category: str,
        target_score: str | None = None,
    ) -> ProjectSnapshot: ...

    async def get_project(self, *, project_id: str) -> ProjectSnapshot | None: ...

    async def list_projects(self, *, limit: int = 50, offset: int = 0) -> list[ProjectSnapshot]: ...

    async def update_project_status(self, *, project_id: str, status: ProjectStatus) -> None: ...

    async def update_project(
        self,
        *,
        project_id: str,
        title: str,
        prompt: str,
        exam_type: str,
        essay_category: str,
        target_score: str | None,
    ) -> ProjectSnapshot: ...

    async def create_version(self, *, project_id: str, content: list[str], word_count: int) -> EssayVersionSnapshot: ...

    async def get_version(self, *, project_id: str, version_number: int) -> EssayVersionSnapshot | None: ...

    async def list_versions(self, *, project_id: str) -> list[EssayVersionSnapshot]: ...

    async def update_version_status(self, *, project_id: str, version_number: int, status: ProjectStatus) -> None: ...

    async def get_feedback(self, *, feedback_id: str) -> FeedbackSnapshot | None: ...

    async def find_feedback(self, *, project_id: str, version_number: int) -> FeedbackSnapshot | None: ...

    async def create_feedback(self, *, project_id: str, version_number: int) -> FeedbackSnapshot: ...

    async def reset_feedback(self, *, feedback_id: str) -> FeedbackSnapshot: ...

    async def update_feedback_status(
        self,
        *,
        feedback_id: str,
        status: FeedbackStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None: ...

    async def update_feedback(self, *, feedback_id: str, update: FeedbackUpdate) -> FeedbackSnapshot: ...

    async def save_example_essay(
        self,
        *,
        project_id: str,
        version_number: int,
        example_content: str,
        improvement: str | None,
        word_count: int,
    ) -> ExampleEssaySnapshot: ...

    async def find_example_essay(self, *, project_id: str, version_number: int) -> ExampleEssaySnapshot | None: ...

    async def list_example_essays(self, *, project_id: str) -> list[ExampleEssaySnapshot]: ...

    async def delete_example_essays(self, *, project_id: str) -> int: ...

    async def insert_prompt_log(self, *, entry: PromptLogEntry) -> None: ...

    async def list_prompt_logs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        request_type: str | None = None,
        status: str | None = None,
        project_id: str | None = None,
        service_type: str | None = None,
        model_name: str | None = None,
    ) -> list[PromptLogEntry]: ...

    async def get_prompt_log(self, *, request_id: str) -> PromptLogEntry | None: ...

    async def prompt_log_groups(self) -> list[PromptLogGroup]: ...

    async def distinct_prompt_log_values(self, *, column: str) -> list[str]: ...

    async def get_setting(self, *, key: str) -> object | None: ...

    async def set_setting(self, *, key: str, value: object) -> None: ...


@runtime_checkable
class VendorClient(Protocol):
    async def complete(self, request: VendorRequest) -> VendorResponse: ...


@runtime_checkable
class PromptLogSink(Protocol):
    async def insert_prompt_log(self, *, entry: PromptLogEntry) -> None: ...


@runtime_checkable
class FeedbackStrategy(Protocol):
    """Capability set every vendor strategy provides."""

    service_name: str
    model: str

    async def generate_feedback(self, request: FeedbackRequest, *, trace: CallTrace | None = None) -> FeedbackTaskResult: ...

    async def get_annotation(
        self,
        paragraph: str,
        context: AnnotationContext,
        *,
        trace: CallTrace | None = None,
    ) -> tuple[Annotation, ...]: ...

    async def get_example_essay(
        self,
        context: ExampleEssayContext,
        *,
        trace: CallTrace | None = None,
    ) -> ExampleEssayTaskResult: ...

    def validate_config(self) -> list[str]: ...

    def capabilities(self) -> frozenset[TaskType]: ...


@runtime_checkable
class ProgressStore(Protocol):
    """Ephemeral progress descriptors keyed by feedback id."""

    def reserve(self, feedback_id: str) -> bool: ...

    def start(self, feedback_id: str, *, total_items: int = 0) -> None: ...

    def set_stage(self, feedback_id: str, stage: ProgressStage, *, total_items: int | None = None) -> None: ...

    def advance(self, feedback_id: str) -> None: ...

    def get(self, feedback_id: str) -> ProgressSnapshot | None: ...

    def clear(self, feedback_id: str) -> None: ...

    def active_ids(self) -> list[str]: ...


@runtime_checkable
class ConcurrencySettings(Protocol):
    async def get_max_concurrent_tasks(self) -> int: ...


@runtime_checkable
class StrategyProvider(Protocol):
    """Builds the vendor strategy for one essay; ``vendor=None`` means the configured default."""

    def __call__(self, metadata: EssayMetadata, vendor: str | None = None) -> FeedbackStrategy: ...
