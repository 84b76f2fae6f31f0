from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from essaycoach.domain.models import FeedbackStatus, ProgressStage, ProjectStatus


PROJECT_ID_PATTERN = r"^prj_[0-9A-HJKMNP-TV-Z]{26}$"
FEEDBACK_ID_PATTERN = r"^fbk_[0-9A-HJKMNP-TV-Z]{26}$"

ExamTypeName = Literal["ielts", "toefl", "gre"]
AnnotationTypeName = Literal["suggestion", "correction", "highlight"]


class ErrorResponse(BaseModel):
    detail: str


class HealthResponse(BaseModel):
    status: str
    service: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    service: str
    vendor: str
    repository: str
    active_feedback_runs: int


class CreateProjectRequest(BaseModel):
    title: str = Field(min_length=1, max_length=256)
    prompt: str = Field(min_length=1)
    exam_type: ExamTypeName
    essay_category: str = Field(min_length=1, max_length=64)
    target_score: str | None = Field(default=None, max_length=16)
    content: str | list[str] | None = None


class UpdateProjectRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=256)
    prompt: str | None = Field(default=None, min_length=1)
    exam_type: ExamTypeName | None = None
    essay_category: str | None = Field(default=None, min_length=1, max_length=64)
    target_score: str | None = Field(default=None, max_length=16)


class ProjectResponse(BaseModel):
    project_id: str = Field(pattern=PROJECT_ID_PATTERN)
    title: str
    prompt: str
    exam_type: ExamTypeName
    essay_category: str
    target_score: str | None = None
    status: ProjectStatus
    current_version: int
    total_versions: int
    created_at: datetime | None = None


class ListProjectsResponse(BaseModel):
    items: list[ProjectResponse]


class CreateVersionRequest(BaseModel):
    content: str | list[str]


class VersionResponse(BaseModel):
    project_id: str
    version_number: int
    content: list[str]
    word_count: int
    status: ProjectStatus
    created_at: datetime | None = None


class ListVersionsResponse(BaseModel):
    items: list[VersionResponse]


class CreateProjectResponse(BaseModel):
    project: ProjectResponse
    version: VersionResponse | None = None


class SubmitFeedbackRequest(BaseModel):
    generate_example_essay: bool = False
    vendor: str | None = Field(default=None, max_length=32)


class SubmitFeedbackResponse(BaseModel):
    feedback_id: str = Field(pattern=FEEDBACK_ID_PATTERN)
    status: FeedbackStatus
    resubmitted: bool
    message: str


class AnnotationModel(BaseModel):
    type: AnnotationTypeName
    original_content: str
    correction_content: str | None = None
    suggestion: str
    paragraph_index: int | None = None


class ScoresModel(BaseModel):
    task_response: float
    coherence_cohesion: float
    lexical_resource: float
    grammatical_range: float


class CritiquesModel(BaseModel):
    task_response: str
    coherence_cohesion: str
    lexical_resource: str
    grammatical_range: str
    overall: str


class FeedbackResponse(BaseModel):
    feedback_id: str
    project_id: str
    version_number: int
    status: FeedbackStatus
    scores: ScoresModel | None = None
    overall_score: float | None = None
    critiques: CritiquesModel | None = None
    annotations: list[AnnotationModel] = Field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class FeedbackStatusResponse(BaseModel):
    feedback_id: str
    status: FeedbackStatus
    stage: ProgressStage
    progress_percent: int = Field(ge=0, le=100)
    overall_score: float | None = None
    scores: ScoresModel | None = None
    error_message: str | None = None


class FeedbackProgressResponse(BaseModel):
    feedback_id: str
    stage: ProgressStage
    total_items: int = Field(ge=0)
    current_item: int = Field(ge=0)
    status: FeedbackStatus
    stale: bool


class TokenUsageModel(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ExampleEssayResponse(BaseModel):
    example_id: str
    project_id: str
    version_number: int
    example_content: str
    improvement: str | None = None
    word_count: int
    created_at: datetime | None = None


class ListExampleEssaysResponse(BaseModel):
    items: list[ExampleEssayResponse]


class DeleteExampleEssaysResponse(BaseModel):
    project_id: str
    deleted: int = Field(ge=0)


class GenerateExampleEssayRequest(BaseModel):
    project_id: str | None = None
    version_number: int | None = Field(default=None, ge=1)
    title: str | None = Field(default=None, max_length=256)
    prompt: str | None = None
    exam_type: ExamTypeName | None = None
    essay_category: str | None = Field(default=None, max_length=64)
    target_score: str | None = Field(default=None, max_length=16)
    essay_text: str = ""
    vendor: str | None = Field(default=None, max_length=32)


class GenerateExampleEssayResponse(BaseModel):
    example_content: str
    improvement: str | None = None
    word_count: int
    token_usage: TokenUsageModel
    saved: ExampleEssayResponse | None = None


class PromptLogResponse(BaseModel):
    request_id: str
    service_type: str
    model_name: str
    request_type: str
    paragraph_info: str
    project_id: str | None = None
    version_number: int | None = None
    prompt_content: str
    response_content: str
    token_usage: TokenUsageModel
    duration_ms: int
    status: str
    error_message: str | None = None
    created_at: datetime | None = None


class ListPromptLogsResponse(BaseModel):
    items: list[PromptLogResponse]


class PromptLogBucketModel(BaseModel):
    total: int
    success: int
    failed: int
    avg_duration_ms: float
    total_tokens: int


class PromptLogStatsResponse(BaseModel):
    total: int
    success: int
    failed: int
    total_tokens: int
    avg_duration_ms: float
    by_service_type: dict[str, PromptLogBucketModel]
    by_request_type: dict[str, PromptLogBucketModel]


class PromptLogFacetResponse(BaseModel):
    items: list[str]


class MaxConcurrentTasksResponse(BaseModel):
    max_concurrent_tasks: int


class UpdateMaxConcurrentTasksRequest(BaseModel):
    max_concurrent_tasks: int = Field(ge=1, le=20)


class VendorInfo(BaseModel):
    key: str
    supported_exams: list[ExamTypeName]
    active: bool


class ListVendorsResponse(BaseModel):
    items: list[VendorInfo]
    active: str
