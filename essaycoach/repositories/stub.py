from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from essaycoach.domain.contracts import PROMPT_LOG_FACET_COLUMNS
from essaycoach.domain.dto import FeedbackUpdate
from essaycoach.domain.errors import DomainInvariantError, DomainNotFoundError, DomainValidationError
from essaycoach.domain.ids import new_example_essay_id, new_feedback_id, new_project_id
from essaycoach.domain.lifecycle import ensure_feedback_transition
from essaycoach.domain.models import (
    Annotation,
    Critiques,
    EssayVersionSnapshot,
    ExampleEssaySnapshot,
    ExamType,
    FeedbackSnapshot,
    FeedbackStatus,
    ProjectSnapshot,
    ProjectStatus,
    PromptLogEntry,
    PromptLogGroup,
    SubScores,
)
from essaycoach.domain.scoring import overall_band_score


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class _ProjectRow:
    project_id: str
    title: str
    prompt: str
    exam_type: ExamType
    essay_category: str
    target_score: str | None
    status: ProjectStatus = ProjectStatus.DRAFT
    current_version: int = 0
    total_versions: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class _VersionRow:
    project_id: str
    version_number: int
    content: tuple[str, ...]
    word_count: int
    status: ProjectStatus = ProjectStatus.SUBMITTED
    created_at: datetime = field(default_factory=_now)


@dataclass
class _FeedbackRow:
    feedback_id: str
    project_id: str
    version_number: int
    status: FeedbackStatus = FeedbackStatus.PENDING
    scores: SubScores | None = None
    critiques: Critiques | None = None
    annotations: tuple[Annotation, ...] = ()
    error_code: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class InMemoryEssayRepository:
    """Non-network repository with deterministic behavior for local runs and tests."""

    projects: dict[str, _ProjectRow] = field(default_factory=dict)
    versions: dict[tuple[str, int], _VersionRow] = field(default_factory=dict)
    feedback: dict[str, _FeedbackRow] = field(default_factory=dict)
    feedback_by_version: dict[tuple[str, int], str] = field(default_factory=dict)
    example_essays: dict[tuple[str, int], ExampleEssaySnapshot] = field(default_factory=dict)
    prompt_logs: list[PromptLogEntry] = field(default_factory=list)
    settings: dict[str, object] = field(default_factory=dict)

    async def create_project(
        self,
        *,
        title: str,
        prompt: str,
        exam_type: str,
        essay_category: str,
        target_score: str | None = None,
    ) -> ProjectSnapshot:
        row = _ProjectRow(
            project_id=new_project_id(),
            title=title,
            prompt=prompt,
            exam_type=ExamType(exam_type),
            essay_category=essay_category,
            target_score=target_score,
        )
        self.projects[row.project_id] = row
        return self._project_snapshot(row)

    async def get_project(self, *, project_id: str) -> ProjectSnapshot | None:
        row = self.projects.get(project_id)
        return self._project_snapshot(row) if row is not None else None

    async def list_projects(self, *, limit: int = 50, offset: int = 0) -> list[ProjectSnapshot]:
        rows = sorted(self.projects.values(), key=lambda row: row.created_at, reverse=True)
        return [self._project_snapshot(row) for row in rows[offset : offset + limit]]

    async def update_project_status(self, *, project_id: str, status: ProjectStatus) -> None:
        row = self._project_row(project_id)
        row.status = status
        row.updated_at = _now()

    async def update_project(
        self,
        *,
        project_id: str,
        title: str,
        prompt: str,
        exam_type: str,
        essay_category: str,
        target_score: str | None,
    ) -> ProjectSnapshot:
        row = self._project_row(project_id)
        row.title = title
        row.prompt = prompt
        row.exam_type = ExamType(exam_type)
        row.essay_category = essay_category
        row.target_score = target_score
        row.updated_at = _now()
        return self._project_snapshot(row)

    async def create_version(self, *, project_id: str, content: list[str], word_count: int) -> EssayVersionSnapshot:
        project = self._project_row(project_id)
        version_number = project.total_versions + 1
        row = _VersionRow(
            project_id=project_id,
            version_number=version_number,
            content=tuple(content),
            word_count=word_count,
        )
        self.versions[(project_id, version_number)] = row
        project.total_versions = version_number
        project.current_version = version_number
        project.updated_at = _now()
        return self._version_snapshot(row)

    async def get_version(self, *, project_id: str, version_number: int) -> EssayVersionSnapshot | None:
        row = self.versions.get((project_id, version_number))
        return self._version_snapshot(row) if row is not None else None

    async def list_versions(self, *, project_id: str) -> list[EssayVersionSnapshot]:
        rows = [row for key, row in self.versions.items() if key[0] == project_id]
        return [self._version_snapshot(row) for row in sorted(rows, key=lambda row: row.version_number)]

    async def update_version_status(self, *, project_id: str, version_number: int, status: ProjectStatus) -> None:
        row = self.versions.get((project_id, version_number))
        if row is None:
            raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}")
        row.status = status

    async def get_feedback(self, *, feedback_id: str) -> FeedbackSnapshot | None:
        row = self.feedback.get(feedback_id)
        return self._feedback_snapshot(row) if row is not None else None

    async def find_feedback(self, *, project_id: str, version_number: int) -> FeedbackSnapshot | None:
        feedback_id = self.feedback_by_version.get((project_id, version_number))
        if feedback_id is None:
            return None
        return await self.get_feedback(feedback_id=feedback_id)

    async def create_feedback(self, *, project_id: str, version_number: int) -> FeedbackSnapshot:
        key = (project_id, version_number)
        if key not in self.versions:
            raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}")
        if key in self.feedback_by_version:
            raise DomainInvariantError(f"feedback already exists for {project_id}/{version_number}")
        row = _FeedbackRow(feedback_id=new_feedback_id(), project_id=project_id, version_number=version_number)
        self.feedback[row.feedback_id] = row
        self.feedback_by_version[key] = row.feedback_id
        return self._feedback_snapshot(row)

    async def reset_feedback(self, *, feedback_id: str) -> FeedbackSnapshot:
        row = self._feedback_row(feedback_id)
        ensure_feedback_transition(row.status, FeedbackStatus.PENDING)
        row.status = FeedbackStatus.PENDING
        row.scores = None
        row.critiques = None
        row.annotations = ()
        row.error_code = None
        row.error_message = None
        row.started_at = None
        row.completed_at = None
        row.updated_at = _now()
        return self._feedback_snapshot(row)

    async def update_feedback_status(
        self,
        *,
        feedback_id: str,
        status: FeedbackStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        row = self._feedback_row(feedback_id)
        ensure_feedback_transition(row.status, status)
        row.status = status
        if status == FeedbackStatus.IN_PROGRESS:
            row.started_at = _now()
        if status == FeedbackStatus.FAILED:
            row.error_code = error_code
            row.error_message = error_message
        row.updated_at = _now()

    async def update_feedback(self, *, feedback_id: str, update: FeedbackUpdate) -> FeedbackSnapshot:
        row = self._feedback_row(feedback_id)
        ensure_feedback_transition(row.status, update.status)
        row.status = update.status
        row.scores = update.scores
        row.critiques = update.critiques
        row.annotations = tuple(update.annotations)
        row.error_code = None
        row.error_message = None
        if update.status == FeedbackStatus.COMPLETED:
            row.completed_at = _now()
        row.updated_at = _now()
        return self._feedback_snapshot(row)

    async def save_example_essay(
        self,
        *,
        project_id: str,
        version_number: int,
        example_content: str,
        improvement: str | None,
        word_count: int,
    ) -> ExampleEssaySnapshot:
        snapshot = ExampleEssaySnapshot(
            example_id=new_example_essay_id(),
            project_id=project_id,
            version_number=version_number,
            example_content=example_content,
            improvement=improvement,
            word_count=word_count,
            created_at=_now(),
        )
        # One example per version; a newer one replaces the old.
        self.example_essays[(project_id, version_number)] = snapshot
        return snapshot

    async def find_example_essay(self, *, project_id: str, version_number: int) -> ExampleEssaySnapshot | None:
        return self.example_essays.get((project_id, version_number))

    async def list_example_essays(self, *, project_id: str) -> list[ExampleEssaySnapshot]:
        items = [item for key, item in self.example_essays.items() if key[0] == project_id]
        return sorted(items, key=lambda item: item.version_number)

    async def delete_example_essays(self, *, project_id: str) -> int:
        keys = [key for key in self.example_essays if key[0] == project_id]
        for key in keys:
            del self.example_essays[key]
        return len(keys)

    async def insert_prompt_log(self, *, entry: PromptLogEntry) -> None:
        if entry.created_at is None:
            entry = replace(entry, created_at=_now())
        self.prompt_logs.append(entry)

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
    ) -> list[PromptLogEntry]:
        items = [
            entry
            for entry in reversed(self.prompt_logs)
            if (request_type is None or entry.request_type == request_type)
            and (status is None or entry.status == status)
            and (project_id is None or entry.project_id == project_id)
            and (service_type is None or entry.service_type == service_type)
            and (model_name is None or entry.model_name == model_name)
        ]
        return items[offset : offset + limit]

    async def get_prompt_log(self, *, request_id: str) -> PromptLogEntry | None:
        for entry in self.prompt_logs:
            if entry.request_id == request_id:
                return entry
        return None

    async def prompt_log_groups(self) -> list[PromptLogGroup]:
        counters: dict[tuple[str, str], list[int]] = {}
        for entry in self.prompt_logs:
            item = counters.setdefault((entry.service_type, str(entry.request_type)), [0, 0, 0, 0])
            item[0] += 1
            item[1] += 1 if entry.status == "success" else 0
            item[2] += entry.duration_ms
            item[3] += entry.token_usage.total_tokens
        return [
            PromptLogGroup(
                service_type=service_type,
                request_type=request_type,
                total=total,
                success=success,
                failed=total - success,
                total_duration_ms=duration,
                total_tokens=tokens,
            )
            for (service_type, request_type), (total, success, duration, tokens) in sorted(counters.items())
        ]

    async def distinct_prompt_log_values(self, *, column: str) -> list[str]:
        if column not in PROMPT_LOG_FACET_COLUMNS:
            raise DomainValidationError(f"unsupported prompt log column: {column}")
        return sorted({getattr(entry, column) for entry in self.prompt_logs})

    async def get_setting(self, *, key: str) -> object | None:
        return self.settings.get(key)

    async def set_setting(self, *, key: str, value: object) -> None:
        self.settings[key] = value

    def _project_row(self, project_id: str) -> _ProjectRow:
        row = self.projects.get(project_id)
        if row is None:
            raise DomainNotFoundError(f"project not found: {project_id}")
        return row

    def _feedback_row(self, feedback_id: str) -> _FeedbackRow:
        row = self.feedback.get(feedback_id)
        if row is None:
            raise DomainNotFoundError(f"feedback not found: {feedback_id}")
        return row

    @staticmethod
    def _project_snapshot(row: _ProjectRow) -> ProjectSnapshot:
        return ProjectSnapshot(
            project_id=row.project_id,
            title=row.title,
            prompt=row.prompt,
            exam_type=row.exam_type,
            essay_category=row.essay_category,
            target_score=row.target_score,
            status=row.status,
            current_version=row.current_version,
            total_versions=row.total_versions,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _version_snapshot(row: _VersionRow) -> EssayVersionSnapshot:
        return EssayVersionSnapshot(
            project_id=row.project_id,
            version_number=row.version_number,
            content=row.content,
            word_count=row.word_count,
            status=row.status,
            created_at=row.created_at,
        )

    @staticmethod
    def _feedback_snapshot(row: _FeedbackRow) -> FeedbackSnapshot:
        return FeedbackSnapshot(
            feedback_id=row.feedback_id,
            project_id=row.project_id,
            version_number=row.version_number,
            status=row.status,
            scores=row.scores,
            overall_score=overall_band_score(row.scores.as_tuple()) if row.scores is not None else None,
            critiques=row.critiques,
            annotations=row.annotations,
            error_code=row.error_code,
            error_message=row.error_message,
            started_at=row.started_at,
            completed_at=row.completed_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
