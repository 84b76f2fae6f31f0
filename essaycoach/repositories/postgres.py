from __future__ import annotations

from dataclasses import dataclass
import importlib
import json
from typing import Any

from essaycoach.domain.dto import FeedbackUpdate
from essaycoach.domain.errors import (
    DomainConflictError,
    DomainInvariantError,
    DomainNotFoundError,
    DomainValidationError,
)
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
    TaskType,
    TokenUsage,
)
from essaycoach.domain.scoring import overall_band_score
from essaycoach.repositories.sql_loader import load_sql

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


SQL_CREATE_PROJECT = load_sql("create_project.sql")
SQL_GET_PROJECT = load_sql("get_project.sql")
SQL_LIST_PROJECTS = load_sql("list_projects.sql")
SQL_UPDATE_PROJECT_STATUS = load_sql("update_project_status.sql")
SQL_ALLOCATE_VERSION_NUMBER = load_sql("allocate_version_number.sql")
SQL_CREATE_VERSION = load_sql("create_version.sql")
SQL_GET_VERSION = load_sql("get_version.sql")
SQL_LIST_VERSIONS = load_sql("list_versions.sql")
SQL_UPDATE_VERSION_STATUS = load_sql("update_version_status.sql")
SQL_GET_FEEDBACK = load_sql("get_feedback.sql")
SQL_FIND_FEEDBACK = load_sql("find_feedback.sql")
SQL_CREATE_FEEDBACK = load_sql("create_feedback.sql")
SQL_RESET_FEEDBACK = load_sql("reset_feedback.sql")
SQL_UPDATE_FEEDBACK_STATUS = load_sql("update_feedback_status.sql")
SQL_UPDATE_FEEDBACK = load_sql("update_feedback.sql")
SQL_UPSERT_EXAMPLE_ESSAY = load_sql("upsert_example_essay.sql")
SQL_FIND_EXAMPLE_ESSAY = load_sql("find_example_essay.sql")
SQL_LIST_EXAMPLE_ESSAYS = load_sql("list_example_essays.sql")
SQL_INSERT_PROMPT_LOG = load_sql("insert_prompt_log.sql")
SQL_LIST_PROMPT_LOGS = load_sql("list_prompt_logs.sql")
SQL_GET_PROMPT_LOG = load_sql("get_prompt_log.sql")
SQL_PROMPT_LOG_GROUPS = load_sql("prompt_log_groups.sql")
SQL_DISTINCT_PROMPT_LOG_VALUES = {
    "service_type": load_sql("distinct_prompt_log_service_types.sql"),
    "model_name": load_sql("distinct_prompt_log_model_names.sql"),
}
SQL_UPDATE_PROJECT = load_sql("update_project.sql")
SQL_DELETE_EXAMPLE_ESSAYS = load_sql("delete_example_essays.sql")
SQL_GET_SETTING = load_sql("get_setting.sql")
SQL_UPSERT_SETTING = load_sql("upsert_setting.sql")


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "sqlstate", None) == "23505"


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres repository mode")

        async def _init_connection(conn: Any) -> None:
            for type_name in ("json", "jsonb"):
                await conn.set_type_codec(
                    type_name,
                    encoder=lambda value: json.dumps(value, ensure_ascii=False),
                    decoder=json.loads,
                    schema="pg_catalog",
                )

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=1,
            max_size=5,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresEssayRepository:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def create_project(
        self,
        *,
        title: str,
        prompt: str,
        exam_type: str,
        essay_category: str,
        target_score: str | None = None,
    ) -> ProjectSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    row = await conn.fetchrow(
                        SQL_CREATE_PROJECT,
                        new_project_id(),
                        title,
                        prompt,
                        exam_type,
                        essay_category,
                        target_score,
                    )
                except Exception as exc:
                    if _is_unique_violation(exc):
                        continue
                    raise
                if row is None:
                    raise DomainInvariantError("failed to create project")
                return _project_from_row(row)
        raise DomainInvariantError("failed to allocate unique project id")

    async def get_project(self, *, project_id: str) -> ProjectSnapshot | None:
        row = await self._pool().fetchrow(SQL_GET_PROJECT, project_id)
        return _project_from_row(row) if row is not None else None

    async def list_projects(self, *, limit: int = 50, offset: int = 0) -> list[ProjectSnapshot]:
        rows = await self._pool().fetch(SQL_LIST_PROJECTS, limit, offset)
        return [_project_from_row(row) for row in rows]

    async def update_project_status(self, *, project_id: str, status: ProjectStatus) -> None:
        row = await self._pool().fetchrow(SQL_UPDATE_PROJECT_STATUS, project_id, status.value)
        if row is None:
            raise DomainNotFoundError(f"project not found: {project_id}")

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
        row = await self._pool().fetchrow(
            SQL_UPDATE_PROJECT,
            project_id,
            title,
            prompt,
            exam_type,
            essay_category,
            target_score,
        )
        if row is None:
            raise DomainNotFoundError(f"project not found: {project_id}")
        return _project_from_row(row)

    async def create_version(self, *, project_id: str, content: list[str], word_count: int) -> EssayVersionSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                allocated = await conn.fetchrow(SQL_ALLOCATE_VERSION_NUMBER, project_id)
                if allocated is None:
                    raise DomainNotFoundError(f"project not found: {project_id}")
                row = await conn.fetchrow(
                    SQL_CREATE_VERSION,
                    project_id,
                    allocated["total_versions"],
                    list(content),
                    word_count,
                )
        if row is None:
            raise DomainInvariantError("failed to create essay version")
        return _version_from_row(row)

    async def get_version(self, *, project_id: str, version_number: int) -> EssayVersionSnapshot | None:
        row = await self._pool().fetchrow(SQL_GET_VERSION, project_id, version_number)
        return _version_from_row(row) if row is not None else None

    async def list_versions(self, *, project_id: str) -> list[EssayVersionSnapshot]:
        rows = await self._pool().fetch(SQL_LIST_VERSIONS, project_id)
        return [_version_from_row(row) for row in rows]

    async def update_version_status(self, *, project_id: str, version_number: int, status: ProjectStatus) -> None:
        row = await self._pool().fetchrow(SQL_UPDATE_VERSION_STATUS, project_id, version_number, status.value)
        if row is None:
            raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}")

    async def get_feedback(self, *, feedback_id: str) -> FeedbackSnapshot | None:
        row = await self._pool().fetchrow(SQL_GET_FEEDBACK, feedback_id)
        return _feedback_from_row(row) if row is not None else None

    async def find_feedback(self, *, project_id: str, version_number: int) -> FeedbackSnapshot | None:
        row = await self._pool().fetchrow(SQL_FIND_FEEDBACK, project_id, version_number)
        return _feedback_from_row(row) if row is not None else None

    async def create_feedback(self, *, project_id: str, version_number: int) -> FeedbackSnapshot:
        try:
            row = await self._pool().fetchrow(SQL_CREATE_FEEDBACK, new_feedback_id(), project_id, version_number)
        except Exception as exc:
            if _is_unique_violation(exc):
                raise DomainInvariantError(f"feedback already exists for {project_id}/{version_number}") from exc
            if getattr(exc, "sqlstate", None) == "23503":
                raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}") from exc
            raise
        if row is None:
            raise DomainInvariantError("failed to create feedback")
        return _feedback_from_row(row)

    async def reset_feedback(self, *, feedback_id: str) -> FeedbackSnapshot:
        current = await self._current_feedback_status(feedback_id)
        ensure_feedback_transition(current, FeedbackStatus.PENDING)
        row = await self._pool().fetchrow(SQL_RESET_FEEDBACK, feedback_id, current.value)
        if row is None:
            raise DomainConflictError(f"feedback {feedback_id} changed concurrently")
        return _feedback_from_row(row)

    async def update_feedback_status(
        self,
        *,
        feedback_id: str,
        status: FeedbackStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        current = await self._current_feedback_status(feedback_id)
        ensure_feedback_transition(current, status)
        row = await self._pool().fetchrow(
            SQL_UPDATE_FEEDBACK_STATUS,
            feedback_id,
            current.value,
            status.value,
            error_code,
            error_message,
        )
        if row is None:
            raise DomainConflictError(f"feedback {feedback_id} changed concurrently")

    async def update_feedback(self, *, feedback_id: str, update: FeedbackUpdate) -> FeedbackSnapshot:
        current = await self._current_feedback_status(feedback_id)
        ensure_feedback_transition(current, update.status)
        scores = update.scores
        critiques = update.critiques
        row = await self._pool().fetchrow(
            SQL_UPDATE_FEEDBACK,
            feedback_id,
            current.value,
            update.status.value,
            scores.task_response,
            scores.coherence_cohesion,
            scores.lexical_resource,
            scores.grammatical_range,
            critiques.task_response,
            critiques.coherence_cohesion,
            critiques.lexical_resource,
            critiques.grammatical_range,
            critiques.overall,
            [annotation.as_dict() for annotation in update.annotations],
        )
        if row is None:
            raise DomainConflictError(f"feedback {feedback_id} changed concurrently")
        return _feedback_from_row(row)

    async def save_example_essay(
        self,
        *,
        project_id: str,
        version_number: int,
        example_content: str,
        improvement: str | None,
        word_count: int,
    ) -> ExampleEssaySnapshot:
        row = await self._pool().fetchrow(
            SQL_UPSERT_EXAMPLE_ESSAY,
            new_example_essay_id(),
            project_id,
            version_number,
            example_content,
            improvement,
            word_count,
        )
        if row is None:
            raise DomainInvariantError("failed to save example essay")
        return _example_from_row(row)

    async def find_example_essay(self, *, project_id: str, version_number: int) -> ExampleEssaySnapshot | None:
        row = await self._pool().fetchrow(SQL_FIND_EXAMPLE_ESSAY, project_id, version_number)
        return _example_from_row(row) if row is not None else None

    async def list_example_essays(self, *, project_id: str) -> list[ExampleEssaySnapshot]:
        rows = await self._pool().fetch(SQL_LIST_EXAMPLE_ESSAYS, project_id)
        return [_example_from_row(row) for row in rows]

    async def delete_example_essays(self, *, project_id: str) -> int:
        row = await self._pool().fetchrow(SQL_DELETE_EXAMPLE_ESSAYS, project_id)
        return int(row["deleted"]) if row is not None else 0

    async def insert_prompt_log(self, *, entry: PromptLogEntry) -> None:
        await self._pool().execute(
            SQL_INSERT_PROMPT_LOG,
            entry.request_id,
            entry.service_type,
            entry.model_name,
            entry.request_type.value,
            entry.paragraph_info,
            entry.project_id,
            entry.version_number,
            entry.prompt_content,
            entry.response_content,
            entry.token_usage.prompt_tokens,
            entry.token_usage.completion_tokens,
            entry.token_usage.total_tokens,
            entry.duration_ms,
            entry.status,
            entry.error_message,
        )

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
        rows = await self._pool().fetch(
            SQL_LIST_PROMPT_LOGS,
            limit,
            offset,
            request_type,
            status,
            project_id,
            service_type,
            model_name,
        )
        return [_prompt_log_from_row(row) for row in rows]

    async def get_prompt_log(self, *, request_id: str) -> PromptLogEntry | None:
        row = await self._pool().fetchrow(SQL_GET_PROMPT_LOG, request_id)
        return _prompt_log_from_row(row) if row is not None else None

    async def prompt_log_groups(self) -> list[PromptLogGroup]:
        rows = await self._pool().fetch(SQL_PROMPT_LOG_GROUPS)
        return [
            PromptLogGroup(
                service_type=row["service_type"],
                request_type=row["request_type"],
                total=int(row["total"]),
                success=int(row["success"]),
                failed=int(row["failed"]),
                total_duration_ms=int(row["total_duration_ms"]),
                total_tokens=int(row["total_tokens"]),
            )
            for row in rows
        ]

    async def distinct_prompt_log_values(self, *, column: str) -> list[str]:
        query = SQL_DISTINCT_PROMPT_LOG_VALUES.get(column)
        if query is None:
            raise DomainValidationError(f"unsupported prompt log column: {column}")
        rows = await self._pool().fetch(query)
        return [row["value"] for row in rows]

    async def get_setting(self, *, key: str) -> object | None:
        row = await self._pool().fetchrow(SQL_GET_SETTING, key)
        return row["value"] if row is not None else None

    async def set_setting(self, *, key: str, value: object) -> None:
        await self._pool().execute(SQL_UPSERT_SETTING, key, value)

    async def _current_feedback_status(self, feedback_id: str) -> FeedbackStatus:
        row = await self._pool().fetchrow(SQL_GET_FEEDBACK, feedback_id)
        if row is None:
            raise DomainNotFoundError(f"feedback not found: {feedback_id}")
        return FeedbackStatus(row["status"])


def _project_from_row(row: Any) -> ProjectSnapshot:
    return ProjectSnapshot(
        project_id=row["public_id"],
        title=row["title"],
        prompt=row["prompt"],
        exam_type=ExamType(row["exam_type"]),
        essay_category=row["essay_category"],
        target_score=row["target_score"],
        status=ProjectStatus(row["status"]),
        current_version=row["current_version"],
        total_versions=row["total_versions"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _version_from_row(row: Any) -> EssayVersionSnapshot:
    content = row["content"] or []
    return EssayVersionSnapshot(
        project_id=row["project_public_id"],
        version_number=row["version_number"],
        content=tuple(str(item) for item in content),
        word_count=row["word_count"],
        status=ProjectStatus(row["status"]),
        created_at=row["created_at"],
    )


def _feedback_from_row(row: Any) -> FeedbackSnapshot:
    scores = None
    if row["score_tr"] is not None:
        scores = SubScores(
            task_response=row["score_tr"],
            coherence_cohesion=row["score_cc"],
            lexical_resource=row["score_lr"],
            grammatical_range=row["score_gra"],
        )
    critiques = None
    if row["feedback_tr"] is not None:
        critiques = Critiques(
            task_response=row["feedback_tr"],
            coherence_cohesion=row["feedback_cc"],
            lexical_resource=row["feedback_lr"],
            grammatical_range=row["feedback_gra"],
            overall=row["overall_feedback"] or "",
        )
    return FeedbackSnapshot(
        feedback_id=row["public_id"],
        project_id=row["project_public_id"],
        version_number=row["version_number"],
        status=FeedbackStatus(row["status"]),
        scores=scores,
        overall_score=overall_band_score(scores.as_tuple()) if scores is not None else None,
        critiques=critiques,
        annotations=tuple(Annotation.from_dict(item) for item in (row["annotations"] or []) if isinstance(item, dict)),
        error_code=row["error_code"],
        error_message=row["error_message"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _example_from_row(row: Any) -> ExampleEssaySnapshot:
    return ExampleEssaySnapshot(
        example_id=row["public_id"],
        project_id=row["project_public_id"],
        version_number=row["version_number"],
        example_content=row["example_content"],
        improvement=row["improvement"],
        word_count=row["word_count"],
        created_at=row["created_at"],
    )


def _prompt_log_from_row(row: Any) -> PromptLogEntry:
    return PromptLogEntry(
        request_id=row["request_id"],
        service_type=row["service_type"],
        model_name=row["model_name"],
        request_type=TaskType(row["request_type"]),
        paragraph_info=row["paragraph_info"],
        prompt_content=row["prompt_content"],
        response_content=row["response_content"],
        token_usage=TokenUsage(
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            total_tokens=row["total_tokens"],
        ),
        duration_ms=row["duration_ms"],
        status=row["status"],
        error_message=row["error_message"],
        project_id=row["project_public_id"],
        version_number=row["version_number"],
        created_at=row["created_at"],
    )
