from __future__ import annotations

from essaycoach.domain.contracts import EssayRepository
from essaycoach.domain.errors import DomainNotFoundError, DomainValidationError
from essaycoach.domain.models import EssayVersionSnapshot, ExamType, ProjectSnapshot, ProjectStatus
from essaycoach.domain.paragraphs import count_words, join_paragraphs, split_paragraphs


async def create_project(
    *,
    repository: EssayRepository,
    title: str,
    prompt: str,
    exam_type: str,
    essay_category: str,
    target_score: str | None = None,
    content: str | list[str] | None = None,
) -> tuple[ProjectSnapshot, EssayVersionSnapshot | None]:
    exam = _exam_type(exam_type)
    project = await repository.create_project(
        title=title,
        prompt=prompt,
        exam_type=exam.value,
        essay_category=essay_category,
        target_score=target_score,
    )
    version = None
    if content is not None and split_paragraphs(content):
        version = await add_version(repository=repository, project_id=project.project_id, content=content)
        refreshed = await repository.get_project(project_id=project.project_id)
        if refreshed is not None:
            project = refreshed
    return project, version


async def add_version(
    *,
    repository: EssayRepository,
    project_id: str,
    content: str | list[str],
) -> EssayVersionSnapshot:
    project = await repository.get_project(project_id=project_id)
    if project is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    paragraphs = split_paragraphs(content)
    version = await repository.create_version(
        project_id=project_id,
        content=paragraphs,
        word_count=count_words(join_paragraphs(paragraphs)),
    )
    await repository.update_project_status(project_id=project_id, status=ProjectStatus.SUBMITTED)
    return version


async def update_project(
    *,
    repository: EssayRepository,
    project_id: str,
    title: str | None = None,
    prompt: str | None = None,
    exam_type: str | None = None,
    essay_category: str | None = None,
    target_score: str | None = None,
) -> ProjectSnapshot:
    """Overwrite the fields that were given; status and version counters are left alone."""
    project = await repository.get_project(project_id=project_id)
    if project is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    exam = _exam_type(exam_type) if exam_type is not None else project.exam_type
    return await repository.update_project(
        project_id=project_id,
        title=title if title is not None else project.title,
        prompt=prompt if prompt is not None else project.prompt,
        exam_type=exam.value,
        essay_category=essay_category if essay_category is not None else project.essay_category,
        target_score=target_score if target_score is not None else project.target_score,
    )


def _exam_type(value: str) -> ExamType:
    try:
        return ExamType(value.lower())
    except ValueError as exc:
        raise DomainValidationError(f"unsupported exam type: {value}") from exc
