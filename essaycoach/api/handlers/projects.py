from __future__ import annotations

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.api.schemas import (
    CreateProjectResponse,
    ListProjectsResponse,
    ListVersionsResponse,
    ProjectResponse,
    UpdateProjectRequest,
    VersionResponse,
)
from essaycoach.domain.errors import DomainNotFoundError
from essaycoach.domain.models import EssayVersionSnapshot, ProjectSnapshot
from essaycoach.domain.use_cases.projects import add_version, create_project, update_project

COMPONENT_ID = "api.projects"


def project_response(snapshot: ProjectSnapshot) -> ProjectResponse:
    return ProjectResponse(
        project_id=snapshot.project_id,
        title=snapshot.title,
        prompt=snapshot.prompt,
        exam_type=snapshot.exam_type.value,
        essay_category=snapshot.essay_category,
        target_score=snapshot.target_score,
        status=snapshot.status,
        current_version=snapshot.current_version,
        total_versions=snapshot.total_versions,
        created_at=snapshot.created_at,
    )


def version_response(snapshot: EssayVersionSnapshot) -> VersionResponse:
    return VersionResponse(
        project_id=snapshot.project_id,
        version_number=snapshot.version_number,
        content=list(snapshot.content),
        word_count=snapshot.word_count,
        status=snapshot.status,
        created_at=snapshot.created_at,
    )


async def create_project_handler(
    *,
    title: str,
    prompt: str,
    exam_type: str,
    essay_category: str,
    target_score: str | None,
    content: str | list[str] | None,
    api_deps: ApiDeps,
) -> CreateProjectResponse:
    project, version = await create_project(
        repository=api_deps.repository,
        title=title,
        prompt=prompt,
        exam_type=exam_type,
        essay_category=essay_category,
        target_score=target_score,
        content=content,
    )
    return CreateProjectResponse(
        project=project_response(project),
        version=version_response(version) if version is not None else None,
    )


async def list_projects_handler(*, limit: int, offset: int, api_deps: ApiDeps) -> ListProjectsResponse:
    items = await api_deps.repository.list_projects(limit=limit, offset=offset)
    return ListProjectsResponse(items=[project_response(item) for item in items])


async def get_project_handler(*, project_id: str, api_deps: ApiDeps) -> ProjectResponse:
    project = await api_deps.repository.get_project(project_id=project_id)
    if project is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    return project_response(project)


async def update_project_handler(*, project_id: str, request: UpdateProjectRequest, api_deps: ApiDeps) -> ProjectResponse:
    project = await update_project(
        repository=api_deps.repository,
        project_id=project_id,
        title=request.title,
        prompt=request.prompt,
        exam_type=request.exam_type,
        essay_category=request.essay_category,
        target_score=request.target_score,
    )
    return project_response(project)


async def create_version_handler(
    *,
    project_id: str,
    content: str | list[str],
    api_deps: ApiDeps,
) -> VersionResponse:
    version = await add_version(repository=api_deps.repository, project_id=project_id, content=content)
    return version_response(version)


async def list_versions_handler(*, project_id: str, api_deps: ApiDeps) -> ListVersionsResponse:
    if await api_deps.repository.get_project(project_id=project_id) is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    items = await api_deps.repository.list_versions(project_id=project_id)
    return ListVersionsResponse(items=[version_response(item) for item in items])


async def get_version_handler(*, project_id: str, version_number: int, api_deps: ApiDeps) -> VersionResponse:
    version = await api_deps.repository.get_version(project_id=project_id, version_number=version_number)
    if version is None:
        raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}")
    return version_response(version)
