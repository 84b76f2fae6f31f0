from __future__ import annotations

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.api.schemas import (
    DeleteExampleEssaysResponse,
    ExampleEssayResponse,
    GenerateExampleEssayResponse,
    ListExampleEssaysResponse,
    TokenUsageModel,
)
from essaycoach.domain.errors import DomainNotFoundError, DomainValidationError
from essaycoach.domain.models import EssayMetadata, ExampleEssaySnapshot, ExamType
from essaycoach.domain.use_cases.example_essays import (
    generate_example_essay,
    generate_example_essay_for_version,
)

COMPONENT_ID = "api.example_essays"


def example_essay_response(snapshot: ExampleEssaySnapshot) -> ExampleEssayResponse:
    return ExampleEssayResponse(
        example_id=snapshot.example_id,
        project_id=snapshot.project_id,
        version_number=snapshot.version_number,
        example_content=snapshot.example_content,
        improvement=snapshot.improvement,
        word_count=snapshot.word_count,
        created_at=snapshot.created_at,
    )


async def get_version_example_essay_handler(
    *,
    project_id: str,
    version_number: int,
    api_deps: ApiDeps,
) -> ExampleEssayResponse:
    snapshot = await api_deps.repository.find_example_essay(project_id=project_id, version_number=version_number)
    if snapshot is None:
        raise DomainNotFoundError(f"example essay not found for {project_id}/{version_number}")
    return example_essay_response(snapshot)


async def list_project_example_essays_handler(*, project_id: str, api_deps: ApiDeps) -> ListExampleEssaysResponse:
    if await api_deps.repository.get_project(project_id=project_id) is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    items = await api_deps.repository.list_example_essays(project_id=project_id)
    return ListExampleEssaysResponse(items=[example_essay_response(item) for item in items])


async def delete_project_example_essays_handler(*, project_id: str, api_deps: ApiDeps) -> DeleteExampleEssaysResponse:
    if await api_deps.repository.get_project(project_id=project_id) is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    deleted = await api_deps.repository.delete_example_essays(project_id=project_id)
    return DeleteExampleEssaysResponse(project_id=project_id, deleted=deleted)


async def generate_example_essay_handler(
    *,
    project_id: str | None,
    version_number: int | None,
    title: str | None,
    prompt: str | None,
    exam_type: str | None,
    essay_category: str | None,
    target_score: str | None,
    essay_text: str,
    api_deps: ApiDeps,
    vendor: str | None = None,
) -> GenerateExampleEssayResponse:
    """Generate against a stored version when one is named, otherwise from the inline essay brief."""
    if project_id is not None and version_number is not None:
        result, saved = await generate_example_essay_for_version(
            strategy_for=api_deps.strategy_for,
            repository=api_deps.repository,
            project_id=project_id,
            version_number=version_number,
            vendor=vendor,
        )
    else:
        if not prompt or exam_type is None:
            raise DomainValidationError("prompt and exam_type are required without a project version")
        metadata = EssayMetadata(
            title=title or "Untitled",
            prompt=prompt,
            exam_type=ExamType(exam_type),
            essay_category=essay_category or "general",
            target_score=target_score,
        )
        result, saved = await generate_example_essay(
            strategy=api_deps.strategy_for(metadata, vendor),
            metadata=metadata,
            essay_text=essay_text,
        )
    usage = result.token_usage
    return GenerateExampleEssayResponse(
        example_content=result.example_content,
        improvement=result.improvement,
        word_count=result.word_count,
        token_usage=TokenUsageModel(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        ),
        saved=example_essay_response(saved) if saved is not None else None,
    )
