from __future__ import annotations

import logging

from essaycoach.domain.contracts import EssayRepository, FeedbackStrategy, StrategyProvider
from essaycoach.domain.dto import CallTrace, ExampleEssayContext, ExampleEssayTaskResult
from essaycoach.domain.errors import DomainNotFoundError
from essaycoach.domain.models import EssayMetadata, ExampleEssaySnapshot
from essaycoach.domain.paragraphs import join_paragraphs

COMPONENT_ID = "domain.example_essay.generate"

logger = logging.getLogger("essaycoach.example_essays")


async def generate_example_essay(
    *,
    strategy: FeedbackStrategy,
    metadata: EssayMetadata,
    essay_text: str = "",
    repository: EssayRepository | None = None,
    project_id: str | None = None,
    version_number: int | None = None,
) -> tuple[ExampleEssayTaskResult, ExampleEssaySnapshot | None]:
    """Generate one example essay outside a feedback run, saving it when a version is given."""
    result = await strategy.get_example_essay(
        ExampleEssayContext(metadata=metadata, essay_text=essay_text),
        trace=CallTrace(project_id=project_id, version_number=version_number, paragraph_info="example"),
    )
    saved = None
    if repository is not None and project_id is not None and version_number is not None:
        saved = await repository.save_example_essay(
            project_id=project_id,
            version_number=version_number,
            example_content=result.example_content,
            improvement=result.improvement,
            word_count=result.word_count,
        )
        logger.info(
            "example essay saved",
            extra={"component": COMPONENT_ID, "project_id": project_id, "version_number": version_number},
        )
    return result, saved


async def generate_example_essay_for_version(
    *,
    strategy_for: StrategyProvider,
    repository: EssayRepository,
    project_id: str,
    version_number: int,
    vendor: str | None = None,
) -> tuple[ExampleEssayTaskResult, ExampleEssaySnapshot | None]:
    project = await repository.get_project(project_id=project_id)
    if project is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    version = await repository.get_version(project_id=project_id, version_number=version_number)
    if version is None:
        raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}")
    metadata = project.metadata()
    strategy = strategy_for(metadata, vendor)
    return await generate_example_essay(
        strategy=strategy,
        metadata=metadata,
        essay_text=join_paragraphs(version.content),
        repository=repository,
        project_id=project_id,
        version_number=version_number,
    )
