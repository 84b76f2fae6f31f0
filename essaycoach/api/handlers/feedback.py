from __future__ import annotations

import logging

from fastapi import BackgroundTasks

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.api.schemas import (
    AnnotationModel,
    CritiquesModel,
    FeedbackProgressResponse,
    FeedbackResponse,
    FeedbackStatusResponse,
    ScoresModel,
    SubmitFeedbackRequest,
    SubmitFeedbackResponse,
)
from essaycoach.domain.errors import DomainNotFoundError
from essaycoach.domain.models import FeedbackSnapshot, SubScores
from essaycoach.domain.use_cases.orchestrate_feedback import run_orchestration_in_background
from essaycoach.domain.use_cases.status import get_feedback_progress, get_feedback_status
from essaycoach.domain.use_cases.submit_feedback import prepare_feedback_submission

COMPONENT_ID = "api.feedback"

logger = logging.getLogger("runtime")


def _scores(scores: SubScores | None) -> ScoresModel | None:
    if scores is None:
        return None
    return ScoresModel(
        task_response=scores.task_response,
        coherence_cohesion=scores.coherence_cohesion,
        lexical_resource=scores.lexical_resource,
        grammatical_range=scores.grammatical_range,
    )


def feedback_response(snapshot: FeedbackSnapshot) -> FeedbackResponse:
    critiques = snapshot.critiques
    return FeedbackResponse(
        feedback_id=snapshot.feedback_id,
        project_id=snapshot.project_id,
        version_number=snapshot.version_number,
        status=snapshot.status,
        scores=_scores(snapshot.scores),
        overall_score=snapshot.overall_score,
        critiques=(
            CritiquesModel(
                task_response=critiques.task_response,
                coherence_cohesion=critiques.coherence_cohesion,
                lexical_resource=critiques.lexical_resource,
                grammatical_range=critiques.grammatical_range,
                overall=critiques.overall,
            )
            if critiques is not None
            else None
        ),
        annotations=[
            AnnotationModel(
                type=annotation.type.value,
                original_content=annotation.original_content,
                correction_content=annotation.correction_content,
                suggestion=annotation.suggestion,
                paragraph_index=annotation.paragraph_index,
            )
            for annotation in snapshot.annotations
        ],
        error_code=snapshot.error_code,
        error_message=snapshot.error_message,
        started_at=snapshot.started_at,
        completed_at=snapshot.completed_at,
    )


async def submit_feedback_handler(
    *,
    project_id: str,
    version_number: int,
    request: SubmitFeedbackRequest,
    background_tasks: BackgroundTasks,
    api_deps: ApiDeps,
) -> SubmitFeedbackResponse:
    """Accept the submission and hand orchestration to a background task."""
    prepared = await prepare_feedback_submission(
        repository=api_deps.repository,
        progress=api_deps.progress,
        project_id=project_id,
        version_number=version_number,
        generate_example_essay=request.generate_example_essay,
        vendor=request.vendor,
        strategy_for=api_deps.strategy_for,
    )
    background_tasks.add_task(run_orchestration_in_background, api_deps.orchestrator, prepared.command)
    logger.info(
        "feedback submission accepted",
        extra={
            "component": COMPONENT_ID,
            "feedback_id": prepared.result.feedback_id,
            "project_id": project_id,
            "version_number": version_number,
            "vendor": request.vendor or api_deps.vendor_key,
        },
    )
    return SubmitFeedbackResponse(
        feedback_id=prepared.result.feedback_id,
        status=prepared.result.status,
        resubmitted=prepared.result.resubmitted,
        message="feedback generation accepted, poll status or progress for the result",
    )


async def get_version_feedback_handler(
    *,
    project_id: str,
    version_number: int,
    api_deps: ApiDeps,
) -> FeedbackResponse:
    snapshot = await api_deps.repository.find_feedback(project_id=project_id, version_number=version_number)
    if snapshot is None:
        raise DomainNotFoundError(f"feedback not found for {project_id}/{version_number}")
    return feedback_response(snapshot)


async def get_feedback_handler(*, feedback_id: str, api_deps: ApiDeps) -> FeedbackResponse:
    snapshot = await api_deps.repository.get_feedback(feedback_id=feedback_id)
    if snapshot is None:
        raise DomainNotFoundError(f"feedback not found: {feedback_id}")
    return feedback_response(snapshot)


async def get_feedback_status_handler(*, feedback_id: str, api_deps: ApiDeps) -> FeedbackStatusResponse:
    view = await get_feedback_status(repository=api_deps.repository, progress=api_deps.progress, feedback_id=feedback_id)
    return FeedbackStatusResponse(
        feedback_id=feedback_id,
        status=view.feedback.status,
        stage=view.stage,
        progress_percent=view.progress_percent,
        overall_score=view.feedback.overall_score,
        scores=_scores(view.feedback.scores),
        error_message=view.feedback.error_message,
    )


async def get_feedback_progress_handler(*, feedback_id: str, api_deps: ApiDeps) -> FeedbackProgressResponse:
    progress = await get_feedback_progress(
        repository=api_deps.repository,
        progress=api_deps.progress,
        feedback_id=feedback_id,
    )
    return FeedbackProgressResponse(
        feedback_id=progress.feedback_id,
        stage=progress.stage,
        total_items=progress.total_items,
        current_item=progress.current_item,
        status=progress.status,
        stale=progress.stale,
    )
