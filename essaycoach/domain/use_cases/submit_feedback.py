from __future__ import annotations

from dataclasses import dataclass

from essaycoach.domain.contracts import EssayRepository, ProgressStore, StrategyProvider
from essaycoach.domain.dto import StartOrchestrationCommand, SubmitFeedbackResult
from essaycoach.domain.errors import DomainConflictError, DomainNotFoundError

COMPONENT_ID = "domain.feedback.submit"


@dataclass(frozen=True)
class PreparedSubmission:
    result: SubmitFeedbackResult
    command: StartOrchestrationCommand


async def prepare_feedback_submission(
    *,
    repository: EssayRepository,
    progress: ProgressStore,
    project_id: str,
    version_number: int,
    generate_example_essay: bool = False,
    vendor: str | None = None,
    strategy_for: StrategyProvider | None = None,
) -> PreparedSubmission:
    """Get-or-reset the single live Feedback row for a version and build the orchestration command.

    The feedback id is reserved in the progress store before returning, so a
    second submission is rejected until the scheduled run clears it. An
    IN_PROGRESS row without a progress entry is a leftover from a restart and
    may be re-submitted. When ``strategy_for`` is given, the vendor is resolved
    up front so an unknown or unsupported vendor fails the request instead of
    the background run.
    """
    project = await repository.get_project(project_id=project_id)
    if project is None:
        raise DomainNotFoundError(f"project not found: {project_id}")
    version = await repository.get_version(project_id=project_id, version_number=version_number)
    if version is None:
        raise DomainNotFoundError(f"essay version not found: {project_id}/{version_number}")
    metadata = project.metadata()
    if strategy_for is not None:
        strategy_for(metadata, vendor)

    existing = await repository.find_feedback(project_id=project_id, version_number=version_number)
    if existing is None:
        feedback = await repository.create_feedback(project_id=project_id, version_number=version_number)
        if not progress.reserve(feedback.feedback_id):
            raise DomainConflictError(f"feedback generation already scheduled: {feedback.feedback_id}")
        resubmitted = False
    else:
        if not progress.reserve(existing.feedback_id):
            raise DomainConflictError(f"feedback generation already running: {existing.feedback_id}")
        try:
            feedback = await repository.reset_feedback(feedback_id=existing.feedback_id)
        except Exception:
            progress.clear(existing.feedback_id)
            raise
        resubmitted = True

    command = StartOrchestrationCommand(
        feedback_id=feedback.feedback_id,
        project_id=project_id,
        version_number=version_number,
        essay_content=version.content,
        metadata=metadata,
        generate_example_essay=generate_example_essay,
        vendor=vendor,
    )
    return PreparedSubmission(
        result=SubmitFeedbackResult(
            feedback_id=feedback.feedback_id,
            status=feedback.status,
            resubmitted=resubmitted,
        ),
        command=command,
    )
