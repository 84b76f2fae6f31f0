from __future__ import annotations

from dataclasses import dataclass

from essaycoach.domain.contracts import EssayRepository, ProgressStore
from essaycoach.domain.dto import FeedbackProgress
from essaycoach.domain.errors import DomainNotFoundError
from essaycoach.domain.models import FeedbackSnapshot, FeedbackStatus, ProgressStage

# Coarse percentage shown while no progress entry is available.
IN_PROGRESS_FALLBACK_PERCENT = 35


@dataclass(frozen=True)
class FeedbackStatusView:
    feedback: FeedbackSnapshot
    progress_percent: int
    stage: ProgressStage


async def get_feedback_progress(
    *,
    repository: EssayRepository,
    progress: ProgressStore,
    feedback_id: str,
) -> FeedbackProgress:
    feedback = await repository.get_feedback(feedback_id=feedback_id)
    if feedback is None:
        raise DomainNotFoundError(f"feedback not found: {feedback_id}")

    snapshot = progress.get(feedback_id)
    if snapshot is None:
        return FeedbackProgress(
            feedback_id=feedback_id,
            stage=ProgressStage.NONE,
            total_items=0,
            current_item=0,
            status=feedback.status,
            # No entry while still IN_PROGRESS means the run was lost, e.g. by a restart.
            stale=feedback.status == FeedbackStatus.IN_PROGRESS,
        )
    return FeedbackProgress(
        feedback_id=feedback_id,
        stage=snapshot.stage,
        total_items=snapshot.total_items,
        current_item=snapshot.current_item,
        status=feedback.status,
    )


async def get_feedback_status(
    *,
    repository: EssayRepository,
    progress: ProgressStore,
    feedback_id: str,
) -> FeedbackStatusView:
    feedback = await repository.get_feedback(feedback_id=feedback_id)
    if feedback is None:
        raise DomainNotFoundError(f"feedback not found: {feedback_id}")
    snapshot = progress.get(feedback_id)
    stage = snapshot.stage if snapshot is not None else ProgressStage.NONE

    if feedback.status == FeedbackStatus.COMPLETED:
        percent = 100
    elif feedback.status == FeedbackStatus.IN_PROGRESS:
        if snapshot is not None and snapshot.total_items > 0:
            percent = max(5, min(99, round(100 * snapshot.current_item / snapshot.total_items)))
        else:
            percent = IN_PROGRESS_FALLBACK_PERCENT
    else:
        percent = 0
    return FeedbackStatusView(feedback=feedback, progress_percent=percent, stage=stage)
