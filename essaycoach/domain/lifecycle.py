from __future__ import annotations

from essaycoach.domain.errors import DomainInvariantError
from essaycoach.domain.models import FeedbackStatus


ALLOWED_FEEDBACK_TRANSITIONS: dict[FeedbackStatus, set[FeedbackStatus]] = {
    FeedbackStatus.PENDING: {FeedbackStatus.IN_PROGRESS, FeedbackStatus.FAILED},
    FeedbackStatus.IN_PROGRESS: {FeedbackStatus.COMPLETED, FeedbackStatus.FAILED, FeedbackStatus.PENDING},
    # Re-submission resets the live row instead of appending a new one.
    FeedbackStatus.COMPLETED: {FeedbackStatus.PENDING},
    FeedbackStatus.FAILED: {FeedbackStatus.PENDING},
}



def can_transition_feedback(from_status: FeedbackStatus, to_status: FeedbackStatus) -> bool:
    return to_status in ALLOWED_FEEDBACK_TRANSITIONS.get(from_status, set())


def ensure_feedback_transition(from_status: FeedbackStatus, to_status: FeedbackStatus) -> None:
    if from_status == to_status:
        return
    if not can_transition_feedback(from_status, to_status):
        raise DomainInvariantError(f"invalid feedback transition: {from_status} -> {to_status}")
