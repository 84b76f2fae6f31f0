from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Protocol, runtime_checkable

from essaycoach.domain.contracts import FeedbackStrategy
from essaycoach.domain.dto import (
    AnnotationContext,
    AnnotationTaskResult,
    CallTrace,
    ExampleEssayContext,
    ExampleEssayTaskResult,
    FeedbackRequest,
    FeedbackTaskResult,
)
from essaycoach.domain.models import TaskType


def feedback_task_id(project_id: str, version_number: int) -> str:
    return f"feedback_{project_id}_{version_number}"


def annotation_task_id(project_id: str, version_number: int, paragraph_index: int) -> str:
    return f"annotation_{project_id}_{version_number}_{paragraph_index}"


def example_essay_task_id(project_id: str, version_number: int) -> str:
    return f"example_{project_id}_{version_number}"


@runtime_checkable
class EssayTask(Protocol):
    """One outbound vendor call; returns its typed result or raises."""

    task_id: str
    task_type: TaskType

    async def execute(self) -> object: ...


@dataclass(frozen=True)
class FeedbackTask:
    task_id: str
    strategy: FeedbackStrategy
    request: FeedbackRequest
    trace: CallTrace
    task_type: ClassVar[TaskType] = TaskType.FEEDBACK

    async def execute(self) -> FeedbackTaskResult:
        return await self.strategy.generate_feedback(self.request, trace=self.trace)


@dataclass(frozen=True)
class AnnotationTask:
    task_id: str
    strategy: FeedbackStrategy
    paragraph: str
    context: AnnotationContext
    trace: CallTrace
    task_type: ClassVar[TaskType] = TaskType.ANNOTATION

    @property
    def paragraph_index(self) -> int:
        return self.context.paragraph_index

    async def execute(self) -> AnnotationTaskResult:
        annotations = await self.strategy.get_annotation(self.paragraph, self.context, trace=self.trace)
        return AnnotationTaskResult(paragraph_index=self.context.paragraph_index, annotations=tuple(annotations))


@dataclass(frozen=True)
class ExampleEssayTask:
    task_id: str
    strategy: FeedbackStrategy
    context: ExampleEssayContext
    trace: CallTrace
    task_type: ClassVar[TaskType] = TaskType.EXAMPLE_ESSAY

    async def execute(self) -> ExampleEssayTaskResult:
        return await self.strategy.get_example_essay(self.context, trace=self.trace)
