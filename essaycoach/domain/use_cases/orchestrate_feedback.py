from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import logging

from essaycoach.domain.contracts import (
    ConcurrencySettings,
    EssayRepository,
    FeedbackStrategy,
    ProgressStore,
    StrategyProvider,
)
from essaycoach.domain.dto import (
    AnnotationContext,
    AnnotationTaskResult,
    CallTrace,
    ExampleEssayContext,
    ExampleEssayTaskResult,
    FeedbackRequest,
    FeedbackTaskResult,
    FeedbackUpdate,
    StartOrchestrationCommand,
)
from essaycoach.domain.error_taxonomy import classify_task_failure, resolve_error_code
from essaycoach.domain.errors import FeedbackTaskMissingError
from essaycoach.domain.executor import BoundedTaskExecutor
from essaycoach.domain.models import (
    Annotation,
    FeedbackSnapshot,
    FeedbackStatus,
    ProgressStage,
    ProjectStatus,
    TaskType,
)
from essaycoach.domain.paragraphs import join_paragraphs, split_paragraphs
from essaycoach.domain.tasks import (
    AnnotationTask,
    ExampleEssayTask,
    FeedbackTask,
    annotation_task_id,
    example_essay_task_id,
    feedback_task_id,
)

COMPONENT_ID = "domain.feedback.orchestrate"
DEFAULT_MAX_CONCURRENCY = 1
MIN_CRITIQUE_CHARS = 10

logger = logging.getLogger("essaycoach.orchestrator")


@dataclass(frozen=True)
class OrchestrationOutcome:
    feedback: FeedbackSnapshot
    task_ids: tuple[str, ...]
    failed_task_ids: tuple[str, ...]
    example_essay_saved: bool
    max_concurrency: int
    peak_in_flight: int


@dataclass(frozen=True)
class _TaskPlan:
    feedback: FeedbackTask
    annotations: tuple[AnnotationTask, ...]
    example_essay: ExampleEssayTask | None

    def ordered(self) -> list[FeedbackTask | AnnotationTask | ExampleEssayTask]:
        tasks: list[FeedbackTask | AnnotationTask | ExampleEssayTask] = [self.feedback, *self.annotations]
        if self.example_essay is not None:
            tasks.append(self.example_essay)
        return tasks


@dataclass
class FeedbackOrchestrator:
    """Fans one essay out into vendor tasks and reduces their outcomes into one Feedback row.

    Stages: STARTED -> TASKS_BUILT -> EXECUTING -> AGGREGATING -> PERSISTED, or
    FAILED when anything raises before the aggregate is written. Only the
    feedback task is fatal; annotation and example essay failures are logged
    and leave gaps in the result.
    """

    repository: EssayRepository
    strategy_provider: StrategyProvider
    settings: ConcurrencySettings
    progress: ProgressStore

    async def start_orchestration(self, cmd: StartOrchestrationCommand) -> OrchestrationOutcome:
        log_extra = {
            "component": COMPONENT_ID,
            "feedback_id": cmd.feedback_id,
            "project_id": cmd.project_id,
            "version_number": cmd.version_number,
        }
        self.progress.start(cmd.feedback_id)
        logger.info("feedback orchestration started", extra=log_extra)

        try:
            await self.repository.update_feedback_status(feedback_id=cmd.feedback_id, status=FeedbackStatus.IN_PROGRESS)
            await self.repository.update_version_status(
                project_id=cmd.project_id,
                version_number=cmd.version_number,
                status=ProjectStatus.PROCESSING,
            )

            paragraphs = split_paragraphs(cmd.essay_content)
            max_concurrency = await self._resolve_max_concurrency(log_extra)
            strategy = self.strategy_provider(cmd.metadata, cmd.vendor)
            plan = self._build_tasks(cmd, paragraphs, strategy)
            tasks = plan.ordered()
            self.progress.set_stage(cmd.feedback_id, ProgressStage.TASKS_BUILT, total_items=len(tasks))

            executor = BoundedTaskExecutor(
                max_concurrency,
                on_settled=lambda _task_id, _succeeded: self.progress.advance(cmd.feedback_id),
            )
            for task in tasks:
                executor.add_task(task.task_id, task.execute)

            self.progress.set_stage(cmd.feedback_id, ProgressStage.EXECUTING)
            logger.info(
                "feedback tasks scheduled",
                extra={**log_extra, "task_id": ",".join(executor.task_ids)},
            )
            await executor.execute_all()

            self.progress.set_stage(cmd.feedback_id, ProgressStage.AGGREGATING)
            feedback_result = self._require_feedback(executor, plan.feedback, log_extra)
            annotations = self._collect_annotations(executor, plan.annotations, paragraphs, log_extra)
            example_saved = False
            if plan.example_essay is not None:
                example_saved = await self._persist_example_essay(executor, plan.example_essay, cmd, log_extra)
            self._warn_on_suspicious_result(feedback_result, log_extra)

            snapshot = await self.repository.update_feedback(
                feedback_id=cmd.feedback_id,
                update=FeedbackUpdate(
                    scores=feedback_result.scores,
                    critiques=feedback_result.critiques,
                    annotations=annotations,
                    status=FeedbackStatus.COMPLETED,
                ),
            )
        except (Exception, asyncio.CancelledError) as exc:
            await self._mark_failed(cmd, exc, log_extra)
            raise

        self.progress.set_stage(cmd.feedback_id, ProgressStage.PERSISTED)
        await self._mark_reviewed(cmd, log_extra)
        self.progress.clear(cmd.feedback_id)

        failed = tuple(task_id for task_id in executor.task_ids if executor.get_error(task_id) is not None)
        logger.info(
            "feedback orchestration completed",
            extra={**log_extra, "counts": {"annotations": len(annotations), "failed_tasks": len(failed)}},
        )
        return OrchestrationOutcome(
            feedback=snapshot,
            task_ids=tuple(executor.task_ids),
            failed_task_ids=failed,
            example_essay_saved=example_saved,
            max_concurrency=max_concurrency,
            peak_in_flight=executor.peak_in_flight,
        )

    async def _resolve_max_concurrency(self, log_extra: dict[str, object]) -> int:
        try:
            value = await self.settings.get_max_concurrent_tasks()
        except Exception:
            logger.warning("max concurrency unavailable, using default", extra=log_extra, exc_info=True)
            return DEFAULT_MAX_CONCURRENCY
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            logger.warning("max concurrency invalid, using default", extra=log_extra)
            return DEFAULT_MAX_CONCURRENCY
        return value

    def _build_tasks(
        self,
        cmd: StartOrchestrationCommand,
        paragraphs: Sequence[str],
        strategy: FeedbackStrategy,
    ) -> _TaskPlan:
        all_paragraphs = tuple(paragraphs)
        essay_text = join_paragraphs(all_paragraphs)
        feedback = FeedbackTask(
            task_id=feedback_task_id(cmd.project_id, cmd.version_number),
            strategy=strategy,
            request=FeedbackRequest(essay_text=essay_text, paragraphs=all_paragraphs, metadata=cmd.metadata),
            trace=CallTrace(project_id=cmd.project_id, version_number=cmd.version_number, paragraph_info="full"),
        )
        annotations = tuple(
            AnnotationTask(
                task_id=annotation_task_id(cmd.project_id, cmd.version_number, index),
                strategy=strategy,
                paragraph=paragraph,
                # Annotation tasks run alongside the feedback task, never after it.
                context=AnnotationContext(
                    paragraph_index=index,
                    all_paragraphs=all_paragraphs,
                    metadata=cmd.metadata,
                    feedback_so_far="",
                ),
                trace=CallTrace(
                    project_id=cmd.project_id,
                    version_number=cmd.version_number,
                    paragraph_info=f"{index + 1}/{len(all_paragraphs)}",
                ),
            )
            for index, paragraph in enumerate(all_paragraphs)
        )
        example_essay = None
        if cmd.generate_example_essay:
            example_essay = ExampleEssayTask(
                task_id=example_essay_task_id(cmd.project_id, cmd.version_number),
                strategy=strategy,
                context=ExampleEssayContext(metadata=cmd.metadata, essay_text=essay_text),
                trace=CallTrace(project_id=cmd.project_id, version_number=cmd.version_number, paragraph_info="example"),
            )
        return _TaskPlan(feedback=feedback, annotations=annotations, example_essay=example_essay)

    def _require_feedback(
        self,
        executor: BoundedTaskExecutor,
        task: FeedbackTask,
        log_extra: dict[str, object],
    ) -> FeedbackTaskResult:
        result = executor.get_result(task.task_id)
        if isinstance(result, FeedbackTaskResult):
            return result
        error = executor.get_error(task.task_id)
        _log_task_failure(task.task_id, task.task_type, error, log_extra)
        raise FeedbackTaskMissingError(f"feedback task {task.task_id} produced no result: {error}") from error

    def _collect_annotations(
        self,
        executor: BoundedTaskExecutor,
        tasks: Sequence[AnnotationTask],
        paragraphs: Sequence[str],
        log_extra: dict[str, object],
    ) -> tuple[Annotation, ...]:
        collected: list[Annotation] = []
        unanchored = 0
        # Paragraph order, never completion order.
        for task in sorted(tasks, key=lambda item: item.paragraph_index):
            result = executor.get_result(task.task_id)
            if not isinstance(result, AnnotationTaskResult):
                _log_task_failure(task.task_id, task.task_type, executor.get_error(task.task_id), log_extra)
                continue
            paragraph = paragraphs[result.paragraph_index]
            for annotation in result.annotations:
                if not annotation.is_anchored(paragraph):
                    unanchored += 1
                collected.append(annotation)

        if unanchored:
            logger.warning(
                "annotations not found in source paragraph",
                extra={**log_extra, "counts": {"unanchored": unanchored}},
            )
        return tuple(collected)

    async def _persist_example_essay(
        self,
        executor: BoundedTaskExecutor,
        task: ExampleEssayTask,
        cmd: StartOrchestrationCommand,
        log_extra: dict[str, object],
    ) -> bool:
        result = executor.get_result(task.task_id)
        if not isinstance(result, ExampleEssayTaskResult):
            _log_task_failure(task.task_id, task.task_type, executor.get_error(task.task_id), log_extra)
            return False
        try:
            await self.repository.save_example_essay(
                project_id=cmd.project_id,
                version_number=cmd.version_number,
                example_content=result.example_content,
                improvement=result.improvement,
                word_count=result.word_count,
            )
        except Exception:
            logger.warning(
                "example essay persistence failed",
                extra={**log_extra, "task_id": task.task_id, "error_code": "persistence_failed"},
                exc_info=True,
            )
            return False
        return True

    def _warn_on_suspicious_result(self, result: FeedbackTaskResult, log_extra: dict[str, object]) -> None:
        if all(score == 0 for score in result.scores.as_tuple()):
            logger.warning("all feedback scores are zero", extra=log_extra)
        short = [text for text in result.critiques.as_tuple() if len(text.strip()) < MIN_CRITIQUE_CHARS]
        if short:
            logger.warning("feedback critique unusually short", extra={**log_extra, "counts": {"short_critiques": len(short)}})

    async def _mark_reviewed(self, cmd: StartOrchestrationCommand, log_extra: dict[str, object]) -> None:
        # Feedback is already COMPLETED; a stale version or project status is tolerated.
        try:
            await self.repository.update_version_status(
                project_id=cmd.project_id,
                version_number=cmd.version_number,
                status=ProjectStatus.REVIEWED,
            )
            await self.repository.update_project_status(project_id=cmd.project_id, status=ProjectStatus.REVIEWED)
        except Exception:
            logger.warning(
                "review status update failed",
                extra={**log_extra, "error_code": "persistence_failed"},
                exc_info=True,
            )

    async def _mark_failed(
        self,
        cmd: StartOrchestrationCommand,
        exc: BaseException,
        log_extra: dict[str, object],
    ) -> None:
        self.progress.set_stage(cmd.feedback_id, ProgressStage.FAILED)
        error_code = resolve_error_code(exc)
        try:
            await self.repository.update_feedback_status(
                feedback_id=cmd.feedback_id,
                status=FeedbackStatus.FAILED,
                error_code=error_code,
                error_message=str(exc) or exc.__class__.__name__,
            )
        except Exception:
            logger.exception("failed to mark feedback as failed", extra={**log_extra, "error_code": error_code})
        finally:
            self.progress.clear(cmd.feedback_id)
        logger.error("feedback orchestration failed", extra={**log_extra, "error_code": error_code})


async def run_orchestration_in_background(
    orchestrator: FeedbackOrchestrator,
    cmd: StartOrchestrationCommand,
) -> None:
    """Entry point for fire-and-forget callers: failures are already recorded, so only log."""
    try:
        await orchestrator.start_orchestration(cmd)
    except Exception:
        logger.exception(
            "background feedback orchestration rejected",
            extra={
                "feedback_id": cmd.feedback_id,
                "project_id": cmd.project_id,
                "version_number": cmd.version_number,
            },
        )


def _log_task_failure(
    task_id: str,
    task_type: TaskType,
    error: BaseException | None,
    log_extra: dict[str, object],
) -> None:
    log = logger.error if classify_task_failure(task_type) == "fatal" else logger.warning
    log(
        f"{task_type.value} task failed",
        extra={
            **log_extra,
            "task_id": task_id,
            "task_type": task_type.value,
            "error_code": resolve_error_code(error) if error is not None else "internal_error",
        },
    )
