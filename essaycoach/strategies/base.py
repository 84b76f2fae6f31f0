from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import time
from typing import ClassVar, TypeVar

from essaycoach.domain.contracts import PromptLogSink, VendorClient
from essaycoach.domain.dto import (
    AnnotationContext,
    CallTrace,
    ExampleEssayContext,
    ExampleEssayTaskResult,
    FeedbackRequest,
    FeedbackTaskResult,
    VendorRequest,
    VendorResponse,
)
from essaycoach.domain.error_taxonomy import resolve_error_code
from essaycoach.domain.ids import new_request_id
from essaycoach.domain.models import (
    EXAM_SCORE_RANGES,
    Annotation,
    EssayMetadata,
    PromptLogEntry,
    TaskType,
    TokenUsage,
)
from essaycoach.domain.paragraphs import count_words
from essaycoach.domain.prompts import PromptCatalog, render_prompt, resolve_essay_task_type
from essaycoach.domain.response_parsing import (
    parse_annotation_response,
    parse_example_essay_response,
    parse_feedback_response,
)

ParsedT = TypeVar("ParsedT")

logger = logging.getLogger("essaycoach.strategies")


@dataclass(frozen=True)
class StrategyConfig:
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    temperature: float = 0.3


class BaseFeedbackStrategy:
    """Shared vendor flow: pick a prompt, render it, call the vendor, log the call, parse the reply.

    Subclasses only declare where the vendor lives and which model to use.
    """

    service_name: ClassVar[str] = "base"
    default_base_url: ClassVar[str] = ""
    default_model: ClassVar[str] = ""

    def __init__(
        self,
        *,
        client: VendorClient,
        catalog: PromptCatalog,
        config: StrategyConfig,
        metadata: EssayMetadata,
        log_sink: PromptLogSink | None = None,
    ) -> None:
        self.client = client
        self.catalog = catalog
        self.config = config
        self.metadata = metadata
        self.log_sink = log_sink
        self.model = config.model or self.default_model
        self.base_url = config.base_url or self.default_base_url
        self.essay_task_type = resolve_essay_task_type(metadata.exam_type, metadata.essay_category)

    def capabilities(self) -> frozenset[TaskType]:
        return frozenset(TaskType)

    def validate_config(self) -> list[str]:
        problems: list[str] = []
        if not self.config.api_key:
            problems.append(f"{self.service_name}: api key is missing")
        if not self.model:
            problems.append(f"{self.service_name}: model name is missing")
        if not self.base_url:
            problems.append(f"{self.service_name}: base url is missing")
        return problems

    async def generate_feedback(self, request: FeedbackRequest, *, trace: CallTrace | None = None) -> FeedbackTaskResult:
        inputs = {
            **self._metadata_inputs(request.metadata),
            "essay": {"text": request.essay_text, "paragraph_count": len(request.paragraphs)},
        }
        return await self._invoke(
            TaskType.FEEDBACK,
            inputs,
            trace,
            lambda response: parse_feedback_response(response.content, exam_type=request.metadata.exam_type),
        )

    async def get_annotation(
        self,
        paragraph: str,
        context: AnnotationContext,
        *,
        trace: CallTrace | None = None,
    ) -> tuple[Annotation, ...]:
        total = len(context.all_paragraphs)
        inputs = {
            **self._metadata_inputs(context.metadata),
            "paragraph": {
                "text": paragraph,
                "index": context.paragraph_index,
                "position": f"{context.paragraph_index + 1}/{total}",
            },
            "essay": {"paragraphs": list(context.all_paragraphs)},
            "feedback_so_far": context.feedback_so_far or "none",
        }
        return await self._invoke(
            TaskType.ANNOTATION,
            inputs,
            trace,
            lambda response: parse_annotation_response(response.content, paragraph_index=context.paragraph_index),
        )

    async def get_example_essay(
        self,
        context: ExampleEssayContext,
        *,
        trace: CallTrace | None = None,
    ) -> ExampleEssayTaskResult:
        inputs = {
            **self._metadata_inputs(context.metadata),
            "essay": {"text": context.essay_text or "(no draft provided)"},
        }

        def _parse(response: VendorResponse) -> ExampleEssayTaskResult:
            essay, improvement = parse_example_essay_response(response.content)
            return ExampleEssayTaskResult(
                example_content=essay,
                improvement=improvement,
                word_count=count_words(essay),
                token_usage=response.token_usage,
            )

        return await self._invoke(TaskType.EXAMPLE_ESSAY, inputs, trace, _parse)

    async def _invoke(
        self,
        kind: TaskType,
        inputs: dict[str, object],
        trace: CallTrace | None,
        parse: Callable[[VendorResponse], ParsedT],
    ) -> ParsedT:
        template = self.catalog.get(kind, self.essay_task_type)
        system_prompt = render_prompt(template=template.system, inputs=inputs)
        user_prompt = render_prompt(template=template.user_template, inputs=inputs)
        request = VendorRequest(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=self.model,
            temperature=self.config.temperature,
            max_tokens=template.max_tokens,
        )

        trace = trace or CallTrace()
        request_id = new_request_id()
        started = time.perf_counter()
        response: VendorResponse | None = None
        try:
            response = await self.client.complete(request)
            parsed = parse(response)
        except Exception as exc:
            await self._write_log(
                request_id=request_id,
                kind=kind,
                trace=trace,
                request=request,
                response=response,
                duration_ms=int((time.perf_counter() - started) * 1000),
                error=exc,
            )
            raise
        await self._write_log(
            request_id=request_id,
            kind=kind,
            trace=trace,
            request=request,
            response=response,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return parsed

    async def _write_log(
        self,
        *,
        request_id: str,
        kind: TaskType,
        trace: CallTrace,
        request: VendorRequest,
        response: VendorResponse | None,
        duration_ms: int,
        error: BaseException | None = None,
    ) -> None:
        if self.log_sink is None:
            return
        entry = PromptLogEntry(
            request_id=request_id,
            service_type=self.service_name,
            model_name=self.model,
            request_type=kind,
            paragraph_info=trace.paragraph_info,
            prompt_content=f"{request.system_prompt}\n\n{request.user_prompt}",
            response_content=response.content if response is not None else "",
            token_usage=response.token_usage if response is not None else TokenUsage(),
            duration_ms=duration_ms,
            status="success" if error is None else "error",
            error_message=None if error is None else f"{resolve_error_code(error)}: {error}",
            project_id=trace.project_id,
            version_number=trace.version_number,
        )
        # A lost log line never fails the vendor call it describes.
        try:
            await self.log_sink.insert_prompt_log(entry=entry)
        except Exception:
            logger.warning(
                "prompt log write failed",
                extra={"vendor": self.service_name, "request_id": request_id, "task_type": kind.value},
                exc_info=True,
            )

    def _metadata_inputs(self, metadata: EssayMetadata) -> dict[str, object]:
        _, score_max = EXAM_SCORE_RANGES.get(metadata.exam_type, (0.0, 9.0))
        return {
            "metadata": {
                "title": metadata.title,
                "prompt": metadata.prompt,
                "exam_type": metadata.exam_type.value,
                "essay_category": metadata.essay_category,
                "target_score": metadata.target_score or "not specified",
            },
            "exam": {"score_max": int(score_max)},
        }
