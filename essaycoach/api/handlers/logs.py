from __future__ import annotations

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.api.schemas import (
    ListPromptLogsResponse,
    PromptLogBucketModel,
    PromptLogFacetResponse,
    PromptLogResponse,
    PromptLogStatsResponse,
    TokenUsageModel,
)
from essaycoach.domain.errors import DomainNotFoundError
from essaycoach.domain.models import PromptLogEntry, PromptLogStats

COMPONENT_ID = "api.logs"


def prompt_log_response(entry: PromptLogEntry) -> PromptLogResponse:
    return PromptLogResponse(
        request_id=entry.request_id,
        service_type=entry.service_type,
        model_name=entry.model_name,
        request_type=str(entry.request_type),
        paragraph_info=entry.paragraph_info,
        project_id=entry.project_id,
        version_number=entry.version_number,
        prompt_content=entry.prompt_content,
        response_content=entry.response_content,
        token_usage=TokenUsageModel(**entry.token_usage.as_dict()),
        duration_ms=entry.duration_ms,
        status=entry.status,
        error_message=entry.error_message,
        created_at=entry.created_at,
    )


def _bucket(item: dict[str, float]) -> PromptLogBucketModel:
    return PromptLogBucketModel(
        total=int(item["total"]),
        success=int(item["success"]),
        failed=int(item["failed"]),
        avg_duration_ms=item["avg_duration_ms"],
        total_tokens=int(item["total_tokens"]),
    )


async def list_prompt_logs_handler(
    *,
    limit: int,
    offset: int,
    request_type: str | None,
    status: str | None,
    project_id: str | None,
    api_deps: ApiDeps,
    service_type: str | None = None,
    model_name: str | None = None,
) -> ListPromptLogsResponse:
    items = await api_deps.repository.list_prompt_logs(
        limit=limit,
        offset=offset,
        request_type=request_type,
        status=status,
        project_id=project_id,
        service_type=service_type,
        model_name=model_name,
    )
    return ListPromptLogsResponse(items=[prompt_log_response(item) for item in items])


async def get_prompt_log_handler(*, request_id: str, api_deps: ApiDeps) -> PromptLogResponse:
    entry = await api_deps.repository.get_prompt_log(request_id=request_id)
    if entry is None:
        raise DomainNotFoundError(f"prompt log not found: {request_id}")
    return prompt_log_response(entry)


async def prompt_log_stats_handler(*, api_deps: ApiDeps) -> PromptLogStatsResponse:
    stats = PromptLogStats.from_groups(await api_deps.repository.prompt_log_groups())
    return PromptLogStatsResponse(
        total=stats.total,
        success=stats.success,
        failed=stats.failed,
        total_tokens=stats.total_tokens,
        avg_duration_ms=stats.avg_duration_ms,
        by_service_type={key: _bucket(item) for key, item in stats.by_service_type.items()},
        by_request_type={key: _bucket(item) for key, item in stats.by_request_type.items()},
    )


async def prompt_log_facet_handler(*, column: str, api_deps: ApiDeps) -> PromptLogFacetResponse:
    values = await api_deps.repository.distinct_prompt_log_values(column=column)
    return PromptLogFacetResponse(items=values)
