from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import Awaitable, Callable
import logging

from fastapi import BackgroundTasks, Body, FastAPI, HTTPException, Path, Query, Request
from fastapi.responses import JSONResponse

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.api.handlers.example_essays import (
    delete_project_example_essays_handler,
    generate_example_essay_handler,
    get_version_example_essay_handler,
    list_project_example_essays_handler,
)
from essaycoach.api.handlers.feedback import (
    get_feedback_handler,
    get_feedback_progress_handler,
    get_feedback_status_handler,
    get_version_feedback_handler,
    submit_feedback_handler,
)
from essaycoach.api.handlers.logs import (
    get_prompt_log_handler,
    list_prompt_logs_handler,
    prompt_log_facet_handler,
    prompt_log_stats_handler,
)
from essaycoach.api.handlers.projects import (
    create_project_handler,
    create_version_handler,
    get_project_handler,
    get_version_handler,
    list_projects_handler,
    list_versions_handler,
    update_project_handler,
)
from essaycoach.api.handlers.settings import (
    get_max_concurrent_tasks_handler,
    list_vendors_handler,
    update_max_concurrent_tasks_handler,
)
from essaycoach.api.schemas import (
    CreateProjectRequest,
    CreateProjectResponse,
    CreateVersionRequest,
    DeleteExampleEssaysResponse,
    ErrorResponse,
    ExampleEssayResponse,
    FeedbackProgressResponse,
    FeedbackResponse,
    FeedbackStatusResponse,
    GenerateExampleEssayRequest,
    GenerateExampleEssayResponse,
    HealthResponse,
    ListExampleEssaysResponse,
    ListProjectsResponse,
    ListPromptLogsResponse,
    ListVendorsResponse,
    ListVersionsResponse,
    MaxConcurrentTasksResponse,
    ProjectResponse,
    PromptLogFacetResponse,
    PromptLogResponse,
    PromptLogStatsResponse,
    ReadyResponse,
    SubmitFeedbackRequest,
    SubmitFeedbackResponse,
    UpdateMaxConcurrentTasksRequest,
    UpdateProjectRequest,
    VersionResponse,
)
from essaycoach.domain.error_taxonomy import resolve_error_code
from essaycoach.domain.errors import (
    DomainConflictError,
    DomainDependencyError,
    DomainError,
    DomainInvariantError,
    DomainNotFoundError,
    DomainValidationError,
    ResponseParseError,
)

SERVICE_NAME = "essaycoach-api"

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def http_status_for(exc: DomainError) -> int:
    if isinstance(exc, DomainNotFoundError):
        return 404
    if isinstance(exc, DomainConflictError):
        return 409
    if isinstance(exc, (DomainValidationError, DomainInvariantError)):
        return 400
    if isinstance(exc, ResponseParseError):
        return 502
    if isinstance(exc, DomainDependencyError):
        return 503
    return 500


def build_app(
    run_id: str,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        del app
        logger.info("service started", extra={"service": SERVICE_NAME, "run_id": run_id})

        if on_startup is not None:
            await on_startup()

        yield

        if on_shutdown is not None:
            await on_shutdown()

        logger.info("service stopped", extra={"service": SERVICE_NAME, "run_id": run_id})

    app = FastAPI(title="essaycoach", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        del request
        status_code = http_status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "request failed",
            extra={"service": SERVICE_NAME, "run_id": run_id, "error_code": resolve_error_code(exc)},
        )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    def require_deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service=SERVICE_NAME, mode="wired" if api_deps is not None else "skeleton")

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        deps = require_deps()
        return ReadyResponse(
            status="ready",
            service=SERVICE_NAME,
            vendor=deps.vendor_key,
            repository=deps.repository.__class__.__name__,
            active_feedback_runs=len(deps.progress.active_ids()),
        )

    @app.post(
        "/projects",
        response_model=CreateProjectResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Projects"],
    )
    async def create_project(request: CreateProjectRequest) -> CreateProjectResponse:
        return await create_project_handler(
            title=request.title,
            prompt=request.prompt,
            exam_type=request.exam_type,
            essay_category=request.essay_category,
            target_score=request.target_score,
            content=request.content,
            api_deps=require_deps(),
        )

    @app.get("/projects", response_model=ListProjectsResponse, tags=["Projects"])
    async def list_projects(
        limit: int = Query(default=50, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
    ) -> ListProjectsResponse:
        return await list_projects_handler(limit=limit, offset=offset, api_deps=require_deps())

    @app.get("/projects/{project_id}", response_model=ProjectResponse, responses=ERROR_RESPONSES, tags=["Projects"])
    async def get_project(project_id: str) -> ProjectResponse:
        return await get_project_handler(project_id=project_id, api_deps=require_deps())

    @app.put("/projects/{project_id}", response_model=ProjectResponse, responses=ERROR_RESPONSES, tags=["Projects"])
    async def update_project(project_id: str, request: UpdateProjectRequest) -> ProjectResponse:
        return await update_project_handler(project_id=project_id, request=request, api_deps=require_deps())

    @app.post(
        "/projects/{project_id}/versions",
        response_model=VersionResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Projects"],
    )
    async def create_version(project_id: str, request: CreateVersionRequest) -> VersionResponse:
        return await create_version_handler(project_id=project_id, content=request.content, api_deps=require_deps())

    @app.get(
        "/projects/{project_id}/versions",
        response_model=ListVersionsResponse,
        responses=ERROR_RESPONSES,
        tags=["Projects"],
    )
    async def list_versions(project_id: str) -> ListVersionsResponse:
        return await list_versions_handler(project_id=project_id, api_deps=require_deps())

    @app.get(
        "/projects/{project_id}/versions/{version_number}",
        response_model=VersionResponse,
        responses=ERROR_RESPONSES,
        tags=["Projects"],
    )
    async def get_version(project_id: str, version_number: int = Path(ge=1)) -> VersionResponse:
        return await get_version_handler(
            project_id=project_id,
            version_number=version_number,
            api_deps=require_deps(),
        )

    @app.post(
        "/projects/{project_id}/versions/{version_number}/feedback",
        response_model=SubmitFeedbackResponse,
        status_code=202,
        responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}},
        tags=["Feedback"],
    )
    async def submit_feedback(
        project_id: str,
        background_tasks: BackgroundTasks,
        version_number: int = Path(ge=1),
        request: SubmitFeedbackRequest | None = Body(default=None),
    ) -> SubmitFeedbackResponse:
        return await submit_feedback_handler(
            project_id=project_id,
            version_number=version_number,
            request=request or SubmitFeedbackRequest(),
            background_tasks=background_tasks,
            api_deps=require_deps(),
        )

    @app.get(
        "/projects/{project_id}/versions/{version_number}/feedback",
        response_model=FeedbackResponse,
        responses=ERROR_RESPONSES,
        tags=["Feedback"],
    )
    async def get_version_feedback(project_id: str, version_number: int = Path(ge=1)) -> FeedbackResponse:
        return await get_version_feedback_handler(
            project_id=project_id,
            version_number=version_number,
            api_deps=require_deps(),
        )

    @app.get("/feedback/{feedback_id}", response_model=FeedbackResponse, responses=ERROR_RESPONSES, tags=["Feedback"])
    async def get_feedback(feedback_id: str) -> FeedbackResponse:
        return await get_feedback_handler(feedback_id=feedback_id, api_deps=require_deps())

    @app.get(
        "/feedback/{feedback_id}/status",
        response_model=FeedbackStatusResponse,
        responses=ERROR_RESPONSES,
        tags=["Feedback"],
    )
    async def get_feedback_status(feedback_id: str) -> FeedbackStatusResponse:
        return await get_feedback_status_handler(feedback_id=feedback_id, api_deps=require_deps())

    @app.get(
        "/feedback/{feedback_id}/progress",
        response_model=FeedbackProgressResponse,
        responses=ERROR_RESPONSES,
        tags=["Feedback"],
    )
    async def get_feedback_progress(feedback_id: str) -> FeedbackProgressResponse:
        return await get_feedback_progress_handler(feedback_id=feedback_id, api_deps=require_deps())

    @app.get(
        "/projects/{project_id}/versions/{version_number}/example-essay",
        response_model=ExampleEssayResponse,
        responses=ERROR_RESPONSES,
        tags=["Example essays"],
    )
    async def get_version_example_essay(project_id: str, version_number: int = Path(ge=1)) -> ExampleEssayResponse:
        return await get_version_example_essay_handler(
            project_id=project_id,
            version_number=version_number,
            api_deps=require_deps(),
        )

    @app.get(
        "/projects/{project_id}/example-essays",
        response_model=ListExampleEssaysResponse,
        responses=ERROR_RESPONSES,
        tags=["Example essays"],
    )
    async def list_project_example_essays(project_id: str) -> ListExampleEssaysResponse:
        return await list_project_example_essays_handler(project_id=project_id, api_deps=require_deps())

    @app.delete(
        "/projects/{project_id}/example-essays",
        response_model=DeleteExampleEssaysResponse,
        responses=ERROR_RESPONSES,
        tags=["Example essays"],
    )
    async def delete_project_example_essays(project_id: str) -> DeleteExampleEssaysResponse:
        return await delete_project_example_essays_handler(project_id=project_id, api_deps=require_deps())

    @app.post(
        "/example-essays",
        response_model=GenerateExampleEssayResponse,
        responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}},
        tags=["Example essays"],
    )
    async def generate_example_essay(request: GenerateExampleEssayRequest) -> GenerateExampleEssayResponse:
        return await generate_example_essay_handler(
            project_id=request.project_id,
            version_number=request.version_number,
            title=request.title,
            prompt=request.prompt,
            exam_type=request.exam_type,
            essay_category=request.essay_category,
            target_score=request.target_score,
            essay_text=request.essay_text,
            vendor=request.vendor,
            api_deps=require_deps(),
        )

    @app.get("/logs", response_model=ListPromptLogsResponse, tags=["Logs"])
    async def list_prompt_logs(
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        request_type: str | None = Query(default=None),
        status: str | None = Query(default=None),
        project_id: str | None = Query(default=None),
        service_type: str | None = Query(default=None),
        model_name: str | None = Query(default=None),
    ) -> ListPromptLogsResponse:
        return await list_prompt_logs_handler(
            limit=limit,
            offset=offset,
            request_type=request_type,
            status=status,
            project_id=project_id,
            service_type=service_type,
            model_name=model_name,
            api_deps=require_deps(),
        )

    # Fixed paths are declared ahead of /logs/{request_id}.
    @app.get("/logs/stats", response_model=PromptLogStatsResponse, tags=["Logs"])
    async def get_prompt_log_stats() -> PromptLogStatsResponse:
        return await prompt_log_stats_handler(api_deps=require_deps())

    @app.get("/logs/service-types", response_model=PromptLogFacetResponse, tags=["Logs"])
    async def list_prompt_log_service_types() -> PromptLogFacetResponse:
        return await prompt_log_facet_handler(column="service_type", api_deps=require_deps())

    @app.get("/logs/model-names", response_model=PromptLogFacetResponse, tags=["Logs"])
    async def list_prompt_log_model_names() -> PromptLogFacetResponse:
        return await prompt_log_facet_handler(column="model_name", api_deps=require_deps())

    @app.get("/logs/{request_id}", response_model=PromptLogResponse, responses=ERROR_RESPONSES, tags=["Logs"])
    async def get_prompt_log(request_id: str) -> PromptLogResponse:
        return await get_prompt_log_handler(request_id=request_id, api_deps=require_deps())

    @app.get("/settings/max-concurrent-tasks", response_model=MaxConcurrentTasksResponse, tags=["Settings"])
    async def get_max_concurrent_tasks() -> MaxConcurrentTasksResponse:
        return await get_max_concurrent_tasks_handler(api_deps=require_deps())

    @app.put(
        "/settings/max-concurrent-tasks",
        response_model=MaxConcurrentTasksResponse,
        responses=ERROR_RESPONSES,
        tags=["Settings"],
    )
    async def update_max_concurrent_tasks(request: UpdateMaxConcurrentTasksRequest) -> MaxConcurrentTasksResponse:
        return await update_max_concurrent_tasks_handler(value=request.max_concurrent_tasks, api_deps=require_deps())

    @app.get("/vendors", response_model=ListVendorsResponse, tags=["Settings"])
    async def list_vendors() -> ListVendorsResponse:
        return await list_vendors_handler(api_deps=require_deps())

    return app
