import asyncio

import pytest

from essaycoach.clients.http_vendor import OpenAICompatibleVendorClient
from essaycoach.clients.stub import StubVendorClient
from essaycoach.domain.contracts import (
    ConcurrencySettings,
    EssayRepository,
    FeedbackStrategy,
    ProgressStore,
    PromptLogSink,
    VendorClient,
)
from essaycoach.domain.dto import FeedbackUpdate
from essaycoach.domain.errors import DomainInvariantError, DomainNotFoundError, DomainValidationError
from essaycoach.domain.models import (
    EssayMetadata,
    ExamType,
    FeedbackStatus,
    PromptLogEntry,
    SubScores,
    Critiques,
    TaskType,
)
from essaycoach.domain.progress import InMemoryProgressStore
from essaycoach.repositories.sql_loader import available_queries, load_sql
from essaycoach.repositories.stub import InMemoryEssayRepository
from essaycoach.services.bootstrap import build_runtime_container
from essaycoach.services.general_settings import GeneralSettingsService
from essaycoach.settings import AppSettings, VendorSettings
from essaycoach.strategies.vendors import KimiFeedbackStrategy, TongyiFeedbackStrategy


@pytest.mark.unit
def test_in_memory_components_satisfy_protocols() -> None:
    repository = InMemoryEssayRepository()
    assert isinstance(repository, EssayRepository)
    assert isinstance(repository, PromptLogSink)
    assert isinstance(InMemoryProgressStore(), ProgressStore)
    assert isinstance(StubVendorClient(), VendorClient)
    assert isinstance(GeneralSettingsService(repository=repository), ConcurrencySettings)


@pytest.mark.unit
def test_runtime_container_defaults_to_in_memory_and_stub_vendor() -> None:
    container = build_runtime_container(AppSettings())

    assert isinstance(container.repository, InMemoryEssayRepository)
    assert isinstance(container.vendor_client, StubVendorClient)
    assert container.on_startup is None
    assert container.on_shutdown is None
    assert container.api_deps.vendor_key == "doubao"


@pytest.mark.unit
def test_runtime_container_builds_http_vendor_for_configured_key() -> None:
    container = build_runtime_container(
        AppSettings(vendor=VendorSettings(vendor="tongyi", api_key="secret", model="qwen-max"))
    )

    assert isinstance(container.vendor_client, OpenAICompatibleVendorClient)
    assert container.vendor_client.base_url == "https://dashscope.aliyuncs.com/compatible-mode/v1"
    assert container.on_shutdown is not None
    strategy = container.api_deps.strategy_for(
        EssayMetadata(title="t", prompt="p", exam_type=ExamType.IELTS, essay_category="task2")
    )
    assert isinstance(strategy, TongyiFeedbackStrategy)
    assert isinstance(strategy, FeedbackStrategy)
    assert strategy.model == "qwen-max"
    asyncio.run(container.on_shutdown())


@pytest.mark.unit
def test_runtime_container_rejects_unknown_vendor() -> None:
    with pytest.raises(DomainValidationError):
        build_runtime_container(AppSettings(vendor=VendorSettings(vendor="nope")))


@pytest.mark.unit
def test_in_memory_repository_lifecycle() -> None:
    repository = InMemoryEssayRepository()

    async def _scenario():
        project = await repository.create_project(
            title="t", prompt="p", exam_type="toefl", essay_category="independent"
        )
        first = await repository.create_version(project_id=project.project_id, content=["a"], word_count=1)
        second = await repository.create_version(project_id=project.project_id, content=["b"], word_count=1)
        feedback = await repository.create_feedback(project_id=project.project_id, version_number=2)
        with pytest.raises(DomainInvariantError):
            await repository.create_feedback(project_id=project.project_id, version_number=2)
        with pytest.raises(DomainInvariantError):
            await repository.update_feedback(
                feedback_id=feedback.feedback_id,
                update=FeedbackUpdate(
                    scores=SubScores(20, 20, 20, 20),
                    critiques=Critiques("a", "b", "c", "d", "e"),
                    annotations=(),
                ),
            )
        await repository.update_feedback_status(
            feedback_id=feedback.feedback_id,
            status=FeedbackStatus.FAILED,
            error_code="vendor_unavailable",
            error_message="down",
        )
        failed = await repository.get_feedback(feedback_id=feedback.feedback_id)
        project_after = await repository.get_project(project_id=project.project_id)
        return first, second, failed, project_after

    first, second, failed, project_after = asyncio.run(_scenario())

    assert (first.version_number, second.version_number) == (1, 2)
    assert project_after is not None
    assert (project_after.current_version, project_after.total_versions) == (2, 2)
    assert failed is not None and failed.status == FeedbackStatus.FAILED
    assert failed.error_code == "vendor_unavailable"

    with pytest.raises(DomainNotFoundError):
        asyncio.run(repository.create_feedback(project_id="prj_missing", version_number=1))


@pytest.mark.unit
def test_prompt_log_filters() -> None:
    repository = InMemoryEssayRepository()
    for index, (kind, status) in enumerate(
        [(TaskType.FEEDBACK, "success"), (TaskType.ANNOTATION, "error"), (TaskType.ANNOTATION, "success")]
    ):
        asyncio.run(
            repository.insert_prompt_log(
                entry=PromptLogEntry(
                    request_id=f"req_{index}",
                    service_type="doubao",
                    model_name="doubao-turbo",
                    request_type=kind,
                    paragraph_info="",
                    prompt_content="p",
                    response_content="r",
                    status=status,
                    project_id="prj_a" if index < 2 else "prj_b",
                )
            )
        )

    newest_first = asyncio.run(repository.list_prompt_logs())
    assert [entry.request_id for entry in newest_first] == ["req_2", "req_1", "req_0"]
    assert all(entry.created_at is not None for entry in newest_first)
    annotations = asyncio.run(repository.list_prompt_logs(request_type="annotation", status="success"))
    assert [entry.request_id for entry in annotations] == ["req_2"]
    by_project = asyncio.run(repository.list_prompt_logs(project_id="prj_a", limit=1))
    assert [entry.request_id for entry in by_project] == ["req_1"]
    assert asyncio.run(repository.get_prompt_log(request_id="req_0")) is not None


@pytest.mark.unit
def test_bundled_queries_load() -> None:
    queries = available_queries()
    assert "create_feedback.sql" in queries
    assert "upsert_example_essay.sql" in queries
    for name in queries:
        assert load_sql(name)
    with pytest.raises(FileNotFoundError):
        load_sql("no_such_query.sql")


@pytest.mark.unit
def test_strategy_provider_selects_vendor_per_call() -> None:
    container = build_runtime_container(
        AppSettings(
            vendor=VendorSettings(vendor="tongyi", api_key="tongyi-secret", model="qwen-max"),
            vendor_api_keys={"kimi": "kimi-secret"},
        )
    )
    ielts = EssayMetadata(title="t", prompt="p", exam_type=ExamType.IELTS, essay_category="task2")
    toefl = EssayMetadata(title="t", prompt="p", exam_type=ExamType.TOEFL, essay_category="independent")

    assert isinstance(container.api_deps.strategy_for(ielts), TongyiFeedbackStrategy)
    kimi = container.api_deps.strategy_for(toefl, " Kimi ")
    assert isinstance(kimi, KimiFeedbackStrategy)
    assert kimi.model == KimiFeedbackStrategy.default_model
    assert kimi.client is container.vendor_clients["kimi"]
    assert isinstance(container.vendor_clients["kimi"], OpenAICompatibleVendorClient)
    assert isinstance(container.vendor_clients["doubao"], StubVendorClient)

    with pytest.raises(DomainValidationError):
        container.api_deps.strategy_for(ielts, "nope")
    with pytest.raises(DomainValidationError):
        container.api_deps.strategy_for(toefl)
    asyncio.run(container.on_shutdown())
