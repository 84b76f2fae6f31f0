import asyncio

import pytest

from essaycoach.domain.errors import DomainNotFoundError, DomainValidationError
from essaycoach.domain.models import ExamType, PromptLogEntry, PromptLogGroup, PromptLogStats, TaskType, TokenUsage
from essaycoach.domain.use_cases.projects import create_project, update_project
from essaycoach.repositories.stub import InMemoryEssayRepository


def _log(request_id: str, service_type: str, model_name: str, request_type: TaskType, **kwargs) -> PromptLogEntry:
    return PromptLogEntry(
        request_id=request_id,
        service_type=service_type,
        model_name=model_name,
        request_type=request_type,
        paragraph_info="",
        prompt_content="prompt",
        response_content="reply",
        **kwargs,
    )


async def _seed_logs(repository: InMemoryEssayRepository) -> None:
    await repository.insert_prompt_log(
        entry=_log("req_1", "doubao", "doubao-turbo", TaskType.FEEDBACK, duration_ms=300, token_usage=TokenUsage(10, 20, 30))
    )
    await repository.insert_prompt_log(
        entry=_log("req_2", "doubao", "doubao-turbo", TaskType.ANNOTATION, duration_ms=100, token_usage=TokenUsage(5, 5, 10))
    )
    await repository.insert_prompt_log(
        entry=_log(
            "req_3",
            "kimi",
            "moonshot-v1-8k",
            TaskType.ANNOTATION,
            duration_ms=200,
            status="error",
            error_message="timeout",
        )
    )


@pytest.mark.unit
def test_prompt_log_stats_roll_up_groups() -> None:
    repository = InMemoryEssayRepository()
    asyncio.run(_seed_logs(repository))

    groups = asyncio.run(repository.prompt_log_groups())
    assert [(group.service_type, group.request_type) for group in groups] == [
        ("doubao", "annotation"),
        ("doubao", "feedback"),
        ("kimi", "annotation"),
    ]

    stats = PromptLogStats.from_groups(groups)
    assert (stats.total, stats.success, stats.failed) == (3, 2, 1)
    assert stats.total_tokens == 40
    assert stats.avg_duration_ms == 200.0
    assert stats.by_service_type["doubao"] == {
        "total": 2,
        "success": 2,
        "failed": 0,
        "total_tokens": 40,
        "avg_duration_ms": 200.0,
    }
    assert stats.by_request_type["annotation"]["failed"] == 1
    assert stats.by_request_type["annotation"]["avg_duration_ms"] == 150.0


@pytest.mark.unit
def test_prompt_log_stats_without_logs() -> None:
    stats = PromptLogStats.from_groups([])
    assert stats.total == 0
    assert stats.avg_duration_ms == 0.0
    assert stats.by_service_type == {}

    blank = PromptLogStats.from_groups(
        [PromptLogGroup("", "feedback", total=1, success=1, failed=0, total_duration_ms=10, total_tokens=0)]
    )
    assert list(blank.by_service_type) == ["unknown"]


@pytest.mark.unit
def test_prompt_log_facets_and_filters() -> None:
    repository = InMemoryEssayRepository()
    asyncio.run(_seed_logs(repository))

    assert asyncio.run(repository.distinct_prompt_log_values(column="service_type")) == ["doubao", "kimi"]
    assert asyncio.run(repository.distinct_prompt_log_values(column="model_name")) == [
        "doubao-turbo",
        "moonshot-v1-8k",
    ]
    with pytest.raises(DomainValidationError):
        asyncio.run(repository.distinct_prompt_log_values(column="prompt_content"))

    kimi = asyncio.run(repository.list_prompt_logs(service_type="kimi"))
    assert [entry.request_id for entry in kimi] == ["req_3"]
    turbo = asyncio.run(repository.list_prompt_logs(model_name="doubao-turbo", request_type="annotation"))
    assert [entry.request_id for entry in turbo] == ["req_2"]


@pytest.mark.unit
def test_update_project_keeps_omitted_fields() -> None:
    repository = InMemoryEssayRepository()
    project, _ = asyncio.run(
        create_project(
            repository=repository,
            title="Tourism",
            prompt="Does tourism do more harm than good?",
            exam_type="ielts",
            essay_category="task2",
            target_score="6.5",
            content="Tourism brings money.\n\nIt also brings crowds.",
        )
    )

    updated = asyncio.run(
        update_project(repository=repository, project_id=project.project_id, exam_type="GRE", target_score="5")
    )

    assert updated.exam_type == ExamType.GRE
    assert updated.target_score == "5"
    assert updated.title == "Tourism"
    assert updated.essay_category == "task2"
    assert updated.total_versions == 1
    assert updated.status == project.status

    with pytest.raises(DomainValidationError):
        asyncio.run(update_project(repository=repository, project_id=project.project_id, exam_type="sat"))
    with pytest.raises(DomainNotFoundError):
        asyncio.run(update_project(repository=repository, project_id="prj_missing", title="x"))


@pytest.mark.unit
def test_delete_example_essays_is_scoped_to_the_project() -> None:
    repository = InMemoryEssayRepository()

    async def scenario() -> tuple[int, int, int]:
        for project_id, version_number in (("prj_a", 1), ("prj_a", 2), ("prj_b", 1)):
            await repository.save_example_essay(
                project_id=project_id,
                version_number=version_number,
                example_content="Example.",
                improvement=None,
                word_count=1,
            )
        deleted = await repository.delete_example_essays(project_id="prj_a")
        remaining = len(await repository.list_example_essays(project_id="prj_b"))
        again = await repository.delete_example_essays(project_id="prj_a")
        return deleted, remaining, again

    assert asyncio.run(scenario()) == (2, 1, 0)
