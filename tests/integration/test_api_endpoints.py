import asyncio

from fastapi.testclient import TestClient
import pytest

from essaycoach.api.http_app import build_app
from essaycoach.clients.stub import StubVendorClient
from essaycoach.domain.errors import VendorCallError
from essaycoach.domain.models import FeedbackStatus, ProgressStage
from essaycoach.services.bootstrap import RuntimeContainer, build_runtime_container
from essaycoach.settings import AppSettings

ESSAY = (
    "Some people think that university education should be free for everyone.\n\n"
    "Free tuition widens access for students from poorer families.\n\n"
    "However, governments must balance this against other spending."
)


def _container(vendor_client: StubVendorClient | None = None) -> RuntimeContainer:
    return build_runtime_container(AppSettings(), vendor_client=vendor_client or StubVendorClient())


def _client(container: RuntimeContainer) -> TestClient:
    return TestClient(build_app(run_id="integration-api", api_deps=container.api_deps))


def _create_project(client: TestClient, content: str | list[str] | None = ESSAY) -> dict:
    response = client.post(
        "/projects",
        json={
            "title": "Free university",
            "prompt": "Should university education be free?",
            "exam_type": "ielts",
            "essay_category": "task2",
            "target_score": "7",
            "content": content,
        },
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.integration
def test_health_and_ready() -> None:
    with _client(_container()) as client:
        assert client.get("/health").json() == {"status": "ok", "service": "essaycoach-api", "mode": "wired"}
        ready = client.get("/ready").json()
        assert ready["vendor"] == "doubao"
        assert ready["repository"] == "InMemoryEssayRepository"
        assert ready["active_feedback_runs"] == 0

    with TestClient(build_app(run_id="no-deps")) as client:
        assert client.get("/health").json()["mode"] == "skeleton"
        assert client.get("/ready").status_code == 503


@pytest.mark.integration
def test_feedback_submission_and_polling_flow() -> None:
    container = _container()
    with _client(container) as client:
        created = _create_project(client)
        project_id = created["project"]["project_id"]
        assert created["version"]["version_number"] == 1
        assert len(created["version"]["content"]) == 3
        assert created["project"]["status"] == "submitted"

        submit = client.post(
            f"/projects/{project_id}/versions/1/feedback",
            json={"generate_example_essay": True},
        )
        assert submit.status_code == 202
        body = submit.json()
        feedback_id = body["feedback_id"]
        assert body["status"] == "pending"
        assert body["resubmitted"] is False

        status = client.get(f"/feedback/{feedback_id}/status").json()
        assert status["status"] == "completed"
        assert status["progress_percent"] == 100
        assert status["overall_score"] == 6.0

        progress = client.get(f"/feedback/{feedback_id}/progress").json()
        assert progress["stage"] == "NONE"
        assert progress["stale"] is False

        feedback = client.get(f"/projects/{project_id}/versions/1/feedback").json()
        assert feedback["feedback_id"] == feedback_id
        assert [item["paragraph_index"] for item in feedback["annotations"]] == [0, 1, 2]
        assert feedback["scores"]["lexical_resource"] == 6.5
        assert client.get(f"/feedback/{feedback_id}").json()["status"] == "completed"

        example = client.get(f"/projects/{project_id}/versions/1/example-essay")
        assert example.status_code == 200
        assert example.json()["example_content"].startswith("Many people argue")
        assert len(client.get(f"/projects/{project_id}/example-essays").json()["items"]) == 1

        assert client.get(f"/projects/{project_id}").json()["status"] == "reviewed"
        assert client.get(f"/projects/{project_id}/versions/1").json()["status"] == "reviewed"

        logs = client.get("/logs", params={"project_id": project_id}).json()["items"]
        assert sorted(entry["request_type"] for entry in logs) == [
            "annotation",
            "annotation",
            "annotation",
            "example_essay",
            "feedback",
        ]
        single = client.get(f"/logs/{logs[0]['request_id']}")
        assert single.status_code == 200
        assert client.get("/logs/req_missing").status_code == 404


@pytest.mark.integration
def test_resubmission_keeps_a_single_feedback_row() -> None:
    container = _container()
    with _client(container) as client:
        project_id = _create_project(client)["project"]["project_id"]
        first = client.post(f"/projects/{project_id}/versions/1/feedback").json()
        second = client.post(f"/projects/{project_id}/versions/1/feedback").json()

        assert second["feedback_id"] == first["feedback_id"]
        assert second["resubmitted"] is True
        assert client.get(f"/feedback/{first['feedback_id']}/status").json()["status"] == "completed"
    assert len(container.repository.feedback) == 1  # type: ignore[attr-defined]


@pytest.mark.integration
def test_submission_conflicts_with_live_run() -> None:
    container = _container()
    with _client(container) as client:
        project_id = _create_project(client)["project"]["project_id"]
        feedback_id = client.post(f"/projects/{project_id}/versions/1/feedback").json()["feedback_id"]

        asyncio.run(container.repository.reset_feedback(feedback_id=feedback_id))
        asyncio.run(
            container.repository.update_feedback_status(feedback_id=feedback_id, status=FeedbackStatus.IN_PROGRESS)
        )
        container.progress.start(feedback_id)
        container.progress.set_stage(feedback_id, ProgressStage.EXECUTING, total_items=4)

        conflict = client.post(f"/projects/{project_id}/versions/1/feedback")
        assert conflict.status_code == 409
        running = client.get(f"/feedback/{feedback_id}/status").json()
        assert running["status"] == "in_progress"
        assert running["progress_percent"] == 5

        container.progress.clear(feedback_id)
        stale = client.get(f"/feedback/{feedback_id}/progress").json()
        assert stale["stale"] is True


@pytest.mark.integration
def test_failed_feedback_is_reported() -> None:
    container = _container(StubVendorClient(failures={"Candidate essay:": VendorCallError("vendor down")}))
    with _client(container) as client:
        project_id = _create_project(client)["project"]["project_id"]
        feedback_id = client.post(f"/projects/{project_id}/versions/1/feedback").json()["feedback_id"]

        status = client.get(f"/feedback/{feedback_id}/status").json()
        assert status["status"] == "failed"
        assert status["progress_percent"] == 0
        feedback = client.get(f"/feedback/{feedback_id}").json()
        assert feedback["error_code"] == "feedback_task_failed"


@pytest.mark.integration
def test_projects_and_versions_endpoints() -> None:
    with _client(_container()) as client:
        created = _create_project(client, content=None)
        project_id = created["project"]["project_id"]
        assert created["version"] is None

        version = client.post(f"/projects/{project_id}/versions", json={"content": ["  One.  ", "", "Two."]})
        assert version.status_code == 201
        assert version.json()["content"] == ["One.", "Two."]
        assert version.json()["word_count"] == 2

        assert [item["version_number"] for item in client.get(f"/projects/{project_id}/versions").json()["items"]] == [1]
        assert client.get("/projects").json()["items"][0]["project_id"] == project_id

        assert client.get("/projects/prj_missing").status_code == 404
        assert client.get(f"/projects/{project_id}/versions/7").status_code == 404
        assert client.post("/projects/prj_missing/versions/1/feedback").status_code == 404
        assert client.get(f"/projects/{project_id}/versions/1/feedback").status_code == 404
        assert client.get(f"/projects/{project_id}/versions/1/example-essay").status_code == 404
        assert client.get("/feedback/fbk_missing/status").status_code == 404

        invalid = client.post(
            "/projects",
            json={"title": "x", "prompt": "y", "exam_type": "sat", "essay_category": "z"},
        )
        assert invalid.status_code == 422


@pytest.mark.integration
def test_max_concurrent_tasks_settings() -> None:
    with _client(_container()) as client:
        assert client.get("/settings/max-concurrent-tasks").json() == {"max_concurrent_tasks": 1}
        updated = client.put("/settings/max-concurrent-tasks", json={"max_concurrent_tasks": 3})
        assert updated.status_code == 200
        assert client.get("/settings/max-concurrent-tasks").json() == {"max_concurrent_tasks": 3}
        assert client.put("/settings/max-concurrent-tasks", json={"max_concurrent_tasks": 0}).status_code == 422
        assert client.put("/settings/max-concurrent-tasks", json={"max_concurrent_tasks": 21}).status_code == 422


@pytest.mark.integration
def test_vendors_listing() -> None:
    with _client(_container()) as client:
        body = client.get("/vendors").json()
    assert body["active"] == "doubao"
    by_key = {item["key"]: item for item in body["items"]}
    assert by_key["tongyi"]["supported_exams"] == ["ielts"]
    assert by_key["doubao"]["active"] is True
    assert by_key["kimi"]["supported_exams"] == ["gre", "ielts", "toefl"]


@pytest.mark.integration
def test_standalone_example_essay_generation() -> None:
    with _client(_container()) as client:
        inline = client.post(
            "/example-essays",
            json={"prompt": "Is remote work here to stay?", "exam_type": "toefl", "essay_text": "Draft."},
        )
        assert inline.status_code == 200
        assert inline.json()["saved"] is None
        assert inline.json()["word_count"] > 0
        assert inline.json()["token_usage"]["total_tokens"] > 0

        assert client.post("/example-essays", json={"essay_text": "no brief"}).status_code == 400

        project_id = _create_project(client)["project"]["project_id"]
        saved = client.post("/example-essays", json={"project_id": project_id, "version_number": 1})
        assert saved.status_code == 200
        assert saved.json()["saved"]["project_id"] == project_id
        assert client.get(f"/projects/{project_id}/versions/1/example-essay").status_code == 200


@pytest.mark.integration
def test_queued_submission_rejects_a_second_post() -> None:
    container = _container()
    with _client(container) as client:
        project_id = _create_project(client)["project"]["project_id"]
        feedback_id = client.post(f"/projects/{project_id}/versions/1/feedback").json()["feedback_id"]

        # A scheduled run that has not started yet holds the key.
        assert container.progress.reserve(feedback_id)
        conflict = client.post(f"/projects/{project_id}/versions/1/feedback")
        assert conflict.status_code == 409
        assert client.get(f"/feedback/{feedback_id}/progress").json()["stage"] == "QUEUED"

        container.progress.clear(feedback_id)
        assert client.post(f"/projects/{project_id}/versions/1/feedback").status_code == 202


@pytest.mark.integration
def test_vendor_is_chosen_per_request() -> None:
    container = _container()
    with _client(container) as client:
        project_id = _create_project(client)["project"]["project_id"]

        unknown = client.post(f"/projects/{project_id}/versions/1/feedback", json={"vendor": "nope"})
        assert unknown.status_code == 400
        assert "unsupported vendor strategy" in unknown.json()["detail"]
        assert container.repository.feedback == {}  # type: ignore[attr-defined]

        accepted = client.post(f"/projects/{project_id}/versions/1/feedback", json={"vendor": "kimi"})
        assert accepted.status_code == 202
        logs = client.get("/logs", params={"project_id": project_id}).json()["items"]
        assert {entry["service_type"] for entry in logs} == {"kimi"}

        toefl = client.post(
            "/projects",
            json={
                "title": "Remote work",
                "prompt": "Is remote work here to stay?",
                "exam_type": "toefl",
                "essay_category": "independent",
                "content": ESSAY,
            },
        ).json()["project"]["project_id"]
        unsupported = client.post(f"/projects/{toefl}/versions/1/feedback", json={"vendor": "tongyi"})
        assert unsupported.status_code == 400
        assert client.get(f"/projects/{toefl}/versions/1/feedback").status_code == 404

        example = client.post(
            "/example-essays",
            json={"prompt": "Is remote work here to stay?", "exam_type": "ielts", "vendor": "nope"},
        )
        assert example.status_code == 400


@pytest.mark.integration
def test_prompt_log_stats_and_facets() -> None:
    with _client(_container()) as client:
        empty = client.get("/logs/stats").json()
        assert empty["total"] == 0
        assert empty["avg_duration_ms"] == 0.0
        assert client.get("/logs/service-types").json() == {"items": []}

        project_id = _create_project(client)["project"]["project_id"]
        client.post(f"/projects/{project_id}/versions/1/feedback")
        client.post(f"/projects/{project_id}/versions/1/feedback", json={"vendor": "kimi"})

        stats = client.get("/logs/stats").json()
        assert stats["total"] == 8
        assert stats["success"] == 8
        assert stats["failed"] == 0
        assert stats["by_service_type"]["doubao"]["total"] == 4
        assert stats["by_service_type"]["kimi"]["total"] == 4
        assert stats["by_request_type"]["annotation"]["total"] == 6
        assert stats["by_request_type"]["feedback"]["success"] == 2

        assert client.get("/logs/service-types").json() == {"items": ["doubao", "kimi"]}
        models = client.get("/logs/model-names").json()["items"]
        assert "moonshot-v1-8k" in models
        assert len(models) == 2

        kimi_only = client.get("/logs", params={"service_type": "kimi"}).json()["items"]
        assert len(kimi_only) == 4
        assert client.get("/logs", params={"model_name": "moonshot-v1-8k"}).json()["items"] == kimi_only


@pytest.mark.integration
def test_project_update_and_example_essay_cleanup() -> None:
    with _client(_container()) as client:
        project_id = _create_project(client)["project"]["project_id"]

        updated = client.put(f"/projects/{project_id}", json={"title": "Tuition fees", "target_score": "7.5"})
        assert updated.status_code == 200
        body = updated.json()
        assert body["title"] == "Tuition fees"
        assert body["target_score"] == "7.5"
        assert body["prompt"] == "Should university education be free?"
        assert body["exam_type"] == "ielts"
        assert body["status"] == "submitted"
        assert body["total_versions"] == 1

        assert client.put(f"/projects/{project_id}", json={"exam_type": "sat"}).status_code == 422
        assert client.put(f"/projects/{project_id}", json={"title": ""}).status_code == 422
        assert client.put("/projects/prj_missing", json={"title": "x"}).status_code == 404

        client.post(f"/projects/{project_id}/versions/1/feedback", json={"generate_example_essay": True})
        assert len(client.get(f"/projects/{project_id}/example-essays").json()["items"]) == 1

        deleted = client.delete(f"/projects/{project_id}/example-essays")
        assert deleted.status_code == 200
        assert deleted.json() == {"project_id": project_id, "deleted": 1}
        assert client.get(f"/projects/{project_id}/example-essays").json()["items"] == []
        assert client.get(f"/projects/{project_id}/versions/1/example-essay").status_code == 404
        assert client.delete(f"/projects/{project_id}/example-essays").json()["deleted"] == 0
        assert client.delete("/projects/prj_missing/example-essays").status_code == 404
