"""Tests for the AI pipeline proxy."""
import base64
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from reqflow_core.api.app import create_app
from reqflow_core.pipeline import (
    INPUT_DOCUMENT,
    INPUT_OBJECTIVE,
    INPUT_REQUIREMENT,
    INPUT_SYSTEM_NAME,
    build_pipeline_inputs,
)

PDF_CONTENT = base64.b64encode(b"%PDF-1.7\n%fake document body").decode()


class PipelineStub:
    """Records requests and answers like the workflow-automation API."""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream exploded")
        if request.url.path.endswith("/upload_files"):
            names = [f["file_name"] for f in json.loads(request.content)["files"]]
            return httpx.Response(200, json={"uploaded_files": names})
        if request.url.path.endswith("/start_pipeline"):
            return httpx.Response(200, json={"run_id": "run-42", "url": "https://example.com/run-42"})
        if request.url.path.endswith("/get_pl_run"):
            return httpx.Response(
                200,
                json={"run_id": request.url.params["run_id"], "state": "DONE", "outputs": {"ears": "..."}},
            )
        return httpx.Response(404)


@pytest.fixture
def configured(settings):
    settings.pipeline_api_key = "key"
    settings.pipeline_user_id = "pipeline-user"
    settings.pipeline_saved_item_id = "saved-item"
    return settings


def pipeline_client(settings, session_factory, stub):
    return TestClient(create_app(settings, session_factory, pipeline_transport=httpx.MockTransport(stub)))


class TestPipelineInputs:
    def test_all_inputs(self):
        """Test building pipeline inputs from every field."""
        inputs = build_pipeline_inputs("Users log in", ["spec.pdf"], "Portal", "Security")

        assert inputs == [
            {"input_name": INPUT_DOCUMENT, "value": "spec.pdf"},
            {"input_name": INPUT_SYSTEM_NAME, "value": "Portal"},
            {"input_name": INPUT_OBJECTIVE, "value": "Security"},
            {"input_name": INPUT_REQUIREMENT, "value": "Users log in"},
        ]

    def test_comma_separated_files_use_first(self):
        """Test that only the first of several files is sent."""
        inputs = build_pipeline_inputs("Users log in", "a.pdf, b.pdf")

        assert inputs[0] == {"input_name": INPUT_DOCUMENT, "value": "a.pdf"}
        assert len(inputs) == 2


class TestPipelineRoute:
    def test_upload(self, configured, session_factory):
        """Test the upload action."""
        stub = PipelineStub()
        with pipeline_client(configured, session_factory, stub) as client:
            response = client.post(
                "/api/ai",
                json={"action": "upload", "files": [{"file_name": "reg.pdf", "file_content": PDF_CONTENT}]},
            )

        assert response.status_code == 200
        assert response.json() == {"success": True, "files": ["reg.pdf"]}
        assert stub.requests[0].headers["Authorization"] == "Bearer key"

    def test_upload_rejects_non_pdf(self, configured, session_factory):
        """Test that non-PDF uploads are rejected."""
        stub = PipelineStub()
        content = base64.b64encode(b"plain text").decode()
        with pipeline_client(configured, session_factory, stub) as client:
            response = client.post(
                "/api/ai",
                json={"action": "upload", "files": [{"file_name": "notes.txt", "file_content": content}]},
            )

        assert response.status_code == 400
        assert stub.requests == []

    def test_start_pipeline(self, configured, session_factory):
        """Test starting a pipeline run."""
        stub = PipelineStub()
        with pipeline_client(configured, session_factory, stub) as client:
            response = client.post(
                "/api/ai",
                json={"action": "startPipeline", "requirement": "Users log in", "files": ["reg.pdf"], "systemName": "Portal"},
            )

        assert response.json()["run_id"] == "run-42"
        sent = json.loads(stub.requests[0].content)
        assert sent["user_id"] == "pipeline-user"
        assert sent["saved_item_id"] == "saved-item"
        assert {"input_name": INPUT_SYSTEM_NAME, "value": "Portal"} in sent["pipeline_inputs"]

    def test_start_requires_requirement(self, configured, session_factory):
        """Test that startPipeline needs a requirement."""
        with pipeline_client(configured, session_factory, PipelineStub()) as client:
            response = client.post("/api/ai", json={"action": "startPipeline"})

        assert response.status_code == 400
        assert response.json()["error"] == "Requirement is required for pipeline start"

    def test_status(self, configured, session_factory):
        """Test polling a run's status."""
        with pipeline_client(configured, session_factory, PipelineStub()) as client:
            response = client.post("/api/ai", json={"action": "getPipelineStatus", "runId": "run-42"})

        assert response.json()["state"] == "DONE"
        assert response.json()["run_id"] == "run-42"

    def test_invalid_action(self, configured, session_factory):
        """Test that an unknown action is rejected."""
        with pipeline_client(configured, session_factory, PipelineStub()) as client:
            response = client.post("/api/ai", json={"action": "dance"})

        assert response.json() == {"error": "Invalid action"}

    def test_upstream_failure_is_502(self, configured, session_factory):
        """Test that an upstream error becomes 502."""
        with pipeline_client(configured, session_factory, PipelineStub(status_code=500)) as client:
            response = client.post("/api/ai", json={"action": "getPipelineStatus", "runId": "run-42"})

        assert response.status_code == 502

    def test_unconfigured_is_503(self, client):
        """Test that a missing pipeline configuration becomes 503."""
        response = client.post("/api/ai", json={"action": "getPipelineStatus", "runId": "run-42"})

        assert response.status_code == 503
        assert "PIPELINE_API_KEY" in response.json()["error"]
