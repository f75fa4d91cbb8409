"""Workflow-automation pipeline proxy (AI requirement analysis).

Thin pass-through to the external pipeline API: upload source documents,
start the saved pipeline for a requirement, and poll a run's status. The
service itself is opaque; this module only shapes requests and errors.
"""
import base64
import binascii
import logging
from typing import Optional, Union

import httpx

from .config import Settings
from .errors import ConfigurationError, PipelineError, ValidationError
from .schemas import PipelineFile, PipelineRun

logger = logging.getLogger("reqflow-core.pipeline")

# Input names expected by the saved pipeline
INPUT_DOCUMENT = "Upload Regulation Document Here - PDF Format Only"
INPUT_SYSTEM_NAME = "System Name [Product/Feature/System/Subsystem/Component]"
INPUT_OBJECTIVE = "Objective:"
INPUT_REQUIREMENT = "Requirement: "


def _is_pdf(file: PipelineFile) -> bool:
    if not file.file_name.lower().endswith(".pdf"):
        return False
    try:
        head = base64.b64decode(file.file_content[:16], validate=False)
    except (binascii.Error, ValueError):
        return False
    return head.startswith(b"%PDF")


def build_pipeline_inputs(
    requirement: str,
    filenames: Optional[Union[list[str], str]] = None,
    system_name: Optional[str] = None,
    objective: Optional[str] = None,
) -> list[dict]:
    """
    Build the named inputs for the saved pipeline.

    filenames may be a list or a comma-separated string; only the first file
    is passed to the pipeline.
    """
    if isinstance(filenames, str):
        filenames = [name.strip() for name in filenames.split(",") if name.strip()]

    inputs = []
    if filenames:
        inputs.append({"input_name": INPUT_DOCUMENT, "value": filenames[0]})
    if system_name:
        inputs.append({"input_name": INPUT_SYSTEM_NAME, "value": system_name})
    if objective:
        inputs.append({"input_name": INPUT_OBJECTIVE, "value": objective})
    if requirement:
        inputs.append({"input_name": INPUT_REQUIREMENT, "value": requirement})
    return inputs


class PipelineService:
    """
    Client for the workflow-automation API.

    Args:
        settings: Application settings holding the API URL and credentials
        transport: Optional httpx transport (tests inject a MockTransport)
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.pipeline_api_url.rstrip("/")
        self.api_key = settings.pipeline_api_key
        self.user_id = settings.pipeline_user_id
        self.saved_item_id = settings.pipeline_saved_item_id
        self.timeout = settings.pipeline_timeout_s
        self._missing = settings.missing_pipeline_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if self._missing:
            raise ConfigurationError(f"AI pipeline is not configured: missing {', '.join(self._missing)}")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    async def _send(self, action: str, method: str, path: str, **kwargs) -> dict:
        async with self._client() as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                logger.error(f"Pipeline {action} request failed: {e}", exc_info=True)
                raise PipelineError(f"Failed to {action}: {e}") from e

        if response.is_error:
            logger.error(
                f"Pipeline {action} API error: {response.status_code} {response.reason_phrase} - {response.text}"
            )
            raise PipelineError(f"Failed to {action}: {response.status_code} {response.reason_phrase}")
        return response.json()

    async def upload_files(self, files: list[PipelineFile]) -> list[str]:
        """
        Upload PDF documents for later pipeline runs.

        Returns:
            Names of the uploaded files as known to the pipeline service

        Raises:
            ValidationError: If no files are given or a file is not a PDF
        """
        if not files:
            raise ValidationError("Please upload at least one PDF file")
        for file in files:
            if not _is_pdf(file):
                raise ValidationError(f"Only PDF files are accepted. Invalid file: {file.file_name}")

        logger.info(f"Uploading {len(files)} file(s) to pipeline")
        result = await self._send(
            "upload files",
            "POST",
            "/upload_files",
            json={
                "user_id": self.user_id,
                "files": [file.model_dump() for file in files],
            },
        )
        return result.get("uploaded_files", [])

    async def start_pipeline(
        self,
        requirement: str,
        filenames: Optional[Union[list[str], str]] = None,
        system_name: Optional[str] = None,
        objective: Optional[str] = None,
    ) -> dict:
        """Start the saved pipeline for a requirement. Returns {'run_id': ...}."""
        inputs = build_pipeline_inputs(requirement, filenames, system_name, objective)
        logger.info(f"Starting pipeline with {len(inputs)} input(s)")
        result = await self._send(
            "start pipeline",
            "POST",
            "/start_pipeline",
            json={
                "user_id": self.user_id,
                "saved_item_id": self.saved_item_id,
                "pipeline_inputs": inputs,
            },
        )
        logger.info(f"Pipeline started: run {result.get('run_id')}")
        return result

    async def get_pipeline_run(self, run_id: str) -> PipelineRun:
        """Get the state (and outputs, once finished) of a pipeline run."""
        result = await self._send(
            "get pipeline run status",
            "GET",
            "/get_pl_run",
            params={"run_id": run_id, "user_id": self.user_id},
        )
        return PipelineRun.model_validate(result)
