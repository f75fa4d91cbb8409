"""AI pipeline proxy endpoint."""
import logging

from fastapi import APIRouter, Request

from reqflow_core import schemas

from ...errors import ValidationError
from ...pipeline import PipelineService
from ...rate_limit import rate_limit

logger = logging.getLogger("reqflow-core.ai")

router = APIRouter(tags=["ai"], dependencies=[rate_limit("ai")])


@router.post("")
async def run_pipeline_action(body: schemas.PipelineRequest, request: Request):
    """
    Dispatch an AI pipeline action.

    - **upload**: `files` = [{file_name, file_content (base64 PDF)}]
    - **startPipeline**: `requirement` plus optional `files` (names), `systemName`, `objective`
    - **getPipelineStatus**: `runId`
    """
    service: PipelineService = request.app.state.pipeline

    if not body.action:
        raise ValidationError("Action is required")

    if body.action == "upload":
        if not isinstance(body.files, list):
            raise ValidationError("Files array is required for upload")
        try:
            files = [schemas.PipelineFile.model_validate(file) for file in body.files]
        except ValueError as e:
            raise ValidationError(f"Invalid file payload: {e}") from e
        uploaded = await service.upload_files(files)
        return {"success": True, "files": uploaded}

    if body.action == "startPipeline":
        if not body.requirement:
            raise ValidationError("Requirement is required for pipeline start")
        filenames = body.files
        if isinstance(filenames, list):
            filenames = [name for name in filenames if isinstance(name, str)]
        return await service.start_pipeline(body.requirement, filenames, body.system_name, body.objective)

    if body.action == "getPipelineStatus":
        if not body.run_id:
            raise ValidationError("Run ID is required for status check")
        run = await service.get_pipeline_run(body.run_id)
        return run.model_dump()

    raise ValidationError("Invalid action")
