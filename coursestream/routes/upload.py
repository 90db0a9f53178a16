# coursestream/routes/upload.py
import json
import logging
import os
from typing import Optional

import aiofiles
from fastapi import APIRouter, Depends, File, Form, UploadFile
from starlette.concurrency import run_in_threadpool

from .. import utils
from ..errors import TooManyActiveJobsError, ValidationError
from ..probe import UploadInfo
from ..schemas import JobCreateResponse
from ..services import Services
from .dependencies import get_services, uploader_required

logger = logging.getLogger(__name__)

router = APIRouter()

CHUNK_SIZE = 1024 * 1024


def _parse_options(options: Optional[str]):
    if not options:
        return None
    try:
        parsed = json.loads(options)
    except ValueError:
        raise ValidationError(["options must be a JSON object"], message="Invalid processing options")
    if not isinstance(parsed, dict):
        raise ValidationError(["options must be a JSON object"], message="Invalid processing options")
    return parsed


@router.post("/upload", response_model=JobCreateResponse, status_code=202)
async def upload_video(file: UploadFile = File(...),
                       course_id: Optional[str] = Form(None),
                       options: Optional[str] = Form(None),
                       user: dict = Depends(uploader_required),
                       services: Services = Depends(get_services)):
    """Store the upload and queue it for processing"""
    settings = services.settings
    orchestrator = services.orchestrator
    raw_options = _parse_options(options)

    # soft per-user cap, two racing submissions may both pass
    active = orchestrator.active_job_count(user["username"])
    if active >= settings.max_active_jobs_per_user:
        raise TooManyActiveJobsError(active, settings.max_active_jobs_per_user)

    save_path = utils.video_save_path(settings.uploads_dir, utils.make_job_id(), file.filename)
    size = 0
    try:
        async with aiofiles.open(save_path, "wb") as out:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.max_file_size:
                    break
                await out.write(chunk)
    except OSError:
        utils.remove_path(save_path)
        raise

    upload = UploadInfo(filename=file.filename or os.path.basename(save_path),
                        content_type=file.content_type, size=size)
    # probing runs ffprobe, keep it off the event loop
    job = await run_in_threadpool(orchestrator.submit, upload, save_path, user["username"],
                                  course_id, raw_options)
    return JobCreateResponse(
        job_id=job.job_id,
        status=job.status.value,
        progress=job.progress,
        estimated_duration=job.estimated_duration,
        qualities=job.qualities,
    )
