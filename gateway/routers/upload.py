"""Lab report upload and processing status router."""
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, File, UploadFile

from contracts.schemas.enums import ProcessingStatus
from contracts.schemas.envelope import MessageData
from contracts.schemas.lab_report import BatchUploadData, UploadData, UploadFailure
from gateway.dependencies import CurrentUserDep, ServicesDep
from gateway.errors import ServiceUnavailableError, ValidationError
from gateway.responses import created, ok
from gateway.services import Services
from gateway.services.lab_reports import ESTIMATED_PROCESSING_SECONDS
from gateway.validation import (
    FieldErrors,
    check_batch_size,
    check_page,
    parse_date,
    resolve_mime_type,
    upload_problems,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Lab Reports"])

HISTORY_DEFAULT_LIMIT = 20
HISTORY_MAX_LIMIT = 50


async def read_upload(file: UploadFile, services: Services) -> bytes:
    """Read at most one byte past the size limit, bounded by the upload timeout."""
    settings = services.settings
    try:
        return await asyncio.wait_for(file.read(settings.MAX_UPLOAD_BYTES + 1), timeout=settings.UPLOAD_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        raise ServiceUnavailableError(f"Reading {file.filename} timed out")


async def accept_upload(
    file: UploadFile, user_id: str, services: Services, background_tasks: BackgroundTasks
) -> UploadData:
    """Validate, store and queue one file; raise ``ValidationError`` if rejected."""
    content = await read_upload(file, services)
    file_name = file.filename or ""
    mime_type = resolve_mime_type(file_name, file.content_type)
    problems = upload_problems(file_name, mime_type, len(content), services.settings.MAX_UPLOAD_BYTES)
    if problems:
        raise ValidationError(problems, message=f"Upload of {file_name or 'file'} rejected")

    doc = await services.lab_reports.create_document(user_id, file_name, mime_type, content)
    background_tasks.add_task(services.pipeline.run, doc.id)
    return UploadData(
        lab_report_id=doc.id,
        file_name=doc.file_name,
        file_size=doc.file_size,
        processing_status=doc.processing_status,
        estimated_processing_time=ESTIMATED_PROCESSING_SECONDS,
    )


@router.post("/upload/lab-report")
async def upload_lab_report(
    background_tasks: BackgroundTasks,
    current: CurrentUserDep,
    services: ServicesDep,
    file: UploadFile = File(...),
):
    """
    Upload a lab report (PDF, JPEG, PNG or HEIC, up to 10 MB).

    Processing continues in the background; poll ``/upload/status/{id}``.
    """
    upload = await accept_upload(file, current.user_id, services, background_tasks)
    return created(upload, message="Upload received")


@router.post("/upload/lab-reports/batch")
async def upload_lab_reports_batch(
    background_tasks: BackgroundTasks,
    current: CurrentUserDep,
    services: ServicesDep,
    files: List[UploadFile] = File(...),
):
    """Upload up to five reports; each file is accepted or rejected on its own."""
    check_batch_size(len(files), services.settings.MAX_BATCH_FILES)

    uploaded: List[UploadData] = []
    failed: List[UploadFailure] = []
    for file in files:
        try:
            uploaded.append(await accept_upload(file, current.user_id, services, background_tasks))
        except ValidationError as e:
            failed.append(
                UploadFailure(
                    file_name=file.filename or "",
                    error="; ".join(d.message for d in e.details),
                    code=e.code,
                )
            )

    if not uploaded:
        errors = FieldErrors()
        for index, failure in enumerate(failed):
            errors.add(f"files[{index}]", failure.error, failure.file_name)
        errors.raise_if_any()

    batch = BatchUploadData(
        uploaded_files=uploaded,
        total_files=len(files),
        successful_uploads=len(uploaded),
        failed_uploads=failed,
        status="partially_completed" if failed else "processing",
    )
    return created(batch, message=f"{len(uploaded)} of {len(files)} files accepted")


@router.get("/upload/status/{lab_report_id}")
async def get_processing_status(lab_report_id: str, current: CurrentUserDep, services: ServicesDep):
    return ok(await services.lab_reports.status(current.user_id, lab_report_id))


@router.get("/upload/history")
async def get_upload_history(
    current: CurrentUserDep,
    services: ServicesDep,
    status: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT)
    start = parse_date(errors, "date_from", date_from)
    end = parse_date(errors, "date_to", date_to)
    if start and end and start > end:
        errors.add("date_from", "Must be on or before date_to", date_from)
    errors.raise_if_any()

    items, page = await services.lab_reports.history(
        current.user_id,
        status=ProcessingStatus(status) if status else None,
        date_from=start,
        date_to=end,
        offset=offset,
        limit=limit,
    )
    return ok(items, pagination=page.meta())


@router.post("/upload/{lab_report_id}/retry")
async def retry_processing(
    lab_report_id: str, background_tasks: BackgroundTasks, current: CurrentUserDep, services: ServicesDep
):
    """Resubmit a failed document; its attempt counter goes up by one."""
    status = await services.lab_reports.retry(current.user_id, lab_report_id)
    background_tasks.add_task(services.pipeline.run, lab_report_id)
    return ok(status, message="Processing restarted")


@router.delete("/upload/{lab_report_id}")
async def delete_lab_report(lab_report_id: str, current: CurrentUserDep, services: ServicesDep):
    await services.lab_reports.delete(current.user_id, lab_report_id)
    return ok(MessageData(message="Lab report deleted"))


@router.get("/lab-reports/{lab_report_id}")
async def get_lab_report(lab_report_id: str, current: CurrentUserDep, services: ServicesDep):
    """Document detail including extracted biomarkers."""
    return ok(await services.lab_reports.get_document(current.user_id, lab_report_id))
