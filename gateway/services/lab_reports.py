"""Lab report documents: upload records, processing status and history.

Processing moves a document along ``pending -> uploading -> preprocessing ->
processing -> analyzing -> extracting -> validating -> completed``. An active
document may side-step into ``retrying`` or ``paused`` and come back, and any
non-terminal document may end in ``failed`` or ``cancelled``. A failed
document only leaves ``failed`` through :meth:`LabReportService.retry`.
"""

import base64
import logging
from datetime import date
from typing import List, Optional, Tuple

from contracts.schemas.enums import ProcessingStatus
from contracts.schemas.lab_report import (
    ExtractedDataSummary,
    LabReportDocument,
    ProcessingStatusData,
    ProcessingStepError,
    UploadHistoryItem,
)
from gateway.errors import ConflictError
from gateway.pagination import FilterSet, Page, paginate
from gateway.services.base import load, load_owned, mutate, new_id, utcnow
from gateway.store import DocumentStore

logger = logging.getLogger(__name__)

LAB_REPORTS = "lab_reports"
LAB_REPORT_FILES = "lab_report_files"

P = ProcessingStatus

PIPELINE = [
    P.PENDING,
    P.UPLOADING,
    P.PREPROCESSING,
    P.PROCESSING,
    P.ANALYZING,
    P.EXTRACTING,
    P.VALIDATING,
    P.COMPLETED,
]

PROGRESS = {
    P.PENDING: 0.0,
    P.UPLOADING: 0.1,
    P.PREPROCESSING: 0.2,
    P.PROCESSING: 0.35,
    P.ANALYZING: 0.5,
    P.EXTRACTING: 0.7,
    P.VALIDATING: 0.85,
    P.COMPLETED: 1.0,
}

STEP_LABELS = {
    P.PENDING: "Queued for processing",
    P.UPLOADING: "Receiving document",
    P.PREPROCESSING: "Preparing document",
    P.PROCESSING: "Reading text",
    P.ANALYZING: "Identifying document type",
    P.EXTRACTING: "Extracting biomarkers",
    P.VALIDATING: "Generating health analysis",
    P.COMPLETED: "Completed",
    P.RETRYING: "Retrying step",
    P.PAUSED: "Paused",
    P.FAILED: "Failed",
    P.CANCELLED: "Cancelled",
}

# Rough end-to-end processing time, used for remaining-time estimates
ESTIMATED_PROCESSING_SECONDS = 30


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    if current.is_terminal:
        return current == P.FAILED and target == P.PENDING
    if target in (P.FAILED, P.CANCELLED):
        return True
    if target in (P.RETRYING, P.PAUSED):
        return current != target
    if current in (P.RETRYING, P.PAUSED):
        return target in PIPELINE[1:]
    return target in PIPELINE and PIPELINE.index(target) > PIPELINE.index(current)


def _history_item(doc: LabReportDocument) -> UploadHistoryItem:
    return UploadHistoryItem(
        id=doc.id,
        file_name=doc.file_name,
        file_size=doc.file_size,
        mime_type=doc.mime_type,
        upload_date=doc.upload_date,
        processing_status=doc.processing_status,
        document_type=doc.document_type,
        health_category=doc.health_category,
        biomarker_count=len(doc.biomarkers),
        analysis_id=doc.analysis_id,
    )


def status_view(data: dict) -> ProcessingStatusData:
    doc = LabReportDocument.model_validate(data)
    status = doc.processing_status
    summary = None
    if doc.biomarkers:
        summary = ExtractedDataSummary(
            biomarkers_found=len(doc.biomarkers),
            confidence=round(sum(b.confidence for b in doc.biomarkers) / len(doc.biomarkers), 2),
            categories=sorted({b.category.value for b in doc.biomarkers if b.category}),
        )
    remaining = None
    if status.is_active:
        remaining = int(round(ESTIMATED_PROCESSING_SECONDS * (1 - doc.progress)))
    return ProcessingStatusData(
        lab_report_id=doc.id,
        file_name=doc.file_name,
        status=status,
        progress=doc.progress,
        current_step=doc.current_step,
        attempt=doc.attempt,
        estimated_time_remaining=remaining,
        extracted_data=summary,
        errors=doc.errors,
        analysis_id=doc.analysis_id,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
        completed_at=data.get("completed_at"),
    )


class LabReportService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def create_document(self, user_id: str, file_name: str, mime_type: str, content: bytes) -> LabReportDocument:
        """Store an accepted upload and its content as a ``pending`` document."""
        now = utcnow()
        doc = LabReportDocument(
            id=new_id(),
            user_id=user_id,
            file_name=file_name,
            file_size=len(content),
            mime_type=mime_type,
            upload_date=now,
            processing_status=P.PENDING,
            progress=PROGRESS[P.PENDING],
            current_step=STEP_LABELS[P.PENDING],
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(
            LAB_REPORT_FILES,
            doc.id,
            {"user_id": user_id, "content": base64.b64encode(content).decode("ascii")},
        )
        try:
            await self.store.insert(LAB_REPORTS, doc.id, doc.model_dump(mode="json"))
        except Exception:
            await self.store.delete(LAB_REPORT_FILES, doc.id)
            raise
        logger.info(f"Lab report {doc.id} ({file_name}, {len(content)} bytes) queued for user {user_id}")
        return doc

    async def content(self, report_id: str) -> bytes:
        record = await load(self.store, LAB_REPORT_FILES, report_id, "Lab report file")
        return base64.b64decode(record.data["content"])

    async def load_document(self, report_id: str) -> LabReportDocument:
        record = await load(self.store, LAB_REPORTS, report_id, "Lab report")
        return LabReportDocument.model_validate(record.data)

    async def get_document(self, user_id: str, report_id: str) -> LabReportDocument:
        record = await load_owned(self.store, LAB_REPORTS, report_id, user_id, "Lab report")
        return LabReportDocument.model_validate(record.data)

    async def status(self, user_id: str, report_id: str) -> ProcessingStatusData:
        record = await load_owned(self.store, LAB_REPORTS, report_id, user_id, "Lab report")
        return status_view(record.data)

    async def record_transition(
        self,
        report_id: str,
        target: ProcessingStatus,
        *,
        current_step: Optional[str] = None,
        error: Optional[ProcessingStepError] = None,
        **fields,
    ) -> LabReportDocument:
        """Move a document to ``target``, rejecting moves the status machine forbids.

        Extra keyword arguments are written onto the document along with the
        new status.
        """

        def apply(doc):
            current = ProcessingStatus(doc["processing_status"])
            if not can_transition(current, target):
                raise ConflictError.invalid_transition("Lab report", current.value, target.value)
            now = utcnow()
            doc["processing_status"] = target.value
            if target in PROGRESS:
                doc["progress"] = PROGRESS[target]
            doc["current_step"] = current_step or STEP_LABELS[target]
            if error is not None:
                doc["errors"] = list(doc.get("errors", [])) + [error.model_dump()]
            doc.update(fields)
            doc["updated_at"] = now.isoformat()
            if target == P.COMPLETED:
                doc["completed_at"] = now.isoformat()
            return doc

        record = await mutate(self.store, LAB_REPORTS, report_id, apply, "Lab report")
        logger.debug(f"Lab report {report_id} -> {target.value}")
        return LabReportDocument.model_validate(record.data)

    async def retry(self, user_id: str, report_id: str) -> ProcessingStatusData:
        doc = await self.get_document(user_id, report_id)
        if doc.processing_status != P.FAILED:
            raise ConflictError.invalid_transition("Lab report", doc.processing_status.value, P.PENDING.value)
        await self.record_transition(
            report_id,
            P.PENDING,
            attempt=doc.attempt + 1,
            errors=[],
            biomarkers=[],
            analysis_id=None,
            completed_at=None,
        )
        logger.info(f"Lab report {report_id} resubmitted (attempt {doc.attempt + 1})")
        return await self.status(user_id, report_id)

    async def delete(self, user_id: str, report_id: str) -> None:
        record = await load_owned(self.store, LAB_REPORTS, report_id, user_id, "Lab report")
        await self.store.delete(LAB_REPORTS, report_id)
        await self.store.delete(LAB_REPORT_FILES, report_id)
        logger.info(f"Lab report {report_id} deleted (was {record.data['processing_status']})")

    async def documents(self, user_id: str) -> List[LabReportDocument]:
        records = await self.store.find(LAB_REPORTS, user_id=user_id)
        return sorted(
            (LabReportDocument.model_validate(r.data) for r in records),
            key=lambda d: d.upload_date,
            reverse=True,
        )

    async def history(
        self,
        user_id: str,
        status: Optional[ProcessingStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[UploadHistoryItem], Page]:
        documents = await self.documents(user_id)

        filters: FilterSet[LabReportDocument] = FilterSet()
        filters.add("status", lambda d: d.processing_status == status, active=status is not None)
        filters.add("date_from", lambda d: d.upload_date.date() >= date_from, active=date_from is not None)
        filters.add("date_to", lambda d: d.upload_date.date() <= date_to, active=date_to is not None)

        page = paginate(filters.apply(documents), offset, limit)
        return [_history_item(d) for d in page.items], page
