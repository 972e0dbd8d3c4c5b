"""Lab report analysis pipeline.

Runs after an upload is accepted, as a FastAPI background task. Each step
records its status transition so clients polling ``/upload/status/{id}`` see
progress; a failure at any step leaves the document ``failed`` with a
per-step error that says whether a retry may help.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from pdfminer.psparser import PSException
from pdfplumber.utils.exceptions import PdfminerException

from contracts.schemas.enums import (
    NotificationActionType,
    NotificationCategory,
    NotificationPriority,
    ProcessingStatus,
    RiskLevel,
)
from contracts.schemas.lab_report import HealthAnalysis, LabReportDocument, ProcessingStepError
from contracts.schemas.notification import NotificationMetadata
from gateway.biomarkers import document_type, dominant_category, extract_biomarkers, extract_text
from gateway.errors import ConflictError, NotFoundError, ProcessingError
from gateway.services.analysis import AnalysisService
from gateway.services.lab_reports import LabReportService
from gateway.services.notifications import NotificationService

logger = logging.getLogger(__name__)

P = ProcessingStatus

# Stored extracted text is cut to this many characters
EXTRACTED_TEXT_LIMIT = 20000


class AnalysisPipeline(ABC):
    """Turns an accepted upload into biomarkers and a health analysis."""

    @abstractmethod
    async def run(self, report_id: str) -> None:
        ...


class LocalAnalysisPipeline(AnalysisPipeline):
    """In-process pipeline: text decoding and line-pattern biomarker extraction."""

    def __init__(
        self,
        lab_reports: LabReportService,
        analysis: AnalysisService,
        notifications: NotificationService,
        timeout: float = 300,
        step_delay: float = 0,
    ):
        self.lab_reports = lab_reports
        self.analysis = analysis
        self.notifications = notifications
        self.timeout = timeout
        self.step_delay = step_delay

    async def run(self, report_id: str) -> None:
        try:
            await asyncio.wait_for(self._process(report_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Lab report {report_id} timed out after {self.timeout}s")
            await self._fail(report_id, "analyzing", f"Processing timed out after {int(self.timeout)} seconds", True)
        except ProcessingError as e:
            logger.info(f"Lab report {report_id} failed at {e.step}: {e.message}")
            await self._fail(report_id, e.step, e.message, e.recoverable)
        except (NotFoundError, ConflictError) as e:
            # Deleted or cancelled while processing
            logger.info(f"Lab report {report_id} processing stopped: {e.message}")
        except Exception as e:
            logger.error(f"Lab report {report_id} processing crashed: {e}", exc_info=True)
            await self._fail(report_id, "processing", "Unexpected processing error", True)

    async def _step(self, report_id: str, status: ProcessingStatus, **fields) -> LabReportDocument:
        doc = await self.lab_reports.record_transition(report_id, status, **fields)
        if self.step_delay:
            await asyncio.sleep(self.step_delay)
        return doc

    async def _fail(self, report_id: str, step: str, message: str, recoverable: bool) -> None:
        try:
            await self.lab_reports.record_transition(
                report_id,
                P.FAILED,
                error=ProcessingStepError(step=step, error=message, recoverable=recoverable),
            )
        except (NotFoundError, ConflictError) as e:
            logger.info(f"Lab report {report_id} could not be marked failed: {e.message}")

    async def _process(self, report_id: str) -> None:
        doc = await self._step(report_id, P.UPLOADING)
        content = await self.lab_reports.content(report_id)
        if not content:
            raise ProcessingError("Uploaded file is empty", step="uploading", recoverable=False)

        await self._step(report_id, P.PREPROCESSING)
        try:
            text = await asyncio.to_thread(extract_text, content, doc.mime_type)
        except (PdfminerException, PSException) as e:
            raise ProcessingError(
                f"Document could not be read: {e}", step="preprocessing", recoverable=False
            ) from e

        await self._step(report_id, P.PROCESSING, extracted_text=text[:EXTRACTED_TEXT_LIMIT])
        biomarkers = extract_biomarkers(text)

        await self._step(
            report_id,
            P.ANALYZING,
            document_type=document_type(biomarkers).value,
            health_category=dominant_category(biomarkers).value,
        )

        await self._step(report_id, P.EXTRACTING)
        if not biomarkers:
            raise ProcessingError(
                "No biomarkers could be extracted from this document",
                step="extracting",
                recoverable=False,
            )

        await self._step(
            report_id,
            P.VALIDATING,
            biomarkers=[b.model_dump(mode="json") for b in biomarkers],
            ocr_confidence=round(sum(b.confidence for b in biomarkers) / len(biomarkers), 2),
        )
        analysis = await self.analysis.create(doc.user_id, [report_id], biomarkers)

        doc = await self._step(report_id, P.COMPLETED, analysis_id=analysis.analysis_id)
        logger.info(f"Lab report {report_id} completed with {len(biomarkers)} biomarkers")
        await self._notify(doc, analysis)

    async def _notify(self, doc: LabReportDocument, analysis: HealthAnalysis) -> None:
        metadata = NotificationMetadata(
            report_id=doc.id,
            analysis_id=analysis.analysis_id,
            deep_link_path=f"/lab-reports/{doc.id}",
        )
        await self.notifications.create(
            doc.user_id,
            title="Your lab report is ready",
            message=(
                f"We found {analysis.biomarker_count} biomarkers in {doc.file_name}. "
                f"Your health score is {analysis.overall_health_score}."
            ),
            category=NotificationCategory.LAB_REPORT,
            action_type=NotificationActionType.VIEW_REPORT,
            metadata=metadata,
        )
        if analysis.risk_level in (RiskLevel.HIGH, RiskLevel.SEVERE):
            await self.notifications.create(
                doc.user_id,
                title="Some results need attention",
                message="; ".join(analysis.primary_concerns) or "Review your latest analysis.",
                category=NotificationCategory.ALERT,
                priority=NotificationPriority.URGENT if analysis.risk_level == RiskLevel.SEVERE else NotificationPriority.HIGH,
                action_type=NotificationActionType.VIEW_INSIGHT,
                metadata=metadata,
            )
