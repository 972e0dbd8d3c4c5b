"""Tests for lab report uploads, biomarker extraction and the processing pipeline."""

import io

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from contracts.schemas.enums import BiomarkerStatus, DocumentType, HealthCategory, ProcessingStatus
from gateway.biomarkers import (
    categorize,
    classify,
    clean_text,
    document_type,
    dominant_category,
    extract_biomarkers,
    extract_text,
    parse_line,
)
from gateway.errors import ServiceUnavailableError
from gateway.pipeline import LocalAnalysisPipeline
from gateway.services.lab_reports import LAB_REPORT_FILES, LAB_REPORTS, can_transition
from tests.conftest import API

pytestmark = pytest.mark.anyio

P = ProcessingStatus
MB = 1024 * 1024


def pdf_bytes(text: str, size: int = 0) -> bytes:
    """A real single-page PDF (compressed content stream) with one line per text line.

    When ``size`` is given the file is padded to exactly that many bytes with
    PDF comment lines after the end-of-file marker.
    """
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4, pageCompression=1)
    y = 800
    for line in text.splitlines():
        pdf.drawString(50, y, line)
        y -= 16
    pdf.save()
    content = buffer.getvalue()

    padding = size - len(content)
    if padding > 0:
        chunk = b"%" + b" " * 1022 + b"\n"
        full, rest = divmod(padding, len(chunk))
        content += chunk * full
        content += b"%" + b" " * (rest - 2) + b"\n" if rest >= 2 else b"\n" * rest
    return content


async def upload(client, headers, content, file_name="report.pdf", mime_type="application/pdf"):
    return await client.post(
        f"{API}/upload/lab-report",
        files={"file": (file_name, content, mime_type)},
        headers=headers,
    )


class TestBiomarkerParsing:
    """Test cases for line parsing and classification."""

    def test_numeric_line(self):
        biomarker = parse_line("LDL Cholesterol: 162 mg/dL (0-100)")
        assert biomarker.name == "LDL Cholesterol"
        assert biomarker.value == "162"
        assert biomarker.unit == "mg/dL"
        assert biomarker.reference_range == "0-100"
        assert biomarker.normalized_value == 162
        assert biomarker.status is BiomarkerStatus.CRITICAL
        assert biomarker.confidence == 0.95
        assert biomarker.category is HealthCategory.CARDIOVASCULAR

    def test_line_without_range(self):
        biomarker = parse_line("Vitamin D = 18 ng/mL")
        assert biomarker.status is BiomarkerStatus.UNKNOWN
        assert biomarker.confidence == 0.8
        assert biomarker.category is HealthCategory.NUTRITIONAL

    def test_qualitative_line(self):
        biomarker = parse_line("Urine Protein: TRACE")
        assert biomarker.value == "Trace"
        assert biomarker.status is BiomarkerStatus.BORDERLINE
        assert biomarker.is_numeric is False
        assert biomarker.confidence == 0.6

    @pytest.mark.parametrize(
        "line",
        [
            "Age: 42",
            "Patient ID: 1234",
            "Sample Date: 2024-11-02",
            "Doctor Name: Dr. Rao",
            "Summary of findings",
        ],
    )
    def test_non_biomarker_lines(self, line):
        assert parse_line(line) is None

    @pytest.mark.parametrize(
        "value,expected",
        [
            (150, BiomarkerStatus.OPTIMAL),
            (105, BiomarkerStatus.BORDERLINE),
            (115, BiomarkerStatus.NORMAL),
            (210, BiomarkerStatus.HIGH),
            (270, BiomarkerStatus.CRITICAL),
            (90, BiomarkerStatus.LOW),
            (60, BiomarkerStatus.CRITICAL),
        ],
    )
    def test_classify(self, value, expected):
        assert classify(value, 100, 200) is expected

    def test_classify_without_range(self):
        assert classify(5, None, None) is BiomarkerStatus.UNKNOWN
        assert classify(5, 10, 10) is BiomarkerStatus.UNKNOWN

    def test_categorize(self):
        assert categorize("HbA1c") is HealthCategory.METABOLIC
        assert categorize("Serum Creatinine") is HealthCategory.KIDNEY_FUNCTION
        assert categorize("TSH") is HealthCategory.ENDOCRINE
        assert categorize("Mystery Marker") is HealthCategory.GENERAL

    def test_extract_report(self, sample_report_text):
        biomarkers = extract_biomarkers(sample_report_text)
        assert [b.status for b in biomarkers] == [
            BiomarkerStatus.HIGH,
            BiomarkerStatus.CRITICAL,
            BiomarkerStatus.OPTIMAL,
            BiomarkerStatus.HIGH,
            BiomarkerStatus.OPTIMAL,
            BiomarkerStatus.OPTIMAL,
            BiomarkerStatus.NORMAL,
        ]
        assert dominant_category(biomarkers) is HealthCategory.CARDIOVASCULAR
        assert document_type(biomarkers) is DocumentType.LAB_REPORT

    def test_first_occurrence_wins(self):
        biomarkers = extract_biomarkers("HDL: 48 mg/dL (40-60)\nhdl: 20 mg/dL (40-60)")
        assert len(biomarkers) == 1
        assert biomarkers[0].value == "48"

    def test_single_category_document_type(self):
        biomarkers = extract_biomarkers("TSH: 2.1 mIU/L (0.4-4.0)\nFree T4: 1.2 ng/dL (0.8-1.8)")
        assert document_type(biomarkers) is DocumentType.THYROID_FUNCTION
        assert document_type([]) is DocumentType.OTHER

    def test_clean_text_drops_control_characters(self):
        assert clean_text("\x00\x01\nHDL: 48 mg/dL (40-60)\n\n") == "HDL: 48 mg/dL (40-60)"

    def test_extract_text_from_compressed_pdf(self, sample_report_text):
        content = pdf_bytes(sample_report_text)
        assert b"LDL Cholesterol" not in content

        text = extract_text(content, "application/pdf")
        assert "LDL Cholesterol: 162 mg/dL (0-100)" in text
        assert len(extract_biomarkers(text)) == 7

    def test_images_have_no_text(self):
        assert extract_text(b"\x89PNG\r\n\x1a\n", "image/png") == ""


class TestStatusMachine:
    """Test cases for lab report processing transitions."""

    def test_forward_only(self):
        assert can_transition(P.PENDING, P.UPLOADING)
        assert can_transition(P.UPLOADING, P.ANALYZING)
        assert not can_transition(P.ANALYZING, P.UPLOADING)
        assert not can_transition(P.EXTRACTING, P.EXTRACTING)

    def test_side_steps(self):
        assert can_transition(P.PROCESSING, P.RETRYING)
        assert can_transition(P.RETRYING, P.PROCESSING)
        assert can_transition(P.PAUSED, P.EXTRACTING)
        assert not can_transition(P.PAUSED, P.PAUSED)
        assert not can_transition(P.RETRYING, P.PENDING)

    def test_terminal_states(self):
        assert can_transition(P.VALIDATING, P.FAILED)
        assert can_transition(P.PENDING, P.CANCELLED)
        assert can_transition(P.FAILED, P.PENDING)
        assert not can_transition(P.COMPLETED, P.PENDING)
        assert not can_transition(P.CANCELLED, P.PENDING)
        assert not can_transition(P.FAILED, P.UPLOADING)


class TestUpload:
    """Test cases for uploading and processing one report."""

    async def test_upload_processes_report(self, client, user, sample_report_text, dispatcher):
        response = await upload(client, user["headers"], pdf_bytes(sample_report_text, 2 * MB))
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["processing_status"] == "pending"
        assert data["file_size"] == 2 * MB
        report_id = data["lab_report_id"]

        status = (await client.get(f"{API}/upload/status/{report_id}", headers=user["headers"])).json()["data"]
        assert status["status"] == "completed"
        assert status["progress"] == 1.0
        assert status["completed_at"] is not None
        assert status["estimated_time_remaining"] is None
        assert status["extracted_data"]["biomarkers_found"] == 7
        assert status["extracted_data"]["confidence"] == 0.9

        report = (await client.get(f"{API}/lab-reports/{report_id}", headers=user["headers"])).json()["data"]
        assert report["document_type"] == "lab_report"
        assert report["health_category"] == "cardiovascular"
        assert report["analysis_id"] == status["analysis_id"]

        latest = (await client.get(f"{API}/health-analysis/latest", headers=user["headers"])).json()["data"]
        assert latest["analysis_id"] == status["analysis_id"]
        assert latest["overall_health_score"] == 74
        assert latest["risk_level"] == "high"
        assert latest["lab_report_ids"] == [report_id]

        titles = [n.title for n in dispatcher.sent]
        assert "Your lab report is ready" in titles
        assert "Some results need attention" in titles

    async def test_failed_document_write_drops_the_file(self, client, user, services, monkeypatch, sample_report_text):
        insert = services.store.insert

        async def failing_insert(collection, doc_id, data):
            if collection == LAB_REPORTS:
                raise ServiceUnavailableError("Store timed out")
            return await insert(collection, doc_id, data)

        monkeypatch.setattr(services.store, "insert", failing_insert)
        response = await upload(client, user["headers"], pdf_bytes(sample_report_text))
        assert response.status_code == 503
        assert await services.store.count(LAB_REPORT_FILES) == 0

    async def test_rejected_upload(self, client, user):
        response = await upload(client, user["headers"], b"plain text", "notes.txt", "text/plain")
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "file"

    async def test_file_too_large(self, client, user):
        response = await upload(client, user["headers"], pdf_bytes("HDL: 48", 10 * MB + 1))
        assert response.status_code == 400
        assert "limit" in response.json()["error"]["details"][0]["message"]

    async def test_extension_decides_octet_stream(self, client, user, sample_report_text):
        response = await upload(
            client, user["headers"], pdf_bytes(sample_report_text), "report.pdf", "application/octet-stream"
        )
        assert response.status_code == 201

    async def test_requires_auth(self, client, sample_report_text):
        response = await client.post(
            f"{API}/upload/lab-report", files={"file": ("r.pdf", pdf_bytes(sample_report_text), "application/pdf")}
        )
        assert response.status_code == 401


class TestFailureAndRetry:
    """Test cases for failed processing and resubmission."""

    async def test_no_biomarkers_fails_at_extracting(self, client, user):
        response = await upload(client, user["headers"], pdf_bytes("Thank you for visiting our lab."))
        report_id = response.json()["data"]["lab_report_id"]

        status = (await client.get(f"{API}/upload/status/{report_id}", headers=user["headers"])).json()["data"]
        assert status["status"] == "failed"
        assert status["errors"] == [
            {"step": "extracting", "error": "No biomarkers could be extracted from this document", "recoverable": False}
        ]

    async def test_unreadable_pdf_fails_at_preprocessing(self, client, user):
        response = await upload(client, user["headers"], b"%PDF-1.4\nnot really a pdf\n")
        report_id = response.json()["data"]["lab_report_id"]

        status = (await client.get(f"{API}/upload/status/{report_id}", headers=user["headers"])).json()["data"]
        assert status["status"] == "failed"
        assert status["errors"][0]["step"] == "preprocessing"
        assert status["errors"][0]["recoverable"] is False

    async def test_image_without_text_fails(self, client, user):
        response = await upload(client, user["headers"], b"\x89PNG\r\n\x1a\n\x00\x00", "scan.png", "image/png")
        report_id = response.json()["data"]["lab_report_id"]
        status = (await client.get(f"{API}/upload/status/{report_id}", headers=user["headers"])).json()["data"]
        assert status["status"] == "failed"

    async def test_retry_increments_attempt(self, client, user):
        response = await upload(client, user["headers"], pdf_bytes("Nothing useful here."))
        report_id = response.json()["data"]["lab_report_id"]

        retried = await client.post(f"{API}/upload/{report_id}/retry", headers=user["headers"])
        assert retried.status_code == 200
        assert retried.json()["data"]["status"] == "pending"
        assert retried.json()["data"]["attempt"] == 2
        assert retried.json()["data"]["errors"] == []

        status = (await client.get(f"{API}/upload/status/{report_id}", headers=user["headers"])).json()["data"]
        assert status["status"] == "failed"
        assert status["attempt"] == 2
        assert len(status["errors"]) == 1

    async def test_retry_completed_report(self, client, user, sample_report_text):
        report_id = (await upload(client, user["headers"], pdf_bytes(sample_report_text))).json()["data"]["lab_report_id"]
        response = await client.post(f"{API}/upload/{report_id}/retry", headers=user["headers"])
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_timeout_marks_failed(self, services, user):
        pipeline = LocalAnalysisPipeline(
            services.lab_reports, services.analysis, services.notifications, timeout=0.05, step_delay=0.2
        )
        doc = await services.lab_reports.create_document(user["user"]["id"], "slow.pdf", "application/pdf", b"HDL: 48")

        await pipeline.run(doc.id)

        status = await services.lab_reports.status(user["user"]["id"], doc.id)
        assert status.status is P.FAILED
        assert status.errors[0].step == "analyzing"
        assert status.errors[0].recoverable is True

    async def test_deleted_while_queued(self, services, user):
        doc = await services.lab_reports.create_document(user["user"]["id"], "gone.pdf", "application/pdf", b"HDL: 48")
        await services.lab_reports.delete(user["user"]["id"], doc.id)

        await services.pipeline.run(doc.id)


class TestBatchUpload:
    """Test cases for batch uploads."""

    async def test_partial_batch(self, client, user, sample_report_text):
        response = await client.post(
            f"{API}/upload/lab-reports/batch",
            files=[
                ("files", ("lipids.pdf", pdf_bytes(sample_report_text), "application/pdf")),
                ("files", ("notes.txt", b"hello", "text/plain")),
            ],
            headers=user["headers"],
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["total_files"] == 2
        assert data["successful_uploads"] == 1
        assert data["status"] == "partially_completed"
        assert data["failed_uploads"][0]["file_name"] == "notes.txt"
        assert data["failed_uploads"][0]["code"] == "VALIDATION_ERROR"

    async def test_every_file_rejected(self, client, user):
        response = await client.post(
            f"{API}/upload/lab-reports/batch",
            files=[
                ("files", ("a.txt", b"hello", "text/plain")),
                ("files", ("b.pdf", b"", "application/pdf")),
            ],
            headers=user["headers"],
        )
        assert response.status_code == 400
        fields = [d["field"] for d in response.json()["error"]["details"]]
        assert fields == ["files[0]", "files[1]"]

    async def test_too_many_files(self, client, user, sample_report_text):
        files = [("files", (f"r{i}.pdf", pdf_bytes(sample_report_text), "application/pdf")) for i in range(6)]
        response = await client.post(f"{API}/upload/lab-reports/batch", files=files, headers=user["headers"])
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "files"


class TestReportsAccess:
    """Test cases for history, ownership and deletion."""

    async def test_history_filters(self, client, user, sample_report_text):
        await upload(client, user["headers"], pdf_bytes(sample_report_text))
        await upload(client, user["headers"], pdf_bytes("No results yet."))

        everything = await client.get(f"{API}/upload/history", headers=user["headers"])
        assert everything.json()["pagination"]["total"] == 2

        completed = await client.get(f"{API}/upload/history", params={"status": "completed"}, headers=user["headers"])
        items = completed.json()["data"]
        assert len(items) == 1
        assert items[0]["biomarker_count"] == 7

        far_future = await client.get(
            f"{API}/upload/history", params={"date_from": "2999-01-01"}, headers=user["headers"]
        )
        assert far_future.json()["data"] == []

    async def test_history_bad_dates(self, client, user):
        response = await client.get(
            f"{API}/upload/history",
            params={"date_from": "2025-03-01", "date_to": "2025-02-01", "limit": 100},
            headers=user["headers"],
        )
        assert response.status_code == 400
        fields = {d["field"] for d in response.json()["error"]["details"]}
        assert fields == {"limit", "date_from"}

    async def test_other_users_report(self, client, user, other_user, sample_report_text):
        report_id = (await upload(client, user["headers"], pdf_bytes(sample_report_text))).json()["data"]["lab_report_id"]
        response = await client.get(f"{API}/upload/status/{report_id}", headers=other_user["headers"])
        assert response.status_code == 403
        response = await client.delete(f"{API}/upload/{report_id}", headers=other_user["headers"])
        assert response.status_code == 403

    async def test_unknown_report(self, client, user):
        response = await client.get(f"{API}/upload/status/missing", headers=user["headers"])
        assert response.status_code == 404

    async def test_delete(self, client, user, sample_report_text):
        report_id = (await upload(client, user["headers"], pdf_bytes(sample_report_text))).json()["data"]["lab_report_id"]

        response = await client.delete(f"{API}/upload/{report_id}", headers=user["headers"])
        assert response.status_code == 200

        response = await client.get(f"{API}/upload/status/{report_id}", headers=user["headers"])
        assert response.status_code == 404
