"""Biomarker extraction from report text and status classification.

Report lines of the form ``Name: value unit (low-high)`` are recognized, for
example ``LDL Cholesterol: 162 mg/dL (0-100)`` or ``Urine Glucose: Negative``.
"""

import io
import re
from collections import Counter
from typing import List, Optional, Tuple

import pdfplumber

from contracts.schemas.enums import BiomarkerStatus, DocumentType, ExtractionMethod, HealthCategory
from contracts.schemas.lab_report import ExtractedBiomarker
from gateway.services.base import new_id

QUALITATIVE_VALUES = {
    "negative": BiomarkerStatus.NORMAL,
    "non-reactive": BiomarkerStatus.NORMAL,
    "nonreactive": BiomarkerStatus.NORMAL,
    "absent": BiomarkerStatus.NORMAL,
    "nil": BiomarkerStatus.NORMAL,
    "normal": BiomarkerStatus.NORMAL,
    "trace": BiomarkerStatus.BORDERLINE,
    "positive": BiomarkerStatus.ABNORMAL,
    "reactive": BiomarkerStatus.ABNORMAL,
    "present": BiomarkerStatus.ABNORMAL,
}

LINE_PATTERN = re.compile(
    r"^\s*(?P<name>[A-Za-z][A-Za-z0-9 ,/%\-\.]*?)\s*[:=]\s*"
    r"(?P<value>[<>]?\s*-?\d+(?:\.\d+)?|" + "|".join(re.escape(v) for v in QUALITATIVE_VALUES) + r")"
    r"(?:\s*(?P<unit>[A-Za-z%µμ/][^\s()]*))?"
    r"(?:\s*\(\s*(?P<low>-?\d+(?:\.\d+)?)\s*-\s*(?P<high>-?\d+(?:\.\d+)?)\s*\))?"
    r"\s*$",
    re.IGNORECASE,
)

# Labels that look like measurements but describe the patient or the report
NON_BIOMARKER_LABELS = {"age", "sex", "gender", "name", "date", "phone", "id", "page", "ref", "lab no"}
NON_BIOMARKER_PREFIXES = ("patient", "report", "sample", "collected", "received", "doctor", "referred")

CATEGORY_KEYWORDS: List[Tuple[HealthCategory, Tuple[str, ...]]] = [
    (HealthCategory.CARDIOVASCULAR, ("cholesterol", "ldl", "hdl", "triglyceride", "vldl", "troponin", "crp")),
    (HealthCategory.METABOLIC, ("glucose", "hba1c", "insulin", "sugar")),
    (HealthCategory.HEMATOLOGY, ("hemoglobin", "haemoglobin", "wbc", "rbc", "platelet", "hematocrit", "mcv", "mch")),
    (HealthCategory.LIVER_FUNCTION, ("alt", "ast", "sgpt", "sgot", "bilirubin", "albumin", "alkaline")),
    (HealthCategory.KIDNEY_FUNCTION, ("creatinine", "urea", "bun", "egfr", "uric")),
    (HealthCategory.ENDOCRINE, ("tsh", "t3", "t4", "thyroid", "cortisol", "testosterone")),
    (HealthCategory.NUTRITIONAL, ("vitamin", "iron", "ferritin", "b12", "folate", "calcium")),
    (HealthCategory.IMMUNE, ("esr", "antibody", "ige")),
]

DOCUMENT_TYPES = {
    HealthCategory.CARDIOVASCULAR: DocumentType.LIPID_PANEL,
    HealthCategory.METABOLIC: DocumentType.DIABETES_SCREENING,
    HealthCategory.HEMATOLOGY: DocumentType.BLOOD_WORK,
    HealthCategory.LIVER_FUNCTION: DocumentType.LIVER_FUNCTION,
    HealthCategory.KIDNEY_FUNCTION: DocumentType.KIDNEY_FUNCTION,
    HealthCategory.ENDOCRINE: DocumentType.THYROID_FUNCTION,
    HealthCategory.NUTRITIONAL: DocumentType.VITAMIN_DEFICIENCY,
    HealthCategory.IMMUNE: DocumentType.INFLAMMATORY_MARKERS,
}

# Outside the range by more than this fraction of the bound counts as critical
CRITICAL_MARGIN = 0.3


def categorize(name: str) -> HealthCategory:
    words = set(re.split(r"[^a-z0-9]+", name.lower()))
    lowered = name.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        for keyword in keywords:
            if keyword in words or (len(keyword) > 3 and keyword in lowered):
                return category
    return HealthCategory.GENERAL


def classify(value: Optional[float], low: Optional[float], high: Optional[float]) -> BiomarkerStatus:
    """Status of a numeric value against its reference range.

    In range: optimal in the middle half, borderline within the outer tenth on
    either side, normal otherwise. Out of range: low/high, or critical when
    beyond the bound by more than ``CRITICAL_MARGIN``.
    """
    if value is None or low is None or high is None or high <= low:
        return BiomarkerStatus.UNKNOWN
    if value < low:
        return BiomarkerStatus.CRITICAL if value < low * (1 - CRITICAL_MARGIN) else BiomarkerStatus.LOW
    if value > high:
        return BiomarkerStatus.CRITICAL if value > high * (1 + CRITICAL_MARGIN) else BiomarkerStatus.HIGH
    position = (value - low) / (high - low)
    if 0.25 <= position <= 0.75:
        return BiomarkerStatus.OPTIMAL
    if position < 0.1 or position > 0.9:
        return BiomarkerStatus.BORDERLINE
    return BiomarkerStatus.NORMAL


def _is_label(name: str) -> bool:
    lowered = name.strip().lower()
    return lowered in NON_BIOMARKER_LABELS or lowered.startswith(NON_BIOMARKER_PREFIXES)


def parse_line(line: str) -> Optional[ExtractedBiomarker]:
    match = LINE_PATTERN.match(line)
    if match is None or _is_label(match.group("name")):
        return None

    name = " ".join(match.group("name").split()).rstrip(" .,-")
    raw_value = match.group("value").replace(" ", "")
    unit = match.group("unit")
    low, high = match.group("low"), match.group("high")
    reference_range = f"{low}-{high}" if low is not None else None

    qualitative = QUALITATIVE_VALUES.get(raw_value.lower())
    if qualitative is not None:
        return ExtractedBiomarker(
            id=new_id(),
            name=name,
            value=raw_value.capitalize(),
            unit=unit,
            reference_range=reference_range,
            status=qualitative,
            confidence=0.6,
            extraction_method=ExtractionMethod.REGEX,
            category=categorize(name),
            is_numeric=False,
        )

    number = float(raw_value.lstrip("<>"))
    status = classify(number, float(low) if low is not None else None, float(high) if high is not None else None)
    return ExtractedBiomarker(
        id=new_id(),
        name=name,
        value=raw_value,
        unit=unit,
        reference_range=reference_range,
        status=status,
        confidence=0.95 if reference_range else 0.8,
        extraction_method=ExtractionMethod.REGEX,
        category=categorize(name),
        normalized_value=number,
        is_numeric=True,
    )


def extract_biomarkers(text: str) -> List[ExtractedBiomarker]:
    """Every recognizable biomarker line in ``text``; the first occurrence of a name wins."""
    found: List[ExtractedBiomarker] = []
    seen = set()
    for line in text.splitlines():
        biomarker = parse_line(line)
        if biomarker is None or biomarker.name.lower() in seen:
            continue
        seen.add(biomarker.name.lower())
        found.append(biomarker)
    return found


def extract_text(content: bytes, mime_type: str) -> str:
    """Text of an uploaded document, page by page.

    PDFs are read with pdfplumber. Images carry no text layer and yield an
    empty string. Raises pdfplumber's ``PdfminerException`` (or a pdfminer
    ``PSException``) when the bytes are not a readable PDF.
    """
    if mime_type != "application/pdf":
        return ""
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return clean_text("\n".join(pages))


def clean_text(text: str) -> str:
    """Drop blank lines and non-printable characters."""
    lines = []
    for line in text.splitlines():
        printable = "".join(ch for ch in line if ch.isprintable())
        if printable.strip():
            lines.append(printable)
    return "\n".join(lines)


def dominant_category(biomarkers: List[ExtractedBiomarker]) -> HealthCategory:
    counts = Counter(b.category for b in biomarkers if b.category and b.category != HealthCategory.GENERAL)
    if not counts:
        return HealthCategory.GENERAL
    return counts.most_common(1)[0][0]


def document_type(biomarkers: List[ExtractedBiomarker]) -> DocumentType:
    categories = {b.category for b in biomarkers} - {HealthCategory.GENERAL, None}
    if len(categories) > 1:
        return DocumentType.LAB_REPORT
    if not categories:
        return DocumentType.OTHER
    return DOCUMENT_TYPES.get(categories.pop(), DocumentType.LAB_REPORT)
