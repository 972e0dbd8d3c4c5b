"""Health analyses generated from extracted biomarkers, and their trends.

An analysis is immutable; asking for a fresh one on a report creates a new
record, and the latest record is what the dashboard shows.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from contracts.schemas.enums import BiomarkerStatus, HealthCategory, ProcessingStatus, RiskLevel, TrendDirection
from contracts.schemas.lab_report import (
    BiomarkerTrend,
    BiomarkerTrendPoint,
    ExtractedBiomarker,
    HealthAnalysis,
    HealthTrendsData,
    LabReportDocument,
    ScorePoint,
)
from gateway.errors import NotFoundError, ProcessingError
from gateway.pagination import Page, paginate
from gateway.services.base import load_owned, new_id, utcnow
from gateway.services.lab_reports import LabReportService
from gateway.store import DocumentStore

logger = logging.getLogger(__name__)

HEALTH_ANALYSES = "health_analyses"

STATUS_WEIGHTS = {
    BiomarkerStatus.OPTIMAL: 100,
    BiomarkerStatus.NORMAL: 90,
    BiomarkerStatus.BORDERLINE: 70,
    BiomarkerStatus.LOW: 55,
    BiomarkerStatus.HIGH: 55,
    BiomarkerStatus.ABNORMAL: 45,
    BiomarkerStatus.CRITICAL: 20,
}

CONCERN_STATUSES = (BiomarkerStatus.CRITICAL, BiomarkerStatus.HIGH, BiomarkerStatus.LOW, BiomarkerStatus.ABNORMAL)

# Score change that counts as a trend rather than noise
TREND_THRESHOLD = 5

NEUTRAL_SCORE = 50
NEUTRAL_CONFIDENCE = 0.3

CATEGORY_ACTIONS = {
    HealthCategory.CARDIOVASCULAR: "Review your lipid results with a cardiologist and limit saturated fats",
    HealthCategory.METABOLIC: "Discuss blood sugar control with your doctor and cut back on refined carbohydrates",
    HealthCategory.HEMATOLOGY: "Get a follow-up complete blood count to confirm the abnormal values",
    HealthCategory.LIVER_FUNCTION: "Avoid alcohol and repeat liver function tests in 4-6 weeks",
    HealthCategory.KIDNEY_FUNCTION: "Stay well hydrated and consult a nephrologist about kidney markers",
    HealthCategory.ENDOCRINE: "Consult an endocrinologist about your hormone levels",
    HealthCategory.NUTRITIONAL: "Discuss supplementation with your doctor and review your diet",
    HealthCategory.IMMUNE: "Follow up with your doctor about inflammation markers",
}

MAX_CONCERNS = 5


def score_biomarkers(biomarkers: List[ExtractedBiomarker]) -> Tuple[int, float]:
    """Overall score and confidence; biomarkers of unknown status do not count."""
    scored = [b for b in biomarkers if b.status in STATUS_WEIGHTS]
    if not scored:
        return NEUTRAL_SCORE, NEUTRAL_CONFIDENCE
    score = round(sum(STATUS_WEIGHTS[b.status] for b in scored) / len(scored))
    confidence = round(sum(b.confidence for b in scored) / len(scored), 2)
    return score, confidence


def category_scores(biomarkers: List[ExtractedBiomarker]) -> Dict[str, int]:
    grouped: Dict[str, List[int]] = defaultdict(list)
    for biomarker in biomarkers:
        if biomarker.status in STATUS_WEIGHTS:
            category = (biomarker.category or HealthCategory.GENERAL).value
            grouped[category].append(STATUS_WEIGHTS[biomarker.status])
    return {category: round(sum(values) / len(values)) for category, values in sorted(grouped.items())}


def risk_level(score: int, biomarkers: List[ExtractedBiomarker]) -> RiskLevel:
    if score >= 80:
        risk = RiskLevel.LOW
    elif score >= 60:
        risk = RiskLevel.MODERATE
    elif score >= 40:
        risk = RiskLevel.HIGH
    else:
        risk = RiskLevel.SEVERE
    if risk in (RiskLevel.LOW, RiskLevel.MODERATE) and any(b.status == BiomarkerStatus.CRITICAL for b in biomarkers):
        risk = RiskLevel.HIGH
    return risk


def trend_between(previous: Optional[int], current: int) -> TrendDirection:
    if previous is None:
        return TrendDirection.UNKNOWN
    if current - previous >= TREND_THRESHOLD:
        return TrendDirection.IMPROVING
    if previous - current >= TREND_THRESHOLD:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


def concerns_and_actions(biomarkers: List[ExtractedBiomarker]) -> Tuple[List[str], List[str]]:
    flagged = sorted(
        (b for b in biomarkers if b.status in CONCERN_STATUSES),
        key=lambda b: STATUS_WEIGHTS[b.status],
    )
    concerns = []
    for biomarker in flagged[:MAX_CONCERNS]:
        reading = f"{biomarker.value} {biomarker.unit}".strip() if biomarker.unit else biomarker.value
        concerns.append(f"{biomarker.name} is {biomarker.status.value} ({reading})")

    actions = []
    for biomarker in flagged:
        if biomarker.status == BiomarkerStatus.CRITICAL:
            action = f"Consult a doctor promptly about your {biomarker.name} result"
        else:
            action = CATEGORY_ACTIONS.get(biomarker.category, "Discuss these results with your doctor")
        if action not in actions:
            actions.append(action)
    if not actions:
        actions.append("Keep up your current routine and repeat your checkup in 6 months")
    return concerns, actions[:MAX_CONCERNS]


class AnalysisService:
    def __init__(self, store: DocumentStore, lab_reports: LabReportService):
        self.store = store
        self.lab_reports = lab_reports

    async def _analyses(self, user_id: str) -> List[HealthAnalysis]:
        records = await self.store.find(HEALTH_ANALYSES, user_id=user_id)
        return sorted(
            (HealthAnalysis.model_validate(r.data) for r in records),
            key=lambda a: a.analysis_date,
            reverse=True,
        )

    async def create(self, user_id: str, report_ids: List[str], biomarkers: List[ExtractedBiomarker]) -> HealthAnalysis:
        previous = await self._analyses(user_id)
        score, confidence = score_biomarkers(biomarkers)
        concerns, actions = concerns_and_actions(biomarkers)
        analysis = HealthAnalysis(
            analysis_id=new_id(),
            user_id=user_id,
            lab_report_ids=report_ids,
            overall_health_score=score,
            health_trend=trend_between(previous[0].overall_health_score if previous else None, score),
            risk_level=risk_level(score, biomarkers),
            primary_concerns=concerns,
            immediate_actions=actions,
            category_scores=category_scores(biomarkers),
            biomarker_count=len(biomarkers),
            confidence=confidence,
            analysis_date=utcnow(),
        )
        await self.store.insert(HEALTH_ANALYSES, analysis.analysis_id, analysis.model_dump(mode="json"))
        logger.info(
            f"Health analysis {analysis.analysis_id} for user {user_id}: "
            f"score {score}, risk {analysis.risk_level.value}"
        )
        return analysis

    async def latest(self, user_id: str) -> HealthAnalysis:
        analyses = await self._analyses(user_id)
        if not analyses:
            raise NotFoundError("Health analysis", "latest")
        return analyses[0]

    async def latest_or_none(self, user_id: str) -> Optional[HealthAnalysis]:
        analyses = await self._analyses(user_id)
        return analyses[0] if analyses else None

    async def get(self, user_id: str, analysis_id: str) -> HealthAnalysis:
        record = await load_owned(self.store, HEALTH_ANALYSES, analysis_id, user_id, "Health analysis")
        return HealthAnalysis.model_validate(record.data)

    async def history(self, user_id: str, offset: int = 0, limit: int = 20) -> Page:
        return paginate(await self._analyses(user_id), offset, limit)

    async def request_analysis(self, user_id: str, report_id: str) -> HealthAnalysis:
        """Re-analyze a completed report into a new analysis record."""
        doc = await self.lab_reports.get_document(user_id, report_id)
        if doc.processing_status != ProcessingStatus.COMPLETED:
            raise ProcessingError(
                f"Lab report {report_id} is {doc.processing_status.value}, not completed",
                step="analyzing",
                recoverable=doc.processing_status.is_active,
            )
        return await self.create(user_id, [doc.id], doc.biomarkers)

    async def trends(self, user_id: str) -> HealthTrendsData:
        analyses = list(reversed(await self._analyses(user_id)))
        score_history = [
            ScorePoint(analysis_id=a.analysis_id, date=a.analysis_date, score=a.overall_health_score)
            for a in analyses
        ]
        overall = TrendDirection.UNKNOWN
        if len(score_history) >= 2:
            overall = trend_between(score_history[-2].score, score_history[-1].score)

        documents: List[LabReportDocument] = [
            d for d in await self.lab_reports.documents(user_id) if d.processing_status == ProcessingStatus.COMPLETED
        ]
        series: Dict[str, List[BiomarkerTrendPoint]] = defaultdict(list)
        names: Dict[str, str] = {}
        for doc in sorted(documents, key=lambda d: d.upload_date):
            for biomarker in doc.biomarkers:
                if not biomarker.is_numeric or biomarker.normalized_value is None:
                    continue
                key = biomarker.name.lower()
                names.setdefault(key, biomarker.name)
                series[key].append(
                    BiomarkerTrendPoint(
                        date=doc.upload_date,
                        value=biomarker.normalized_value,
                        unit=biomarker.unit,
                        status=biomarker.status,
                        lab_report_id=doc.id,
                    )
                )

        biomarkers = []
        for key in sorted(series):
            points = series[key]
            direction = TrendDirection.UNKNOWN
            if len(points) >= 2:
                before = STATUS_WEIGHTS.get(points[-2].status)
                after = STATUS_WEIGHTS.get(points[-1].status)
                if before is not None and after is not None:
                    if after > before:
                        direction = TrendDirection.IMPROVING
                    elif after < before:
                        direction = TrendDirection.DECLINING
                    else:
                        direction = TrendDirection.STABLE
            biomarkers.append(BiomarkerTrend(name=names[key], direction=direction, points=points))

        return HealthTrendsData(overall_trend=overall, score_history=score_history, biomarkers=biomarkers)
