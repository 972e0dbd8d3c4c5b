"""Lab report upload, processing and health analysis schemas."""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from contracts.schemas.enums import (
    BiomarkerStatus,
    DocumentType,
    ExtractionMethod,
    HealthCategory,
    ProcessingStatus,
    RiskLevel,
    TrendDirection,
)


class ExtractedBiomarker(BaseModel):
    id: str
    name: str
    value: str
    unit: Optional[str] = None
    reference_range: Optional[str] = None
    status: BiomarkerStatus = BiomarkerStatus.UNKNOWN
    confidence: float = Field(ge=0, le=1)
    extraction_method: ExtractionMethod = ExtractionMethod.BACKEND_API
    category: Optional[HealthCategory] = None
    normalized_value: Optional[float] = None
    is_numeric: bool = False
    notes: Optional[str] = None


class ProcessingStepError(BaseModel):
    step: str
    error: str
    recoverable: bool


class LabReportDocument(BaseModel):
    id: str
    user_id: str
    file_name: str
    file_size: int = Field(ge=0)
    mime_type: str
    upload_date: datetime
    processing_status: ProcessingStatus
    progress: float = Field(0.0, ge=0, le=1)
    current_step: Optional[str] = None
    attempt: int = 1
    document_type: Optional[DocumentType] = None
    health_category: Optional[HealthCategory] = None
    extracted_text: Optional[str] = None
    ocr_confidence: Optional[float] = Field(None, ge=0, le=1)
    errors: List[ProcessingStepError] = Field(default_factory=list)
    biomarkers: List[ExtractedBiomarker] = Field(default_factory=list)
    analysis_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UploadData(BaseModel):
    lab_report_id: str
    file_name: str
    file_size: int
    processing_status: ProcessingStatus
    estimated_processing_time: Optional[int] = Field(None, description="Seconds")


class UploadFailure(BaseModel):
    file_name: str
    error: str
    code: str


class BatchUploadData(BaseModel):
    uploaded_files: List[UploadData]
    total_files: int
    successful_uploads: int
    failed_uploads: List[UploadFailure]
    status: Literal["processing", "partially_completed", "failed"]


class ExtractedDataSummary(BaseModel):
    biomarkers_found: int
    confidence: float
    categories: List[str]


class ProcessingStatusData(BaseModel):
    lab_report_id: str
    file_name: str
    status: ProcessingStatus
    progress: float = Field(ge=0, le=1)
    current_step: Optional[str] = None
    attempt: int = 1
    estimated_time_remaining: Optional[int] = None
    extracted_data: Optional[ExtractedDataSummary] = None
    errors: List[ProcessingStepError] = Field(default_factory=list)
    analysis_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class UploadHistoryItem(BaseModel):
    id: str
    file_name: str
    file_size: int
    mime_type: str
    upload_date: datetime
    processing_status: ProcessingStatus
    document_type: Optional[DocumentType] = None
    health_category: Optional[HealthCategory] = None
    biomarker_count: int = 0
    analysis_id: Optional[str] = None


class HealthAnalysis(BaseModel):
    analysis_id: str
    user_id: str
    lab_report_ids: List[str]
    overall_health_score: int = Field(ge=0, le=100)
    health_trend: TrendDirection
    risk_level: RiskLevel
    primary_concerns: List[str] = Field(default_factory=list)
    immediate_actions: List[str] = Field(default_factory=list)
    category_scores: Dict[str, int] = Field(default_factory=dict)
    biomarker_count: int = 0
    confidence: float = Field(ge=0, le=1)
    analysis_date: datetime


class AnalysisRequest(BaseModel):
    lab_report_id: str


class BiomarkerTrendPoint(BaseModel):
    date: datetime
    value: float
    unit: Optional[str] = None
    status: BiomarkerStatus
    lab_report_id: str


class BiomarkerTrend(BaseModel):
    name: str
    direction: TrendDirection
    points: List[BiomarkerTrendPoint]


class ScorePoint(BaseModel):
    analysis_id: str
    date: datetime
    score: int


class HealthTrendsData(BaseModel):
    overall_trend: TrendDirection
    score_history: List[ScorePoint]
    biomarkers: List[BiomarkerTrend]


class DashboardUser(BaseModel):
    name: str
    email: str


class HealthScoreData(BaseModel):
    overall: int
    trend: TrendDirection
    status: str
    last_calculated: Optional[datetime] = None
    category_breakdown: Dict[str, int] = Field(default_factory=dict)


class GreetingData(BaseModel):
    time_based_greeting: str
    personalized_message: str


class QuickStatsData(BaseModel):
    recent_tests: int
    recommendations: int
    health_alerts: int
    upcoming_appointments: int


class HealthAlert(BaseModel):
    id: str
    type: Literal["abnormal_result", "trend_change", "appointment", "recommendation"]
    severity: Literal["info", "warning", "critical"]
    title: str
    message: str
    created_at: datetime


class DashboardOverviewData(BaseModel):
    user: DashboardUser
    health_score: HealthScoreData
    greeting: GreetingData
    stats: QuickStatsData
    alerts: List[HealthAlert]
    last_updated: datetime
