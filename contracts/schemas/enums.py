"""Wire-format enumerations.

Every enum here is decode-tolerant: an unrecognized value never raises while
decoding. Lookup order is exact value, then a case/separator-insensitive
match, then the per-enum alias table, then the enum's fallback member. Each
fallback is logged and counted so that contract drift shows up in the logs
and on the readiness endpoint instead of as a failed request.
"""

import logging
import re
import threading
from collections import Counter
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_FALLBACKS: Dict[type, str] = {}
_ALIASES: Dict[type, Dict[str, str]] = {}

_fallback_events: Counter = Counter()
_fallback_lock = threading.Lock()


def _normalize_key(value: str) -> str:
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def tolerant(fallback: str, aliases: Optional[Dict[str, str]] = None):
    """Register the fallback value and aliases of a ``TolerantEnum``."""

    def decorate(cls):
        if fallback not in cls._value2member_map_:
            raise TypeError(f"{cls.__name__}: fallback {fallback!r} is not a member value")
        _FALLBACKS[cls] = fallback
        _ALIASES[cls] = {_normalize_key(k): v for k, v in (aliases or {}).items()}
        return cls

    return decorate


def fallback_events() -> Dict[str, int]:
    """Snapshot of decode fallbacks, keyed by ``Enum:value``."""
    with _fallback_lock:
        return dict(_fallback_events)


def reset_fallback_events() -> None:
    with _fallback_lock:
        _fallback_events.clear()


class TolerantEnum(str, Enum):
    """String enum that maps unknown wire values to a documented fallback."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = _normalize_key(value)
            member = cls._value2member_map_.get(key)
            if member is not None:
                return member
            alias = _ALIASES.get(cls, {}).get(key)
            if alias is not None:
                return cls._value2member_map_[alias]

        fallback = _FALLBACKS.get(cls)
        if fallback is None:
            return None

        with _fallback_lock:
            _fallback_events[f"{cls.__name__}:{value}"] += 1
        logger.warning(f"Unknown {cls.__name__} value {value!r}, using {fallback!r}")
        return cls._value2member_map_[fallback]

    @classmethod
    def fallback(cls) -> "TolerantEnum":
        return cls._value2member_map_[_FALLBACKS[cls]]

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


# ==================== Lab reports & biomarkers ====================


@tolerant("unknown", aliases={"in_range": "normal", "elevated": "high", "decreased": "low"})
class BiomarkerStatus(TolerantEnum):
    OPTIMAL = "optimal"
    NORMAL = "normal"
    BORDERLINE = "borderline"
    ABNORMAL = "abnormal"
    HIGH = "high"
    LOW = "low"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


@tolerant("pending", aliases={"queued": "pending", "ocr": "processing", "done": "completed"})
class ProcessingStatus(TolerantEnum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PREPROCESSING = "preprocessing"
    PROCESSING = "processing"
    ANALYZING = "analyzing"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    RETRYING = "retrying"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self not in (
            ProcessingStatus.PAUSED,
            ProcessingStatus.COMPLETED,
            ProcessingStatus.FAILED,
            ProcessingStatus.CANCELLED,
        )

    @property
    def is_terminal(self) -> bool:
        return self in (
            ProcessingStatus.COMPLETED,
            ProcessingStatus.FAILED,
            ProcessingStatus.CANCELLED,
        )


@tolerant("other", aliases={"lab": "lab_report", "blood_test": "blood_work", "bloodwork": "blood_work"})
class DocumentType(TolerantEnum):
    LAB_REPORT = "lab_report"
    BLOOD_WORK = "blood_work"
    LIPID_PANEL = "lipid_panel"
    METABOLIC_PANEL = "metabolic_panel"
    VITAMIN_DEFICIENCY = "vitamin_deficiency"
    THYROID_FUNCTION = "thyroid_function"
    LIVER_FUNCTION = "liver_function"
    KIDNEY_FUNCTION = "kidney_function"
    DIABETES_SCREENING = "diabetes_screening"
    CARDIAC_MARKERS = "cardiac_markers"
    INFLAMMATORY_MARKERS = "inflammatory_markers"
    HORMONAL_PANEL = "hormonal_panel"
    IMMUNOLOGY = "immunology"
    OTHER = "other"


@tolerant(
    "general",
    aliases={
        "cardiology": "cardiovascular",
        "cardiac": "cardiovascular",
        "heart": "cardiovascular",
        "liver": "liver_function",
        "kidney": "kidney_function",
        "renal": "kidney_function",
        "thyroid": "endocrine",
        "hormonal": "endocrine",
        "blood": "hematology",
    },
)
class HealthCategory(TolerantEnum):
    GENERAL = "general"
    CARDIOVASCULAR = "cardiovascular"
    METABOLIC = "metabolic"
    HEMATOLOGY = "hematology"
    LIVER_FUNCTION = "liver_function"
    KIDNEY_FUNCTION = "kidney_function"
    HEPATIC_RENAL = "hepatic_renal"
    NUTRITIONAL = "nutritional"
    IMMUNE = "immune"
    IMMUNE_SYSTEM = "immune_system"
    ENDOCRINE = "endocrine"
    CANCER_SCREENING = "cancer_screening"
    REPRODUCTIVE_HEALTH = "reproductive_health"
    MENTAL_HEALTH = "mental_health"
    RESPIRATORY = "respiratory"
    GENETIC_MARKERS = "genetic_markers"


@tolerant("backend_api", aliases={"ocr": "backend_api", "textract": "aws_textract", "manual": "manual_entry"})
class ExtractionMethod(TolerantEnum):
    VISION_FRAMEWORK = "vision_framework"
    AWS_TEXTRACT = "aws_textract"
    BACKEND_API = "backend_api"
    MANUAL_ENTRY = "manual_entry"
    HYBRID = "hybrid"
    AI_PATTERN_MATCHING = "ai_pattern_matching"
    REGEX = "regex"


@tolerant("unknown", aliases={"improved": "improving", "worsening": "declining", "steady": "stable"})
class TrendDirection(TolerantEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    UNKNOWN = "unknown"


@tolerant("moderate", aliases={"medium": "moderate", "critical": "severe", "very_high": "severe"})
class RiskLevel(TolerantEnum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    SEVERE = "severe"


# ==================== Catalog ====================


@tolerant(
    "other",
    aliases={
        "cardiovascular": "cardiology",
        "cardiac": "cardiology",
        "heart": "cardiology",
        "blood": "blood_test",
        "blood_work": "blood_test",
        "women": "women_health",
        "womens_health": "women_health",
        "cancer": "cancer_screening",
    },
)
class TestCategory(TolerantEnum):
    __test__ = False

    BLOOD_TEST = "blood_test"
    IMAGING = "imaging"
    CARDIOLOGY = "cardiology"
    WOMEN_HEALTH = "women_health"
    DIABETES = "diabetes"
    THYROID = "thyroid"
    LIVER = "liver"
    KIDNEY = "kidney"
    CANCER_SCREENING = "cancer_screening"
    FITNESS = "fitness"
    ALLERGY = "allergy"
    INFECTION = "infection"
    OTHER = "other"


@tolerant(
    "none",
    aliases={
        "no": "none",
        "not_required": "none",
        "no_fasting": "none",
        "false": "none",
        "eight_hours": "8_hours",
        "8h": "8_hours",
        "8_hrs": "8_hours",
        "ten_hours": "10_hours",
        "10h": "10_hours",
        "10_hrs": "10_hours",
        "twelve_hours": "12_hours",
        "12h": "12_hours",
        "12_hrs": "12_hours",
        "fourteen_hours": "14_hours",
        "14h": "14_hours",
        "14_hrs": "14_hours",
        "overnight_fasting": "overnight",
    },
)
class FastingRequirement(TolerantEnum):
    NONE = "none"
    HOURS_8 = "8_hours"
    HOURS_10 = "10_hours"
    HOURS_12 = "12_hours"
    HOURS_14 = "14_hours"
    OVERNIGHT = "overnight"

    @property
    def required(self) -> bool:
        return self is not FastingRequirement.NONE

    @property
    def display_text(self) -> str:
        if self is FastingRequirement.NONE:
            return "No fasting required"
        if self is FastingRequirement.OVERNIGHT:
            return "Overnight fasting"
        return f"{self.value.split('_')[0]} hours fasting"


@tolerant("other", aliases={"serum": "blood", "plasma": "blood", "whole_blood": "blood", "feces": "stool"})
class SampleType(TolerantEnum):
    BLOOD = "blood"
    URINE = "urine"
    SALIVA = "saliva"
    STOOL = "stool"
    TISSUE = "tissue"
    SWAB = "swab"
    BREATH = "breath"
    IMAGING = "imaging"
    OTHER = "other"


# ==================== Facilities & appointments ====================


@tolerant(
    "other",
    aliases={
        "blood work": "blood_work",
        "bloodwork": "blood_work",
        "visit_lab": "blood_work",
        "home_collection": "blood_work",
        "urine": "urinalysis",
        "thyroid": "thyroid_function",
        "diabetes": "diabetic_panel",
    },
)
class ServiceType(TolerantEnum):
    BLOOD_WORK = "blood_work"
    URINALYSIS = "urinalysis"
    LIPID_PANEL = "lipid_panel"
    METABOLIC_PANEL = "metabolic_panel"
    THYROID_FUNCTION = "thyroid_function"
    DIABETIC_PANEL = "diabetic_panel"
    HORMONAL_PANEL = "hormonal_panel"
    ALLERGY_PANEL = "allergy_panel"
    INFLAMMATORY_MARKERS = "inflammatory_markers"
    TUMOR_MARKERS = "tumor_markers"
    IMAGING = "imaging"
    CONSULTATION = "consultation"
    VACCINATION = "vaccination"
    PHYSICAL_EXAM = "physical_exam"
    OTHER = "other"


@tolerant("pending", aliases={"booked": "scheduled", "canceled": "cancelled", "started": "in_progress"})
class AppointmentStatus(TolerantEnum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


@tolerant("visit_lab", aliases={"lab_visit": "visit_lab", "home": "home_collection", "home_visit": "home_collection"})
class AppointmentType(TolerantEnum):
    VISIT_LAB = "visit_lab"
    HOME_COLLECTION = "home_collection"


@tolerant("lab", aliases={"laboratory": "lab", "diagnostic_center": "lab", "clinic": "collection_center"})
class FacilityType(TolerantEnum):
    HOSPITAL = "hospital"
    LAB = "lab"
    COLLECTION_CENTER = "collection_center"


@tolerant("$$", aliases={"low": "$", "budget": "$", "medium": "$$", "moderate": "$$", "high": "$$$", "premium": "$$$"})
class PriceRange(TolerantEnum):
    BUDGET = "$"
    MODERATE = "$$"
    PREMIUM = "$$$"


# ==================== Users ====================


@tolerant("not_specified", aliases={"m": "male", "f": "female", "unspecified": "not_specified"})
class Gender(TolerantEnum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"
    NOT_SPECIFIED = "not_specified"


@tolerant("sedentary", aliases={"light": "lightly_active", "moderate": "moderately_active", "active": "very_active"})
class ActivityLevel(TolerantEnum):
    SEDENTARY = "sedentary"
    LIGHTLY_ACTIVE = "lightly_active"
    MODERATELY_ACTIVE = "moderately_active"
    VERY_ACTIVE = "very_active"
    EXTRA_ACTIVE = "extra_active"


@tolerant("general_wellness", aliases={"general": "general_wellness", "diabetes": "diabetes_management"})
class HealthGoal(TolerantEnum):
    WEIGHT_LOSS = "weight_loss"
    WEIGHT_GAIN = "weight_gain"
    MUSCLE_GAIN = "muscle_gain"
    CARDIOVASCULAR_HEALTH = "cardiovascular_health"
    DIABETES_MANAGEMENT = "diabetes_management"
    CHOLESTEROL_MANAGEMENT = "cholesterol_management"
    BLOOD_PRESSURE_MANAGEMENT = "blood_pressure_management"
    GENERAL_WELLNESS = "general_wellness"
    INCREASE_ENERGY = "increase_energy"
    IMPROVE_SLEEP = "improve_sleep"
    MANAGE_STRESS = "manage_stress"
    IMPROVE_NUTRITION = "improve_nutrition"


# ==================== Notifications ====================


@tolerant(
    "system",
    aliases={"report": "lab_report", "insight": "health_insight", "reminder": "appointment", "warning": "alert"},
)
class NotificationCategory(TolerantEnum):
    LAB_REPORT = "lab_report"
    HEALTH_INSIGHT = "health_insight"
    APPOINTMENT = "appointment"
    RECOMMENDATION = "recommendation"
    ALERT = "alert"
    SYSTEM = "system"


@tolerant("normal", aliases={"medium": "normal", "critical": "urgent"})
class NotificationPriority(TolerantEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@tolerant("none")
class NotificationActionType(TolerantEnum):
    NONE = "none"
    VIEW_REPORT = "view_report"
    BOOK_APPOINTMENT = "book_appointment"
    VIEW_INSIGHT = "view_insight"
    ACCEPT_RECOMMENDATION = "accept_recommendation"
    DISMISS_ALERT = "dismiss_alert"
    OPEN_SETTINGS = "open_settings"


TOLERANT_ENUMS = [
    BiomarkerStatus,
    ProcessingStatus,
    DocumentType,
    HealthCategory,
    ExtractionMethod,
    TrendDirection,
    RiskLevel,
    TestCategory,
    FastingRequirement,
    SampleType,
    ServiceType,
    AppointmentStatus,
    AppointmentType,
    FacilityType,
    PriceRange,
    Gender,
    ActivityLevel,
    HealthGoal,
    NotificationCategory,
    NotificationPriority,
    NotificationActionType,
]
