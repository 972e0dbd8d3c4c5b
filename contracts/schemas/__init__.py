from .enums import (
    TolerantEnum,
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
)
from .envelope import Envelope, ErrorAction, ErrorBody, ErrorDetail, OffsetPagination, MessageData

__all__ = [
    "TolerantEnum",
    "BiomarkerStatus",
    "ProcessingStatus",
    "DocumentType",
    "HealthCategory",
    "ExtractionMethod",
    "TrendDirection",
    "RiskLevel",
    "TestCategory",
    "FastingRequirement",
    "SampleType",
    "ServiceType",
    "AppointmentStatus",
    "AppointmentType",
    "FacilityType",
    "PriceRange",
    "Gender",
    "ActivityLevel",
    "HealthGoal",
    "NotificationCategory",
    "NotificationPriority",
    "NotificationActionType",
    "Envelope",
    "ErrorAction",
    "ErrorBody",
    "ErrorDetail",
    "OffsetPagination",
    "MessageData",
]
