"""User schemas."""
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from contracts.schemas.enums import ActivityLevel, Gender, HealthGoal


class EmergencyContact(BaseModel):
    name: str
    relationship: str
    phone_number: str
    email: Optional[str] = None


class UserProfile(BaseModel):
    """Health profile attached to a user."""
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    height: Optional[float] = Field(None, gt=0, le=300, description="Height in cm")
    weight: Optional[float] = Field(None, gt=0, le=700, description="Weight in kg")
    activity_level: Optional[ActivityLevel] = None
    health_goals: List[HealthGoal] = Field(default_factory=list)
    medical_conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    emergency_contact: Optional[EmergencyContact] = None
    profile_image_url: Optional[str] = None


class QuietHours(BaseModel):
    enabled: bool = False
    start_time: str = Field("22:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end_time: str = Field("07:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


class NotificationPreferences(BaseModel):
    health_alerts: bool = True
    appointment_reminders: bool = True
    report_ready: bool = True
    recommendations: bool = True
    weekly_digest: bool = False
    monthly_report: bool = False
    push_enabled: bool = True
    email_enabled: bool = True
    sms_enabled: bool = False
    quiet_hours: Optional[QuietHours] = None


class PrivacyPreferences(BaseModel):
    share_data_with_providers: bool = False
    share_data_for_research: bool = False
    allow_analytics: bool = False
    allow_marketing: bool = False
    data_retention_period: int = Field(365, ge=30, description="Retention in days")


class UnitPreferences(BaseModel):
    weight_unit: Literal["kg", "lbs"] = "kg"
    height_unit: Literal["cm", "ft"] = "cm"
    temperature_unit: Literal["celsius", "fahrenheit"] = "celsius"
    date_format: Literal["MM/dd/yyyy", "dd/MM/yyyy", "yyyy-MM-dd"] = "yyyy-MM-dd"


class UserPreferences(BaseModel):
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    privacy: PrivacyPreferences = Field(default_factory=PrivacyPreferences)
    units: UnitPreferences = Field(default_factory=UnitPreferences)
    theme: Literal["system", "light", "dark"] = "system"


class User(BaseModel):
    """User response without sensitive data."""
    id: str
    email: str
    name: str
    phone_number: Optional[str] = None
    profile: UserProfile = Field(default_factory=UserProfile)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    email_verified: bool = False
    phone_verified: bool = False
    two_factor_enabled: bool = False
    created_at: datetime
    updated_at: datetime


class UserUpdateRequest(BaseModel):
    """Partial update of the current user."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    profile: Optional[UserProfile] = None
