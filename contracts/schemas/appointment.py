"""Facility, timeslot and appointment schemas."""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from contracts.schemas.enums import (
    AppointmentStatus,
    AppointmentType,
    FacilityType,
    PriceRange,
    ServiceType,
)

TIME_SLOT_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    coordinates: Optional[Coordinates] = None


class WorkingHours(BaseModel):
    open: str = Field(pattern=TIME_SLOT_PATTERN)
    close: str = Field(pattern=TIME_SLOT_PATTERN)
    days: List[str]
    is24_hours: bool = False


class ContactInfo(BaseModel):
    phone: str
    email: Optional[str] = None
    website: Optional[str] = None


class Facility(BaseModel):
    """Facility as it appears in list responses."""
    id: str
    name: str
    type: FacilityType
    address: Address
    distance: Optional[float] = Field(None, description="Distance from the user in km")
    rating: float = Field(ge=0, le=5)
    review_count: int = 0
    price_range: PriceRange
    features: List[str] = Field(default_factory=list)
    next_available: Optional[str] = None
    working_hours: WorkingHours
    contact_info: ContactInfo
    services: List[ServiceType] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    thumbnail: Optional[str] = None
    is_verified: bool = False
    accepts_insurance: bool = False
    home_collection_available: bool = False
    average_wait_time: int = Field(0, description="Minutes")
    total_tests: int = 0


class Doctor(BaseModel):
    id: str
    name: str
    specialization: str
    experience: int


class FacilityReview(BaseModel):
    id: str
    patient_name: str
    rating: int = Field(ge=1, le=5)
    comment: str
    date: str
    verified: bool = False


class TestPrice(BaseModel):
    test_id: str
    test_name: str
    category: str
    price: float
    discounted_price: Optional[float] = None


class OperationalStats(BaseModel):
    average_report_time: int = Field(24, description="Hours")
    same_day: bool = False
    home_collection: bool = False
    online_reports: bool = True


class FacilityDetails(Facility):
    description: str = ""
    gallery: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    specializations: List[str] = Field(default_factory=list)
    doctors: List[Doctor] = Field(default_factory=list)
    recent_reviews: List[FacilityReview] = Field(default_factory=list)
    price_list: List[TestPrice] = Field(default_factory=list)
    operational_stats: OperationalStats = Field(default_factory=OperationalStats)


class FilterOption(BaseModel):
    value: str
    count: int
    label: str


class SuggestedFilters(BaseModel):
    type: List[FilterOption]
    price_range: List[FilterOption]
    features: List[FilterOption]


class UserLocation(BaseModel):
    lat: float
    lng: float


class FacilitySearchData(BaseModel):
    facilities: List[Facility]
    total_count: int
    search_radius: Optional[float] = None
    user_location: Optional[UserLocation] = None
    suggested_filters: SuggestedFilters


class Timeslot(BaseModel):
    time: str
    date: date
    available: bool
    price: Optional[float] = None
    duration: int
    max_capacity: int
    current_bookings: int
    facility_id: str


class TimeslotAvailability(BaseModel):
    facility_id: str
    facility_name: str
    date: date
    slots: List[Timeslot]


class PatientInfo(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=5)
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None


class HomeAddress(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    special_instructions: Optional[str] = None


class BookingRequest(BaseModel):
    facility_id: str
    service_type: ServiceType = ServiceType.BLOOD_WORK
    appointment_type: AppointmentType = AppointmentType.VISIT_LAB
    appointment_date: date
    time_slot: str = Field(pattern=TIME_SLOT_PATTERN)
    requested_tests: List[str] = Field(default_factory=list)
    patient_info: Optional[PatientInfo] = None
    home_collection_address: Optional[HomeAddress] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("requested_tests")
    @classmethod
    def dedupe_tests(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))


class RescheduleRequest(BaseModel):
    appointment_date: date
    time_slot: str = Field(pattern=TIME_SLOT_PATTERN)
    reason: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentFacility(BaseModel):
    id: str
    name: str
    type: FacilityType
    address: str
    phone: str


class AppointmentTest(BaseModel):
    id: str
    name: str
    category: str
    price: float


class Appointment(BaseModel):
    id: str
    user_id: str
    facility_id: str
    facility: Optional[AppointmentFacility] = None
    service_type: ServiceType
    appointment_type: AppointmentType
    appointment_date: date
    time_slot: str
    status: AppointmentStatus
    confirmation_number: str
    tests: List[AppointmentTest] = Field(default_factory=list)
    total_cost: float = 0.0
    estimated_duration: int = 30
    notes: Optional[str] = None
    home_address: Optional[HomeAddress] = None
    rescheduled_from: Optional[str] = None
    rescheduled_to: Optional[str] = None
    cancellation_reason: Optional[str] = None
    can_reschedule: bool
    can_cancel: bool
    created_at: datetime
    updated_at: datetime


class BookingData(BaseModel):
    appointment: Appointment
    confirmation_number: str
    estimated_cost: float
    payment_required: bool
    next_steps: List[str]
