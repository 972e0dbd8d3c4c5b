"""Appointment router."""
from typing import Optional

from fastapi import APIRouter, Body

from contracts.schemas.appointment import BookingRequest, CancelRequest, RescheduleRequest
from contracts.schemas.enums import AppointmentStatus
from gateway.dependencies import CurrentUserDep, ServicesDep
from gateway.responses import created, ok
from gateway.validation import FieldErrors, check_page, parse_bool

router = APIRouter(prefix="/appointments", tags=["Appointments"])

APPOINTMENTS_DEFAULT_LIMIT = 20
APPOINTMENTS_MAX_LIMIT = 50


@router.get("")
async def list_appointments(
    current: CurrentUserDep,
    services: ServicesDep,
    status: Optional[str] = None,
    upcoming: Optional[str] = None,
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, APPOINTMENTS_DEFAULT_LIMIT, APPOINTMENTS_MAX_LIMIT)
    upcoming = parse_bool(errors, "upcoming", upcoming)
    errors.raise_if_any()
    appointments, page = await services.appointments.list(
        current.user_id,
        status=AppointmentStatus(status) if status else None,
        upcoming=upcoming,
        offset=offset,
        limit=limit,
    )
    return ok(appointments, pagination=page.meta())


@router.post("")
async def book_appointment(data: BookingRequest, current: CurrentUserDep, services: ServicesDep):
    """
    Book a slot.

    Two requests for the same facility, date and time race on the slot
    reservation; exactly one wins and the other gets ``SLOT_UNAVAILABLE``.
    """
    booking = await services.appointments.book(current.user_id, data)
    return created(booking, message="Appointment booked")


@router.get("/{appointment_id}")
async def get_appointment(appointment_id: str, current: CurrentUserDep, services: ServicesDep):
    return ok(await services.appointments.get(current.user_id, appointment_id))


@router.put("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    current: CurrentUserDep,
    services: ServicesDep,
    data: Optional[CancelRequest] = Body(None),
):
    """Cancelling an already cancelled appointment succeeds unchanged."""
    appointment = await services.appointments.cancel(current.user_id, appointment_id, data.reason if data else None)
    return ok(appointment, message="Appointment cancelled")


@router.put("/{appointment_id}/reschedule")
async def reschedule_appointment(
    appointment_id: str, data: RescheduleRequest, current: CurrentUserDep, services: ServicesDep
):
    appointment = await services.appointments.reschedule(current.user_id, appointment_id, data)
    return ok(appointment, message="Appointment rescheduled")
