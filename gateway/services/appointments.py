"""Appointment booking, rescheduling, cancellation and the status machine.

A booking first claims its ``(facility, date, time)`` slot with a unique
insert into ``slot_reservations``; only the request that wins the insert gets
to create the appointment. Reservations are released when an appointment is
cancelled or moved, and only by the appointment that holds them.
"""

import logging
import secrets
from datetime import date
from typing import Dict, List, Optional, Tuple

from contracts.schemas.appointment import (
    Appointment,
    AppointmentFacility,
    AppointmentTest,
    BookingData,
    BookingRequest,
    RescheduleRequest,
)
from contracts.schemas.enums import (
    AppointmentStatus,
    AppointmentType,
    FastingRequirement,
    NotificationActionType,
    NotificationCategory,
    NotificationPriority,
    TestCategory,
)
from contracts.schemas.notification import NotificationMetadata
from gateway.errors import ConflictError
from gateway.pagination import FilterSet, Page, paginate
from gateway.services.base import load_owned, mutate, new_id, utcnow
from gateway.services.catalog import CatalogService
from gateway.services.facilities import SLOT_RESERVATIONS, FacilityService, slot_in_past, slot_key, slot_times
from gateway.services.notifications import NotificationService
from gateway.store import DocumentStore, DuplicateKeyError
from gateway.validation import FieldErrors

logger = logging.getLogger(__name__)

APPOINTMENTS = "appointments"
CONFIRMATIONS = "confirmation_numbers"

S = AppointmentStatus

TRANSITIONS: Dict[AppointmentStatus, set] = {
    S.PENDING: {S.SCHEDULED, S.CANCELLED},
    S.SCHEDULED: {S.CONFIRMED, S.CANCELLED, S.NO_SHOW, S.RESCHEDULED},
    S.CONFIRMED: {S.CHECKED_IN, S.CANCELLED, S.NO_SHOW, S.RESCHEDULED},
    S.CHECKED_IN: {S.IN_PROGRESS},
    S.IN_PROGRESS: {S.COMPLETED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.NO_SHOW: set(),
    S.RESCHEDULED: set(),
}

CANCELLABLE = {S.PENDING, S.SCHEDULED, S.CONFIRMED}
RESCHEDULABLE = {S.SCHEDULED, S.CONFIRMED}
UPCOMING = {S.PENDING, S.SCHEDULED, S.CONFIRMED}


def appointment_view(doc: dict) -> Appointment:
    status = AppointmentStatus(doc["status"])
    return Appointment.model_validate(
        dict(doc, can_cancel=status in CANCELLABLE, can_reschedule=status in RESCHEDULABLE)
    )


class AppointmentService:
    def __init__(
        self,
        store: DocumentStore,
        facilities: FacilityService,
        catalog: CatalogService,
        notifications: NotificationService,
    ):
        self.store = store
        self.facilities = facilities
        self.catalog = catalog
        self.notifications = notifications

    # ==================== Slot reservations ====================

    async def reserve_slot(self, facility_id: str, day: date, time_slot: str, appointment_id: str, user_id: str) -> None:
        """Claim a slot; repeat claims by the same appointment succeed."""
        key = slot_key(facility_id, day, time_slot)
        try:
            await self.store.insert(
                SLOT_RESERVATIONS,
                key,
                {
                    "facility_id": facility_id,
                    "date": day.isoformat(),
                    "time_slot": time_slot,
                    "appointment_id": appointment_id,
                    "user_id": user_id,
                    "created_at": utcnow().isoformat(),
                },
            )
        except DuplicateKeyError:
            holder = await self.store.get(SLOT_RESERVATIONS, key)
            if holder is not None and holder.data["appointment_id"] == appointment_id:
                return
            raise ConflictError.slot_unavailable(facility_id, day.isoformat(), time_slot)

    async def release_slot(self, facility_id: str, day: date, time_slot: str, appointment_id: str) -> bool:
        key = slot_key(facility_id, day, time_slot)
        holder = await self.store.get(SLOT_RESERVATIONS, key)
        if holder is None or holder.data["appointment_id"] != appointment_id:
            return False
        return await self.store.delete(SLOT_RESERVATIONS, key, expected_version=holder.version)

    # ==================== State machine ====================

    async def transition(
        self, appointment_id: str, target: AppointmentStatus, strict: bool = False, **changes
    ) -> Appointment:
        """Move an appointment to ``target`` if the state machine allows it.

        Moving to the current status is a no-op, unless ``strict`` is set: then
        only the caller that actually makes the move succeeds.
        """

        def apply(doc):
            current = AppointmentStatus(doc["status"])
            if current == target and not strict:
                return None
            if target not in TRANSITIONS[current]:
                raise ConflictError.invalid_transition("Appointment", current.value, target.value)
            doc.update(changes)
            doc["status"] = target.value
            doc["updated_at"] = utcnow().isoformat()
            return doc

        record = await mutate(self.store, APPOINTMENTS, appointment_id, apply, "Appointment")
        logger.info(f"Appointment {appointment_id} -> {record.data['status']}")
        return appointment_view(record.data)

    # ==================== Booking ====================

    async def book(self, user_id: str, request: BookingRequest) -> BookingData:
        facility_record = await self.facilities.get_document(request.facility_id)
        facility = dict(facility_record.data, id=facility_record.id)
        tests = await self.catalog.tests_by_id()

        errors = FieldErrors()
        self._check_slot(errors, facility, request.appointment_date, request.time_slot)
        unknown = [t for t in request.requested_tests if t not in tests]
        if unknown:
            errors.add("requested_tests", "Unknown tests", ", ".join(unknown))
        not_offered = [
            t for t in request.requested_tests if t in tests and t not in facility.get("test_ids", [])
        ]
        if not_offered:
            errors.add("requested_tests", "Not offered at this facility", ", ".join(not_offered))
        if request.appointment_type == AppointmentType.HOME_COLLECTION:
            if not facility.get("home_collection_available"):
                errors.add("appointment_type", "Home collection is not available at this facility", request.appointment_type.value)
            if request.home_collection_address is None:
                errors.add("home_collection_address", "Required for home collection")
        errors.raise_if_any(unprocessable=True)

        appointment_id = new_id()
        await self.reserve_slot(facility["id"], request.appointment_date, request.time_slot, appointment_id, user_id)
        try:
            appointment = await self._create(
                appointment_id,
                user_id,
                facility,
                tests,
                request.requested_tests,
                service_type=request.service_type.value,
                appointment_type=request.appointment_type.value,
                appointment_date=request.appointment_date,
                time_slot=request.time_slot,
                notes=request.notes,
                home_address=request.home_collection_address.model_dump(mode="json")
                if request.home_collection_address
                else None,
            )
        except Exception:
            await self.release_slot(facility["id"], request.appointment_date, request.time_slot, appointment_id)
            raise

        await self._notify(appointment, "Appointment booked", f"Your appointment at {facility['name']} is booked.")
        return BookingData(
            appointment=appointment,
            confirmation_number=appointment.confirmation_number,
            estimated_cost=appointment.total_cost,
            payment_required=appointment.total_cost > 0,
            next_steps=self._next_steps(appointment, tests),
        )

    async def _create(
        self,
        appointment_id: str,
        user_id: str,
        facility: dict,
        tests: Dict[str, dict],
        test_ids: List[str],
        rescheduled_from: Optional[str] = None,
        **fields,
    ) -> Appointment:
        factor = facility.get("price_factor", 1.0)
        items = [
            AppointmentTest(
                id=t,
                name=tests[t]["name"],
                category=TestCategory(tests[t]["category"]).value,
                price=round(tests[t]["price"] * factor, 2),
            )
            for t in test_ids
            if t in tests
        ]
        total = sum(item.price for item in items)
        if fields.get("appointment_type") == AppointmentType.HOME_COLLECTION.value:
            total += facility.get("home_collection_fee", 0)

        now = utcnow()
        address = facility["address"]
        doc = {
            "id": appointment_id,
            "user_id": user_id,
            "facility_id": facility["id"],
            "facility": AppointmentFacility(
                id=facility["id"],
                name=facility["name"],
                type=facility["type"],
                address=f"{address['street']}, {address['city']}",
                phone=facility["contact_info"]["phone"],
            ).model_dump(mode="json"),
            "status": AppointmentStatus.SCHEDULED.value,
            "confirmation_number": await self._confirmation_number(appointment_id, now.date()),
            "tests": [item.model_dump(mode="json") for item in items],
            "total_cost": round(total, 2),
            "estimated_duration": facility.get("slot_duration", 30),
            "rescheduled_from": rescheduled_from,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        doc.update(fields)
        doc["appointment_date"] = fields["appointment_date"].isoformat()
        await self.store.insert(APPOINTMENTS, appointment_id, doc)
        return appointment_view(doc)

    async def _confirmation_number(self, appointment_id: str, day: date) -> str:
        while True:
            number = f"SO{day.strftime('%y%m%d')}{secrets.token_hex(3).upper()}"
            try:
                await self.store.insert(CONFIRMATIONS, number, {"appointment_id": appointment_id})
                return number
            except DuplicateKeyError:
                continue

    def _check_slot(self, errors: FieldErrors, facility: dict, day: date, time_slot: str) -> None:
        if slot_in_past(day, time_slot):
            errors.add("appointment_date", "Appointment must be in the future", f"{day.isoformat()} {time_slot}")
        elif time_slot not in slot_times(facility, day):
            errors.add("time_slot", "Facility has no slot at this time", time_slot)

    def _next_steps(self, appointment: Appointment, tests: Dict[str, dict]) -> List[str]:
        steps = []
        fasting = [
            FastingRequirement(tests[t.id].get("fasting", "none")) for t in appointment.tests if t.id in tests
        ]
        fasting = [f for f in fasting if f.required]
        if fasting:
            steps.append(f"{fasting[0].display_text} before your appointment")
        if appointment.appointment_type == AppointmentType.HOME_COLLECTION:
            steps.append("Our phlebotomist will call you before arriving")
            steps.append("Keep the collection address accessible")
        else:
            steps.append("Arrive 10 minutes before your slot")
        steps.append("Carry a photo ID and any previous reports")
        steps.append(f"Show confirmation number {appointment.confirmation_number} at the desk")
        return steps

    # ==================== Reads ====================

    async def get(self, user_id: str, appointment_id: str) -> Appointment:
        record = await load_owned(self.store, APPOINTMENTS, appointment_id, user_id, "Appointment")
        return appointment_view(record.data)

    async def list(
        self,
        user_id: str,
        status: Optional[AppointmentStatus] = None,
        upcoming: Optional[bool] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Appointment], Page]:
        records = await self.store.find(APPOINTMENTS, user_id=user_id)
        appointments = [appointment_view(r.data) for r in records]
        now = utcnow()

        def is_upcoming(a: Appointment) -> bool:
            return a.status in UPCOMING and not slot_in_past(a.appointment_date, a.time_slot, now)

        filters: FilterSet[Appointment] = FilterSet()
        filters.add("status", lambda a: a.status == status, active=status is not None)
        filters.add("upcoming", lambda a: is_upcoming(a) == upcoming, active=upcoming is not None)

        matched = sorted(
            filters.apply(appointments),
            key=lambda a: (a.appointment_date, a.time_slot),
            reverse=not upcoming,
        )
        page = paginate(matched, offset, limit)
        return page.items, page

    async def upcoming_count(self, user_id: str) -> int:
        _, page = await self.list(user_id, upcoming=True, limit=1)
        return page.total

    # ==================== Changes ====================

    async def cancel(self, user_id: str, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        record = await load_owned(self.store, APPOINTMENTS, appointment_id, user_id, "Appointment")
        current = appointment_view(record.data)
        if current.status == AppointmentStatus.CANCELLED:
            return current

        appointment = await self.transition(appointment_id, AppointmentStatus.CANCELLED, cancellation_reason=reason)
        await self.release_slot(appointment.facility_id, appointment.appointment_date, appointment.time_slot, appointment_id)
        await self._notify(appointment, "Appointment cancelled", f"Appointment {appointment.confirmation_number} was cancelled.")
        return appointment

    async def reschedule(self, user_id: str, appointment_id: str, request: RescheduleRequest) -> Appointment:
        record = await load_owned(self.store, APPOINTMENTS, appointment_id, user_id, "Appointment")
        original = appointment_view(record.data)
        if not original.can_reschedule:
            raise ConflictError.invalid_transition("Appointment", original.status.value, AppointmentStatus.RESCHEDULED.value)

        facility_record = await self.facilities.get_document(original.facility_id)
        facility = dict(facility_record.data, id=facility_record.id)
        errors = FieldErrors()
        self._check_slot(errors, facility, request.appointment_date, request.time_slot)
        errors.raise_if_any(unprocessable=True)

        new_appointment_id = new_id()
        await self.reserve_slot(facility["id"], request.appointment_date, request.time_slot, new_appointment_id, user_id)
        try:
            # Only one concurrent reschedule of the same appointment wins this move
            await self.transition(
                appointment_id, AppointmentStatus.RESCHEDULED, strict=True, rescheduled_to=new_appointment_id
            )
        except Exception:
            await self.release_slot(facility["id"], request.appointment_date, request.time_slot, new_appointment_id)
            raise

        try:
            tests = await self.catalog.tests_by_id()
            moved = await self._create(
                new_appointment_id,
                user_id,
                facility,
                tests,
                [t.id for t in original.tests],
                rescheduled_from=appointment_id,
                service_type=original.service_type.value,
                appointment_type=original.appointment_type.value,
                appointment_date=request.appointment_date,
                time_slot=request.time_slot,
                notes=request.reason or original.notes,
                home_address=original.home_address.model_dump(mode="json") if original.home_address else None,
            )
        except Exception:
            await self._undo_reschedule(appointment_id, original.status, new_appointment_id)
            await self.release_slot(facility["id"], request.appointment_date, request.time_slot, new_appointment_id)
            raise

        await self.release_slot(original.facility_id, original.appointment_date, original.time_slot, appointment_id)
        await self._notify(
            moved,
            "Appointment rescheduled",
            f"Your appointment moved to {moved.appointment_date.isoformat()} at {moved.time_slot}.",
        )
        return moved

    async def _undo_reschedule(self, appointment_id: str, previous: AppointmentStatus, new_appointment_id: str) -> None:
        """Put the original back when its replacement could not be created."""

        def apply(doc):
            if doc.get("rescheduled_to") != new_appointment_id:
                return None
            doc["status"] = previous.value
            doc["rescheduled_to"] = None
            doc["updated_at"] = utcnow().isoformat()
            return doc

        await mutate(self.store, APPOINTMENTS, appointment_id, apply, "Appointment")
        logger.warning(f"Appointment {appointment_id} reschedule to {new_appointment_id} rolled back")

    async def _notify(self, appointment: Appointment, title: str, message: str) -> None:
        await self.notifications.create(
            user_id=appointment.user_id,
            title=title,
            subtitle=f"{appointment.appointment_date.isoformat()} {appointment.time_slot}",
            message=message,
            category=NotificationCategory.APPOINTMENT,
            priority=NotificationPriority.NORMAL,
            action_type=NotificationActionType.NONE,
            metadata=NotificationMetadata(
                appointment_id=appointment.id,
                deep_link_path=f"/appointments/{appointment.id}",
            ),
        )
