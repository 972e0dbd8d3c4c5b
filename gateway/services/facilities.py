"""Facility search, detail and timeslot availability."""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from contracts.schemas.appointment import (
    Facility,
    FacilityDetails,
    FacilitySearchData,
    FilterOption,
    OperationalStats,
    SuggestedFilters,
    TestPrice,
    Timeslot,
    TimeslotAvailability,
    UserLocation,
)
from contracts.schemas.enums import FacilityType, PriceRange, TestCategory
from gateway.pagination import FilterSet, Page, paginate, sort_items
from gateway.services.base import load, utcnow
from gateway.services.catalog import CatalogService
from gateway.store import DocumentStore, Record

FACILITIES = "facilities"
SLOT_RESERVATIONS = "slot_reservations"

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
FACILITY_SORT_FIELDS = ("distance", "rating", "name", "price")
DEFAULT_RADIUS_KM = 25.0
EARTH_RADIUS_KM = 6371.0


@dataclass
class FacilityQuery:
    search: Optional[str] = None
    type: Optional[FacilityType] = None
    price_range: Optional[PriceRange] = None
    city: Optional[str] = None
    min_rating: Optional[float] = None
    home_collection: Optional[bool] = None
    features: List[str] = field(default_factory=list)
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_km: Optional[float] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    offset: int = 0
    limit: int = 20


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def slot_times(facility: dict, day: date) -> List[str]:
    """Start times a facility offers on ``day`` (empty on closed days)."""
    hours = facility["working_hours"]
    if WEEKDAYS[day.weekday()] not in hours.get("days", WEEKDAYS):
        return []
    duration = facility.get("slot_duration", 30)
    start = 0 if hours.get("is24_hours") else _minutes(hours["open"])
    end = 24 * 60 if hours.get("is24_hours") else _minutes(hours["close"])
    return [f"{m // 60:02d}:{m % 60:02d}" for m in range(start, end - duration + 1, duration)]


def slot_key(facility_id: str, day: date, time_slot: str) -> str:
    return f"{facility_id}:{day.isoformat()}:{time_slot}"


def slot_in_past(day: date, time_slot: str, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    if day != now.date():
        return day < now.date()
    return _minutes(time_slot) <= now.hour * 60 + now.minute


class FacilityService:
    def __init__(self, store: DocumentStore, catalog: CatalogService):
        self.store = store
        self.catalog = catalog

    async def get_document(self, facility_id: str) -> Record:
        return await load(self.store, FACILITIES, facility_id, "Facility")

    def facility_view(self, doc: dict, distance: Optional[float] = None) -> Facility:
        data = dict(doc)
        data["distance"] = round(distance, 2) if distance is not None else None
        data["total_tests"] = len(doc.get("test_ids", []))
        return Facility.model_validate(data)

    async def search(self, query: FacilityQuery) -> Tuple[FacilitySearchData, Page]:
        docs = [dict(r.data, id=r.id) for r in await self.store.find(FACILITIES)]

        located = query.lat is not None and query.lng is not None
        radius = query.radius_km if query.radius_km is not None else (DEFAULT_RADIUS_KM if located else None)
        distances: Dict[str, Optional[float]] = {}
        for doc in docs:
            coords = (doc.get("address") or {}).get("coordinates")
            distances[doc["id"]] = (
                haversine_km(query.lat, query.lng, coords["lat"], coords["lng"]) if located and coords else None
            )

        features = {f.lower() for f in query.features}
        search = (query.search or "").lower()

        filters: FilterSet[dict] = FilterSet()
        filters.add(
            "search",
            lambda d: search in d["name"].lower()
            or search in d.get("description", "").lower()
            or search in d["address"]["city"].lower()
            or any(search in s.replace("_", " ") for s in d.get("services", [])),
            active=bool(search),
        )
        filters.add("type", lambda d: FacilityType(d["type"]) == query.type, active=query.type is not None)
        filters.add(
            "price_range", lambda d: PriceRange(d["price_range"]) == query.price_range, active=query.price_range is not None
        )
        filters.add(
            "city", lambda d: d["address"]["city"].lower() == (query.city or "").lower(), active=bool(query.city)
        )
        filters.add("min_rating", lambda d: d.get("rating", 0) >= (query.min_rating or 0), active=query.min_rating is not None)
        filters.add(
            "home_collection",
            lambda d: d.get("home_collection_available", False) == query.home_collection,
            active=query.home_collection is not None,
        )
        filters.add(
            "features", lambda d: features <= {f.lower() for f in d.get("features", [])}, active=bool(features)
        )
        filters.add(
            "radius",
            lambda d: distances[d["id"]] is not None and distances[d["id"]] <= radius,
            active=located and radius is not None,
        )

        sort_by = query.sort_by or ("distance" if located else "rating")
        sort_order = query.sort_order or ("desc" if sort_by == "rating" else "asc")
        sort_keys = {
            "distance": lambda d: distances[d["id"]] if distances[d["id"]] is not None else float("inf"),
            "rating": lambda d: d.get("rating", 0),
            "name": lambda d: d["name"].lower(),
            "price": lambda d: len(PriceRange(d["price_range"]).value),
        }
        matched = sort_items(filters.apply(docs), sort_keys[sort_by], descending=sort_order == "desc")
        page = paginate(matched, query.offset, query.limit)

        type_counts = filters.facet(docs, "type", lambda d: FacilityType(d["type"]))
        price_counts = filters.facet(docs, "price_range", lambda d: PriceRange(d["price_range"]))
        feature_counts = filters.facet(docs, "features", lambda d: d.get("features", []))

        data = FacilitySearchData(
            facilities=[self.facility_view(d, distances[d["id"]]) for d in page.items],
            total_count=page.total,
            search_radius=radius,
            user_location=UserLocation(lat=query.lat, lng=query.lng) if located else None,
            suggested_filters=SuggestedFilters(
                type=[
                    FilterOption(value=t.value, count=c, label=t.display_name)
                    for t, c in sorted(type_counts.items(), key=lambda kv: kv[0].value)
                ],
                price_range=[
                    FilterOption(value=p.value, count=c, label=p.name.title())
                    for p, c in sorted(price_counts.items(), key=lambda kv: len(kv[0].value))
                ],
                features=[
                    FilterOption(value=f, count=c, label=f.replace("_", " ").title())
                    for f, c in sorted(feature_counts.items())
                ],
            ),
        )
        return data, page

    async def get(self, facility_id: str) -> FacilityDetails:
        record = await self.get_document(facility_id)
        doc = dict(record.data, id=record.id)
        tests = await self.catalog.tests_by_id()
        factor = doc.get("price_factor", 1.0)
        features = doc.get("features", [])

        base = self.facility_view(doc).model_dump()
        base["next_available"] = await self.next_available(facility_id)
        return FacilityDetails(
            **base,
            description=doc.get("description", ""),
            gallery=doc.get("gallery", []),
            equipment=doc.get("equipment", []),
            specializations=doc.get("specializations", []),
            doctors=doc.get("doctors", []),
            recent_reviews=doc.get("recent_reviews", []),
            price_list=[
                TestPrice(
                    test_id=test_id,
                    test_name=tests[test_id]["name"],
                    category=TestCategory(tests[test_id]["category"]).value,
                    price=round(tests[test_id]["price"] * factor, 2),
                )
                for test_id in doc.get("test_ids", [])
                if test_id in tests
            ],
            operational_stats=OperationalStats(
                same_day="same_day" in features,
                home_collection=doc.get("home_collection_available", False),
                online_reports="online_reports" in features,
            ),
        )

    async def booked_times(self, facility_id: str, day: date) -> Set[str]:
        records = await self.store.find(SLOT_RESERVATIONS, facility_id=facility_id, date=day.isoformat())
        return {r.data["time_slot"] for r in records}

    async def timeslots(self, facility_id: str, day: date) -> TimeslotAvailability:
        record = await self.get_document(facility_id)
        facility = record.data
        booked = await self.booked_times(facility_id, day)
        now = utcnow()
        duration = facility.get("slot_duration", 30)
        slots = [
            Timeslot(
                time=time_slot,
                date=day,
                available=time_slot not in booked and not slot_in_past(day, time_slot, now),
                duration=duration,
                max_capacity=1,
                current_bookings=1 if time_slot in booked else 0,
                facility_id=facility_id,
            )
            for time_slot in slot_times(facility, day)
        ]
        return TimeslotAvailability(facility_id=facility_id, facility_name=facility["name"], date=day, slots=slots)

    async def next_available(self, facility_id: str, days: int = 7) -> Optional[str]:
        record = await self.get_document(facility_id)
        today = utcnow().date()
        for offset in range(days):
            day = today + timedelta(days=offset)
            booked = await self.booked_times(facility_id, day)
            for time_slot in slot_times(record.data, day):
                if time_slot not in booked and not slot_in_past(day, time_slot):
                    return f"{day.isoformat()} {time_slot}"
        return None
