"""Facility search, detail and timeslot router."""
from typing import Optional

from fastapi import APIRouter

from contracts.schemas.enums import FacilityType, PriceRange
from gateway.dependencies import ServicesDep
from gateway.responses import ok
from gateway.services.catalog import SORT_ORDERS
from gateway.services.facilities import FACILITY_SORT_FIELDS, FacilityQuery
from gateway.validation import FieldErrors, check_choice, check_page, parse_bool, parse_date, parse_float

router = APIRouter(tags=["Facilities"])

FACILITIES_DEFAULT_LIMIT = 20
FACILITIES_MAX_LIMIT = 50


@router.get("/facilities")
async def list_facilities(
    services: ServicesDep,
    search: Optional[str] = None,
    type: Optional[str] = None,
    price_range: Optional[str] = None,
    city: Optional[str] = None,
    min_rating: Optional[str] = None,
    home_collection: Optional[str] = None,
    features: Optional[str] = None,
    lat: Optional[str] = None,
    lng: Optional[str] = None,
    radius_km: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    """
    Search facilities.

    ``features`` is comma separated and every listed feature must be present.
    With ``lat``/``lng`` results are limited to ``radius_km`` (25 km by
    default) and sorted by distance.
    """
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, FACILITIES_DEFAULT_LIMIT, FACILITIES_MAX_LIMIT)
    min_rating = parse_float(errors, "min_rating", min_rating)
    home_collection = parse_bool(errors, "home_collection", home_collection)
    lat = parse_float(errors, "lat", lat)
    lng = parse_float(errors, "lng", lng)
    radius_km = parse_float(errors, "radius_km", radius_km)
    check_choice(errors, "sort_by", sort_by, FACILITY_SORT_FIELDS)
    check_choice(errors, "sort_order", sort_order, SORT_ORDERS)
    if min_rating is not None and not 0 <= min_rating <= 5:
        errors.add("min_rating", "Must be between 0 and 5", min_rating)
    if (lat is None) != (lng is None):
        errors.add("lat" if lat is None else "lng", "lat and lng must be given together")
    if lat is not None and not -90 <= lat <= 90:
        errors.add("lat", "Must be between -90 and 90", lat)
    if lng is not None and not -180 <= lng <= 180:
        errors.add("lng", "Must be between -180 and 180", lng)
    if radius_km is not None and radius_km <= 0:
        errors.add("radius_km", "Must be greater than 0", radius_km)
    if sort_by == "distance" and lat is None:
        errors.add("sort_by", "Sorting by distance requires lat and lng", sort_by)
    errors.raise_if_any()

    query = FacilityQuery(
        search=search.strip() if search and search.strip() else None,
        type=FacilityType(type) if type else None,
        price_range=PriceRange(price_range) if price_range else None,
        city=city.strip() if city else None,
        min_rating=min_rating,
        home_collection=home_collection,
        features=[f.strip() for f in (features or "").split(",") if f.strip()],
        lat=lat,
        lng=lng,
        radius_km=radius_km,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=limit,
    )
    data, page = await services.facilities.search(query)
    return ok(data, pagination=page.meta())


@router.get("/facilities/{facility_id}")
async def get_facility(facility_id: str, services: ServicesDep):
    return ok(await services.facilities.get(facility_id))


@router.get("/timeslots/{facility_id}")
async def get_timeslots(facility_id: str, services: ServicesDep, date: str):
    """Slots for one day; ``date`` is ``YYYY-MM-DD``."""
    errors = FieldErrors()
    day = parse_date(errors, "date", date)
    errors.raise_if_any()
    return ok(await services.facilities.timeslots(facility_id, day))
