"""Health package router."""
from typing import Optional

from fastapi import APIRouter

from gateway.dependencies import ServicesDep
from gateway.responses import ok
from gateway.services.catalog import PACKAGE_SORT_FIELDS, SORT_ORDERS, PackageQuery
from gateway.validation import FieldErrors, check_choice, check_page, check_range, parse_bool, parse_int

router = APIRouter(prefix="/packages", tags=["Packages"])

PACKAGES_DEFAULT_LIMIT = 10
PACKAGES_MAX_LIMIT = 20


@router.get("")
async def list_packages(
    services: ServicesDep,
    search: Optional[str] = None,
    category: Optional[str] = None,
    price_min: Optional[str] = None,
    price_max: Optional[str] = None,
    test_count_min: Optional[str] = None,
    test_count_max: Optional[str] = None,
    featured: Optional[str] = None,
    sort_by: str = "popularity",
    sort_order: str = "desc",
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, PACKAGES_DEFAULT_LIMIT, PACKAGES_MAX_LIMIT)
    price_min = parse_int(errors, "price_min", price_min)
    price_max = parse_int(errors, "price_max", price_max)
    test_count_min = parse_int(errors, "test_count_min", test_count_min)
    test_count_max = parse_int(errors, "test_count_max", test_count_max)
    featured = parse_bool(errors, "featured", featured)
    check_range(errors, "price_min", price_min, "price_max", price_max)
    check_range(errors, "test_count_min", test_count_min, "test_count_max", test_count_max)
    check_choice(errors, "sort_by", sort_by, PACKAGE_SORT_FIELDS)
    check_choice(errors, "sort_order", sort_order, SORT_ORDERS)
    errors.raise_if_any()

    query = PackageQuery(
        search=search.strip() if search and search.strip() else None,
        category=category.strip().lower() if category else None,
        price_min=price_min,
        price_max=price_max,
        test_count_min=test_count_min,
        test_count_max=test_count_max,
        featured=featured,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=limit,
    )
    data, page = await services.catalog.list_packages(query)
    return ok(data, pagination=page.meta())


@router.get("/{package_id}")
async def get_package(package_id: str, services: ServicesDep):
    """Package detail with its tests grouped by category."""
    return ok(await services.catalog.get_package(package_id))
