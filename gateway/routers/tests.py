"""Lab test catalog and favorites router."""
from typing import Optional

from fastapi import APIRouter, Query

from contracts.schemas.enums import SampleType, TestCategory
from gateway.dependencies import CurrentUserDep, ServicesDep
from gateway.responses import ok
from gateway.services.catalog import SORT_ORDERS, TEST_SORT_FIELDS, TestQuery
from gateway.validation import FieldErrors, check_choice, check_page, check_range, parse_bool, parse_int

router = APIRouter(tags=["Tests"])

TESTS_DEFAULT_LIMIT = 20
TESTS_MAX_LIMIT = 50
FAVORITES_DEFAULT_LIMIT = 20
FAVORITES_MAX_LIMIT = 50


@router.get("/tests")
async def list_tests(
    services: ServicesDep,
    search: Optional[str] = None,
    category: Optional[str] = None,
    price_min: Optional[str] = None,
    price_max: Optional[str] = None,
    fasting_required: Optional[str] = None,
    sample_type: Optional[str] = None,
    featured: Optional[str] = None,
    available: Optional[str] = None,
    sort_by: str = "popularity",
    sort_order: str = "desc",
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    """
    List lab tests.

    Filters combine with AND; ``available_filters`` counts each dimension
    with every other active filter applied.
    """
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, TESTS_DEFAULT_LIMIT, TESTS_MAX_LIMIT)
    price_min = parse_int(errors, "price_min", price_min)
    price_max = parse_int(errors, "price_max", price_max)
    fasting_required = parse_bool(errors, "fasting_required", fasting_required)
    featured = parse_bool(errors, "featured", featured)
    available = parse_bool(errors, "available", available)
    check_range(errors, "price_min", price_min, "price_max", price_max)
    check_choice(errors, "sort_by", sort_by, TEST_SORT_FIELDS)
    check_choice(errors, "sort_order", sort_order, SORT_ORDERS)
    errors.raise_if_any()

    query = TestQuery(
        search=search.strip() if search and search.strip() else None,
        category=TestCategory(category) if category else None,
        price_min=price_min,
        price_max=price_max,
        fasting_required=fasting_required,
        sample_type=SampleType(sample_type) if sample_type else None,
        featured=featured,
        available=available,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=limit,
    )
    data, page = await services.catalog.list_tests(query)
    return ok(data, pagination=page.meta())


@router.get("/tests/search/suggestions")
async def search_suggestions(
    services: ServicesDep,
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(10, ge=1, le=20),
):
    return ok(await services.catalog.suggestions(q, limit))


@router.get("/tests/{test_id}")
async def get_test(test_id: str, services: ServicesDep):
    return ok(await services.catalog.get_test(test_id))


@router.post("/tests/{test_id}/favorite")
async def add_favorite(test_id: str, current: CurrentUserDep, services: ServicesDep):
    """Adding a test that is already a favorite succeeds unchanged."""
    status = await services.catalog.add_favorite(current.user_id, test_id)
    return ok(status, message="Added to favorites")


@router.delete("/tests/{test_id}/favorite")
async def remove_favorite(test_id: str, current: CurrentUserDep, services: ServicesDep):
    status = await services.catalog.remove_favorite(current.user_id, test_id)
    return ok(status, message="Removed from favorites")


@router.get("/favorites/tests")
async def list_favorites(
    current: CurrentUserDep,
    services: ServicesDep,
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, FAVORITES_DEFAULT_LIMIT, FAVORITES_MAX_LIMIT)
    errors.raise_if_any()
    data, page = await services.catalog.list_favorites(current.user_id, offset, limit)
    return ok(data, pagination=page.meta())
