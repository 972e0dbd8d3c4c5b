"""Test and health package catalog, favorites and search suggestions.

Catalog documents are read through the cache: the full test and package lists
for ``TEST_LIST_CACHE_TTL`` seconds and assembled detail views for
``CATALOG_DETAIL_CACHE_TTL`` seconds. Filtering, faceting and pagination run
over the cached lists.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from contracts.schemas.catalog import (
    AvailableFilters,
    AvailableLab,
    CategoryFilterData,
    DetailedTestCategory,
    FastingOptionData,
    FastingRequirementData,
    FavoritesListData,
    FavoriteStatus,
    FavoriteTest,
    FiltersApplied,
    HealthInsights,
    HealthPackage,
    PackageAvailableFilters,
    PackageDetails,
    PackageFiltersApplied,
    PackagesListData,
    PackageTest,
    PreparationInstructions,
    PriceRangeData,
    RelatedPackage,
    RelatedTest,
    SampleTypeData,
    SampleTypeFilterData,
    SearchSuggestion,
    SearchSuggestionsData,
    TestCategoryData,
    TestCountRangeData,
    TestDetails,
    TestItem,
    TestsListData,
    TestSection,
)
from contracts.schemas.enums import FastingRequirement, SampleType, TestCategory
from gateway.cache import Cache
from gateway.config import Settings
from gateway.errors import NotFoundError
from gateway.pagination import FilterSet, Page, paginate, sort_items
from gateway.services.base import format_price, utcnow
from gateway.store import DocumentStore, DuplicateKeyError

logger = logging.getLogger(__name__)

TESTS = "tests"
PACKAGES = "packages"
FACILITIES = "facilities"
FAVORITES = "favorites"
CATALOG_META = "catalog_meta"

TEST_SORT_FIELDS = ("popularity", "name", "price")
PACKAGE_SORT_FIELDS = ("popularity", "name", "price", "test_count", "rating")
SORT_ORDERS = ("asc", "desc")

CATEGORY_COLORS = {
    TestCategory.BLOOD_TEST: "#E53935",
    TestCategory.IMAGING: "#5E35B1",
    TestCategory.CARDIOLOGY: "#D81B60",
    TestCategory.WOMEN_HEALTH: "#EC407A",
    TestCategory.DIABETES: "#FB8C00",
    TestCategory.THYROID: "#00897B",
    TestCategory.LIVER: "#6D4C41",
    TestCategory.KIDNEY: "#1E88E5",
    TestCategory.CANCER_SCREENING: "#8E24AA",
    TestCategory.FITNESS: "#43A047",
    TestCategory.ALLERGY: "#FDD835",
    TestCategory.INFECTION: "#546E7A",
    TestCategory.OTHER: "#757575",
}

CATEGORY_ICONS = {
    TestCategory.BLOOD_TEST: "drop.fill",
    TestCategory.CARDIOLOGY: "heart.fill",
    TestCategory.DIABETES: "chart.line.uptrend.xyaxis",
    TestCategory.THYROID: "waveform.path.ecg",
    TestCategory.LIVER: "cross.case",
    TestCategory.KIDNEY: "drop.circle",
    TestCategory.FITNESS: "figure.run",
    TestCategory.WOMEN_HEALTH: "figure.dress.line.vertical.figure",
}

SAMPLE_ICONS = {
    SampleType.BLOOD: "drop.fill",
    SampleType.URINE: "testtube.2",
    SampleType.SWAB: "bandage",
    SampleType.IMAGING: "waveform",
}


@dataclass
class TestQuery:
    __test__ = False

    search: Optional[str] = None
    category: Optional[TestCategory] = None
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    fasting_required: Optional[bool] = None
    sample_type: Optional[SampleType] = None
    featured: Optional[bool] = None
    available: Optional[bool] = None
    sort_by: str = "popularity"
    sort_order: str = "desc"
    offset: int = 0
    limit: int = 20


@dataclass
class PackageQuery:
    search: Optional[str] = None
    category: Optional[str] = None
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    test_count_min: Optional[int] = None
    test_count_max: Optional[int] = None
    featured: Optional[bool] = None
    sort_by: str = "popularity"
    sort_order: str = "desc"
    offset: int = 0
    limit: int = 10


def _matches_search(term: str, *fields) -> bool:
    term = term.lower()
    for value in fields:
        if isinstance(value, list):
            if any(term in str(v).lower() for v in value):
                return True
        elif value and term in str(value).lower():
            return True
    return False


def fasting_data(value: str, instructions: Optional[str] = None) -> FastingRequirementData:
    fasting = FastingRequirement(value)
    return FastingRequirementData(
        required=fasting.required, display_text=fasting.display_text, instructions=instructions
    )


def package_pricing(package_price: int, test_prices: List[int]) -> Tuple[int, int, int]:
    """``(individual_price, savings, discount_percentage)`` for a package."""
    individual = sum(test_prices)
    savings = individual - package_price
    discount = round(savings / individual * 100) if individual else 0
    return individual, savings, discount


class CatalogService:
    def __init__(self, store: DocumentStore, cache: Cache, settings: Settings):
        self.store = store
        self.cache = cache
        self.settings = settings

    # ==================== Cached reads ====================

    async def all_tests(self) -> List[dict]:
        async def loader():
            records = await self.store.find(TESTS)
            return [dict(r.data, id=r.id) for r in records]

        return await self.cache.get_or_load("catalog:tests", self.settings.TEST_LIST_CACHE_TTL, loader)

    async def all_packages(self) -> List[dict]:
        async def loader():
            records = await self.store.find(PACKAGES)
            return [dict(r.data, id=r.id) for r in records]

        return await self.cache.get_or_load("catalog:packages", self.settings.TEST_LIST_CACHE_TTL, loader)

    async def tests_by_id(self) -> Dict[str, dict]:
        return {doc["id"]: doc for doc in await self.all_tests()}

    async def invalidate(self) -> None:
        await self.cache.clear()

    # ==================== Tests ====================

    def test_item(self, doc: dict) -> TestItem:
        category = TestCategory(doc["category"])
        sample = SampleType(doc.get("sample_type", "other"))
        return TestItem(
            id=doc["id"],
            name=doc["name"],
            short_name=doc.get("short_name"),
            icon=doc.get("icon", "cross.vial"),
            category=category,
            duration=doc.get("duration", "10 mins"),
            price=format_price(doc["price"]),
            original_price=format_price(doc["original_price"]) if doc.get("original_price") else None,
            fasting=fasting_data(doc.get("fasting", "none"), doc.get("fasting_instructions")),
            sample_type=SampleTypeData(
                type=sample, display_name=sample.display_name, icon=SAMPLE_ICONS.get(sample, "cross.vial")
            ),
            report_time=doc.get("report_time", "24 hours"),
            description=doc.get("description", ""),
            tags=doc.get("tags", []),
            is_featured=doc.get("is_featured", False),
            is_available=doc.get("is_available", True),
            category_color=CATEGORY_COLORS.get(category, CATEGORY_COLORS[TestCategory.OTHER]),
        )

    async def list_tests(self, query: TestQuery) -> Tuple[TestsListData, Page]:
        docs = await self.all_tests()

        filters: FilterSet[dict] = FilterSet()
        filters.add(
            "search",
            lambda d: _matches_search(query.search, d["name"], d.get("short_name"), d.get("description"), d.get("tags", [])),
            active=bool(query.search),
        )
        filters.add("category", lambda d: TestCategory(d["category"]) == query.category, active=query.category is not None)
        filters.add(
            "price",
            lambda d: (query.price_min is None or d["price"] >= query.price_min)
            and (query.price_max is None or d["price"] <= query.price_max),
            active=query.price_min is not None or query.price_max is not None,
        )
        filters.add(
            "fasting",
            lambda d: FastingRequirement(d.get("fasting", "none")).required == query.fasting_required,
            active=query.fasting_required is not None,
        )
        filters.add(
            "sample_type",
            lambda d: SampleType(d.get("sample_type", "other")) == query.sample_type,
            active=query.sample_type is not None,
        )
        filters.add("featured", lambda d: d.get("is_featured", False) == query.featured, active=query.featured is not None)
        filters.add("available", lambda d: d.get("is_available", True) == query.available, active=query.available is not None)

        sort_keys = {
            "popularity": lambda d: d.get("popularity", 0),
            "name": lambda d: d["name"].lower(),
            "price": lambda d: d["price"],
        }
        matched = sort_items(filters.apply(docs), sort_keys[query.sort_by], descending=query.sort_order == "desc")
        page = paginate(matched, query.offset, query.limit)

        all_prices = [d["price"] for d in docs]
        data = TestsListData(
            tests=[self.test_item(d) for d in page.items],
            pagination=page.meta(),
            filters_applied=FiltersApplied(
                search=query.search,
                category=query.category.value if query.category else None,
                price_range=PriceRangeData(
                    min=query.price_min if query.price_min is not None else min(all_prices, default=0),
                    max=query.price_max if query.price_max is not None else max(all_prices, default=0),
                ),
                fasting_required=query.fasting_required,
                sample_type=query.sample_type.value if query.sample_type else None,
                featured=query.featured,
                available=query.available,
            ),
            available_filters=self._test_facets(docs, filters),
        )
        return data, page

    def _test_facets(self, docs: List[dict], filters: FilterSet) -> AvailableFilters:
        categories = filters.facet(docs, "category", lambda d: TestCategory(d["category"]))
        samples = filters.facet(docs, "sample_type", lambda d: SampleType(d.get("sample_type", "other")))
        fasting = filters.facet(docs, "fasting", lambda d: FastingRequirement(d.get("fasting", "none")))
        prices = [d["price"] for d in filters.apply(docs, exclude="price")]
        return AvailableFilters(
            categories=[
                CategoryFilterData(
                    key=category.value,
                    display_name=category.display_name,
                    count=count,
                    color=CATEGORY_COLORS.get(category),
                )
                for category, count in sorted(categories.items(), key=lambda kv: kv[0].value)
            ],
            price_range=PriceRangeData(min=min(prices, default=0), max=max(prices, default=0)),
            sample_types=[
                SampleTypeFilterData(key=sample.value, display_name=sample.display_name, count=count)
                for sample, count in sorted(samples.items(), key=lambda kv: kv[0].value)
            ],
            fasting_options=[
                FastingOptionData(key=option.value, display_text=option.display_text, count=count)
                for option, count in sorted(fasting.items(), key=lambda kv: kv[0].value)
            ],
        )

    async def get_test(self, test_id: str) -> TestDetails:
        async def loader():
            tests = await self.tests_by_id()
            doc = tests.get(test_id)
            if doc is None:
                return None
            return (await self._test_details(doc, tests)).model_dump(mode="json")

        key = f"catalog:test:{test_id}"
        cached = await self.cache.get(key)
        if cached is None:
            cached = await loader()
            if cached is None:
                raise NotFoundError("Test", test_id)
            await self.cache.set(key, cached, self.settings.CATALOG_DETAIL_CACHE_TTL)
        return TestDetails.model_validate(cached)

    async def _test_details(self, doc: dict, tests: Dict[str, dict]) -> TestDetails:
        item = self.test_item(doc)
        fasting = item.fasting
        sections = [
            TestSection(type="about", title="About this test", content={"text": item.description}),
            TestSection(type="why_needed", title="Why it's needed", content={"text": doc.get("health_benefits", "")}),
            TestSection(type="insights", title="What it measures", content={"items": doc.get("key_measurements", [])}),
            TestSection(
                type="preparation",
                title="Preparation",
                content={"fasting": fasting.display_text, "instructions": fasting.instructions or ""},
            ),
            TestSection(type="results", title="Results", content={"report_time": item.report_time}),
        ]
        related = [
            RelatedTest(
                id=tests[rid]["id"],
                name=tests[rid]["name"],
                price=format_price(tests[rid]["price"]),
                category=TestCategory(tests[rid]["category"]),
            )
            for rid in doc.get("related_test_ids", [])
            if rid in tests
        ]
        return TestDetails(
            **item.model_dump(),
            key_measurements=doc.get("key_measurements", []),
            health_benefits=doc.get("health_benefits", ""),
            sections=sections,
            related_tests=related,
            available_labs=await self._labs_offering([doc["id"]], tests),
        )

    async def _labs_offering(self, test_ids: List[str], tests: Dict[str, dict]) -> List[AvailableLab]:
        labs = []
        for record in await self.store.find(FACILITIES):
            facility = record.data
            offered = set(facility.get("test_ids", []))
            if not set(test_ids) <= offered:
                continue
            base = sum(tests[t]["price"] for t in test_ids if t in tests)
            labs.append(
                AvailableLab(
                    id=record.id,
                    name=facility["name"],
                    location=f"{facility['address']['street']}, {facility['address']['city']}",
                    rating=facility.get("rating", 0),
                    price=format_price(base * facility.get("price_factor", 1.0)),
                    is_walk_in_available="walk_in" in facility.get("features", []),
                    offers_home_collection=facility.get("home_collection_available", False),
                    accepts_insurance=facility.get("accepts_insurance", False),
                )
            )
        return sorted(labs, key=lambda lab: -lab.rating)

    # ==================== Packages ====================

    def package_item(self, doc: dict, tests: Dict[str, dict]) -> HealthPackage:
        included = [tests[t] for t in doc.get("test_ids", []) if t in tests]
        individual, savings, discount = package_pricing(doc["package_price"], [t["price"] for t in included])

        by_category = defaultdict(int)
        for test in included:
            by_category[TestCategory(test["category"])] += 1

        return HealthPackage(
            id=doc["id"],
            name=doc["name"],
            short_name=doc.get("short_name"),
            icon=doc.get("icon", "cross.case"),
            description=doc.get("description", ""),
            duration=doc.get("duration", "30 mins"),
            total_tests=len(included),
            fasting_requirement=fasting_data(doc.get("fasting", "none")),
            report_time=doc.get("report_time", "24 hours"),
            package_price=doc["package_price"],
            individual_price=individual,
            savings=savings,
            discount_percentage=discount,
            formatted_price=format_price(doc["package_price"]),
            formatted_original_price=format_price(individual),
            formatted_savings=format_price(savings),
            is_featured=doc.get("is_featured", False),
            is_available=doc.get("is_available", True),
            is_popular=doc.get("is_popular", False),
            category=doc.get("category", "general"),
            average_rating=doc.get("average_rating", 0.0),
            review_count=doc.get("review_count", 0),
            test_categories=[
                TestCategoryData(
                    name=category.display_name, icon=CATEGORY_ICONS.get(category, "cross.vial"), test_count=count
                )
                for category, count in by_category.items()
            ],
        )

    async def list_packages(self, query: PackageQuery) -> Tuple[PackagesListData, Page]:
        tests = await self.tests_by_id()
        packages = [self.package_item(doc, tests) for doc in await self.all_packages()]
        popularity = {doc["id"]: doc.get("popularity", 0) for doc in await self.all_packages()}

        filters: FilterSet[HealthPackage] = FilterSet()
        filters.add(
            "search",
            lambda p: _matches_search(query.search, p.name, p.short_name, p.description),
            active=bool(query.search),
        )
        filters.add("category", lambda p: p.category == query.category, active=query.category is not None)
        filters.add(
            "price",
            lambda p: (query.price_min is None or p.package_price >= query.price_min)
            and (query.price_max is None or p.package_price <= query.price_max),
            active=query.price_min is not None or query.price_max is not None,
        )
        filters.add(
            "test_count",
            lambda p: (query.test_count_min is None or p.total_tests >= query.test_count_min)
            and (query.test_count_max is None or p.total_tests <= query.test_count_max),
            active=query.test_count_min is not None or query.test_count_max is not None,
        )
        filters.add("featured", lambda p: p.is_featured == query.featured, active=query.featured is not None)

        sort_keys = {
            "popularity": lambda p: popularity.get(p.id, 0),
            "name": lambda p: p.name.lower(),
            "price": lambda p: p.package_price,
            "test_count": lambda p: p.total_tests,
            "rating": lambda p: p.average_rating,
        }
        matched = sort_items(filters.apply(packages), sort_keys[query.sort_by], descending=query.sort_order == "desc")
        page = paginate(matched, query.offset, query.limit)

        prices = [p.package_price for p in filters.apply(packages, exclude="price")]
        counts = [p.total_tests for p in filters.apply(packages, exclude="test_count")]
        categories = filters.facet(packages, "category", lambda p: p.category)
        all_prices = [p.package_price for p in packages]

        test_count_range = None
        if query.test_count_min is not None or query.test_count_max is not None:
            test_count_range = TestCountRangeData(
                min=query.test_count_min if query.test_count_min is not None else 0,
                max=query.test_count_max if query.test_count_max is not None else max(counts, default=0),
            )

        data = PackagesListData(
            packages=page.items,
            pagination=page.meta(),
            filters_applied=PackageFiltersApplied(
                search=query.search,
                category=query.category,
                price_range=PriceRangeData(
                    min=query.price_min if query.price_min is not None else min(all_prices, default=0),
                    max=query.price_max if query.price_max is not None else max(all_prices, default=0),
                ),
                test_count_range=test_count_range,
                featured=query.featured,
            ),
            available_filters=PackageAvailableFilters(
                price_range=PriceRangeData(min=min(prices, default=0), max=max(prices, default=0)),
                test_count_range=TestCountRangeData(min=min(counts, default=0), max=max(counts, default=0)),
                categories=[
                    CategoryFilterData(key=key, display_name=key.replace("_", " ").title(), count=count)
                    for key, count in sorted(categories.items())
                ],
            ),
        )
        return data, page

    async def get_package(self, package_id: str) -> PackageDetails:
        key = f"catalog:package:{package_id}"
        cached = await self.cache.get(key)
        if cached is None:
            docs = {doc["id"]: doc for doc in await self.all_packages()}
            doc = docs.get(package_id)
            if doc is None:
                raise NotFoundError("Package", package_id)
            tests = await self.tests_by_id()
            cached = (await self._package_details(doc, docs, tests)).model_dump(mode="json")
            await self.cache.set(key, cached, self.settings.CATALOG_DETAIL_CACHE_TTL)
        return PackageDetails.model_validate(cached)

    async def _package_details(self, doc: dict, packages: Dict[str, dict], tests: Dict[str, dict]) -> PackageDetails:
        item = self.package_item(doc, tests)
        grouped: Dict[TestCategory, List[dict]] = defaultdict(list)
        for test_id in doc.get("test_ids", []):
            if test_id in tests:
                grouped[TestCategory(tests[test_id]["category"])].append(tests[test_id])

        test_ids = set(doc.get("test_ids", []))
        related = sorted(
            (p for pid, p in packages.items() if pid != doc["id"] and test_ids & set(p.get("test_ids", []))),
            key=lambda p: -len(test_ids & set(p.get("test_ids", []))),
        )

        fields = item.model_dump(exclude={"test_categories"})
        return PackageDetails(
            **fields,
            test_categories=[
                DetailedTestCategory(
                    id=category.value,
                    name=category.display_name,
                    icon=CATEGORY_ICONS.get(category, "cross.vial"),
                    test_count=len(members),
                    tests=[PackageTest(id=t["id"], name=t["name"], short_name=t.get("short_name")) for t in members],
                )
                for category, members in grouped.items()
            ],
            recommended_for=doc.get("recommended_for", []),
            not_suitable_for=doc.get("not_suitable_for", []),
            health_insights=HealthInsights(**doc.get("health_insights", {})),
            preparation_instructions=PreparationInstructions(**doc.get("preparation_instructions", {})),
            available_labs=await self._labs_offering(doc.get("test_ids", []), tests),
            customer_reviews=doc.get("customer_reviews", []),
            faq_items=doc.get("faq_items", []),
            related_packages=[
                RelatedPackage(
                    id=p["id"],
                    name=p["name"],
                    package_price=p["package_price"],
                    total_tests=len([t for t in p.get("test_ids", []) if t in tests]),
                )
                for p in related[:3]
            ],
        )

    # ==================== Favorites ====================

    async def add_favorite(self, user_id: str, test_id: str) -> FavoriteStatus:
        if test_id not in await self.tests_by_id():
            raise NotFoundError("Test", test_id)
        try:
            await self.store.insert(
                FAVORITES,
                f"{user_id}:{test_id}",
                {"user_id": user_id, "test_id": test_id, "added_at": utcnow().isoformat()},
            )
        except DuplicateKeyError:
            pass  # already a favorite
        return FavoriteStatus(test_id=test_id, is_favorite=True)

    async def remove_favorite(self, user_id: str, test_id: str) -> FavoriteStatus:
        await self.store.delete(FAVORITES, f"{user_id}:{test_id}")
        return FavoriteStatus(test_id=test_id, is_favorite=False)

    async def list_favorites(self, user_id: str, offset: int, limit: int) -> Tuple[FavoritesListData, Page]:
        tests = await self.tests_by_id()
        records = await self.store.find(FAVORITES, user_id=user_id)
        favorites = [
            FavoriteTest(
                id=r.data["test_id"],
                name=tests[r.data["test_id"]]["name"],
                price=format_price(tests[r.data["test_id"]]["price"]),
                category=TestCategory(tests[r.data["test_id"]]["category"]).value,
                added_at=r.data["added_at"],
            )
            for r in records
            if r.data["test_id"] in tests
        ]
        favorites.sort(key=lambda f: f.added_at, reverse=True)
        page = paginate(favorites, offset, limit)
        return FavoritesListData(favorites=page.items, pagination=page.meta()), page

    # ==================== Search ====================

    async def suggestions(self, q: str, limit: int = 10) -> SearchSuggestionsData:
        term = q.strip().lower()
        tests = await self.all_tests()
        suggestions: List[SearchSuggestion] = []

        category_counts = defaultdict(int)
        for doc in tests:
            category_counts[TestCategory(doc["category"])] += 1
        for category, count in category_counts.items():
            if term in category.value or term in category.display_name.lower():
                suggestions.append(SearchSuggestion(text=category.display_name, type="category", count=count))

        matching_tests = [
            d for d in tests if _matches_search(term, d["name"], d.get("short_name"), d.get("tags", []))
        ]
        matching_tests.sort(key=lambda d: -d.get("popularity", 0))
        suggestions.extend(SearchSuggestion(text=d["name"], type="test", count=1) for d in matching_tests)

        test_ids = {d["id"] for d in tests}
        for doc in await self.all_packages():
            if _matches_search(term, doc["name"], doc.get("short_name"), doc.get("description")):
                count = len([t for t in doc.get("test_ids", []) if t in test_ids])
                suggestions.append(SearchSuggestion(text=doc["name"], type="package", count=count))

        popular = await self.store.get(CATALOG_META, "popular_searches")
        return SearchSuggestionsData(
            suggestions=suggestions[:limit],
            popular_searches=popular.data.get("items", []) if popular else [],
        )
