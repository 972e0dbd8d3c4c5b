"""Test and health package catalog schemas."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from contracts.schemas.enums import FastingRequirement, SampleType, TestCategory
from contracts.schemas.envelope import OffsetPagination


class FastingRequirementData(BaseModel):
    required: bool
    display_text: str
    instructions: Optional[str] = None


class SampleTypeData(BaseModel):
    type: SampleType
    display_name: str
    icon: str


class TestItem(BaseModel):
    """Test as it appears in list responses."""
    __test__ = False

    id: str
    name: str
    short_name: Optional[str] = None
    icon: str
    category: TestCategory
    duration: str
    price: str
    original_price: Optional[str] = None
    fasting: FastingRequirementData
    sample_type: SampleTypeData
    report_time: str
    description: str
    tags: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_available: bool = True
    category_color: str


class TestSection(BaseModel):
    __test__ = False

    type: Literal["about", "why_needed", "insights", "preparation", "results"]
    title: str
    content: dict = Field(default_factory=dict)


class RelatedTest(BaseModel):
    id: str
    name: str
    price: str
    category: TestCategory


class AvailableLab(BaseModel):
    id: str
    name: str
    location: str
    rating: float
    price: Optional[str] = None
    next_available: Optional[str] = None
    is_walk_in_available: Optional[bool] = None
    offers_home_collection: Optional[bool] = None
    accepts_insurance: Optional[bool] = None


class TestDetails(TestItem):
    key_measurements: List[str] = Field(default_factory=list)
    health_benefits: str = ""
    sections: List[TestSection] = Field(default_factory=list)
    related_tests: List[RelatedTest] = Field(default_factory=list)
    available_labs: List[AvailableLab] = Field(default_factory=list)


class PriceRangeData(BaseModel):
    min: int
    max: int


class TestCountRangeData(BaseModel):
    min: int
    max: int


class CategoryFilterData(BaseModel):
    key: str
    display_name: str
    count: int
    color: Optional[str] = None


class SampleTypeFilterData(BaseModel):
    key: str
    display_name: str
    count: int


class FastingOptionData(BaseModel):
    key: str
    display_text: str
    count: int


class FiltersApplied(BaseModel):
    search: Optional[str] = None
    category: Optional[str] = None
    price_range: PriceRangeData
    fasting_required: Optional[bool] = None
    sample_type: Optional[str] = None
    featured: Optional[bool] = None
    available: Optional[bool] = None


class AvailableFilters(BaseModel):
    categories: List[CategoryFilterData]
    price_range: PriceRangeData
    sample_types: List[SampleTypeFilterData]
    fasting_options: List[FastingOptionData]


class TestsListData(BaseModel):
    __test__ = False

    tests: List[TestItem]
    pagination: OffsetPagination
    filters_applied: FiltersApplied
    available_filters: AvailableFilters


class TestCategoryData(BaseModel):
    __test__ = False

    name: str
    icon: str
    test_count: int


class HealthPackage(BaseModel):
    """Package as it appears in list responses."""
    id: str
    name: str
    short_name: Optional[str] = None
    icon: str
    description: str
    duration: str
    total_tests: int
    fasting_requirement: FastingRequirementData
    report_time: str
    package_price: int
    individual_price: int
    savings: int
    discount_percentage: int
    formatted_price: str
    formatted_original_price: str
    formatted_savings: str
    is_featured: bool = False
    is_available: bool = True
    is_popular: bool = False
    category: str
    average_rating: float = 0.0
    review_count: int = 0
    test_categories: List[TestCategoryData] = Field(default_factory=list)


class PackageTest(BaseModel):
    id: str
    name: str
    short_name: Optional[str] = None


class DetailedTestCategory(BaseModel):
    id: str
    name: str
    icon: str
    test_count: int
    tests: List[PackageTest]


class HealthInsights(BaseModel):
    early_detection: List[str] = Field(default_factory=list)
    health_monitoring: List[str] = Field(default_factory=list)
    ai_powered_analysis: List[str] = Field(default_factory=list)
    additional_benefits: List[str] = Field(default_factory=list)


class PreparationInstructions(BaseModel):
    fasting_hours: int = 0
    day_before: List[str] = Field(default_factory=list)
    morning_of_test: List[str] = Field(default_factory=list)
    what_to_bring: List[str] = Field(default_factory=list)
    general_tips: List[str] = Field(default_factory=list)


class PackageVariant(BaseModel):
    id: str
    name: str
    price: int
    test_count: int
    is_popular: bool = False
    additional_tests: List[str] = Field(default_factory=list)


class CustomerReview(BaseModel):
    id: str
    customer_name: str
    rating: int = Field(ge=1, le=5)
    comment: str
    date: str
    is_verified: bool = False


class FAQItem(BaseModel):
    id: str
    question: str
    answer: str


class RelatedPackage(BaseModel):
    id: str
    name: str
    package_price: int
    total_tests: int


class PackageDetails(HealthPackage):
    test_categories: List[DetailedTestCategory] = Field(default_factory=list)
    recommended_for: List[str] = Field(default_factory=list)
    not_suitable_for: List[str] = Field(default_factory=list)
    health_insights: HealthInsights = Field(default_factory=HealthInsights)
    preparation_instructions: PreparationInstructions = Field(default_factory=PreparationInstructions)
    available_labs: List[AvailableLab] = Field(default_factory=list)
    package_variants: List[PackageVariant] = Field(default_factory=list)
    customer_reviews: List[CustomerReview] = Field(default_factory=list)
    faq_items: List[FAQItem] = Field(default_factory=list)
    related_packages: List[RelatedPackage] = Field(default_factory=list)


class PackageFiltersApplied(BaseModel):
    search: Optional[str] = None
    category: Optional[str] = None
    price_range: PriceRangeData
    test_count_range: Optional[TestCountRangeData] = None
    featured: Optional[bool] = None


class PackageAvailableFilters(BaseModel):
    price_range: PriceRangeData
    test_count_range: TestCountRangeData
    categories: List[CategoryFilterData]


class PackagesListData(BaseModel):
    packages: List[HealthPackage]
    pagination: OffsetPagination
    filters_applied: PackageFiltersApplied
    available_filters: PackageAvailableFilters


class FavoriteStatus(BaseModel):
    test_id: str
    is_favorite: bool


class FavoriteTest(BaseModel):
    id: str
    name: str
    price: str
    category: str
    added_at: datetime


class FavoritesListData(BaseModel):
    favorites: List[FavoriteTest]
    pagination: OffsetPagination


class SearchSuggestion(BaseModel):
    text: str
    type: Literal["test", "package", "category"]
    count: int


class SearchSuggestionsData(BaseModel):
    suggestions: List[SearchSuggestion]
    popular_searches: List[str]
