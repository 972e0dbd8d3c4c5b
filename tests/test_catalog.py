"""Tests for the test catalog, health packages and favorites."""

import pytest

from gateway.seed import check_catalog, load_catalog
from gateway.services.catalog import package_pricing
from tests.conftest import API

pytestmark = pytest.mark.anyio


class TestCatalogData:
    """Test cases for the bundled catalog."""

    def test_bundled_catalog_is_consistent(self):
        catalog = load_catalog()
        check_catalog(catalog)
        assert len(catalog["tests"]) == 15

    def test_unknown_test_in_package(self):
        catalog = load_catalog()
        catalog["packages"][0]["test_ids"].append("no-such-test")
        with pytest.raises(ValueError):
            check_catalog(catalog)

    def test_package_pricing(self):
        assert package_pricing(2199, [600, 300, 850, 1400]) == (3150, 951, 30)
        assert package_pricing(0, []) == (0, 0, 0)


class TestListTests:
    """Test cases for GET /tests."""

    async def test_default_page(self, client):
        response = await client.get(f"{API}/tests")
        assert response.status_code == 200
        body = response.json()
        assert len(body["data"]["tests"]) == 15
        assert body["pagination"] == {"offset": 0, "limit": 20, "total": 15, "has_more": False}

    async def test_filters_and_facets(self, client):
        response = await client.get(f"{API}/tests", params={"category": "cardiology", "price_max": 1000})
        assert response.status_code == 200
        data = response.json()["data"]

        assert {t["id"] for t in data["tests"]} == {"lipid-profile", "ecg", "hs-crp"}
        categories = {c["key"]: c["count"] for c in data["available_filters"]["categories"]}
        assert categories["cardiology"] == 3
        assert sum(categories.values()) == 12
        assert data["filters_applied"]["price_range"]["max"] == 1000

    async def test_category_alias(self, client):
        response = await client.get(f"{API}/tests", params={"category": "cardiovascular"})
        assert response.json()["pagination"]["total"] == 4

    async def test_search_and_sort(self, client):
        response = await client.get(
            f"{API}/tests", params={"search": "heart", "sort_by": "price", "sort_order": "asc"}
        )
        names = [t["name"] for t in response.json()["data"]["tests"]]
        assert names == ["Electrocardiogram", "Lipid Profile", "High Sensitivity CRP", "Troponin I"]

    async def test_fasting_filter(self, client):
        response = await client.get(f"{API}/tests", params={"fasting_required": "true"})
        ids = {t["id"] for t in response.json()["data"]["tests"]}
        assert ids == {"lipid-profile", "fasting-glucose"}

    async def test_pagination(self, client):
        response = await client.get(f"{API}/tests", params={"offset": 10, "limit": 10})
        body = response.json()
        assert len(body["data"]["tests"]) == 5
        assert body["pagination"]["has_more"] is False

    async def test_limit_above_max(self, client):
        response = await client.get(f"{API}/tests", params={"limit": 51})
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "limit"

    async def test_inverted_price_range(self, client):
        response = await client.get(f"{API}/tests", params={"price_min": 2000, "price_max": 500})
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "price_min"

    async def test_several_bad_parameters(self, client):
        response = await client.get(f"{API}/tests", params={"sort_by": "colour", "sort_order": "up", "offset": -1})
        assert response.status_code == 400
        fields = {d["field"] for d in response.json()["error"]["details"]}
        assert fields == {"offset", "sort_by", "sort_order"}

    async def test_malformed_numbers_are_reported_together(self, client):
        response = await client.get(
            f"{API}/tests", params={"price_min": "abc", "fasting_required": "maybe", "limit": 999}
        )
        assert response.status_code == 400
        fields = {d["field"] for d in response.json()["error"]["details"]}
        assert fields == {"price_min", "fasting_required", "limit"}


class TestTestDetails:
    """Test cases for GET /tests/{id}."""

    async def test_details(self, client):
        response = await client.get(f"{API}/tests/lipid-profile")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["price"] == "₹600"
        assert data["fasting"]["required"] is True
        assert [s["type"] for s in data["sections"]][0] == "about"
        assert data["available_labs"]

    async def test_unknown_test(self, client):
        response = await client.get(f"{API}/tests/unicorn-panel")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_suggestions(self, client):
        response = await client.get(f"{API}/tests/search/suggestions", params={"q": "heart"})
        assert response.status_code == 200
        suggestions = response.json()["data"]["suggestions"]
        assert {"text": "Heart Health Package", "type": "package", "count": 4} in suggestions
        assert any(s["type"] == "test" for s in suggestions)

    async def test_suggestions_need_a_query(self, client):
        response = await client.get(f"{API}/tests/search/suggestions")
        assert response.status_code == 400


class TestPackages:
    """Test cases for health packages."""

    async def test_list(self, client):
        response = await client.get(f"{API}/packages")
        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["limit"] == 10
        assert body["pagination"]["total"] == 5

    async def test_limit_above_max(self, client):
        response = await client.get(f"{API}/packages", params={"limit": 21})
        assert response.status_code == 400

    async def test_test_count_filter(self, client):
        response = await client.get(f"{API}/packages", params={"test_count_min": 5})
        ids = {p["id"] for p in response.json()["data"]["packages"]}
        assert ids == {"basic-health-checkup", "diabetes-care", "full-body-checkup", "womens-wellness"}

    async def test_pricing(self, client):
        response = await client.get(f"{API}/packages/heart-health")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["individual_price"] == 3150
        assert data["savings"] == 951
        assert data["discount_percentage"] == 30
        assert data["total_tests"] == 4
        cardiology = next(c for c in data["test_categories"] if c["id"] == "cardiology")
        assert cardiology["test_count"] == 4

    async def test_unknown_package(self, client):
        response = await client.get(f"{API}/packages/nope")
        assert response.status_code == 404


class TestFavorites:
    """Test cases for favorite tests."""

    async def test_add_is_idempotent(self, client, user):
        for _ in range(2):
            response = await client.post(f"{API}/tests/ecg/favorite", headers=user["headers"])
            assert response.status_code == 200
            assert response.json()["data"]["is_favorite"] is True

        response = await client.get(f"{API}/favorites/tests", headers=user["headers"])
        favorites = response.json()["data"]["favorites"]
        assert [f["id"] for f in favorites] == ["ecg"]

    async def test_remove(self, client, user):
        await client.post(f"{API}/tests/ecg/favorite", headers=user["headers"])
        response = await client.delete(f"{API}/tests/ecg/favorite", headers=user["headers"])
        assert response.json()["data"]["is_favorite"] is False

        again = await client.delete(f"{API}/tests/ecg/favorite", headers=user["headers"])
        assert again.status_code == 200

        response = await client.get(f"{API}/favorites/tests", headers=user["headers"])
        assert response.json()["data"]["favorites"] == []

    async def test_unknown_test(self, client, user):
        response = await client.post(f"{API}/tests/unicorn-panel/favorite", headers=user["headers"])
        assert response.status_code == 404

    async def test_favorites_are_per_user(self, client, user, other_user):
        await client.post(f"{API}/tests/ecg/favorite", headers=user["headers"])
        response = await client.get(f"{API}/favorites/tests", headers=other_user["headers"])
        assert response.json()["data"]["favorites"] == []

    async def test_requires_auth(self, client):
        response = await client.get(f"{API}/favorites/tests")
        assert response.status_code == 401
