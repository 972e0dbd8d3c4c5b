"""Load the packaged test/package/facility catalog into the store.

Run ``python -m gateway.seed`` to seed the configured store without starting
the API.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from gateway.services.catalog import CATALOG_META, PACKAGES, TESTS, package_pricing
from gateway.services.facilities import FACILITIES
from gateway.store import DocumentStore, DuplicateKeyError

logger = logging.getLogger(__name__)

CATALOG_PATH = Path(__file__).parent / "data" / "catalog.json"


def load_catalog(path: Optional[Path] = None) -> Dict[str, Any]:
    with open(path or CATALOG_PATH, encoding="utf-8") as f:
        catalog = json.load(f)
    check_catalog(catalog)
    return catalog


def check_catalog(catalog: Dict[str, Any]) -> None:
    """Reject packages priced above their tests or naming unknown tests."""
    prices = {t["id"]: t["price"] for t in catalog.get("tests", [])}
    for package in catalog.get("packages", []):
        missing = [t for t in package["test_ids"] if t not in prices]
        if missing:
            raise ValueError(f"Package {package['id']} references unknown tests: {', '.join(missing)}")
        individual, savings, _ = package_pricing(package["package_price"], [prices[t] for t in package["test_ids"]])
        if savings < 0:
            raise ValueError(
                f"Package {package['id']} costs {package['package_price']}, more than its tests ({individual})"
            )


async def seed_catalog(store: DocumentStore, catalog: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
    """Insert catalog documents that are not in the store yet.

    Existing documents are left untouched, so seeding is safe to repeat.
    Returns the number of documents inserted per collection.
    """
    catalog = catalog if catalog is not None else load_catalog()
    inserted = {TESTS: 0, PACKAGES: 0, FACILITIES: 0}
    for collection in inserted:
        for item in catalog.get(collection, []):
            data = {k: v for k, v in item.items() if k != "id"}
            try:
                await store.insert(collection, item["id"], data)
                inserted[collection] += 1
            except DuplicateKeyError:
                continue

    if await store.get(CATALOG_META, "popular_searches") is None:
        await store.put(CATALOG_META, "popular_searches", {"items": catalog.get("popular_searches", [])})

    logger.info(
        f"Catalog seeded: {inserted[TESTS]} tests, {inserted[PACKAGES]} packages, "
        f"{inserted[FACILITIES]} facilities"
    )
    return inserted


async def main() -> None:
    from gateway.config import get_settings
    from gateway.store import create_store

    store = await create_store(get_settings())
    try:
        await seed_catalog(store)
    finally:
        await store.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(main())
