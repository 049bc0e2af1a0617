"""
Product catalog stored as a single JSON snapshot in the key-value store.

The whole list is read for every search; there is no pagination.
"""

import os
import json
import time
import random
import string
import logging
from datetime import datetime, timezone
from typing import List, Optional

from .exceptions import CatalogError, StoreError
from .models import Product, dump_products, load_products
from .store import KeyValueStore

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "products:all"
CATALOG_SEED_PATH = os.environ.get("CATALOG_SEED_PATH")


def load_products_file(path: str) -> List[Product]:
    """Read a JSON array of product records from disk."""
    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)
    if not isinstance(records, list):
        raise CatalogError(f"{path} must contain a JSON array of products")
    return [Product.from_dict(r) for r in records]


def _new_product_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"product_{int(time.time() * 1000)}_{suffix}"


class ProductCatalog:
    def __init__(self, store: KeyValueStore, seed_path: Optional[str] = None):
        self.store = store
        self.seed_path = seed_path if seed_path is not None else CATALOG_SEED_PATH

    async def _read(self) -> List[Product]:
        try:
            return load_products(await self.store.get(PRODUCTS_KEY))
        except (StoreError, ValueError) as e:
            logger.error(f"Error fetching products: {e}")
            raise CatalogError() from e

    async def get_all_products(self) -> List[Product]:
        """
        Return every product in the catalog.

        If the catalog is empty and a seed file is configured, it is
        loaded and persisted first.
        """
        products = await self._read()
        if not products and self.seed_path:
            logger.info(f"No products found, initializing from {self.seed_path}")
            try:
                seed = load_products_file(self.seed_path)
            except (OSError, ValueError) as e:
                raise CatalogError(f"Failed to load seed products: {e}") from e
            products = await self.initialize_products(seed)
        return products

    async def get_products_by_category(self, category: str) -> List[Product]:
        """Case-insensitive exact match on the category field."""
        wanted = category.lower()
        return [p for p in await self.get_all_products() if p.category.lower() == wanted]

    async def add_product(self, name: str, category: str, image_url: str,
                          price: float = 0.0, description: str = "") -> Product:
        products = await self.get_all_products()
        product = Product(
            id=_new_product_id(),
            name=name,
            category=category,
            image_url=image_url,
            price=price,
            description=description,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        products.append(product)
        await self._write(products)
        logger.info(f"Added product: {product.name}")
        return product

    async def initialize_products(self, products: List[Product]) -> List[Product]:
        """Replace the catalog snapshot."""
        products = list(products)
        await self._write(products)
        logger.info(f"Initialized {len(products)} products")
        return products

    async def clear(self) -> None:
        try:
            await self.store.delete(PRODUCTS_KEY)
        except StoreError as e:
            raise CatalogError("Failed to clear product data") from e

    async def _write(self, products: List[Product]) -> None:
        try:
            await self.store.set(PRODUCTS_KEY, dump_products(products))
        except StoreError as e:
            logger.error(f"Error writing products: {e}")
            raise CatalogError("Failed to write products to database") from e
