"""
Catalog service — product listing, detail and admin CRUD.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List

from database import Storage
from errors import NotFoundError
from schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

SEED_PRODUCTS = [
    {
        "name": "Premium Cattle Pellets",
        "description": "High quality pellets for maximum nutrition",
        "price": Decimal("500.00"),
        "image_url": "/images/products.png",
        "category": "Feed",
    },
    {
        "name": "Mineral Lick Block",
        "description": "Essential minerals for cattle health",
        "price": Decimal("250.00"),
        "image_url": "/images/products.png",
        "category": "Supplements",
    },
]


def money(value) -> str:
    """Format an amount with two decimals, e.g. ``Decimal("5")`` -> ``"5.00"``."""
    return str(Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))


class CatalogService:
    def __init__(self, storage: Storage):
        self.storage = storage

    def list(self) -> List[dict]:
        return self.storage.get_products()

    def get(self, product_id: int) -> dict:
        product = self.storage.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def create(self, payload: ProductCreate, caller: dict) -> dict:
        doc = payload.model_dump()
        doc["price"] = money(doc["price"])
        product = self.storage.create_product(doc)
        logger.info("Product %s created", product["id"], extra={"user_id": caller["id"]})
        return product

    def update(self, product_id: int, payload: ProductUpdate, caller: dict) -> dict:
        updates = payload.model_dump(exclude_unset=True)
        if updates.get("price") is not None:
            updates["price"] = money(updates["price"])
        # name, description and price are required fields
        for key in ("name", "description", "price"):
            if key in updates and updates[key] is None:
                del updates[key]
        product = self.storage.update_product(product_id, updates)
        if product is None:
            raise NotFoundError("Product not found")
        logger.info("Product %s updated", product_id, extra={"user_id": caller["id"]})
        return product

    def delete(self, product_id: int, caller: dict) -> None:
        # Order items keep their product_id and price snapshot after this.
        if not self.storage.delete_product(product_id):
            raise NotFoundError("Product not found")
        logger.info("Product %s deleted", product_id, extra={"user_id": caller["id"]})

    def seed(self) -> int:
        """Insert the starter catalog when no products exist."""
        if self.storage.count_products() > 0:
            return 0
        for product in SEED_PRODUCTS:
            self.storage.create_product({**product, "price": money(product["price"]), "discount": 0})
        logger.info("Seeded %d products", len(SEED_PRODUCTS))
        return len(SEED_PRODUCTS)
