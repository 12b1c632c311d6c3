"""
MongoDB persistence for the storefront.

Each collection holds one kind of record:

- users             -> accounts (unique username)
- products          -> catalog entries
- orders            -> purchase records
- order_items       -> line items, one order each
- contact_messages  -> inbound contact-form messages

Documents use integer ``_id`` values drawn from the ``counters``
collection so ids stay small and URL friendly.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import InternalError

logger = logging.getLogger(__name__)

STORE_COLLECTIONS = ("users", "products", "orders", "order_items", "contact_messages")


def connect(database_url: str, database_name: str) -> Database:
    client = MongoClient(database_url, tz_aware=True)
    return client[database_name]


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    return doc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Storage:
    """Data access for every collection; services never talk to pymongo directly."""

    def __init__(self, db: Database):
        self.db = db

    def ensure_indexes(self) -> None:
        self.db["users"].create_index([("username", ASCENDING)], unique=True)
        self.db["orders"].create_index([("user_id", ASCENDING)])
        self.db["orders"].create_index([("gateway_order_ref", ASCENDING)])
        self.db["order_items"].create_index([("order_id", ASCENDING)])

    def collection_counts(self) -> dict:
        return {name: self.db[name].count_documents({}) for name in STORE_COLLECTIONS}

    def next_id(self, name: str) -> int:
        counter = self.db["counters"].find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> dict:
        """Insert a document with a fresh integer id and ``created_at``; return it serialized."""
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        doc["_id"] = self.next_id(collection_name)
        doc.setdefault("created_at", utcnow())
        self.db[collection_name].insert_one(doc)
        return serialize(doc)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None,
                      sort: Optional[list] = None, limit: int = 0) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return [serialize(d) for d in cursor]

    def _update(self, collection_name: str, filter_dict: dict, fields: dict) -> Optional[dict]:
        doc = self.db[collection_name].find_one_and_update(
            filter_dict,
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(doc)

    # Users

    def get_user(self, user_id: int) -> Optional[dict]:
        return serialize(self.db["users"].find_one({"_id": user_id}))

    def get_user_by_username(self, username: str) -> Optional[dict]:
        return serialize(self.db["users"].find_one({"username": username}))

    def create_user(self, user: dict) -> dict:
        return self.create_document("users", user)

    # Products

    def get_products(self) -> List[dict]:
        return self.get_documents("products", sort=[("_id", ASCENDING)])

    def get_product(self, product_id: int) -> Optional[dict]:
        return serialize(self.db["products"].find_one({"_id": product_id}))

    def create_product(self, product: dict) -> dict:
        return self.create_document("products", product)

    def update_product(self, product_id: int, updates: dict) -> Optional[dict]:
        if not updates:
            return self.get_product(product_id)
        return self._update("products", {"_id": product_id}, updates)

    def delete_product(self, product_id: int) -> bool:
        return self.db["products"].delete_one({"_id": product_id}).deleted_count == 1

    def count_products(self) -> int:
        return self.db["products"].count_documents({})

    # Orders

    def create_order_with_item(self, order: dict, item: dict) -> dict:
        """Insert an order and its line item; the order is removed again if the item insert fails."""
        now = utcnow()
        order = {**order, "created_at": now, "updated_at": now}
        created = self.create_document("orders", order)
        try:
            self.create_document("order_items", {**item, "order_id": created["id"]})
        except PyMongoError:
            logger.exception("Order item insert failed, rolling back order %s", created["id"])
            self.db["orders"].delete_one({"_id": created["id"]})
            raise InternalError("Failed to create order")
        return created

    def get_order(self, order_id: int) -> Optional[dict]:
        return serialize(self.db["orders"].find_one({"_id": order_id}))

    def get_order_by_gateway_ref(self, gateway_order_ref: str) -> Optional[dict]:
        return serialize(self.db["orders"].find_one({"gateway_order_ref": gateway_order_ref}))

    def get_user_orders(self, user_id: int) -> List[dict]:
        return self.get_documents("orders", {"user_id": user_id}, sort=[("_id", DESCENDING)])

    def get_all_orders(self) -> List[dict]:
        return self.get_documents("orders", sort=[("_id", DESCENDING)])

    def get_order_items(self, order_id: int) -> List[dict]:
        return self.get_documents("order_items", {"order_id": order_id}, sort=[("_id", ASCENDING)])

    def update_order_payment(self, gateway_order_ref: str, payment_ref: str) -> Optional[dict]:
        return self._update(
            "orders",
            {"gateway_order_ref": gateway_order_ref},
            {
                "payment_status": "paid",
                "status": "confirmed",
                "gateway_payment_ref": payment_ref,
                "updated_at": utcnow(),
            },
        )

    def update_order_delivery(self, order_id: int, updates: dict) -> Optional[dict]:
        return self._update("orders", {"_id": order_id}, {**updates, "updated_at": utcnow()})

    # Contact

    def create_contact_message(self, message: dict) -> dict:
        return self.create_document("contact_messages", message)

    def get_contact_messages(self) -> List[dict]:
        return self.get_documents("contact_messages", sort=[("_id", DESCENDING)])
