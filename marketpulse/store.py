"""Document store access.

Every component receives the :class:`MongoStore` built by ``create_app`` and
talks to its own collection through the small :class:`Collection` adapter.
Tests substitute an in-memory store exposing the same adapter methods.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument

logger = logging.getLogger(__name__)

SortSpec = Optional[Sequence[Tuple[str, int]]]

COLLECTION_NAMES = {
    "users": "users",
    "vendor_requests": "vendor_requests",
    "products": "products",
    "advertisements": "advertisements",
    "wishlist": "wishlist",
    "cart": "carts",
    "payments": "payments",
    "comments": "comments",
}


class Collection:
    """Thin adapter over a pymongo collection."""

    def __init__(self, collection):
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    def find_one(self, query: Dict, projection: Optional[Dict] = None):
        return self._collection.find_one(query, projection)

    def find(
        self,
        query: Optional[Dict] = None,
        sort: SortSpec = None,
        skip: int = 0,
        limit: int = 0,
        projection: Optional[Dict] = None,
    ) -> List[Dict]:
        cursor = self._collection.find(query or {}, projection)
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def count(self, query: Optional[Dict] = None) -> int:
        return self._collection.count_documents(query or {})

    def insert(self, document: Dict):
        result = self._collection.insert_one(document)
        document["_id"] = result.inserted_id
        return result.inserted_id

    def update(self, query: Dict, update: Dict) -> int:
        return self._collection.update_one(query, update).matched_count

    def update_if(self, query: Dict, precondition: Dict, update: Dict):
        """Apply ``update`` only while ``precondition`` holds; return the new document or None."""
        return self._collection.find_one_and_update(
            {**query, **precondition},
            update,
            return_document=ReturnDocument.AFTER,
        )

    def upsert(self, query: Dict, update: Dict) -> bool:
        """Update the matching document or insert one; True when a document was inserted."""
        result = self._collection.update_one(query, update, upsert=True)
        return result.upserted_id is not None

    def delete(self, query: Dict) -> int:
        return self._collection.delete_one(query).deleted_count

    def delete_many(self, query: Dict) -> int:
        return self._collection.delete_many(query).deleted_count

    def create_index(self, keys, **options):
        return self._collection.create_index(keys, **options)


class MongoStore:
    def __init__(self, db):
        self.db = db
        for attribute, collection_name in COLLECTION_NAMES.items():
            setattr(self, attribute, Collection(db[collection_name]))

    def ensure_indexes(self):
        indexes = [
            (self.users, [("email", ASCENDING)], {"unique": True}),
            (
                self.wishlist,
                [("email", ASCENDING), ("productId", ASCENDING)],
                {"unique": True},
            ),
            (
                self.cart,
                [("buyerEmail", ASCENDING), ("productId", ASCENDING)],
                {"unique": True},
            ),
            (
                self.payments,
                [("paymentIntentId", ASCENDING)],
                {"unique": True, "sparse": True},
            ),
            (self.payments, [("status", ASCENDING), ("createdAt", DESCENDING)], {}),
            (self.products, [("status", ASCENDING), ("createdAt", DESCENDING)], {}),
        ]
        for collection, keys, options in indexes:
            try:
                collection.create_index(keys, **options)
            except Exception as exc:
                logger.warning(
                    "Unable to ensure index %s on %s: %s", keys, collection.name, exc
                )
