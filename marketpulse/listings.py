"""Generic moderated listing resource.

Products and advertisements share one lifecycle: a vendor creates a listing in
``pending`` status, an admin approves or rejects it, and the owner or an admin
may edit or delete it.  Each concrete listing supplies its owner field and the
payload normalizers; the routes live in the listing's own module.
"""
from typing import Callable, Dict, List, Optional, Tuple

from .errors import Conflict, Forbidden, InvalidInput, NotFound
from .utils import normalize_email, parse_object_id, utc_now

LISTING_STATUSES = ("pending", "approved", "rejected")


class ListingResource:
    def __init__(
        self,
        collection,
        owner_field: str,
        label: str,
        build_document: Callable[[Dict], Dict],
        build_update: Callable[[Dict, Dict], Dict],
    ):
        self.collection = collection
        self.owner_field = owner_field
        self.label = label
        self.build_document = build_document
        self.build_update = build_update

    def get(self, listing_id: str, query: Optional[Dict] = None):
        object_id = parse_object_id(listing_id, self.label)
        document = self.collection.find_one({**(query or {}), "_id": object_id})
        if not document:
            raise NotFound(f"{self.label.capitalize()} not found.")
        return document

    def list(
        self,
        query: Dict,
        page: int,
        limit: int,
        sort: Optional[List[Tuple[str, int]]] = None,
    ):
        total = self.collection.count(query)
        documents = self.collection.find(
            query,
            sort=sort or [("createdAt", -1)],
            skip=(page - 1) * limit,
            limit=limit,
        )
        return documents, total

    def can_manage(self, document, actor_email: str, actor_role: str) -> bool:
        if actor_role == "admin":
            return True
        if actor_role != "vendor":
            return False
        owner_email = normalize_email(document.get(self.owner_field))
        return bool(owner_email) and owner_email == normalize_email(actor_email)

    def create(self, owner_email: str, payload: Dict, **owner_fields):
        document = self.build_document(payload)
        now = utc_now()
        document.update(owner_fields)
        document[self.owner_field] = normalize_email(owner_email)
        document["status"] = "pending"
        document["createdAt"] = now
        document["updatedAt"] = now
        self.collection.insert(document)
        return document

    def update(self, listing_id: str, actor_email: str, actor_role: str, payload: Dict):
        document = self.get(listing_id)
        if not self.can_manage(document, actor_email, actor_role):
            raise Forbidden(f"You do not have permission to modify this {self.label}.")

        update = self.build_update(payload, document)
        if not update:
            raise InvalidInput("No changes were provided.")
        update.setdefault("$set", {})["updatedAt"] = utc_now()

        self.collection.update({"_id": document["_id"]}, update)
        return self.collection.find_one({"_id": document["_id"]})

    def delete(self, listing_id: str, actor_email: str, actor_role: str):
        document = self.get(listing_id)
        if not self.can_manage(document, actor_email, actor_role):
            raise Forbidden(f"You do not have permission to delete this {self.label}.")
        self.collection.delete({"_id": document["_id"]})
        return document

    def approve(self, listing_id: str):
        object_id = parse_object_id(listing_id, self.label)
        approved = self.collection.update_if(
            {"_id": object_id},
            {"status": {"$ne": "approved"}},
            {
                "$set": {"status": "approved", "updatedAt": utc_now()},
                "$unset": {"rejectionReason": "", "rejectionFeedback": ""},
            },
        )
        if approved is None:
            self._raise_transition_error(object_id, "approved")
        return approved

    def reject(self, listing_id: str, reason: str, feedback: str = ""):
        reason = str(reason or "").strip()
        if not reason:
            raise InvalidInput("A rejection reason is required.")

        object_id = parse_object_id(listing_id, self.label)
        rejected = self.collection.update_if(
            {"_id": object_id},
            {"status": {"$ne": "rejected"}},
            {
                "$set": {
                    "status": "rejected",
                    "rejectionReason": reason,
                    "rejectionFeedback": str(feedback or "").strip(),
                    "updatedAt": utc_now(),
                }
            },
        )
        if rejected is None:
            self._raise_transition_error(object_id, "rejected")
        return rejected

    def _raise_transition_error(self, object_id, target_status: str):
        if not self.collection.find_one({"_id": object_id}, {"status": 1}):
            raise NotFound(f"{self.label.capitalize()} not found.")
        raise Conflict(f"This {self.label} is already {target_status}.")
