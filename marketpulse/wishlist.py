from typing import Dict, List

from flask import jsonify
from pymongo.errors import DuplicateKeyError

from .access import current_email
from .errors import Conflict, InvalidInput, NotFound
from .products import serialize_product
from .utils import isoformat, normalize_email, parse_object_id, request_payload, utc_now


class Wishlist:
    def __init__(self, wishlist, products):
        self.wishlist = wishlist
        self.products = products

    def add(self, email: str, product_id) -> Dict:
        if not product_id:
            raise InvalidInput("productId is required.")
        object_id = parse_object_id(product_id, "product")
        if not self.products.find_one({"_id": object_id}, {"_id": 1}):
            raise NotFound("Product not found.")

        entry_key = {"email": normalize_email(email), "productId": str(object_id)}
        try:
            inserted = self.wishlist.upsert(
                entry_key, {"$setOnInsert": {**entry_key, "createdAt": utc_now()}}
            )
        except DuplicateKeyError:
            inserted = False
        if not inserted:
            raise Conflict("This product is already in your wishlist.")
        return self.wishlist.find_one(entry_key)

    def entries(self, email: str) -> List[Dict[str, object]]:
        documents = self.wishlist.find(
            {"email": normalize_email(email)}, sort=[("createdAt", -1)]
        )
        entries = []
        for document in documents:
            product_document = None
            try:
                product_document = self.products.find_one(
                    {"_id": parse_object_id(document.get("productId"), "product")}
                )
            except InvalidInput:
                product_document = None
            entries.append(
                {
                    "id": str(document.get("_id")),
                    "productId": document.get("productId", ""),
                    "createdAt": isoformat(document.get("createdAt")),
                    "product": serialize_product(product_document)
                    if product_document
                    else None,
                }
            )
        return entries

    def remove(self, email: str, entry_id: str):
        object_id = parse_object_id(entry_id, "wishlist item")
        deleted = self.wishlist.delete({"_id": object_id, "email": normalize_email(email)})
        if not deleted:
            raise NotFound("Wishlist item not found.")


def register_routes(app, access, wishlist: Wishlist):
    @app.route("/wishlist", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def add_to_wishlist():
        payload = request_payload()
        document = wishlist.add(current_email(), payload.get("productId"))
        return (
            jsonify({"message": "Added to wishlist.", "insertedId": str(document["_id"])}),
            201,
        )

    @app.route("/get-wishlist", methods=["GET"])
    @access.verify_token
    @access.verify_email_param
    @access.verify_role("user")
    def get_wishlist():
        return jsonify({"wishlist": wishlist.entries(current_email())})

    @app.route("/delete-wishlist/<entry_id>", methods=["DELETE"])
    @access.verify_token
    @access.verify_role("user")
    def delete_wishlist_entry(entry_id: str):
        wishlist.remove(current_email(), entry_id)
        return jsonify({"message": "Removed from wishlist.", "deletedCount": 1})
