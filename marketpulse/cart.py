from typing import Dict, Iterable, List, Tuple

from flask import jsonify
from pymongo.errors import DuplicateKeyError

from .access import current_email
from .errors import InvalidInput, NotFound
from .utils import (
    isoformat,
    normalize_email,
    parse_object_id,
    request_payload,
    safe_float,
    safe_positive_int,
    utc_now,
)

CART_ACTIONS = ("increase", "decrease")


def serialize_cart_item(document) -> Dict[str, object]:
    quantity = safe_positive_int(document.get("quantity"), 1) or 1
    price_value = round(safe_float(document.get("pricePerUnit"), 0.0), 2)
    return {
        "id": str(document.get("_id")),
        "productId": document.get("productId", ""),
        "itemName": document.get("itemName", "") or "",
        "marketName": document.get("marketName", "") or "",
        "image": document.get("image", "") or "",
        "pricePerUnit": price_value,
        "quantity": quantity,
        "lineTotal": round(price_value * quantity, 2),
        "createdAt": isoformat(document.get("createdAt")),
    }


def calculate_cart_totals(items: List[Dict]) -> Dict[str, float]:
    subtotal = 0.0
    total_items = 0
    for item in items:
        quantity = safe_positive_int(item.get("quantity"), 0)
        subtotal += safe_float(item.get("pricePerUnit"), 0.0) * quantity
        total_items += quantity
    return {"totalAmount": round(subtotal, 2), "totalItems": total_items}


class Cart:
    def __init__(self, cart, products):
        self.cart = cart
        self.products = products

    def add(self, email: str, product_id) -> Tuple[Dict, bool]:
        if not product_id:
            raise InvalidInput("productId is required.")
        object_id = parse_object_id(product_id, "product")
        product_document = self.products.find_one({"_id": object_id, "status": "approved"})
        if not product_document:
            raise NotFound("Product not found.")

        item_key = {"buyerEmail": normalize_email(email), "productId": str(object_id)}
        increment = {
            "$inc": {"quantity": 1},
            "$setOnInsert": {
                **item_key,
                "itemName": product_document.get("itemName", "") or "",
                "marketName": product_document.get("marketName", "") or "",
                "pricePerUnit": round(safe_float(product_document.get("pricePerUnit"), 0.0), 2),
                "image": product_document.get("image", "") or "",
                "createdAt": utc_now(),
            },
        }
        try:
            inserted = self.cart.upsert(item_key, increment)
        except DuplicateKeyError:
            # A concurrent add created the line first; this retry increments it.
            inserted = self.cart.upsert(item_key, increment)
        return self.cart.find_one(item_key), inserted

    def items(self, email: str) -> List[Dict]:
        return self.cart.find(
            {"buyerEmail": normalize_email(email)}, sort=[("createdAt", 1)]
        )

    def adjust(self, email: str, item_id: str, action: str) -> Dict:
        action = str(action or "").strip().lower()
        if action not in CART_ACTIONS:
            raise InvalidInput("Action must be 'increase' or 'decrease'.")

        item_key = {
            "_id": parse_object_id(item_id, "cart item"),
            "buyerEmail": normalize_email(email),
        }
        if action == "increase":
            updated = self.cart.update_if(item_key, {}, {"$inc": {"quantity": 1}})
        else:
            updated = self.cart.update_if(
                item_key, {"quantity": {"$gt": 1}}, {"$inc": {"quantity": -1}}
            )

        if updated is None:
            if not self.cart.find_one(item_key, {"_id": 1}):
                raise NotFound("Cart item not found.")
            raise InvalidInput("Quantity cannot go below 1.")
        return updated

    def remove(self, email: str, item_id: str):
        deleted = self.cart.delete(
            {
                "_id": parse_object_id(item_id, "cart item"),
                "buyerEmail": normalize_email(email),
            }
        )
        if not deleted:
            raise NotFound("Cart item not found.")

    def clear(self, email: str) -> int:
        return self.cart.delete_many({"buyerEmail": normalize_email(email)})

    def remove_products(self, email: str, product_ids: Iterable[str]) -> int:
        product_ids = sorted({str(product_id) for product_id in product_ids if product_id})
        if not product_ids:
            return 0
        return self.cart.delete_many(
            {"buyerEmail": normalize_email(email), "productId": {"$in": product_ids}}
        )


def register_routes(app, access, cart: Cart):
    @app.route("/cart", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def add_to_cart():
        payload = request_payload()
        document, inserted = cart.add(current_email(), payload.get("productId"))
        return (
            jsonify(
                {
                    "message": "Added to cart." if inserted else "Cart quantity updated.",
                    "item": serialize_cart_item(document),
                }
            ),
            201 if inserted else 200,
        )

    @app.route("/get-cart", methods=["GET"])
    @access.verify_token
    @access.verify_email_param
    @access.verify_role("user")
    def get_cart():
        documents = cart.items(current_email())
        return jsonify(
            {
                "items": [serialize_cart_item(document) for document in documents],
                **calculate_cart_totals(documents),
            }
        )

    @app.route("/cart/update/<item_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("user")
    def update_cart_item(item_id: str):
        payload = request_payload()
        updated = cart.adjust(current_email(), item_id, payload.get("action"))
        return jsonify({"message": "Cart updated.", "item": serialize_cart_item(updated)})

    @app.route("/delete-productCart/<item_id>", methods=["DELETE"])
    @access.verify_token
    @access.verify_role("user")
    def delete_cart_item(item_id: str):
        cart.remove(current_email(), item_id)
        return jsonify({"message": "Removed from cart.", "deletedCount": 1})

    @app.route("/clear-cart", methods=["DELETE"])
    @access.verify_token
    @access.verify_role("user")
    def clear_cart():
        deleted = cart.clear(current_email())
        return jsonify({"message": "Cart cleared.", "deletedCount": deleted})
