from typing import Dict

from flask import jsonify, request

from .access import current_email
from .errors import InvalidInput, NotFound
from .utils import isoformat, parse_object_id, request_payload, safe_positive_int, utc_now


def serialize_comment(document) -> Dict[str, object]:
    return {
        "id": str(document.get("_id")),
        "productId": document.get("productId", ""),
        "userEmail": document.get("userEmail", ""),
        "userName": document.get("userName", "") or "",
        "rating": document.get("rating", 0),
        "text": document.get("text", "") or "",
        "date": isoformat(document.get("date")),
    }


def register_routes(app, access, store, directory):
    @app.route("/comments", methods=["POST"])
    @access.verify_token
    @access.verify_role("user", "vendor", "admin")
    def add_comment():
        payload = request_payload()
        text = str(payload.get("text") or payload.get("comment") or "").strip()
        rating = safe_positive_int(payload.get("rating"), 0)
        if not text:
            raise InvalidInput("Comment text is required.")
        if rating < 1 or rating > 5:
            raise InvalidInput("Rating must be between 1 and 5.")

        object_id = parse_object_id(payload.get("productId"), "product")
        if not store.products.find_one({"_id": object_id}, {"_id": 1}):
            raise NotFound("Product not found.")

        comment = {
            "productId": str(object_id),
            "userEmail": current_email(),
            "userName": directory.display_name(current_email()),
            "rating": rating,
            "text": text,
            "date": utc_now(),
        }
        store.comments.insert(comment)
        return jsonify({"message": "Comment added.", "comment": serialize_comment(comment)}), 201

    @app.route("/comments", methods=["GET"])
    @access.verify_token
    @access.verify_role("user", "vendor", "admin")
    def list_comments():
        product_id = (request.args.get("productId") or "").strip()
        if not product_id:
            raise InvalidInput("productId is required.")
        documents = store.comments.find({"productId": product_id}, sort=[("date", -1)])
        return jsonify({"comments": [serialize_comment(document) for document in documents]})
