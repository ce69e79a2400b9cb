import re
from typing import Dict, List, Optional

from flask import jsonify, request

from .access import current_email, current_role
from .errors import InvalidInput, NotFound
from .listings import LISTING_STATUSES, ListingResource
from .utils import (
    build_pagination,
    isoformat,
    pagination_args,
    parse_iso_date,
    request_payload,
    safe_float,
    utc_now,
)

EDITABLE_TEXT_FIELDS = ("marketName", "marketDescription", "itemName", "itemDescription", "image")

APPROVED_SORTS = {
    "price_asc": [("pricePerUnit", 1), ("createdAt", -1)],
    "price_desc": [("pricePerUnit", -1), ("createdAt", -1)],
    "date_desc": [("date", -1), ("createdAt", -1)],
    "date_asc": [("date", 1), ("createdAt", -1)],
}


def normalize_market_date(value, default: Optional[str] = None) -> str:
    if value in (None, ""):
        if default:
            return default
        return utc_now().date().isoformat()
    parsed = parse_iso_date(value)
    if parsed is None:
        raise InvalidInput("Date must be an ISO date (YYYY-MM-DD).")
    return parsed.date().isoformat()


def normalize_price(value) -> float:
    price_value = safe_float(value, None)
    if price_value is None:
        raise InvalidInput("Price must be a valid number.")
    price_value = round(price_value, 2)
    if price_value <= 0:
        raise InvalidInput("Price must be greater than zero.")
    return price_value


def normalize_price_history(raw_prices) -> List[Dict[str, object]]:
    if raw_prices in (None, ""):
        return []
    if not isinstance(raw_prices, list):
        raise InvalidInput("Prices must be a list of {date, price} entries.")
    history = []
    for entry in raw_prices:
        if not isinstance(entry, dict):
            raise InvalidInput("Prices must be a list of {date, price} entries.")
        history.append(
            {
                "date": normalize_market_date(entry.get("date")),
                "price": normalize_price(entry.get("price")),
            }
        )
    return history


def build_product_document(payload: Dict) -> Dict:
    item_name = str(payload.get("itemName") or "").strip()
    market_name = str(payload.get("marketName") or "").strip()
    if not item_name or not market_name:
        raise InvalidInput("Item name and market name are required.")

    price_value = normalize_price(payload.get("pricePerUnit"))
    market_date = normalize_market_date(payload.get("date"))

    history = normalize_price_history(payload.get("prices"))
    if not any(entry["date"] == market_date for entry in history):
        history.append({"date": market_date, "price": price_value})
    history.sort(key=lambda entry: entry["date"])

    document = {
        "itemName": item_name,
        "marketName": market_name,
        "date": market_date,
        "pricePerUnit": price_value,
        "prices": history,
    }
    for field in ("marketDescription", "itemDescription", "image"):
        document[field] = str(payload.get(field) or "").strip()
    return document


def build_product_update(payload: Dict, existing: Dict) -> Dict:
    updates: Dict[str, object] = {}
    for field in EDITABLE_TEXT_FIELDS:
        if field in payload:
            value = str(payload.get(field) or "").strip()
            if field in ("marketName", "itemName") and not value:
                raise InvalidInput("Item name and market name cannot be empty.")
            updates[field] = value

    if "date" in payload:
        updates["date"] = normalize_market_date(payload.get("date"))

    update: Dict[str, Dict] = {}
    if "pricePerUnit" in payload:
        price_value = normalize_price(payload.get("pricePerUnit"))
        updates["pricePerUnit"] = price_value
        if price_value != safe_float(existing.get("pricePerUnit"), None):
            update["$push"] = {
                "prices": {
                    "date": updates.get("date") or normalize_market_date(None),
                    "price": price_value,
                }
            }

    if updates:
        update["$set"] = updates
    return update


def serialize_product(document) -> Dict[str, object]:
    if not document:
        return {}

    prices = []
    for entry in document.get("prices") or []:
        if isinstance(entry, dict):
            prices.append(
                {
                    "date": str(entry.get("date") or ""),
                    "price": round(safe_float(entry.get("price"), 0.0), 2),
                }
            )

    serialized = {
        "id": str(document.get("_id")),
        "vendorEmail": document.get("vendorEmail", "") or "",
        "vendorName": document.get("vendorName", "") or "",
        "marketName": document.get("marketName", "") or "",
        "marketDescription": document.get("marketDescription", "") or "",
        "date": document.get("date", "") or "",
        "itemName": document.get("itemName", "") or "",
        "itemDescription": document.get("itemDescription", "") or "",
        "image": document.get("image", "") or "",
        "pricePerUnit": round(safe_float(document.get("pricePerUnit"), 0.0), 2),
        "prices": prices,
        "status": document.get("status", "pending"),
        "createdAt": isoformat(document.get("createdAt")),
        "updatedAt": isoformat(document.get("updatedAt")),
    }
    if document.get("status") == "rejected":
        serialized["rejectionReason"] = document.get("rejectionReason", "") or ""
        serialized["rejectionFeedback"] = document.get("rejectionFeedback", "") or ""
    return serialized


def build_products_resource(products) -> ListingResource:
    return ListingResource(
        products,
        owner_field="vendorEmail",
        label="product",
        build_document=build_product_document,
        build_update=build_product_update,
    )


def status_filter(value: Optional[str]) -> Dict[str, str]:
    status = str(value or "").strip().lower()
    if not status or status == "all":
        return {}
    if status not in LISTING_STATUSES:
        raise InvalidInput("Unknown status filter.")
    return {"status": status}


def register_routes(app, access, products: ListingResource, directory):
    page_size = app.config["PRODUCTS_PAGE_SIZE"]

    def paginated_response(documents, page, limit, total):
        return jsonify(
            {
                "products": [serialize_product(document) for document in documents],
                "pagination": build_pagination(page, limit, total),
            }
        )

    @app.route("/add-products", methods=["POST"])
    @access.verify_token
    @access.verify_role("vendor", "admin")
    def add_product():
        payload = request_payload()
        vendor_name = directory.display_name(current_email()) or str(
            payload.get("vendorName") or ""
        ).strip()
        document = products.create(current_email(), payload, vendorName=vendor_name)
        return (
            jsonify(
                {
                    "message": "Product submitted for review.",
                    "insertedId": str(document["_id"]),
                    "product": serialize_product(document),
                }
            ),
            201,
        )

    @app.route("/modify-product/<product_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("vendor", "admin")
    def modify_product(product_id: str):
        updated = products.update(product_id, current_email(), current_role(), request_payload())
        return jsonify({"message": "Product updated.", "product": serialize_product(updated)})

    @app.route("/delete-products/<product_id>", methods=["DELETE"])
    @access.verify_token
    @access.verify_role("vendor", "admin")
    def delete_product(product_id: str):
        products.delete(product_id, current_email(), current_role())
        return jsonify({"message": "Product removed successfully.", "deletedCount": 1})

    @app.route("/my-products", methods=["GET"])
    @access.verify_token
    @access.verify_email_param
    @access.verify_role("vendor")
    def my_products():
        page, limit = pagination_args(page_size)
        query = {"vendorEmail": current_email(), **status_filter(request.args.get("status"))}
        documents, total = products.list(query, page, limit)
        return paginated_response(documents, page, limit, total)

    @app.route("/all-products", methods=["GET"])
    @access.verify_token
    @access.verify_role("admin")
    def all_products():
        page, limit = pagination_args(page_size)
        documents, total = products.list(status_filter(request.args.get("status")), page, limit)
        return paginated_response(documents, page, limit, total)

    @app.route("/approved-products", methods=["GET"])
    def approved_products():
        page, limit = pagination_args(page_size)
        query: Dict[str, object] = {"status": "approved"}

        market = (request.args.get("market") or "").strip()
        if market:
            query["marketName"] = {"$regex": re.escape(market), "$options": "i"}
        search = (request.args.get("search") or "").strip()
        if search:
            query["itemName"] = {"$regex": re.escape(search), "$options": "i"}

        date_range: Dict[str, str] = {}
        if request.args.get("from"):
            date_range["$gte"] = normalize_market_date(request.args.get("from"))
        if request.args.get("to"):
            date_range["$lte"] = normalize_market_date(request.args.get("to"))
        if date_range:
            query["date"] = date_range

        sort_key = (request.args.get("sort") or "").strip().lower()
        if sort_key and sort_key not in APPROVED_SORTS:
            raise InvalidInput("Unknown sort option.")

        documents, total = products.list(query, page, limit, sort=APPROVED_SORTS.get(sort_key))
        return paginated_response(documents, page, limit, total)

    @app.route("/single-product/<product_id>", methods=["GET"])
    @access.verify_token
    @access.verify_role("user", "vendor", "admin")
    def single_product(product_id: str):
        document = products.get(product_id)
        if document.get("status") != "approved" and not products.can_manage(
            document, current_email(), current_role()
        ):
            raise NotFound("Product not found.")
        return jsonify({"product": serialize_product(document)})

    @app.route("/price-trends/<product_id>", methods=["GET"])
    def price_trends(product_id: str):
        document = products.get(product_id, {"status": "approved"})
        history = serialize_product(document)["prices"]
        history.sort(key=lambda entry: entry["date"])
        return jsonify(
            {
                "productId": str(document["_id"]),
                "itemName": document.get("itemName", ""),
                "marketName": document.get("marketName", ""),
                "prices": history,
            }
        )

    @app.route("/approve-product/<product_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("admin")
    def approve_product(product_id: str):
        approved = products.approve(product_id)
        return jsonify({"message": "Product approved.", "product": serialize_product(approved)})

    @app.route("/reject-product/<product_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("admin")
    def reject_product(product_id: str):
        payload = request_payload()
        rejected = products.reject(
            product_id,
            payload.get("reason") or payload.get("rejectionReason"),
            payload.get("feedback") or payload.get("rejectionFeedback") or "",
        )
        return jsonify({"message": "Product rejected.", "product": serialize_product(rejected)})
