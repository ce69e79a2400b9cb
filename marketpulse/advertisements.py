from typing import Dict

from flask import jsonify, request

from .access import current_email, current_role
from .errors import InvalidInput
from .listings import ListingResource
from .products import status_filter
from .utils import build_pagination, isoformat, pagination_args, request_payload

AD_FIELDS = ("title", "description", "image")


def build_ad_document(payload: Dict) -> Dict:
    document = {field: str(payload.get(field) or "").strip() for field in AD_FIELDS}
    if not document["title"]:
        raise InvalidInput("An advertisement title is required.")
    return document


def build_ad_update(payload: Dict, existing: Dict) -> Dict:
    updates = {}
    for field in AD_FIELDS:
        if field in payload:
            updates[field] = str(payload.get(field) or "").strip()
    if "title" in updates and not updates["title"]:
        raise InvalidInput("An advertisement title is required.")
    return {"$set": updates} if updates else {}


def serialize_ad(document) -> Dict[str, object]:
    if not document:
        return {}

    serialized = {
        "id": str(document.get("_id")),
        "adCreatedBy": document.get("adCreatedBy", "") or "",
        "vendorName": document.get("vendorName", "") or "",
        "status": document.get("status", "pending"),
        "createdAt": isoformat(document.get("createdAt")),
        "updatedAt": isoformat(document.get("updatedAt")),
    }
    for field in AD_FIELDS:
        serialized[field] = document.get(field, "") or ""
    if document.get("status") == "rejected":
        serialized["rejectionReason"] = document.get("rejectionReason", "") or ""
        serialized["rejectionFeedback"] = document.get("rejectionFeedback", "") or ""
    return serialized


def build_ads_resource(advertisements) -> ListingResource:
    return ListingResource(
        advertisements,
        owner_field="adCreatedBy",
        label="advertisement",
        build_document=build_ad_document,
        build_update=build_ad_update,
    )


def register_routes(app, access, ads: ListingResource, directory):
    page_size = app.config["PRODUCTS_PAGE_SIZE"]

    def paginated_response(documents, page, limit, total):
        return jsonify(
            {
                "advertisements": [serialize_ad(document) for document in documents],
                "pagination": build_pagination(page, limit, total),
            }
        )

    @app.route("/advertisements", methods=["POST"])
    @access.verify_token
    @access.verify_role("vendor")
    def create_advertisement():
        document = ads.create(
            current_email(),
            request_payload(),
            vendorName=directory.display_name(current_email()),
        )
        return (
            jsonify(
                {
                    "message": "Advertisement submitted for review.",
                    "insertedId": str(document["_id"]),
                    "advertisement": serialize_ad(document),
                }
            ),
            201,
        )

    @app.route("/my-advertisements", methods=["GET"])
    @access.verify_token
    @access.verify_email_param
    @access.verify_role("vendor")
    def my_advertisements():
        page, limit = pagination_args(page_size)
        query = {"adCreatedBy": current_email(), **status_filter(request.args.get("status"))}
        documents, total = ads.list(query, page, limit)
        return paginated_response(documents, page, limit, total)

    @app.route("/all-advertisements", methods=["GET"])
    @access.verify_token
    @access.verify_role("admin")
    def all_advertisements():
        page, limit = pagination_args(page_size)
        documents, total = ads.list(status_filter(request.args.get("status")), page, limit)
        return paginated_response(documents, page, limit, total)

    @app.route("/approved-advertisements", methods=["GET"])
    def approved_advertisements():
        page, limit = pagination_args(page_size)
        documents, total = ads.list({"status": "approved"}, page, limit)
        return paginated_response(documents, page, limit, total)

    @app.route("/advertisements/<ad_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("vendor", "admin")
    def update_advertisement(ad_id: str):
        updated = ads.update(ad_id, current_email(), current_role(), request_payload())
        return jsonify({"message": "Advertisement updated.", "advertisement": serialize_ad(updated)})

    @app.route("/advertisements/<ad_id>", methods=["DELETE"])
    @access.verify_token
    @access.verify_role("vendor", "admin")
    def delete_advertisement(ad_id: str):
        ads.delete(ad_id, current_email(), current_role())
        return jsonify({"message": "Advertisement removed.", "deletedCount": 1})

    @app.route("/approve-advertisement/<ad_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("admin")
    def approve_advertisement(ad_id: str):
        approved = ads.approve(ad_id)
        return jsonify({"message": "Advertisement approved.", "advertisement": serialize_ad(approved)})

    @app.route("/reject-advertisement/<ad_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("admin")
    def reject_advertisement(ad_id: str):
        payload = request_payload()
        rejected = ads.reject(
            ad_id,
            payload.get("reason") or payload.get("rejectionReason"),
            payload.get("feedback") or payload.get("rejectionFeedback") or "",
        )
        return jsonify({"message": "Advertisement rejected.", "advertisement": serialize_ad(rejected)})
