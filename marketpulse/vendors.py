from typing import Dict

from flask import current_app, jsonify, request

from .access import current_email
from .errors import Conflict, InvalidInput, NotFound
from .utils import (
    build_pagination,
    isoformat,
    normalize_email,
    pagination_args,
    parse_object_id,
    request_payload,
    utc_now,
)

VENDOR_STATUSES = ("pending", "approved", "rejected")
APPLICATION_FIELDS = ("name", "photo", "phone", "marketName", "address", "description")


def serialize_vendor_request(document) -> Dict[str, object]:
    if not document:
        return {}

    serialized = {
        "id": str(document.get("_id")),
        "email": document.get("email", "") or "",
        "vendor_status": document.get("vendor_status", "pending"),
        "createdAt": isoformat(document.get("createdAt")),
        "decidedAt": isoformat(document.get("decidedAt")),
    }
    for field in APPLICATION_FIELDS:
        serialized[field] = document.get(field, "") or ""
    if document.get("reason"):
        serialized["reason"] = document["reason"]
    return serialized


class VendorApplications:
    def __init__(self, vendor_requests, directory):
        self.vendor_requests = vendor_requests
        self.directory = directory

    def apply(self, email: str, payload: Dict):
        normalized_email = normalize_email(email)
        profile = {
            field: str(payload.get(field) or "").strip() for field in APPLICATION_FIELDS
        }
        if not profile["name"] or not profile["marketName"]:
            raise InvalidInput("Name and market name are required to apply.")

        inserted = self.vendor_requests.upsert(
            {
                "email": normalized_email,
                "vendor_status": {"$in": ["pending", "approved"]},
            },
            {
                "$setOnInsert": {
                    **profile,
                    "email": normalized_email,
                    "vendor_status": "pending",
                    "createdAt": utc_now(),
                }
            },
        )
        if not inserted:
            raise Conflict("You already have an active vendor application.")

        return self.vendor_requests.find_one(
            {"email": normalized_email, "vendor_status": "pending"}
        )

    def list_requests(self, status: str, page: int, limit: int):
        query = {"vendor_status": status} if status else {}
        total = self.vendor_requests.count(query)
        documents = self.vendor_requests.find(
            query, sort=[("createdAt", -1)], skip=(page - 1) * limit, limit=limit
        )
        return documents, total

    def decide(self, request_id: str, status: str, reason: str = ""):
        status = str(status or "").strip().lower()
        if status not in ("approved", "rejected"):
            raise InvalidInput("vendor_status must be 'approved' or 'rejected'.")

        object_id = parse_object_id(request_id, "vendor request")
        update: Dict[str, Dict] = {"$set": {"vendor_status": status, "decidedAt": utc_now()}}
        if reason:
            update["$set"]["reason"] = reason

        decided = self.vendor_requests.update_if(
            {"_id": object_id}, {"vendor_status": "pending"}, update
        )
        if decided is None:
            existing = self.vendor_requests.find_one({"_id": object_id})
            if not existing:
                raise NotFound("Vendor request not found.")
            raise Conflict(
                f"This application was already {existing.get('vendor_status')}."
            )

        promoted = False
        if status == "approved":
            promoted = self.directory.promote_to_vendor(decided.get("email"))
        return decided, promoted


def register_routes(app, access, applications: VendorApplications):
    @app.route("/vendors/apply", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def apply_for_vendor():
        document = applications.apply(current_email(), request_payload())
        return (
            jsonify(
                {
                    "message": "Vendor application submitted.",
                    "request": serialize_vendor_request(document),
                }
            ),
            201,
        )

    @app.route("/vendor-requests", methods=["GET"])
    @access.verify_token
    @access.verify_role("admin")
    def list_vendor_requests():
        status = (request.args.get("status") or "pending").strip().lower()
        if status == "all":
            status = ""
        elif status not in VENDOR_STATUSES:
            raise InvalidInput("Unknown vendor status filter.")

        page, limit = pagination_args(app.config["MAX_PAGE_SIZE"])
        documents, total = applications.list_requests(status, page, limit)
        return jsonify(
            {
                "requests": [serialize_vendor_request(document) for document in documents],
                "pagination": build_pagination(page, limit, total),
            }
        )

    @app.route("/vendor-requests/<request_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("admin")
    def decide_vendor_request(request_id: str):
        payload = request_payload()
        decided, promoted = applications.decide(
            request_id,
            payload.get("vendor_status") or payload.get("status"),
            str(payload.get("reason") or "").strip(),
        )
        current_app.logger.info(
            "Vendor request %s %s by %s", request_id, decided.get("vendor_status"), current_email()
        )
        return jsonify(
            {
                "message": f"Vendor request {decided.get('vendor_status')}.",
                "request": serialize_vendor_request(decided),
                "rolePromoted": promoted,
            }
        )
