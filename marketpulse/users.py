import re
from typing import Dict, Optional

from flask import current_app, jsonify, request

from .access import ROLES, current_email
from .errors import InvalidInput, NotFound
from .utils import (
    build_pagination,
    is_valid_email,
    isoformat,
    normalize_email,
    pagination_args,
    parse_object_id,
    request_payload,
    utc_now,
)


def serialize_user(user_document) -> Dict[str, object]:
    if not user_document:
        return {}

    return {
        "id": str(user_document.get("_id")),
        "email": user_document.get("email", "") or "",
        "name": user_document.get("name", "") or "",
        "photo": user_document.get("photo", "") or "",
        "role": user_document.get("role", "user") or "user",
        "createdAt": isoformat(user_document.get("createdAt")),
        "lastSignedIn": isoformat(user_document.get("lastSignedIn")),
    }


class UserDirectory:
    """Identity and role records keyed by email."""

    def __init__(self, users, default_admin_email: str = ""):
        self.users = users
        self.default_admin_email = normalize_email(default_admin_email)

    def find(self, email: str):
        normalized_email = normalize_email(email)
        if not normalized_email:
            return None
        return self.users.find_one({"email": normalized_email})

    def display_name(self, email: str) -> str:
        user_document = self.users.find_one({"email": normalize_email(email)}, {"name": 1})
        return (user_document or {}).get("name", "") or ""

    def register(self, email: str, name: str, photo: str = "") -> Optional[str]:
        """Create the user; returns the new id, or None when the email is taken."""
        normalized_email = normalize_email(email)
        if not is_valid_email(normalized_email):
            raise InvalidInput("A valid email is required to register.")

        now = utc_now()
        assigned_role = (
            "admin"
            if self.default_admin_email and normalized_email == self.default_admin_email
            else "user"
        )
        inserted = self.users.upsert(
            {"email": normalized_email},
            {
                "$setOnInsert": {
                    "email": normalized_email,
                    "name": str(name or "").strip(),
                    "photo": str(photo or "").strip(),
                    "role": assigned_role,
                    "createdAt": now,
                    "lastSignedIn": now,
                }
            },
        )
        if not inserted:
            return None
        created = self.users.find_one({"email": normalized_email}, {"_id": 1})
        return str(created["_id"]) if created else None

    def touch_last_login(self, email: str):
        normalized_email = normalize_email(email)
        if not normalized_email:
            raise InvalidInput("Email is required.")
        matched = self.users.update(
            {"email": normalized_email}, {"$set": {"lastSignedIn": utc_now()}}
        )
        if not matched:
            raise NotFound("User not found.")

    def update_profile(self, email: str, payload: Dict):
        updates = {}
        for field in ("name", "photo"):
            if field in payload:
                value = str(payload.get(field) or "").strip()
                if field == "name" and not value:
                    raise InvalidInput("Name cannot be empty.")
                updates[field] = value
        if not updates:
            raise InvalidInput("Provide a name or photo to update.")

        matched = self.users.update({"email": normalize_email(email)}, {"$set": updates})
        if not matched:
            raise NotFound("User not found.")
        return self.find(email)

    def list_users(self, search: str, page: int, limit: int):
        query: Dict[str, object] = {}
        if search:
            query["email"] = {"$regex": re.escape(search), "$options": "i"}
        total = self.users.count(query)
        documents = self.users.find(
            query, sort=[("createdAt", -1)], skip=(page - 1) * limit, limit=limit
        )
        return documents, total

    def update_role(self, user_id: str, desired_role: str):
        desired_role = str(desired_role or "").strip().lower()
        if desired_role not in ROLES:
            raise InvalidInput("Role must be 'user', 'vendor', or 'admin'.")

        object_id = parse_object_id(user_id, "user")
        user_document = self.users.find_one({"_id": object_id})
        if not user_document:
            raise NotFound("User not found.")

        target_email = normalize_email(user_document.get("email"))
        if (
            self.default_admin_email
            and target_email == self.default_admin_email
            and desired_role != "admin"
        ):
            raise InvalidInput("The default administrator must remain an admin.")

        self.users.update({"_id": object_id}, {"$set": {"role": desired_role}})
        return self.users.find_one({"_id": object_id})

    def promote_to_vendor(self, email: str) -> bool:
        promoted = self.users.update_if(
            {"email": normalize_email(email)},
            {"role": "user"},
            {"$set": {"role": "vendor"}},
        )
        return promoted is not None


def register_routes(app, access, directory: UserDirectory, tokens):
    @app.route("/jwt", methods=["POST"])
    def issue_token():
        payload = request_payload()
        token = tokens.issue(payload.get("email"))
        return jsonify({"token": token})

    @app.route("/register", methods=["POST"])
    def register():
        payload = request_payload()
        name = str(payload.get("name") or "").strip()
        if not name:
            raise InvalidInput("Name and email are required to register.")

        inserted_id = directory.register(
            payload.get("email"), name, payload.get("photo") or ""
        )
        if inserted_id is None:
            return jsonify({"message": "User already exists", "insertedId": None}), 200

        current_app.logger.info("Registered user %s", normalize_email(payload.get("email")))
        return jsonify({"message": "User registered.", "insertedId": inserted_id}), 201

    @app.route("/update-last-login", methods=["PATCH"])
    def update_last_login():
        payload = request_payload()
        directory.touch_last_login(payload.get("email"))
        return jsonify({"message": "Last login updated."})

    @app.route("/users/role", methods=["GET"])
    @access.verify_token
    @access.verify_email_param
    def get_user_role():
        user_document = directory.find(current_email())
        if not user_document:
            raise NotFound("User not found.")
        return jsonify({"role": user_document.get("role", "user")})

    @app.route("/users/profile", methods=["PATCH"])
    @access.verify_token
    @access.verify_email_param
    def update_profile():
        updated = directory.update_profile(current_email(), request_payload())
        return jsonify({"message": "Profile updated.", "user": serialize_user(updated)})

    @app.route("/users", methods=["GET"])
    @access.verify_token
    @access.verify_role("admin")
    def list_users():
        page, limit = pagination_args(app.config["MAX_PAGE_SIZE"])
        search = (request.args.get("search") or request.args.get("email") or "").strip()
        documents, total = directory.list_users(search, page, limit)
        return jsonify(
            {
                "users": [serialize_user(document) for document in documents],
                "pagination": build_pagination(page, limit, total),
            }
        )

    @app.route("/users/updateRole/<user_id>", methods=["PATCH"])
    @access.verify_token
    @access.verify_role("admin")
    def update_user_role(user_id: str):
        payload = request_payload()
        updated_user = directory.update_role(user_id, payload.get("role"))
        current_app.logger.info(
            "%s set role of %s to %s",
            current_email(),
            updated_user.get("email"),
            updated_user.get("role"),
        )
        return jsonify(
            {
                "message": f"Role updated to {updated_user.get('role')}.",
                "user": serialize_user(updated_user),
            }
        )
