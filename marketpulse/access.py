"""Access-control pipeline placed in front of protected routes.

The three checks are separate decorators and are stacked explicitly on each
route, outermost first::

    @app.route("/orders")
    @access.verify_token
    @access.verify_email_param
    @access.verify_role("user")
    def list_orders(): ...

A failing check raises and nothing below it runs.
"""
from functools import wraps
from typing import Iterable

from flask import g, request

from .errors import Forbidden, Unauthorized
from .utils import normalize_email

ROLES = ("user", "vendor", "admin")


def current_email() -> str:
    return getattr(g, "identity_email", "")


def current_role() -> str:
    return getattr(g, "identity_role", "")


class AccessControl:
    def __init__(self, users, tokens):
        self.users = users
        self.tokens = tokens

    def verify_token(self, view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization")
            if not header:
                raise Unauthorized("Unauthorized access.")

            token = ""
            if header.startswith("Bearer "):
                token = header[len("Bearer "):].strip()

            g.identity_email = self.tokens.verify(token)
            return view(*args, **kwargs)

        return wrapper

    def verify_email_param(self, view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            requested_email = normalize_email(request.args.get("email"))
            if not requested_email or requested_email != current_email():
                raise Forbidden("Forbidden access.")
            return view(*args, **kwargs)

        return wrapper

    def verify_role(self, *accepted: str):
        accepted_roles = frozenset(_validate_roles(accepted))

        def decorator(view):
            @wraps(view)
            def wrapper(*args, **kwargs):
                email = current_email()
                user_document = (
                    self.users.find_one({"email": email}, {"role": 1}) if email else None
                )
                if not user_document:
                    raise Unauthorized("Unauthorized access.")

                role = str(user_document.get("role") or "").strip().lower()
                if role not in accepted_roles:
                    raise Forbidden("Forbidden access.")

                g.identity_role = role
                return view(*args, **kwargs)

            return wrapper

        return decorator


def _validate_roles(roles: Iterable[str]):
    normalized = [str(role).strip().lower() for role in roles]
    unknown = [role for role in normalized if role not in ROLES]
    if unknown or not normalized:
        raise ValueError(f"Unknown roles for access check: {unknown or 'none given'}")
    return normalized
