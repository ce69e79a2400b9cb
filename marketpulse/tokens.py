from flask import current_app
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from .errors import Forbidden, InvalidInput
from .utils import is_valid_email, normalize_email


class TokenService:
    """Signs and verifies identity tokens carrying the caller's email."""

    def issue(self, email: str) -> str:
        normalized_email = normalize_email(email)
        if not is_valid_email(normalized_email):
            raise InvalidInput("A valid email is required to issue a token.")
        return create_access_token(identity=normalized_email)

    def verify(self, token: str) -> str:
        if not token:
            raise Forbidden("Invalid or expired token.")
        try:
            claims = decode_token(token)
        except (PyJWTError, JWTExtendedException) as exc:
            current_app.logger.info("Rejected identity token: %s", exc)
            raise Forbidden("Invalid or expired token.")

        identity_claim = current_app.config.get("JWT_IDENTITY_CLAIM", "sub")
        email = normalize_email(claims.get(identity_claim))
        if not email:
            raise Forbidden("Invalid or expired token.")
        return email
