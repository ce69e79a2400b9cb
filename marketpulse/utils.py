import math
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from flask import current_app, request

from .errors import InvalidInput

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def safe_float(value, default=0.0):
    if isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    if isinstance(value, bool):
        return default
    try:
        numeric = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(default, numeric)


def parse_object_id(value, label: str = "document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value or "").strip())
    except (InvalidId, TypeError):
        raise InvalidInput(f"Invalid {label} identifier.")


def isoformat(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return f"{value.isoformat()}Z"


def parse_iso_date(value: Optional[str], *, end_of_day: bool = False):
    if not value:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    normalized = candidate.replace("Z", "+00:00")
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        normalized = f"{candidate}T00:00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if end_of_day and re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        return parsed + timedelta(days=1)
    return parsed


def request_payload() -> Dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def pagination_args(default_limit: int) -> Tuple[int, int]:
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = safe_positive_int(request.args.get("page"), 1) or 1
    limit = safe_positive_int(request.args.get("limit"), 0) or default_limit
    return page, min(limit, max_limit)


def build_pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
