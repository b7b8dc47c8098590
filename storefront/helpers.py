import calendar
import math
import re
import unicodedata
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from bson import ObjectId
from bson.errors import InvalidId

from .responses import error_response

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
phone_regex = re.compile(r"^\+?[0-9][0-9\s\-]{7,18}$")
slug_regex = re.compile(r"^[a-z0-9-]+$")

API_PREFIX = "/api/v1"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    return datetime.utcnow()


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def isoformat(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return None


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def is_valid_phone(value: Optional[str]) -> bool:
    return bool(value and phone_regex.match(str(value).strip()))


def normalize_text(value, max_length: Optional[int] = None) -> str:
    if value is None:
        return ""
    condensed = " ".join(str(value).split())
    if max_length is not None:
        condensed = condensed[:max_length]
    return condensed


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_int(value, default=None):
    if isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(numeric) or numeric != int(numeric):
        return default
    return int(numeric)


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def parse_bool(value, default=None):
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_object_id_list(values) -> List[ObjectId]:
    normalized_ids: List[ObjectId] = []
    if not values:
        return normalized_ids
    for value in values:
        object_id = normalize_object_id_value(value)
        if object_id and object_id not in normalized_ids:
            normalized_ids.append(object_id)
    return normalized_ids


def parse_object_id(value) -> Tuple[Optional[ObjectId], Optional[tuple]]:
    object_id = normalize_object_id_value(value) if value else None
    if not object_id:
        return None, error_response("INVALID_ID", 400)
    return object_id, None


def stringify_id(value) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def slugify_category_name(value: Optional[str]) -> str:
    normalized_name = normalize_text(value).lower()
    # Vietnamese đ does not decompose under NFKD.
    normalized_name = normalized_name.replace("đ", "d")
    ascii_name = (
        unicodedata.normalize("NFKD", normalized_name)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    if not slug:
        slug = uuid4().hex
    return slug


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
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    if end_of_day and re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        return parsed + timedelta(days=1)
    return parsed


def build_date_filter(start_value, end_value) -> Tuple[Dict, Optional[tuple]]:
    """Translate ``start_date`` / ``end_date`` query values to a Mongo filter.

    Dates without a time component include the whole end day.
    """
    created_filter: Dict[str, datetime] = {}
    if start_value:
        start_date = parse_iso_date(start_value)
        if not start_date:
            return {}, error_response(
                "VALIDATION_ERROR", 400, errors=["start_date must be an ISO date"]
            )
        created_filter["$gte"] = start_date
    if end_value:
        end_date = parse_iso_date(end_value, end_of_day=True)
        if not end_date:
            return {}, error_response(
                "VALIDATION_ERROR", 400, errors=["end_date must be an ISO date"]
            )
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", str(end_value).strip()):
            created_filter["$lt"] = end_date
        else:
            created_filter["$lte"] = end_date
    return created_filter, None


def parse_pagination(args, default_limit: int = DEFAULT_PAGE_SIZE) -> Tuple[int, int, int]:
    page = max(1, safe_positive_int(args.get("page"), 1))
    limit = safe_int(args.get("limit"), default_limit)
    if limit is None or limit < 1:
        limit = default_limit
    limit = min(limit, MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def build_pagination(total: int, page: int, limit: int) -> Dict[str, object]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "items_per_page": limit,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
