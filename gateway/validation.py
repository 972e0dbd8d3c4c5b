"""Request validation helpers.

Checks here never stop at the first problem: they add to a ``FieldErrors``
collector which raises a single ``ValidationError`` listing every offending
field.
"""

import math
import re
from datetime import date, datetime
from pathlib import PurePath
from typing import Iterable, List, Optional, Tuple, Union

from contracts.schemas.envelope import ErrorDetail
from gateway.errors import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}

ALLOWED_MIME_TYPES = {"application/pdf", "image/jpeg", "image/png", "image/heic"}

_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/heif": "image/heic",
    "application/x-pdf": "application/pdf",
}

_EXTENSION_MIME = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".heif": "image/heic",
}


class FieldErrors:
    """Collects per-field problems for one request."""

    def __init__(self):
        self.details: List[ErrorDetail] = []

    def add(self, field: str, message: str, value=None) -> None:
        self.details.append(
            ErrorDetail(field=field, message=message, value=None if value is None else str(value))
        )

    def __bool__(self) -> bool:
        return bool(self.details)

    def raise_if_any(self, unprocessable: bool = False) -> None:
        if self.details:
            raise ValidationError(list(self.details), unprocessable=unprocessable)


def parse_int(errors: FieldErrors, field: str, value: Union[str, int, None]) -> Optional[int]:
    """Parse an integer query value; ``None`` passes through."""
    if value is None or isinstance(value, int):
        return value
    try:
        return int(value.strip())
    except ValueError:
        errors.add(field, "Must be an integer", value)
        return None


def parse_float(errors: FieldErrors, field: str, value: Union[str, float, None]) -> Optional[float]:
    if value is None or isinstance(value, (int, float)):
        return value
    try:
        number = float(value.strip())
    except ValueError:
        errors.add(field, "Must be a number", value)
        return None
    if not math.isfinite(number):
        errors.add(field, "Must be a finite number", value)
        return None
    return number


def parse_bool(errors: FieldErrors, field: str, value: Union[str, bool, None]) -> Optional[bool]:
    """Accepts the spellings FastAPI does: true/false, 1/0, yes/no, on/off."""
    if value is None or isinstance(value, bool):
        return value
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    errors.add(field, "Must be true or false", value)
    return None


def check_page(
    errors: FieldErrors,
    offset: Union[str, int, None],
    limit: Union[str, int, None],
    default_limit: int,
    max_limit: int,
) -> Tuple[int, int]:
    """Validate ``offset``/``limit`` against the resource's limits."""
    offset = parse_int(errors, "offset", offset) or 0
    limit = parse_int(errors, "limit", limit)
    if offset < 0:
        errors.add("offset", "Must be greater than or equal to 0", offset)
    if limit is None:
        limit = default_limit
    elif limit < 1 or limit > max_limit:
        errors.add("limit", f"Must be between 1 and {max_limit}", limit)
    return max(offset, 0), min(max(limit, 1), max_limit)


def check_range(errors: FieldErrors, low_field: str, low, high_field: str, high) -> None:
    """``low <= high`` when both bounds are given; bounds are never swapped."""
    for field, value in ((low_field, low), (high_field, high)):
        if value is not None and value < 0:
            errors.add(field, "Must not be negative", value)
    if low is not None and high is not None and low > high:
        errors.add(low_field, f"Must be less than or equal to {high_field}", low)


def check_choice(errors: FieldErrors, field: str, value: Optional[str], allowed: Iterable[str]) -> None:
    allowed = list(allowed)
    if value is not None and value not in allowed:
        errors.add(field, f"Must be one of: {', '.join(allowed)}", value)


def parse_date(errors: FieldErrors, field: str, value: Optional[str]) -> Optional[date]:
    """Parse a date-only ``YYYY-MM-DD`` value."""
    if value is None:
        return None
    if not DATE_PATTERN.match(value):
        errors.add(field, "Must be a date in YYYY-MM-DD format", value)
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        errors.add(field, "Not a valid calendar date", value)
        return None


def parse_timestamp(errors: FieldErrors, field: str, value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted)."""
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        errors.add(field, "Must be an ISO-8601 timestamp", value)
        return None


def resolve_mime_type(file_name: str, content_type: Optional[str]) -> Optional[str]:
    """Canonical mime type from the declared type, falling back to the extension."""
    mime = (content_type or "").split(";")[0].strip().lower()
    mime = _MIME_ALIASES.get(mime, mime)
    if mime in ALLOWED_MIME_TYPES:
        return mime
    if not mime or mime == "application/octet-stream":
        return _EXTENSION_MIME.get(PurePath(file_name or "").suffix.lower())
    return mime or None


def upload_problems(file_name: str, mime_type: Optional[str], size: int, max_bytes: int) -> List[ErrorDetail]:
    """Every reason a single upload is rejected (empty list when valid)."""
    errors = FieldErrors()
    if not file_name:
        errors.add("file", "File name is required")
    if size == 0:
        errors.add("file", "File is empty", file_name)
    elif size > max_bytes:
        errors.add("file", f"File exceeds the {max_bytes // (1024 * 1024)} MB limit", size)
    if mime_type not in ALLOWED_MIME_TYPES:
        errors.add("file", "Unsupported file type; use PDF, JPEG, PNG or HEIC", mime_type)
    return errors.details


def check_batch_size(count: int, max_files: int) -> None:
    errors = FieldErrors()
    if count == 0:
        errors.add("files", "At least one file is required", count)
    elif count > max_files:
        errors.add("files", f"At most {max_files} files per batch", count)
    errors.raise_if_any()
