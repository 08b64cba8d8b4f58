"""
Field coercion helpers and the ``sanitize`` entry point.

Every mutating endpoint passes the raw JSON body through ``sanitize`` with an
allow-listed input model from ``fintrack.schemas``. The result is either a
typed model or a ``ValidationError`` naming the offending field; the raw body
never reaches the persistence layer.
"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, TypeAdapter

from fintrack.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

_datetime_adapter = TypeAdapter(datetime)

CENT = Decimal("0.01")


def parse_amount(value: Any, field: str) -> Decimal:
    """
    Coerce a client-supplied number to ``Decimal``.

    Accepts ints, floats and numeric strings (a comma is read as the decimal
    separator). Rejects booleans, empty strings, NaN and infinities.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"invalid numeric field {field}")

    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        normalized = value.replace(",", ".").strip()
        if not normalized:
            raise ValueError(f"invalid numeric field {field}")
        try:
            parsed = Decimal(normalized)
        except InvalidOperation:
            raise ValueError(f"invalid numeric field {field}") from None
    else:
        raise ValueError(f"invalid numeric field {field}")

    if not parsed.is_finite():
        raise ValueError(f"invalid numeric field {field}")
    return parsed


def parse_money(value: Any, field: str) -> Decimal:
    """
    ``parse_amount`` rounded half-up to cents, the scale money columns store.

    The rounded value is what gets persisted and what moves a balance.
    """
    return parse_amount(value, field).quantize(CENT, rounding=ROUND_HALF_UP)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any, field: str) -> datetime:
    """Parse an ISO-8601 string (or datetime) into a naive UTC datetime."""
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"invalid date field {field}")
    if isinstance(value, str):
        value = value.strip()
    try:
        parsed = _datetime_adapter.validate_python(value)
    except pydantic.ValidationError:
        raise ValueError(f"invalid date field {field}") from None
    return to_naive_utc(parsed)


def parse_optional_datetime(value: Any, field: str) -> Optional[datetime]:
    """Like ``parse_datetime`` but an empty string or null means "no date"."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_datetime(value, field)


def optional_trimmed(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def required_trimmed(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required")
    return value.strip()


def currency_code(value: Any, field: str = "currency") -> str:
    """Three-letter ISO currency code, upper-cased."""
    code = required_trimmed(value, field).upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f"invalid currency field {field}")
    return code


def _first_error_message(exc: pydantic.ValidationError) -> tuple[str, Optional[str]]:
    error = exc.errors()[0]
    location = error.get("loc") or ()
    field = str(location[0]) if location else None
    message = error.get("msg", "invalid payload")
    # pydantic prefixes messages raised from validators with "Value error, ".
    if error.get("type") == "value_error" and message.startswith("Value error, "):
        message = message[len("Value error, "):]
    elif error.get("type") == "missing" and field:
        message = f"{field} is required"
    elif field:
        message = f"invalid field {field}"
    return message, field


def sanitize(model: Type[ModelT], payload: Any) -> ModelT:
    """
    Validate an arbitrary JSON body against an allow-listed input model.

    Unknown keys are dropped by the model configuration. Raises
    ``ValidationError`` carrying the first field-level message.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be a JSON object")
    try:
        return model.model_validate(dict(payload))
    except pydantic.ValidationError as exc:
        message, field = _first_error_message(exc)
        raise ValidationError(message, field=field) from None
