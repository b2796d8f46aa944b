from __future__ import annotations

import secrets
import string
from datetime import date, datetime
from decimal import Decimal

from app.core.errors import InvalidInput

UID_ALPHABET = string.ascii_uppercase + string.digits


def money(value: Decimal | float | int | None) -> str | None:
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


def generate_uid(length: int = 5) -> str:
    return "".join(secrets.choice(UID_ALPHABET) for _ in range(length))


def parse_optional_date(value: object, field_name: str) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()[:10]
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidInput(f"Invalid date format for {field_name}") from exc


def clean_text(value: object) -> str:
    return str(value or "").strip()


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_id(value: object, field_name: str) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"Invalid {field_name}")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid {field_name}") from exc


def parse_optional_id(value: object, field_name: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_id(value, field_name)


def parse_bool(value: object) -> bool:
    # Form posts send "false"/"0" as non-empty strings.
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
