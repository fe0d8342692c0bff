"""
Slot key derivation.

A slot key is "{YYYY-MM-DD}-{equipment_id}-{time_slot_id}". The date has a
fixed width, equipment ids are non-negative integers and time slot ids never
contain "-", so the composition is injective and reversible.

Keys outside that namespace:
- indefinite blocks: "indefinite-{start}-{equipment}-{token}"
- swap temp records: "__swap__{token}__{origin key}"
Slot keys always start with a digit, so neither prefix can collide.
"""

import re
import uuid
from datetime import date
from typing import Tuple, Union

from .errors import InvalidArgument

SEPARATOR = "-"
TEMP_PREFIX = "__swap__"
INDEFINITE_PREFIX = "indefinite-"

_TIME_SLOT_RE = re.compile(r"^[0-9A-Za-z:_.]+$")
_KEY_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})-(\d+)-([0-9A-Za-z:_.]+)$")


def coerce_date(value: Union[date, str]) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"Invalid date: {value!r}", date=value)


def validate_equipment_id(equipment_id) -> int:
    if isinstance(equipment_id, bool) or not isinstance(equipment_id, int) or equipment_id < 0:
        raise InvalidArgument(f"Invalid equipment id: {equipment_id!r}", equipment_id=equipment_id)
    return equipment_id


def validate_time_slot_id(time_slot_id) -> str:
    if not isinstance(time_slot_id, str) or not _TIME_SLOT_RE.match(time_slot_id):
        raise InvalidArgument(f"Invalid time slot id: {time_slot_id!r}", time_slot_id=time_slot_id)
    return time_slot_id


def derive(booking_date: Union[date, str], equipment_id: int, time_slot_id: str) -> str:
    """Canonical key of a (date, equipment, time slot) triple."""
    booking_date = coerce_date(booking_date)
    validate_equipment_id(equipment_id)
    validate_time_slot_id(time_slot_id)
    return f"{booking_date.isoformat()}{SEPARATOR}{equipment_id}{SEPARATOR}{time_slot_id}"


def parse(key: str) -> Tuple[date, int, str]:
    """Inverse of derive()."""
    match = _KEY_RE.match(key or "")
    if not match:
        raise InvalidArgument(f"Not a slot key: {key!r}", key=key)
    return coerce_date(match.group(1)), int(match.group(2)), match.group(3)


def is_slot_key(key: str) -> bool:
    return bool(_KEY_RE.match(key or ""))


def temp_key(origin_key: str) -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex}__{origin_key}"


def is_temp_key(key: str) -> bool:
    return key.startswith(TEMP_PREFIX)


def indefinite_key(start: date, equipment_id: int) -> str:
    return f"{INDEFINITE_PREFIX}{start.isoformat()}{SEPARATOR}{equipment_id}{SEPARATOR}{uuid.uuid4().hex[:12]}"


def is_indefinite_key(key: str) -> bool:
    return key.startswith(INDEFINITE_PREFIX)
