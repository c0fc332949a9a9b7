import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List


# ---------------- Time ----------------
def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------- Identifiers ----------------
def new_id() -> str:
    return str(uuid.uuid4())


def seat_label(row_label: str, seat_number: int) -> str:
    """Seat id as shown on tickets, e.g. ("A", 1) -> "A1"."""
    return f"{row_label.strip().upper()}{int(seat_number)}"


def unique_in_order(values: Iterable[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


# ---------------- Money ----------------
def to_decimal(amount) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Rupees -> paise (gateway amounts are integer minor units)."""
    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
