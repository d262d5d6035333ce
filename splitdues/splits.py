from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError
from .models import SPLIT_TYPES, Split

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Cannot convert value to Decimal")
    if isinstance(value, Decimal):
        return value.quantize(CENT)
    if isinstance(value, (int, float)):
        return Decimal(str(value)).quantize(CENT)
    if isinstance(value, str):
        return Decimal(value).quantize(CENT)
    raise ValueError("Cannot convert value to Decimal")


def parse_amount(value: Any, code: str = "invalid_amount") -> Decimal:
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError, InvalidOperation):
        raise ValidationError(code) from None
    if not amount.is_finite():
        raise ValidationError(code)
    return amount


def amounts_close(a: Decimal, b: Decimal, tolerance: Decimal = CENT) -> bool:
    return abs(a - b) <= tolerance


def equal_shares(amount: Decimal, user_ids: List[int]) -> List[Tuple[int, Decimal]]:
    count = len(user_ids)
    if count == 0:
        raise ValueError("user_ids must not be empty")

    amount = amount.quantize(CENT)
    per_person = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
    # Leftover cents go one each to the first participants.
    leftover_cents = int((amount - per_person * count) / CENT)

    return [
        (user_id, per_person + CENT if index < leftover_cents else per_person)
        for index, user_id in enumerate(user_ids)
    ]


def percentage_shares(amount: Decimal, percentages: List[Tuple[int, Decimal]]) -> List[Tuple[int, Decimal]]:
    if not percentages:
        raise ValueError("percentages must not be empty")

    total_percent = sum((percent for _, percent in percentages), Decimal("0"))
    if not amounts_close(total_percent, HUNDRED):
        raise ValidationError("percentage_total_mismatch", f"percentages add up to {total_percent}")

    shares: List[Tuple[int, Decimal]] = []
    total_assigned = Decimal("0.00")
    for user_id, percent in percentages[:-1]:
        share = (amount * percent / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
        shares.append((user_id, share))
        total_assigned += share

    # Last participant absorbs the rounding remainder.
    last_user, _ = percentages[-1]
    shares.append((last_user, (amount - total_assigned).quantize(CENT, rounding=ROUND_HALF_UP)))
    return shares


def exact_shares(amount: Decimal, exact: List[Tuple[int, Decimal]]) -> List[Tuple[int, Decimal]]:
    share_total = sum((share for _, share in exact), Decimal("0.00"))
    if not amounts_close(share_total, amount):
        raise ValidationError("share_total_mismatch", f"shares add up to {share_total}, expected {amount}")
    return list(exact)


def _parse_participants(payload: List[Dict[str, Any]], value_key: Optional[str] = None) -> List[Tuple[int, Any]]:
    parsed: List[Tuple[int, Any]] = []
    seen = set()
    for item in payload:
        try:
            user_id = int(item["userId"])
            value = parse_amount(item[value_key], "invalid_share_payload") if value_key else None
        except (KeyError, TypeError, ValueError):
            raise ValidationError("invalid_share_payload") from None

        if value is not None and value <= 0:
            raise ValidationError("invalid_share_amount")
        if user_id in seen:
            raise ValidationError("duplicate_share_entry")

        seen.add(user_id)
        parsed.append((user_id, value))
    return parsed


def build_splits(amount: Decimal, split_type: str, payload: List[Dict[str, Any]], payer_id: int) -> List[Split]:
    """
    Turn a request's participant list into ``Split`` records.

    ``equal`` needs only ``userId`` per entry, ``percentage`` needs
    ``percentage`` and ``exact`` needs ``amount``. The payer's own split is
    marked paid.
    """
    if split_type not in SPLIT_TYPES:
        raise ValidationError("invalid_split_type")
    if not payload:
        raise ValidationError("missing_splits")

    if split_type == "equal":
        user_ids = [user_id for user_id, _ in _parse_participants(payload)]
        shares = equal_shares(amount, user_ids)
    elif split_type == "percentage":
        shares = percentage_shares(amount, _parse_participants(payload, "percentage"))
    else:
        shares = exact_shares(amount, _parse_participants(payload, "amount"))

    if any(share < 0 for _, share in shares):
        raise ValidationError("invalid_share_amount", "rounding left a negative share")

    return [Split(user_id=user_id, amount=share, has_paid=user_id == payer_id) for user_id, share in shares]
