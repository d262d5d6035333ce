"""
One-on-one balances for a viewing user.

``compute_user_balances`` folds the viewer's non-group expenses and
settlements into a per-counterparty ledger, nets each counterparty out and
shapes the result the dashboard consumes::

    {
        "youOwe": 40.0,
        "youAreOwed": 40.0,
        "totalBalance": 0.0,
        "oweDetails": {
            "youOwe": [{"id": 3, "name": "C", "imageURL": None, "amount": 40.0}],
            "youAreOwed": [{"id": 2, "name": "A", "imageURL": None, "amount": 40.0}],
        },
    }

The fold is pure: nothing is written, and the same inputs always give the
same output. Amounts are summed as ``Decimal`` (floats go through ``str``
first) and only turned into floats in the returned structure. Both lists
are sorted by counterparty id.

Totals are the sums of the netted per-counterparty amounts, so
``youOwe == sum(oweDetails.youOwe)`` holds even when the viewer and a
counterparty owe each other on different expenses.

A split's ``has_paid`` flag and the settlement ledger are independent:
a paid split adds nothing, and every settlement is subtracted in full.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import DataIntegrityError
from .models import Expense, Settlement

logger = logging.getLogger(__name__)

# Nets within this distance of zero count as settled.
SETTLED_EPSILON = Decimal("1e-9")
ZERO = Decimal("0")

UserLookup = Callable[[Any], Optional[Dict[str, Any]]]


def as_decimal(value: Any) -> Decimal:
    # No quantizing: float drift is left for the settled-epsilon check.
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class CounterpartyBalance:
    owed: Decimal = ZERO  # what the counterparty owes the viewer
    you_owe: Decimal = ZERO  # what the viewer owes the counterparty

    @property
    def net(self) -> Decimal:
        return self.owed - self.you_owe


class BalanceLedger:
    """Per-counterparty accumulator, entries created on first touch."""

    def __init__(self, viewer_id: Any) -> None:
        self.viewer_id = viewer_id
        self.entries: Dict[Any, CounterpartyBalance] = {}

    def __getitem__(self, counterparty_id: Any) -> CounterpartyBalance:
        entry = self.entries.get(counterparty_id)
        if entry is None:
            entry = self.entries[counterparty_id] = CounterpartyBalance()
        return entry

    def apply_expense(self, expense: Expense) -> None:
        if expense.paid_by == self.viewer_id:
            for split in expense.splits:
                if split.user_id == self.viewer_id:
                    continue
                self[split.user_id].owed += as_decimal(split.amount)
            return

        own_split = expense.split_for(self.viewer_id)
        if own_split is not None and not own_split.has_paid:
            self[expense.paid_by].you_owe += as_decimal(own_split.amount)

    def apply_settlement(self, settlement: Settlement) -> None:
        if settlement.paid_by == self.viewer_id:
            self[settlement.paid_to].you_owe -= as_decimal(settlement.amount)
        else:
            self[settlement.paid_by].owed -= as_decimal(settlement.amount)

    def nets(self) -> Dict[Any, Decimal]:
        """Non-settled nets keyed by counterparty; positive means they owe the viewer."""
        return {
            counterparty_id: entry.net
            for counterparty_id, entry in self.entries.items()
            if abs(entry.net) > SETTLED_EPSILON
        }


def is_direct_expense(expense: Expense, viewer_id: Any) -> bool:
    return expense.group_id is None and expense.involves(viewer_id)


def is_direct_settlement(settlement: Settlement, viewer_id: Any) -> bool:
    return settlement.group_id is None and settlement.involves(viewer_id)


def _sort_key(counterparty_id: Any):
    # Integer ids sort numerically; anything else falls back to its string form.
    if isinstance(counterparty_id, int):
        return (0, counterparty_id, "")
    return (1, 0, str(counterparty_id))


def _detail(counterparty_id: Any, amount: Decimal, lookup_user: UserLookup) -> Dict[str, Any]:
    profile = lookup_user(counterparty_id)
    if profile is None:
        logger.error("Balance references unknown user %r", counterparty_id)
        raise DataIntegrityError(detail=f"user {counterparty_id!r} referenced by a balance does not exist")
    return {
        "id": counterparty_id,
        "name": profile.get("name"),
        "imageURL": profile.get("imageURL"),
        "amount": float(amount),
    }


def compute_user_balances(
    viewer_id: Any,
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
    lookup_user: UserLookup,
) -> Dict[str, Any]:
    ledger = BalanceLedger(viewer_id)

    expense_count = 0
    for expense in expenses:
        if is_direct_expense(expense, viewer_id):
            ledger.apply_expense(expense)
            expense_count += 1

    settlement_count = 0
    for settlement in settlements:
        if is_direct_settlement(settlement, viewer_id):
            ledger.apply_settlement(settlement)
            settlement_count += 1

    you_owe_list: List[Dict[str, Any]] = []
    you_are_owed_list: List[Dict[str, Any]] = []
    you_owe = ZERO
    you_are_owed = ZERO

    for counterparty_id, net in sorted(ledger.nets().items(), key=lambda item: _sort_key(item[0])):
        if net > 0:
            you_are_owed += net
            you_are_owed_list.append(_detail(counterparty_id, net, lookup_user))
        else:
            you_owe += -net
            you_owe_list.append(_detail(counterparty_id, -net, lookup_user))

    logger.debug(
        "Balances for user %r: %d expenses, %d settlements, %d counterparties",
        viewer_id,
        expense_count,
        settlement_count,
        len(ledger.entries),
    )

    return {
        "youOwe": float(you_owe),
        "youAreOwed": float(you_are_owed),
        "totalBalance": float(you_are_owed - you_owe),
        "oweDetails": {"youOwe": you_owe_list, "youAreOwed": you_are_owed_list},
    }
