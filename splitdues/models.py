"""
Records read from and written to the store.

Amounts are cent-quantized ``Decimal`` values; ``to_dict`` renders them as
floats for JSON responses. Dates are epoch milliseconds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

SPLIT_TYPES = ("equal", "percentage", "exact")


@dataclass
class User:
    id: int
    name: str
    email: str = ""
    token_identifier: str = ""
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "User":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row.get("email") or "",
            token_identifier=row.get("token_identifier") or "",
            image_url=row.get("image_url"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "imageURL": self.image_url,
        }


@dataclass
class Split:
    """A participant's share of an expense."""
    user_id: int
    amount: Decimal
    has_paid: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "amount": float(self.amount), "hasPaid": self.has_paid}


@dataclass
class Expense:
    description: str
    amount: Decimal
    date: int
    paid_by: int
    split_type: str
    splits: List[Split]
    created_by: int
    category: Optional[str] = None
    group_id: Optional[int] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], splits: List[Split]) -> "Expense":
        return cls(
            id=row["id"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            category=row.get("category"),
            date=int(row["date"]),
            paid_by=row["paid_by"],
            split_type=row["split_type"],
            splits=splits,
            group_id=row.get("group_id"),
            created_by=row["created_by"],
        )

    def split_for(self, user_id: int) -> Optional[Split]:
        for split in self.splits:
            if split.user_id == user_id:
                return split
        return None

    def involves(self, user_id: int) -> bool:
        return self.paid_by == user_id or self.split_for(user_id) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "amount": float(self.amount),
            "category": self.category,
            "date": self.date,
            "paidBy": self.paid_by,
            "splitType": self.split_type,
            "splits": [split.to_dict() for split in self.splits],
            "groupId": self.group_id,
            "createdBy": self.created_by,
        }


@dataclass
class Settlement:
    """A recorded payment from ``paid_by`` to ``paid_to``."""
    amount: Decimal
    date: int
    paid_by: int
    paid_to: int
    created_by: int
    note: str = ""
    group_id: Optional[int] = None
    related_expenses: List[int] = field(default_factory=list)
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], related_expenses: Optional[List[int]] = None) -> "Settlement":
        return cls(
            id=row["id"],
            amount=Decimal(row["amount"]),
            note=row.get("note") or "",
            date=int(row["date"]),
            paid_by=row["paid_by"],
            paid_to=row["paid_to"],
            group_id=row.get("group_id"),
            created_by=row["created_by"],
            related_expenses=list(related_expenses or []),
        )

    def involves(self, user_id: int) -> bool:
        return self.paid_by == user_id or self.paid_to == user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": float(self.amount),
            "note": self.note,
            "date": self.date,
            "paidBy": self.paid_by,
            "paidTo": self.paid_to,
            "groupId": self.group_id,
            "createdBy": self.created_by,
            "relatedExpenses": list(self.related_expenses),
        }


@dataclass
class Group:
    name: str
    created_by: int
    members: List[int]
    description: str = ""
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "createdBy": self.created_by,
            "members": list(self.members),
        }
