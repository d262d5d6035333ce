from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .db import Database, db as default_db
from .models import Expense, Group, Settlement, Split, User

logger = logging.getLogger(__name__)


def _placeholders(values: List[Any]) -> str:
    return ", ".join(["%s"] * len(values))


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Store:
    """MySQL-backed reads and writes behind the API."""

    def __init__(self, database: Optional[Database] = None) -> None:
        self.db = database or default_db

    # -- users ------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        row = self.db.fetch_one(
            "SELECT id, name, email, token_identifier, image_url FROM users WHERE id=%s",
            (user_id,),
        )
        return User.from_row(row) if row else None

    def user_profile(self, user_id: int) -> Optional[Dict[str, Any]]:
        user = self.get_user(user_id)
        if user is None:
            return None
        return {"name": user.name, "imageURL": user.image_url}

    def find_user_by_token(self, token_identifier: str) -> Optional[User]:
        row = self.db.fetch_one(
            "SELECT id, name, email, token_identifier, image_url FROM users WHERE token_identifier=%s",
            (token_identifier,),
        )
        return User.from_row(row) if row else None

    def store_user(self, identity: Dict[str, Any]) -> int:
        existing = self.find_user_by_token(identity["token_identifier"])
        if existing is not None:
            name = identity.get("name")
            if name and name != existing.name:
                self.db.execute("UPDATE users SET name=%s WHERE id=%s", (name, existing.id))
                logger.info("Renamed user %s", existing.id)
            return existing.id

        user_id = self.db.execute(
            "INSERT INTO users (name, email, token_identifier, image_url) VALUES (%s, %s, %s, %s)",
            (
                identity.get("name") or "Anonymous",
                identity.get("email") or "",
                identity["token_identifier"],
                identity.get("image_url"),
            ),
        )
        logger.info("Stored new user %s", user_id)
        return user_id

    def search_users(self, query: str, exclude_user_id: int) -> List[User]:
        """Users whose name or email contains ``query``; name matches come first."""
        pattern = _like_pattern(query)
        rows = self.db.fetch_all(
            """
            SELECT id, name, email, token_identifier, image_url
            FROM users
            WHERE id <> %s AND (name LIKE %s OR email LIKE %s)
            ORDER BY CASE WHEN name LIKE %s THEN 0 ELSE 1 END, name, id
            """,
            (exclude_user_id, pattern, pattern, pattern),
        )
        return [User.from_row(row) for row in rows]

    def users_exist(self, user_ids: Iterable[int]) -> bool:
        ids = sorted(set(user_ids))
        if not ids:
            return True
        rows = self.db.fetch_all(
            f"SELECT id FROM users WHERE id IN ({_placeholders(ids)})",
            ids,
        )
        return len(rows) == len(ids)

    # -- groups -----------------------------------------------------------

    def is_group_member(self, group_id: int, user_id: int) -> bool:
        record = self.db.fetch_one(
            "SELECT id FROM group_members WHERE group_id=%s AND user_id=%s",
            (group_id, user_id),
        )
        return record is not None

    def create_group(self, group: Group) -> int:
        with self.db.cursor() as cursor:
            cursor.execute(
                "INSERT INTO expense_groups (name, description, created_by) VALUES (%s, %s, %s)",
                (group.name, group.description, group.created_by),
            )
            group_id = cursor.lastrowid
            for member_id in group.members:
                cursor.execute(
                    "INSERT INTO group_members (group_id, user_id) VALUES (%s, %s)",
                    (group_id, member_id),
                )
        logger.info("Created group %s with %d members", group_id, len(group.members))
        return group_id

    def groups_for(self, user_id: int) -> List[Group]:
        rows = self.db.fetch_all(
            """
            SELECT g.id, g.name, g.description, g.created_by
            FROM expense_groups g
            JOIN group_members gm ON gm.group_id = g.id
            WHERE gm.user_id = %s
            ORDER BY g.name
            """,
            (user_id,),
        )
        group_ids = [row["id"] for row in rows]
        members_map: Dict[int, List[int]] = {}
        if group_ids:
            members = self.db.fetch_all(
                f"""
                SELECT group_id, user_id
                FROM group_members
                WHERE group_id IN ({_placeholders(group_ids)})
                ORDER BY id
                """,
                group_ids,
            )
            for member in members:
                members_map.setdefault(member["group_id"], []).append(member["user_id"])

        return [
            Group(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                created_by=row["created_by"],
                members=members_map.get(row["id"], []),
            )
            for row in rows
        ]

    # -- expenses ---------------------------------------------------------

    def direct_expenses_for(self, user_id: int) -> List[Expense]:
        rows = self.db.fetch_all(
            """
            SELECT DISTINCT e.id, e.description, e.amount, e.category, e.date,
                   e.paid_by, e.split_type, e.group_id, e.created_by
            FROM expenses e
            LEFT JOIN expense_splits es ON es.expense_id = e.id
            WHERE e.group_id IS NULL AND (e.paid_by = %s OR es.user_id = %s)
            ORDER BY e.date DESC, e.id DESC
            """,
            (user_id, user_id),
        )
        expense_ids = [row["id"] for row in rows]
        splits_map: Dict[int, List[Split]] = {}
        if expense_ids:
            splits = self.db.fetch_all(
                f"""
                SELECT expense_id, user_id, amount, has_paid
                FROM expense_splits
                WHERE expense_id IN ({_placeholders(expense_ids)})
                ORDER BY expense_id, position
                """,
                expense_ids,
            )
            for split in splits:
                splits_map.setdefault(split["expense_id"], []).append(
                    Split(
                        user_id=split["user_id"],
                        amount=Decimal(split["amount"]),
                        has_paid=bool(split["has_paid"]),
                    )
                )

        return [Expense.from_row(row, splits_map.get(row["id"], [])) for row in rows]

    def insert_expense(self, expense: Expense) -> int:
        # Expense and splits commit together or not at all.
        with self.db.cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO expenses
                    (description, amount, category, date, paid_by, split_type, group_id, created_by)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    expense.description,
                    str(expense.amount),
                    expense.category,
                    expense.date,
                    expense.paid_by,
                    expense.split_type,
                    expense.group_id,
                    expense.created_by,
                ),
            )
            expense_id = cursor.lastrowid
            for position, split in enumerate(expense.splits):
                cursor.execute(
                    """
                    INSERT INTO expense_splits (expense_id, position, user_id, amount, has_paid)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (expense_id, position, split.user_id, str(split.amount), split.has_paid),
                )
        logger.info("Recorded expense %s (%s, %s)", expense_id, expense.split_type, expense.amount)
        return expense_id

    def expenses_exist(self, expense_ids: Iterable[int]) -> bool:
        ids = sorted(set(expense_ids))
        if not ids:
            return True
        rows = self.db.fetch_all(
            f"SELECT id FROM expenses WHERE id IN ({_placeholders(ids)})",
            ids,
        )
        return len(rows) == len(ids)

    # -- settlements ------------------------------------------------------

    def direct_settlements_for(self, user_id: int) -> List[Settlement]:
        rows = self.db.fetch_all(
            """
            SELECT id, amount, note, date, paid_by, paid_to, group_id, created_by
            FROM settlements
            WHERE group_id IS NULL AND (paid_by = %s OR paid_to = %s)
            ORDER BY date DESC, id DESC
            """,
            (user_id, user_id),
        )
        settlement_ids = [row["id"] for row in rows]
        related_map: Dict[int, List[int]] = {}
        if settlement_ids:
            related = self.db.fetch_all(
                f"""
                SELECT settlement_id, expense_id
                FROM settlement_expenses
                WHERE settlement_id IN ({_placeholders(settlement_ids)})
                ORDER BY expense_id
                """,
                settlement_ids,
            )
            for link in related:
                related_map.setdefault(link["settlement_id"], []).append(link["expense_id"])

        return [Settlement.from_row(row, related_map.get(row["id"])) for row in rows]

    def insert_settlement(self, settlement: Settlement) -> int:
        with self.db.cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO settlements (amount, note, date, paid_by, paid_to, group_id, created_by)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    str(settlement.amount),
                    settlement.note,
                    settlement.date,
                    settlement.paid_by,
                    settlement.paid_to,
                    settlement.group_id,
                    settlement.created_by,
                ),
            )
            settlement_id = cursor.lastrowid
            for expense_id in settlement.related_expenses:
                cursor.execute(
                    "INSERT INTO settlement_expenses (settlement_id, expense_id) VALUES (%s, %s)",
                    (settlement_id, expense_id),
                )
        logger.info("Recorded settlement %s (%s -> %s)", settlement_id, settlement.paid_by, settlement.paid_to)
        return settlement_id
