from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import pytest

from splitdues.app import create_app
from splitdues.config import Config
from splitdues.models import Expense, Group, Settlement, Split, User


class TestingConfig(Config):
    SECRET_KEY = "test-secret"
    LOG_LEVEL = "DEBUG"
    CORS_ORIGINS = ["http://localhost:3000"]


class MemoryStore:
    """Store double keeping everything in lists."""

    def __init__(self) -> None:
        self.users: Dict[int, User] = {}
        self.expenses: List[Expense] = []
        self.settlements: List[Settlement] = []
        self.groups: List[Group] = []
        self._next_id = 1

    def _allocate_id(self) -> int:
        next_id = self._next_id
        self._next_id += 1
        return next_id

    def add_user(self, name: str, token: Optional[str] = None, image_url: Optional[str] = None) -> User:
        user = User(
            id=self._allocate_id(),
            name=name,
            email=f"{name.lower()}@example.com",
            token_identifier=token or f"token|{name.lower()}",
            image_url=image_url,
        )
        self.users[user.id] = user
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    def user_profile(self, user_id: int) -> Optional[Dict[str, Any]]:
        user = self.users.get(user_id)
        if user is None:
            return None
        return {"name": user.name, "imageURL": user.image_url}

    def find_user_by_token(self, token_identifier: str) -> Optional[User]:
        for user in self.users.values():
            if user.token_identifier == token_identifier:
                return user
        return None

    def store_user(self, identity: Dict[str, Any]) -> int:
        existing = self.find_user_by_token(identity["token_identifier"])
        if existing is not None:
            if identity.get("name") and identity["name"] != existing.name:
                existing.name = identity["name"]
            return existing.id
        user = User(
            id=self._allocate_id(),
            name=identity.get("name") or "Anonymous",
            email=identity.get("email") or "",
            token_identifier=identity["token_identifier"],
            image_url=identity.get("image_url"),
        )
        self.users[user.id] = user
        return user.id

    def search_users(self, query: str, exclude_user_id: int) -> List[User]:
        needle = query.lower()
        by_name = [u for u in self.users.values() if needle in u.name.lower()]
        by_email = [u for u in self.users.values() if needle in u.email.lower() and u not in by_name]
        ordered = sorted(by_name, key=lambda u: (u.name, u.id)) + sorted(by_email, key=lambda u: (u.name, u.id))
        return [u for u in ordered if u.id != exclude_user_id]

    def users_exist(self, user_ids: Iterable[int]) -> bool:
        return all(user_id in self.users for user_id in user_ids)

    def is_group_member(self, group_id: int, user_id: int) -> bool:
        return any(group.id == group_id and user_id in group.members for group in self.groups)

    def create_group(self, group: Group) -> int:
        group.id = self._allocate_id()
        self.groups.append(group)
        return group.id

    def groups_for(self, user_id: int) -> List[Group]:
        return sorted((group for group in self.groups if user_id in group.members), key=lambda group: group.name)

    def direct_expenses_for(self, user_id: int) -> List[Expense]:
        matching = [e for e in self.expenses if e.group_id is None and e.involves(user_id)]
        return sorted(matching, key=lambda e: (e.date, e.id), reverse=True)

    def insert_expense(self, expense: Expense) -> int:
        expense.id = self._allocate_id()
        self.expenses.append(expense)
        return expense.id

    def expenses_exist(self, expense_ids: Iterable[int]) -> bool:
        known = {expense.id for expense in self.expenses}
        return all(expense_id in known for expense_id in expense_ids)

    def direct_settlements_for(self, user_id: int) -> List[Settlement]:
        matching = [s for s in self.settlements if s.group_id is None and s.involves(user_id)]
        return sorted(matching, key=lambda s: (s.date, s.id), reverse=True)

    def insert_settlement(self, settlement: Settlement) -> int:
        settlement.id = self._allocate_id()
        self.settlements.append(settlement)
        return settlement.id


def make_expense(paid_by, splits, amount=None, group_id=None, expense_id=None, date=1):
    """``splits`` is a list of ``(user_id, amount, has_paid)`` tuples."""
    split_objects = [Split(user_id=u, amount=Decimal(str(a)), has_paid=p) for u, a, p in splits]
    total = Decimal(str(amount)) if amount is not None else sum((s.amount for s in split_objects), Decimal("0"))
    return Expense(
        id=expense_id,
        description="expense",
        amount=total,
        date=date,
        paid_by=paid_by,
        split_type="exact",
        splits=split_objects,
        group_id=group_id,
        created_by=paid_by,
    )


def make_settlement(paid_by, paid_to, amount, group_id=None, settlement_id=None, date=2):
    return Settlement(
        id=settlement_id,
        amount=Decimal(str(amount)),
        date=date,
        paid_by=paid_by,
        paid_to=paid_to,
        group_id=group_id,
        created_by=paid_by,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def app(store):
    flask_app = create_app(settings=TestingConfig, store=store)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(user: User) -> Dict[str, str]:
    return {"X-Identity-Token": user.token_identifier}
