from decimal import Decimal

import pytest

from conftest import make_expense, make_settlement
from splitdues.db import Database
from splitdues.store import Store


class FakeCursor:
    def __init__(self, pool):
        self.pool = pool
        self.lastrowid = None

    def execute(self, query, params=()):
        if self.pool.fail_on and self.pool.fail_on in query:
            raise RuntimeError("insert failed")
        self.pool.queries.append((" ".join(query.split()), tuple(params)))
        if query.lstrip().upper().startswith("INSERT"):
            self.pool.next_id += 1
            self.lastrowid = self.pool.next_id

    def fetchone(self):
        return self.pool.results.pop(0)

    def fetchall(self):
        return self.pool.results.pop(0)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, pool):
        self.pool = pool
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, dictionary=True):
        return FakeCursor(self.pool)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


class FakePool:
    """Stands in for the MySQL pool; records every statement it sees."""

    def __init__(self, results=None, fail_on=None):
        self.results = list(results or [])
        self.fail_on = fail_on
        self.queries = []
        self.connections = []
        self.next_id = 100

    def get_connection(self):
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn


def make_store(results=None, fail_on=None):
    database = Database()
    database._pool = FakePool(results, fail_on)
    return Store(database), database._pool


def test_direct_expenses_query_and_row_mapping():
    expense_rows = [
        {"id": 11, "description": "Taxi", "amount": "30.00", "category": None, "date": 5,
         "paid_by": 2, "split_type": "exact", "group_id": None, "created_by": 2},
        {"id": 10, "description": "Dinner", "amount": "100.00", "category": "food", "date": 3,
         "paid_by": 7, "split_type": "equal", "group_id": None, "created_by": 7},
    ]
    split_rows = [
        {"expense_id": 10, "user_id": 7, "amount": "50.00", "has_paid": 1},
        {"expense_id": 10, "user_id": 2, "amount": "50.00", "has_paid": 0},
        {"expense_id": 11, "user_id": 7, "amount": "30.00", "has_paid": 0},
    ]
    store, pool = make_store([expense_rows, split_rows])

    expenses = store.direct_expenses_for(7)

    (expense_sql, expense_params), (split_sql, split_params) = pool.queries
    assert "e.group_id IS NULL AND (e.paid_by = %s OR es.user_id = %s)" in expense_sql
    assert "ORDER BY e.date DESC, e.id DESC" in expense_sql
    assert expense_params == (7, 7)
    assert "WHERE expense_id IN (%s, %s)" in split_sql
    assert "ORDER BY expense_id, position" in split_sql
    assert split_params == (11, 10)

    assert [e.id for e in expenses] == [11, 10]
    dinner = expenses[1]
    assert dinner.amount == Decimal("100.00")
    assert [(s.user_id, s.amount, s.has_paid) for s in dinner.splits] == [
        (7, Decimal("50.00"), True),
        (2, Decimal("50.00"), False),
    ]


def test_direct_expenses_without_rows_skips_split_query():
    store, pool = make_store([[]])

    assert store.direct_expenses_for(7) == []
    assert len(pool.queries) == 1


def test_direct_settlements_query_and_related_expenses():
    settlement_rows = [
        {"id": 4, "amount": "12.50", "note": None, "date": 9, "paid_by": 7, "paid_to": 2,
         "group_id": None, "created_by": 7},
    ]
    link_rows = [{"settlement_id": 4, "expense_id": 10}, {"settlement_id": 4, "expense_id": 11}]
    store, pool = make_store([settlement_rows, link_rows])

    settlements = store.direct_settlements_for(7)

    (settlement_sql, settlement_params), (link_sql, link_params) = pool.queries
    assert "WHERE group_id IS NULL AND (paid_by = %s OR paid_to = %s)" in settlement_sql
    assert settlement_params == (7, 7)
    assert "WHERE settlement_id IN (%s)" in link_sql
    assert link_params == (4,)
    assert settlements[0].amount == Decimal("12.50")
    assert settlements[0].note == ""
    assert settlements[0].related_expenses == [10, 11]


def test_find_user_by_token():
    row = {"id": 3, "name": "Bob", "email": "bob@example.com", "token_identifier": "t|bob", "image_url": None}
    store, pool = make_store([row])

    user = store.find_user_by_token("t|bob")

    assert pool.queries == [
        ("SELECT id, name, email, token_identifier, image_url FROM users WHERE token_identifier=%s", ("t|bob",))
    ]
    assert user.id == 3 and user.name == "Bob"


def test_find_user_by_token_missing():
    store, _ = make_store([None])

    assert store.find_user_by_token("t|ghost") is None


def test_search_users_escapes_like_wildcards():
    store, pool = make_store([[]])

    store.search_users("50%_off", exclude_user_id=1)

    ((sql, params),) = pool.queries
    assert "WHERE id <> %s AND (name LIKE %s OR email LIKE %s)" in sql
    assert "ORDER BY CASE WHEN name LIKE %s THEN 0 ELSE 1 END, name, id" in sql
    pattern = "%50\\%\\_off%"
    assert params == (1, pattern, pattern, pattern)


def test_insert_expense_writes_splits_in_one_transaction():
    store, pool = make_store()
    expense = make_expense(1, [(1, 20, True), (2, 30, False)])

    expense_id = store.insert_expense(expense)

    assert expense_id == 101
    assert len(pool.connections) == 1
    assert pool.connections[0].commits == 1
    assert [params for _, params in pool.queries[1:]] == [
        (101, 0, 1, "20", True),
        (101, 1, 2, "30", False),
    ]


def test_failed_split_insert_rolls_back_expense():
    store, pool = make_store(fail_on="INSERT INTO expense_splits")
    expense = make_expense(1, [(1, 20, True), (2, 30, False)])

    with pytest.raises(RuntimeError):
        store.insert_expense(expense)

    (conn,) = pool.connections
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert len(pool.queries) == 1


def test_failed_link_insert_rolls_back_settlement():
    store, pool = make_store(fail_on="INSERT INTO settlement_expenses")
    settlement = make_settlement(1, 2, 5)
    settlement.related_expenses = [10]

    with pytest.raises(RuntimeError):
        store.insert_settlement(settlement)

    (conn,) = pool.connections
    assert (conn.commits, conn.rollbacks) == (0, 1)
