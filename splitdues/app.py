from __future__ import annotations

import logging
import math
import os
import time
from functools import wraps
from typing import Any, Dict, List, Optional

import click
from flask import Flask, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .balances import compute_user_balances
from .config import config
from .errors import (
    AuthenticationError,
    ForbiddenError,
    SplitDuesError,
    ValidationError,
)
from .models import Expense, Group, Settlement
from .splits import build_splits, parse_amount
from .store import Store

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


def create_app(settings=config, store: Optional[Store] = None) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.SECRET_KEY
    app.config["SPLITDUES_SETTINGS"] = settings
    app.extensions["splitdues_store"] = store if store is not None else Store()

    app.logger.setLevel(settings.LOG_LEVEL)
    logging.getLogger("splitdues").setLevel(settings.LOG_LEVEL)

    CORS(
        app,
        supports_credentials=True,
        resources={r"/api/*": {"origins": settings.CORS_ORIGINS}},
    )

    register_error_handlers(app)
    register_routes(app)
    register_commands(app)
    return app


def _store() -> Store:
    return current_app.extensions["splitdues_store"]


def _settings():
    return current_app.config["SPLITDUES_SETTINGS"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _identity() -> Dict[str, Any]:
    settings = _settings()
    token = (request.headers.get(settings.IDENTITY_HEADER) or "").strip()
    if not token:
        raise AuthenticationError()
    return {
        "token_identifier": token,
        "name": request.headers.get(settings.IDENTITY_NAME_HEADER),
        "email": request.headers.get(settings.IDENTITY_EMAIL_HEADER),
        "image_url": request.headers.get(settings.IDENTITY_PICTURE_HEADER),
    }


def require_identity(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        g.identity = _identity()
        return func(*args, **kwargs)

    return wrapper


def require_viewer(func):
    """Resolve the caller's identity to a stored user and expose it as ``g.viewer``."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        identity = _identity()
        viewer = _store().find_user_by_token(identity["token_identifier"])
        if viewer is None:
            raise AuthenticationError("user_not_found")
        g.identity = identity
        g.viewer = viewer
        return func(*args, **kwargs)

    return wrapper


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(SplitDuesError)
    def handle_app_error(exc: SplitDuesError):
        if exc.status >= 500:
            app.logger.error("%s: %s", exc.code, exc.detail)
        return jsonify(exc.to_dict()), exc.status

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        if exc.code is None or exc.code < 400:
            return exc
        code = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code}), exc.code


def register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db():
        """Create the tables from schema.sql."""
        with open(SCHEMA_PATH, encoding="utf-8") as handle:
            _store().db.run_script(handle.read())
        click.echo("Initialized the database.")


def register_routes(app: Flask) -> None:
    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.post("/api/users/store")
    @require_identity
    def store_user():
        user_id = _store().store_user(g.identity)
        return jsonify({"id": user_id})

    @app.get("/api/users/me")
    @require_viewer
    def current_user():
        return jsonify(g.viewer.to_dict())

    @app.get("/api/users/search")
    @require_viewer
    def search_users():
        query = (request.args.get("query") or "").strip()
        if len(query) < 2:
            return jsonify([])
        users = _store().search_users(query, exclude_user_id=g.viewer.id)
        return jsonify([user.to_dict() for user in users])

    @app.get("/api/balances")
    @require_viewer
    def get_balances():
        store = _store()
        viewer_id = g.viewer.id
        balances = compute_user_balances(
            viewer_id,
            store.direct_expenses_for(viewer_id),
            store.direct_settlements_for(viewer_id),
            store.user_profile,
        )
        return jsonify(balances)

    @app.get("/api/expenses")
    @require_viewer
    def list_expenses():
        expenses = _store().direct_expenses_for(g.viewer.id)
        return jsonify([expense.to_dict() for expense in expenses])

    @app.post("/api/expenses")
    @require_viewer
    def create_expense():
        payload = _json_body()
        description = (payload.get("description") or "").strip()
        amount = payload.get("amount")
        split_type = payload.get("splitType") or "equal"

        if not description or amount is None:
            raise ValidationError("missing_fields")

        amount_decimal = parse_amount(amount)
        if amount_decimal <= 0:
            raise ValidationError("invalid_amount")

        viewer_id = g.viewer.id
        paid_by = _parse_id(payload.get("paidBy", viewer_id), "invalid_payer")
        group_id = _optional_id(payload.get("groupId"), "invalid_group")
        splits = build_splits(amount_decimal, split_type, payload.get("splits") or [], paid_by)

        participants = {split.user_id for split in splits} | {paid_by}
        _check_participants(participants, group_id)
        if group_id is None and viewer_id not in participants:
            raise ForbiddenError("viewer_not_involved")

        expense = Expense(
            description=description,
            amount=amount_decimal,
            category=(payload.get("category") or None),
            date=_parse_date(payload.get("date")),
            paid_by=paid_by,
            split_type=split_type,
            splits=splits,
            group_id=group_id,
            created_by=viewer_id,
        )
        expense.id = _store().insert_expense(expense)
        return jsonify(expense.to_dict()), 201

    @app.get("/api/settlements")
    @require_viewer
    def list_settlements():
        settlements = _store().direct_settlements_for(g.viewer.id)
        return jsonify([settlement.to_dict() for settlement in settlements])

    @app.post("/api/settlements")
    @require_viewer
    def create_settlement():
        payload = _json_body()
        amount = payload.get("amount")
        if amount is None or payload.get("paidTo") is None:
            raise ValidationError("missing_fields")

        amount_decimal = parse_amount(amount)
        if amount_decimal <= 0:
            raise ValidationError("invalid_amount")

        viewer_id = g.viewer.id
        paid_by = _parse_id(payload.get("paidBy", viewer_id), "invalid_payer")
        paid_to = _parse_id(payload.get("paidTo"), "invalid_payee")
        if paid_by == paid_to:
            raise ValidationError("self_settlement")
        if viewer_id not in (paid_by, paid_to):
            raise ForbiddenError("viewer_not_involved")

        group_id = _optional_id(payload.get("groupId"), "invalid_group")
        _check_participants({paid_by, paid_to}, group_id)

        related = payload.get("relatedExpenses") or []
        if not isinstance(related, list):
            raise ValidationError("invalid_related_expenses")
        related_ids = [_parse_id(expense_id, "invalid_related_expenses") for expense_id in related]
        if not _store().expenses_exist(related_ids):
            raise ValidationError("unknown_expense")

        settlement = Settlement(
            amount=amount_decimal,
            note=(payload.get("note") or "").strip(),
            date=_parse_date(payload.get("date")),
            paid_by=paid_by,
            paid_to=paid_to,
            group_id=group_id,
            created_by=viewer_id,
            related_expenses=related_ids,
        )
        settlement.id = _store().insert_settlement(settlement)
        return jsonify(settlement.to_dict()), 201

    @app.get("/api/groups")
    @require_viewer
    def list_groups():
        groups = _store().groups_for(g.viewer.id)
        return jsonify([group.to_dict() for group in groups])

    @app.post("/api/groups")
    @require_viewer
    def create_group():
        payload = _json_body()
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("missing_group_name")

        members_payload = payload.get("members") or []
        if not isinstance(members_payload, list):
            raise ValidationError("invalid_members")

        viewer_id = g.viewer.id
        members: List[int] = [viewer_id]
        for member in members_payload:
            member_id = _parse_id(member, "invalid_members")
            if member_id not in members:
                members.append(member_id)

        if not _store().users_exist(members):
            raise ValidationError("unknown_user")

        group = Group(
            name=name,
            description=(payload.get("description") or "").strip(),
            created_by=viewer_id,
            members=members,
        )
        group.id = _store().create_group(group)
        return jsonify(group.to_dict()), 201


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("invalid_json")
    return payload


def _parse_id(value: Any, code: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(code)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(code) from None


def _optional_id(value: Any, code: str) -> Optional[int]:
    if value is None:
        return None
    return _parse_id(value, code)


def _parse_date(value: Any) -> int:
    if value is None:
        return _now_ms()
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("invalid_date")
    if not math.isfinite(value) or value < 0:
        raise ValidationError("invalid_date")
    return int(value)


def _check_participants(user_ids, group_id: Optional[int]) -> None:
    store = _store()
    if not store.users_exist(user_ids):
        raise ValidationError("unknown_user")
    if group_id is None:
        return
    if not store.is_group_member(group_id, g.viewer.id):
        raise ForbiddenError("not_authorized")
    if not all(store.is_group_member(group_id, user_id) for user_id in user_ids):
        raise ValidationError("invalid_split_members")


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL)
    app.run(debug=True)
