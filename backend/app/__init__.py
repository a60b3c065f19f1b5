"""
app/__init__.py — create_app() builds a SplitBill Flask app.

Importing this module has no side effects. Tests build one app per test,
and Alembic reads the model metadata without a running server.

create_app() wires, in order:
  - settings from config_by_name, validated when running in production
  - log levels for app.logger and the `backend.*` loggers
  - SQLAlchemy and Marshmallow
  - the groups, expenses, settlements and bills blueprints under /api/v1
  - JSON error handlers; each one rolls the request's session back, and a
    lost row-lock or version race becomes a retryable 409
  - `flask purge-expired`, plus an optional background purge sweeper
  - a JSON provider that writes Decimal amounts as strings
"""

from __future__ import annotations

import logging
import threading
import traceback
from decimal import Decimal

import click
from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask.logging import default_handler
from marshmallow import ValidationError
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config

# PostgreSQL SQLSTATEs for losing a lock race: deadlock_detected,
# lock_not_available, serialization_failure.
_RETRYABLE_PGCODES = {"40P01", "55P03", "40001"}


# ── JSON ───────────────────────────────────────────────────────────────────
# Amounts travel as "12.50" strings; a float would lose cents.

class DecimalJSONProvider(DefaultJSONProvider):
    """Writes Decimal("10.50") as "10.50"."""

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Factory ────────────────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Args:
        config_name: "development", "testing" or "production". Unknown names
                     get the development settings.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    app.config.from_object(config_by_name.get(config_name, config_by_name["development"]))
    if config_name == "production":
        validate_production_config(app)

    _configure_logging(app)

    # Deferred: extensions and models import from this package.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # Registers every table on db.metadata.
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            audit_entry,
            edge,
            expense,
            group,
            membership,
            payee_share,
            settlement,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    _register_commands(app)
    if app.config.get("PURGE_SWEEP_INTERVAL_SECONDS", 0) > 0 and not app.testing:
        _start_purge_sweeper(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to app.logger and to the `backend` logger tree that
    the services log through, sharing Flask's stderr handler.
    """
    level = app.config.get("LOG_LEVEL", "INFO")
    app.logger.setLevel(level)

    backend_logger = logging.getLogger("backend")
    backend_logger.setLevel(level)
    if default_handler not in backend_logger.handlers:
        backend_logger.addHandler(default_handler)


def _register_blueprints(app: Flask) -> None:
    from backend.app.routes.bills import bills_bp
    from backend.app.routes.expenses import expenses_bp
    from backend.app.routes.groups import groups_bp
    from backend.app.routes.settlements import settlements_bp

    app.register_blueprint(groups_bp,      url_prefix="/api/v1/groups")
    # Serves both /groups/<id>/expenses and /expenses/<id>.
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/groups")
    app.register_blueprint(bills_bp,       url_prefix="/api/v1/bills")


def _register_error_handlers(app: Flask) -> None:
    """
      AppError         → its own code and status
      ValidationError  → 400; MISSING_FIELD, INVALID_FIELD, or the ErrorCode a
                         schema used as its message
      StaleDataError   → 409 CONCURRENT_MODIFICATION, retryable
      OperationalError → the same 409 for PostgreSQL lock/serialization
                         failures, 500 for anything else
      HTTPException    → its own status, e.g. 404 NOT_FOUND
      Exception        → 500 INTERNAL_ERROR, traceback logged only

    The session is rolled back before any response is built.
    """
    from backend.app.errors import AppError, ErrorCode, concurrent_modification
    from backend.app.extensions import db

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        db.session.rollback()
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """Only the first problem is reported."""
        db.session.rollback()

        field, raw_message = _first_message(error.messages)
        known_codes = set(vars(ErrorCode).values())

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error: StaleDataError):
        db.session.rollback()
        app.logger.info("Concurrent modification on %s %s: %s", request.method, request.path, error)
        return jsonify(concurrent_modification().to_dict()), 409

    @app.errorhandler(OperationalError)
    def handle_operational_error(error: OperationalError):
        db.session.rollback()
        if getattr(error.orig, "pgcode", None) in _RETRYABLE_PGCODES:
            app.logger.info("Lock conflict on %s %s: %s", request.method, request.path, error.orig)
            return jsonify(concurrent_modification().to_dict()), 409
        return handle_unexpected_error(error)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Unknown routes, wrong methods and the like keep their HTTP status."""
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        db.session.rollback()
        app.logger.error(
            "Unhandled %s on %s %s\n%s",
            type(error).__name__,
            request.method,
            request.path,
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "Something went wrong on our side.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """Permissive CORS, in DEBUG or TESTING only."""

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _register_commands(app: Flask) -> None:
    """`flask purge-expired` — run one purge sweep now (cron-friendly)."""
    from backend.app.extensions import db
    from backend.app.services import lifecycle_service

    @app.cli.command("purge-expired")
    def purge_expired_command():
        purged = lifecycle_service.purge_expired(db.session)
        click.echo(f"Purged {len(purged)} group(s).")


def _start_purge_sweeper(app: Flask) -> threading.Thread:
    """
    Runs purge_expired() every PURGE_SWEEP_INTERVAL_SECONDS in a daemon
    thread. Each sweep gets its own app context and scoped session, so it
    never shares a transaction with request handling.
    """
    from backend.app.extensions import db
    from backend.app.services import lifecycle_service

    interval = app.config["PURGE_SWEEP_INTERVAL_SECONDS"]
    stop = threading.Event()

    def _sweep_forever():
        while not stop.wait(interval):
            with app.app_context():
                try:
                    lifecycle_service.purge_expired(db.session)
                except SQLAlchemyError:
                    # The next sweep retries; purge is idempotent.
                    app.logger.exception("Purge sweep failed")
                finally:
                    db.session.remove()

    thread = threading.Thread(target=_sweep_forever, name="purge-sweeper", daemon=True)
    thread.start()
    app.extensions["purge_sweeper_stop"] = stop
    app.logger.info("Purge sweeper running every %ss", interval)
    return thread


def _first_message(messages) -> tuple[str | None, str]:
    """Walks marshmallow's nested messages down to the first (field, text)."""
    field = None
    path = []

    while True:
        if isinstance(messages, dict) and messages:
            key, messages = next(iter(messages.items()))
            if key != "_schema" and not isinstance(key, int):
                path.append(str(key))
            field = path[0] if path else None
        elif isinstance(messages, list) and messages:
            if all(isinstance(m, str) for m in messages):
                return field, messages[0]
            messages = messages[0]
        else:
            return field, str(messages) if messages else "Invalid input."


def _code_to_message(code: str) -> str:
    """
    Human-readable default message for a known error code raised as a
    ValidationError message in a schema.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_POLICY": "split_policy must be 'equal', 'explicit' or 'proportional'.",
        "INVALID_TAX_TIP_MODE": "split_tax_tip must be 'proportional' or 'equal'.",
        "AMOUNTS_SENT_FOR_EQUAL_POLICY": "Do not send payee amounts when split_policy is 'equal'.",
        "DUPLICATE_PAYEE": "The same member appears more than once in the payee list.",
        "EMPTY_PAYEES": "An expense needs at least one payee.",
    }
    return _messages.get(code, "Invalid input.")
