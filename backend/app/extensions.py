"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from backend.app.extensions import db, ma
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Marshmallow instance — available for Flask-aware serialization helpers.
#
# Schema inheritance rule:
#   Validation Schema classes in app/schemas/ inherit from marshmallow.Schema
#   directly, NOT from ma.Schema. ma.Schema needs an active Flask application
#   context and the unit tests in tests/unit/ run without one.
ma = Marshmallow()
