"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at an in-memory SQLite database unless TEST_DATABASE_URL is set.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Bearer tokens are minted here with the testing secret; the service only
    verifies tokens, it never issues them.

Helper functions (not fixtures) are provided for common operations:
  - token_for(email)           → signed bearer token for that member
  - auth_headers(email)        → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)    → group dict
  - make_expense(client, ...)  → HTTP response
  - resolve(client, ...)       → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import jwt
import pytest
from sqlalchemy import text

from backend.app import create_app
from backend.app.extensions import db as _db

ALICE = "alice@example.com"
BOB = "bob@example.com"
CAROL = "carol@example.com"
DAVE = "dave@example.com"

TEST_SECRET = "testing-secret-not-for-production-0000"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire
    test session, creates every table, and drops them at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test, children before parents.
    """
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.remove()

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM payee_shares"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM consolidated_edges"))
            conn.execute(text("DELETE FROM settlements"))
            conn.execute(text("DELETE FROM audit_entries"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def token_for(email: str, **claims) -> str:
    payload = {"sub": email}
    payload.update(claims)
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


def auth_headers(email: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token_for(email)}"}


def make_group(
    client,
    creator: str = ALICE,
    name: str = "Test Group",
    members: list | None = None,
) -> dict:
    """
    Creates a group and returns the group data dict.
    The creator becomes the first member.
    """
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name, "members": members or []},
        headers=auth_headers(creator),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_expense(
    client,
    caller: str,
    group_id: int,
    name: str = "Dinner",
    total_amount: str | None = None,
    payer: str | None = None,
    payees: list | None = None,
    split_policy: str = "equal",
    **extra,
):
    """
    POSTs an expense and returns the HTTP response.

    `payees` may be plain member strings (equal split) or payee dicts.
    """
    body = {
        "name": name,
        "payer": payer or caller,
        "split_policy": split_policy,
        "payees": [
            p if isinstance(p, dict) else {"member": p}
            for p in (payees or [caller])
        ],
    }
    if total_amount is not None:
        body["total_amount"] = total_amount
    body.update(extra)

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=body,
        headers=auth_headers(caller),
    )


def resolve(client, caller: str, group_id: int, from_member: str, to_member: str, **extra):
    return client.post(
        f"/api/v1/groups/{group_id}/resolve",
        json={"from": from_member, "to": to_member, **extra},
        headers=auth_headers(caller),
    )


def get_edges(client, caller: str, group_id: int) -> dict:
    resp = client.get(f"/api/v1/groups/{group_id}/edges", headers=auth_headers(caller))
    assert resp.status_code == 200, f"get_edges failed: {resp.get_json()}"
    return resp.get_json()["data"]


def abc_group(client) -> dict:
    """
    alice, bob and carol; alice pays 90.00 split three ways, bob pays
    30.00 split with carol.

    Resulting edges: bob→alice 30.00, carol→alice 30.00, carol→bob 15.00.
    """
    group = make_group(client, ALICE, "Weekend", members=[BOB, CAROL])

    resp = make_expense(client, ALICE, group["id"], "Dinner", "90.00", payees=[ALICE, BOB, CAROL])
    assert resp.status_code == 201, resp.get_json()
    resp = make_expense(client, BOB, group["id"], "Taxi", "30.00", payees=[BOB, CAROL])
    assert resp.status_code == 201, resp.get_json()

    return group
