"""
tests/integration/test_expense_delete.py — Integration tests for DELETE /expenses/:id.

Soft delete rules:
  - deleted_at is set; the row and its shares stay for the audit trail
  - the group's edges are re-derived without the expense
  - deleting again is a no-op: 200, no second audit entry
  - the group must be active

Audit trail:
  - add, edit and delete each append one entry, read back newest first
"""

from __future__ import annotations

from .conftest import (
    ALICE,
    BOB,
    CAROL,
    DAVE,
    abc_group,
    auth_headers,
    get_edges,
    make_expense,
    make_group,
    resolve,
)


def _delete(client, caller, expense_id):
    return client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(caller))


def _history(client, caller, group_id):
    resp = client.get(f"/api/v1/groups/{group_id}/edit-history", headers=auth_headers(caller))
    assert resp.status_code == 200
    return resp.get_json()["data"]


class TestDeleteExpense:

    def test_delete_returns_200(self, client):
        group = make_group(client, ALICE, members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]

        resp = _delete(client, BOB, expense["id"])

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"deleted": True, "expense_id": expense["id"]}

    def test_deleted_expense_stays_readable(self, client):
        group = make_group(client, ALICE, members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]
        _delete(client, ALICE, expense["id"])

        fetched = client.get(f"/api/v1/expenses/{expense['id']}", headers=auth_headers(ALICE)).get_json()["data"]

        assert fetched["deleted_at"] is not None
        assert len(fetched["payees"]) == 2

    def test_deleted_expense_left_out_of_list(self, client):
        group = make_group(client, ALICE, members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]
        make_expense(client, ALICE, group["id"], "Dinner", "10.00", payees=[ALICE, BOB])
        _delete(client, ALICE, expense["id"])

        listed = client.get(f"/api/v1/groups/{group['id']}/expenses", headers=auth_headers(ALICE)).get_json()["data"]

        assert [e["name"] for e in listed] == ["Dinner"]

    def test_edges_rederived_without_expense(self, client):
        group = abc_group(client)
        taxi = client.get(
            f"/api/v1/groups/{group['id']}/expenses", headers=auth_headers(ALICE)
        ).get_json()["data"][0]
        assert taxi["name"] == "Taxi"

        _delete(client, CAROL, taxi["id"])

        edges = get_edges(client, ALICE, group["id"])["edges"]
        assert [(e["from"], e["to"], e["amount"]) for e in edges] == [
            (BOB, ALICE, "30.00"),
            (CAROL, ALICE, "30.00"),
        ]

    def test_delete_twice_is_noop(self, client):
        group = make_group(client, ALICE, members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]
        _delete(client, ALICE, expense["id"])

        resp = _delete(client, ALICE, expense["id"])

        assert resp.status_code == 200
        actions = [e["action"] for e in _history(client, ALICE, group["id"])]
        assert actions.count("delete_expense") == 1

    def test_deleting_last_debt_leaves_no_edges(self, client):
        group = make_group(client, ALICE, members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]

        _delete(client, ALICE, expense["id"])

        data = get_edges(client, ALICE, group["id"])
        assert data["edges"] == []
        assert data["all_resolved"] is True
        assert data["group_status"] == "active"

    def test_non_member_returns_403(self, client):
        group = make_group(client, ALICE)
        expense = make_expense(client, ALICE, group["id"], "Solo", "5.00").get_json()["data"]
        assert _delete(client, DAVE, expense["id"]).status_code == 403

    def test_unknown_expense_returns_404(self, client):
        assert _delete(client, ALICE, 999999).status_code == 404

    def test_completed_group_returns_422(self, client):
        group = make_group(client, ALICE, members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]
        resolve(client, BOB, group["id"], BOB, ALICE)

        resp = _delete(client, ALICE, expense["id"])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_ACTIVE"


class TestAuditTrail:

    def test_add_edit_delete_newest_first(self, client):
        group = make_group(client, ALICE, "Trail", members=[BOB])
        expense = make_expense(client, ALICE, group["id"], "Lunch", "20.00", payees=[ALICE, BOB]).get_json()["data"]
        client.patch(f"/api/v1/expenses/{expense['id']}", json={"name": "Brunch"}, headers=auth_headers(BOB))
        _delete(client, ALICE, expense["id"])

        history = _history(client, BOB, group["id"])

        assert [e["action"] for e in history] == ["delete_expense", "edit_expense", "add_expense"]
        assert [e["actor"] for e in history] == [ALICE, BOB, ALICE]
        assert all(e["group_name"] == "Trail" for e in history)
        assert history[0]["expense_name"] == "Brunch"
        assert history[0]["old_amount"] == "20.00"
        assert history[2]["new_amount"] == "20.00"
        assert history[2]["old_amount"] is None

    def test_history_non_member_returns_403(self, client):
        group = make_group(client, ALICE)
        resp = client.get(f"/api/v1/groups/{group['id']}/edit-history", headers=auth_headers(DAVE))
        assert resp.status_code == 403
