"""
tests/unit/test_split_calculator.py — Unit tests for services/split_calculator.py.

What this file proves:
  - Every policy returns shares that sum to the total exactly, each >= 0
  - Leftover cents go one each to participants in sorted (canonical) order,
    regardless of input order; output keeps input order
  - Proportional splits weight tax and tip by pre-tax subtotal, and the
    zero-subtotal policy decides who carries tax/tip for a 0 subtotal
  - Bad input raises the documented AppError codes

No database, no Flask. Pure Decimal arithmetic.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.services.split_calculator import (
    ZERO_SUBTOTAL_EQUAL,
    allocate_cents,
    compute_shares,
    split_bill,
)

A = "alice@example.com"
B = "bob@example.com"
C = "carol@example.com"


def _amounts(shares) -> dict[str, Decimal]:
    return {s.member: s.amount for s in shares}


def _assert_exact(shares, total: Decimal) -> None:
    computed = sum((s.amount for s in shares), Decimal("0.00"))
    assert computed == total, f"share sum {computed} != total {total}"
    assert all(s.amount >= 0 for s in shares)


# ── allocate_cents ─────────────────────────────────────────────────────────

def test_allocate_cents_remainder_follows_sorted_keys():
    # 10 / 3 = 3 each, 1 left over → smallest key ("a") gets it.
    assert allocate_cents(10, [1, 1, 1], ["c", "a", "b"]) == [3, 4, 3]


def test_allocate_cents_zero_weight_slot_gets_nothing():
    assert allocate_cents(5, [0, 1, 1], ["a", "b", "c"]) == [0, 3, 2]


def test_allocate_cents_all_zero_weights_split_equally():
    assert allocate_cents(3, [0, 0], ["b", "a"]) == [1, 2]


def test_allocate_cents_empty():
    assert allocate_cents(100, [], []) == []


# ── equal ──────────────────────────────────────────────────────────────────

def test_equal_100_by_3():
    shares = compute_shares(Decimal("100.00"), A, [A, B, C], "equal")

    assert [s.amount for s in shares] == [
        Decimal("33.34"), Decimal("33.33"), Decimal("33.33"),
    ]
    _assert_exact(shares, Decimal("100.00"))


def test_equal_remainder_ignores_input_order():
    shares = compute_shares(Decimal("100.00"), A, [C, A, B], "equal")

    # Output stays in input order; the extra cent still lands on alice.
    assert [s.member for s in shares] == [C, A, B]
    assert _amounts(shares) == {
        A: Decimal("33.34"),
        B: Decimal("33.33"),
        C: Decimal("33.33"),
    }


def test_equal_tiny_total_leaves_a_zero_share():
    shares = compute_shares(Decimal("0.02"), A, [A, B, C], "equal")

    assert _amounts(shares) == {
        A: Decimal("0.01"),
        B: Decimal("0.01"),
        C: Decimal("0.00"),
    }
    _assert_exact(shares, Decimal("0.02"))


@pytest.mark.parametrize("total", ["0.01", "1.00", "10.00", "99.99", "1000.01", "12345.67"])
@pytest.mark.parametrize("n", [1, 2, 3, 6, 7])
def test_equal_is_exact_and_fair(total, n):
    members = [f"m{i}@example.com" for i in range(n)]
    shares = compute_shares(Decimal(total), members[0], members, "equal")

    _assert_exact(shares, Decimal(total))
    amounts = [s.amount for s in shares]
    assert max(amounts) - min(amounts) <= Decimal("0.01")


def test_payer_share_is_flagged_case_insensitively():
    shares = compute_shares(Decimal("30.00"), " Alice@Example.com ", [A, B], "equal")

    flags = {s.member: s.is_payer for s in shares}
    assert flags == {A: True, B: False}


def test_payer_need_not_be_a_participant():
    shares = compute_shares(Decimal("30.00"), C, [A, B], "equal")
    assert not any(s.is_payer for s in shares)


def test_equal_rejects_amounts():
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal("30.00"), A, [A, B], "equal", amounts={A: Decimal("15.00")})
    assert exc_info.value.code == ErrorCode.AMOUNTS_SENT_FOR_EQUAL_POLICY


# ── explicit ───────────────────────────────────────────────────────────────

def test_explicit_keeps_given_amounts():
    shares = compute_shares(
        Decimal("50.00"), A, [A, B], "explicit",
        amounts={A: Decimal("20.00"), B: Decimal("30.00")},
    )
    assert _amounts(shares) == {A: Decimal("20.00"), B: Decimal("30.00")}


def test_explicit_sum_must_match_exactly():
    with pytest.raises(AppError) as exc_info:
        compute_shares(
            Decimal("50.00"), A, [A, B], "explicit",
            amounts={A: Decimal("20.00"), B: Decimal("29.99")},
        )
    err = exc_info.value
    assert err.code == ErrorCode.SPLIT_SUM_MISMATCH
    assert err.http_status == 422


def test_explicit_missing_amount():
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal("50.00"), A, [A, B], "explicit", amounts={A: Decimal("50.00")})
    assert exc_info.value.code == ErrorCode.MISSING_FIELD


def test_explicit_negative_amount():
    with pytest.raises(AppError) as exc_info:
        compute_shares(
            Decimal("10.00"), A, [A, B], "explicit",
            amounts={A: Decimal("15.00"), B: Decimal("-5.00")},
        )
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT


# ── proportional ───────────────────────────────────────────────────────────

def test_proportional_weights_tax_and_tip_by_subtotal():
    shares = compute_shares(
        Decimal("46.00"), A, [A, B], "proportional",
        amounts={A: Decimal("30.00"), B: Decimal("10.00")},
        tax=Decimal("4.00"),
        tip=Decimal("2.00"),
    )
    # alice: 30 + 3.00 tax + 1.50 tip; bob: 10 + 1.00 + 0.50
    assert _amounts(shares) == {A: Decimal("34.50"), B: Decimal("11.50")}
    _assert_exact(shares, Decimal("46.00"))


def test_proportional_remainder_cent_goes_to_first_sorted():
    shares = compute_shares(
        Decimal("31.00"), B, [C, B, A], "proportional",
        amounts={A: Decimal("10.00"), B: Decimal("10.00"), C: Decimal("10.00")},
        tax=Decimal("1.00"),
    )
    assert _amounts(shares) == {
        A: Decimal("10.34"),
        B: Decimal("10.33"),
        C: Decimal("10.33"),
    }


def test_proportional_zero_subtotal_excluded_by_default():
    shares = compute_shares(
        Decimal("22.00"), A, [A, B], "proportional",
        amounts={A: Decimal("20.00"), B: Decimal("0.00")},
        tax=Decimal("2.00"),
    )
    assert _amounts(shares) == {A: Decimal("22.00"), B: Decimal("0.00")}


def test_proportional_zero_subtotal_equal_policy():
    shares = compute_shares(
        Decimal("22.00"), A, [A, B], "proportional",
        amounts={A: Decimal("20.00"), B: Decimal("0.00")},
        tax=Decimal("2.00"),
        zero_subtotal_policy=ZERO_SUBTOTAL_EQUAL,
    )
    assert _amounts(shares) == {A: Decimal("21.00"), B: Decimal("1.00")}


def test_proportional_member_without_subtotal_counts_as_zero():
    shares = compute_shares(
        Decimal("22.00"), A, [A, B], "proportional",
        amounts={A: Decimal("20.00")},
        tax=Decimal("2.00"),
    )
    assert _amounts(shares) == {A: Decimal("22.00"), B: Decimal("0.00")}


def test_proportional_all_zero_subtotals_split_tax_equally():
    shares = compute_shares(
        Decimal("1.01"), A, [B, A], "proportional",
        amounts={A: Decimal("0.00"), B: Decimal("0.00")},
        tax=Decimal("1.01"),
    )
    assert _amounts(shares) == {A: Decimal("0.51"), B: Decimal("0.50")}


def test_proportional_total_must_equal_subtotals_plus_tax_and_tip():
    with pytest.raises(AppError) as exc_info:
        compute_shares(
            Decimal("50.00"), A, [A, B], "proportional",
            amounts={A: Decimal("30.00"), B: Decimal("10.00")},
            tax=Decimal("4.00"),
            tip=Decimal("2.00"),
        )
    assert exc_info.value.code == ErrorCode.SPLIT_SUM_MISMATCH


# ── shared validation ──────────────────────────────────────────────────────

@pytest.mark.parametrize("total", ["0.00", "-5.00"])
def test_non_positive_total(total):
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal(total), A, [A], "equal")
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT


def test_sub_cent_total_rejected():
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal("10.001"), A, [A], "equal")
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT_PRECISION


def test_empty_participants():
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal("10.00"), A, [], "equal")
    assert exc_info.value.code == ErrorCode.EMPTY_PAYEES


def test_duplicate_participants_after_normalisation():
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal("10.00"), A, [A, "ALICE@example.com "], "equal")
    assert exc_info.value.code == ErrorCode.DUPLICATE_PAYEE


def test_unknown_policy():
    with pytest.raises(AppError) as exc_info:
        compute_shares(Decimal("10.00"), A, [A], "shares")
    assert exc_info.value.code == ErrorCode.INVALID_SPLIT_POLICY


# ── split_bill ─────────────────────────────────────────────────────────────

_ITEMS = [
    {"name": "Pizza", "price": Decimal("30.00"), "assigned_to": [A, B]},
    {"name": "Wine", "price": Decimal("20.00"), "assigned_to": [A]},
    {"name": "Salad", "price": Decimal("10.00"), "assigned_to": []},
]


def test_split_bill_proportional():
    result = split_bill(_ITEMS, tax=Decimal("5.00"), tip=Decimal("10.00"), mode="proportional")

    assert result["subtotal"] == Decimal("50.00")  # the unassigned salad is ignored
    assert result["total"] == Decimal("65.00")
    assert result["splits"][A] == {
        "items": Decimal("35.00"),
        "tax": Decimal("3.50"),
        "tip": Decimal("7.00"),
        "total": Decimal("45.50"),
    }
    assert result["splits"][B]["total"] == Decimal("19.50")


def test_split_bill_equal_tax_tip():
    result = split_bill(_ITEMS, tax=Decimal("5.00"), tip=Decimal("10.00"), mode="equal")

    assert result["splits"][A]["total"] == Decimal("42.50")
    assert result["splits"][B]["total"] == Decimal("22.50")
    totals = sum((s["total"] for s in result["splits"].values()), Decimal("0.00"))
    assert totals == result["total"]


def test_split_bill_item_remainder_uses_canonical_order():
    items = [{"name": "Cake", "price": Decimal("10.00"), "assigned_to": [C, A, B]}]
    result = split_bill(items, mode="equal")

    assert result["splits"][A]["items"] == Decimal("3.34")
    assert result["splits"][B]["items"] == Decimal("3.33")
    assert result["splits"][C]["items"] == Decimal("3.33")


def test_split_bill_nobody_assigned():
    items = [{"name": "Bread", "price": Decimal("4.00"), "assigned_to": []}]
    result = split_bill(items, tax=Decimal("1.00"), mode="proportional")

    assert result["splits"] == {}
    assert result["total"] == Decimal("0.00")


def test_split_bill_invalid_mode():
    with pytest.raises(AppError) as exc_info:
        split_bill(_ITEMS, mode="by-weight")
    assert exc_info.value.code == ErrorCode.INVALID_TAX_TIP_MODE
    assert exc_info.value.http_status == 400
