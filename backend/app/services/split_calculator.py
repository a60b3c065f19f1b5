"""
services/split_calculator.py — Per-expense split computation.

This file is the SINGLE SOURCE OF TRUTH for how an expense total is divided
among its payees. expense_service calls compute_shares(); the bill preview
route calls split_bill(). Nothing else divides money.

Policies:
  equal         total / n, floored to the cent; the leftover cents go one
                each to the first participants in canonical (sorted) order.
                100.00 / 3 → 33.34, 33.33, 33.33.
  explicit      caller supplies each amount; they must sum to total exactly.
  proportional  caller supplies each pre-tax subtotal plus tax and tip;
                tax and tip are each weighted by subtotal, floored to the
                cent, leftover cents handed out by the same canonical rule.

Guarantees: sum(share.amount) == total exactly, every share >= 0.

Layer rules:
  - No Flask imports, no session. Pure functions over Decimal.
  - All arithmetic is done in integer cents; Decimal only at the edges.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Mapping

from backend.app.errors import AppError, ErrorCode
from backend.app.models.expense import SplitPolicy

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

ZERO_SUBTOTAL_EXCLUDE = "exclude"
ZERO_SUBTOTAL_EQUAL = "equal"


@dataclass(frozen=True)
class ShareData:
    member: str
    amount: Decimal
    is_payer: bool = False


# ── Money helpers ──────────────────────────────────────────────────────────

def to_money(value) -> Decimal:
    """Coerces to a 2-dp Decimal. Floats go through str() so 0.1 stays 0.10."""
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"{value!r} is not a valid monetary amount.",
            422,
        )


def _to_cents(value: Decimal) -> int:
    return int((value * 100).to_integral_value())


def _from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def _require_cent_precision(value: Decimal, field: str) -> None:
    if Decimal(value).as_tuple().exponent < -2:
        raise AppError(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            f"{field} must have at most 2 decimal places.",
            422,
            field=field,
        )


def normalize_member(member: str) -> str:
    """Member ids are compared lower-cased and trimmed everywhere."""
    return member.strip().lower()


# ── Allocation core ────────────────────────────────────────────────────────

def allocate_cents(
        pool_cents: int,
        weights: list[int],
        keys: list[str],
) -> list[int]:
    """
    Splits `pool_cents` across slots in proportion to `weights`.

    Each slot gets floor(pool * w / W). The cents lost to flooring go one
    each to the positively weighted slots in ascending `keys` order. If every
    weight is zero the pool is split equally.

    Returns a list aligned with `weights`; it always sums to `pool_cents`.
    """
    if not weights:
        return []

    if not any(w > 0 for w in weights):
        weights = [1] * len(weights)

    total_weight = sum(weights)
    allocated = [(pool_cents * w) // total_weight for w in weights]
    remainder = pool_cents - sum(allocated)

    eligible = sorted(
        (i for i, w in enumerate(weights) if w > 0),
        key=lambda i: keys[i],
    )
    # remainder < len(eligible): each floor loses strictly less than a cent.
    for i in eligible[:remainder]:
        allocated[i] += 1

    return allocated


# ── Validation ─────────────────────────────────────────────────────────────

def _validate_total(total: Decimal) -> Decimal:
    _require_cent_precision(total, "total_amount")
    total = to_money(total)
    if total <= ZERO:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            "Expense total must be greater than zero.",
            422,
            field="total_amount",
        )
    return total


def _validate_participants(participants: Iterable[str]) -> list[str]:
    members = [normalize_member(p) for p in participants]
    if not members:
        raise AppError(
            ErrorCode.EMPTY_PAYEES,
            "An expense needs at least one payee.",
            422,
            field="payees",
        )
    if len(set(members)) != len(members):
        raise AppError(
            ErrorCode.DUPLICATE_PAYEE,
            "The same member appears more than once in the payee list.",
            422,
            field="payees",
        )
    return members


def _normalised_amounts(
        amounts: Mapping[str, Decimal] | None,
        field: str,
) -> dict[str, Decimal]:
    result: dict[str, Decimal] = {}
    for member, value in (amounts or {}).items():
        _require_cent_precision(Decimal(value), field)
        value = to_money(value)
        if value < ZERO:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"Amount for {member} must not be negative.",
                422,
                field=field,
            )
        result[normalize_member(member)] = value
    return result


# ── Policies ───────────────────────────────────────────────────────────────

def _equal(total: Decimal, members: list[str]) -> list[Decimal]:
    cents = allocate_cents(_to_cents(total), [1] * len(members), members)
    return [_from_cents(c) for c in cents]


def _explicit(
        total: Decimal,
        members: list[str],
        amounts: dict[str, Decimal],
) -> list[Decimal]:
    missing = [m for m in members if m not in amounts]
    if missing:
        raise AppError(
            ErrorCode.MISSING_FIELD,
            f"No amount given for {', '.join(missing)}.",
            422,
            field="payees",
        )

    result = [amounts[m] for m in members]
    provided = sum(result, ZERO)
    if provided != total:
        raise AppError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Payee amounts ({provided}) do not equal expense total ({total}).",
            422,
            field="payees",
        )
    return result


def _proportional(
        total: Decimal,
        members: list[str],
        subtotals: dict[str, Decimal],
        tax: Decimal,
        tip: Decimal,
        zero_subtotal_policy: str,
) -> list[Decimal]:
    # A member with no subtotal is along only for tax/tip.
    sub = [subtotals.get(m, ZERO) for m in members]

    expected = sum(sub, ZERO) + tax + tip
    if expected != total:
        raise AppError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Subtotals plus tax and tip ({expected}) do not equal "
            f"expense total ({total}).",
            422,
            field="payees",
        )

    weights = [_to_cents(s) for s in sub]
    if zero_subtotal_policy == ZERO_SUBTOTAL_EQUAL and any(w == 0 for w in weights):
        weights = [1] * len(weights)

    tax_cents = allocate_cents(_to_cents(tax), weights, members)
    tip_cents = allocate_cents(_to_cents(tip), weights, members)

    return [
        _from_cents(_to_cents(s) + tx + tp)
        for s, tx, tp in zip(sub, tax_cents, tip_cents)
    ]


# ── Public API ─────────────────────────────────────────────────────────────

def compute_shares(
        total: Decimal,
        payer: str,
        participants: Iterable[str],
        policy: SplitPolicy | str,
        amounts: Mapping[str, Decimal] | None = None,
        tax: Decimal = ZERO,
        tip: Decimal = ZERO,
        zero_subtotal_policy: str = ZERO_SUBTOTAL_EXCLUDE,
) -> list[ShareData]:
    """
    Divides `total` among `participants` under `policy`.

    Args:
        total:        Expense total. Must be > 0 with at most 2 dp.
        payer:        Member who paid. Their own share is flagged is_payer.
        participants: Ordered payee ids. The payer may or may not be one.
        policy:       SplitPolicy or its string value.
        amounts:      explicit → {member: amount}; proportional → {member:
                      pre-tax subtotal}; must be empty for equal.
        tax, tip:     proportional only; part of `total`.

    Returns:
        ShareData per participant in input order; amounts sum to total.

    Raises:
        AppError INVALID_AMOUNT, EMPTY_PAYEES, DUPLICATE_PAYEE,
        SPLIT_SUM_MISMATCH, INVALID_SPLIT_POLICY, AMOUNTS_SENT_FOR_EQUAL_POLICY.
    """
    try:
        policy = SplitPolicy(policy)
    except ValueError:
        raise AppError(
            ErrorCode.INVALID_SPLIT_POLICY,
            f"{policy!r} is not a split policy. "
            f"Valid values: {', '.join(p.value for p in SplitPolicy)}.",
            422,
            field="split_policy",
        )

    total = _validate_total(total)
    members = _validate_participants(participants)
    payer = normalize_member(payer)

    if policy == SplitPolicy.EQUAL:
        if amounts:
            raise AppError(
                ErrorCode.AMOUNTS_SENT_FOR_EQUAL_POLICY,
                "Do not send payee amounts when split_policy is 'equal'.",
                422,
                field="payees",
            )
        result = _equal(total, members)

    elif policy == SplitPolicy.EXPLICIT:
        result = _explicit(total, members, _normalised_amounts(amounts, "payees"))

    else:
        tax = _normalised_amounts({"tax": tax}, "tax")["tax"]
        tip = _normalised_amounts({"tip": tip}, "tip")["tip"]
        result = _proportional(
            total,
            members,
            _normalised_amounts(amounts, "payees"),
            tax,
            tip,
            zero_subtotal_policy,
        )

    shares = [
        ShareData(member=m, amount=a, is_payer=(m == payer))
        for m, a in zip(members, result)
    ]

    # Must always hold; a failure here is a programming error.
    computed = sum((s.amount for s in shares), ZERO)
    if computed != total:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Split computation produced sum {computed} for total {total}.",
            500,
        )

    return shares


def split_bill(
        items: list[dict],
        tax: Decimal = ZERO,
        tip: Decimal = ZERO,
        mode: str = "proportional",
) -> dict:
    """
    Itemised bill preview: who owes what before the bill becomes an expense.

    Each item's price is split equally among its `assigned_to` members
    (canonical remainder rule). Unassigned items are ignored. Tax and tip are
    then spread either in proportion to each person's item subtotal
    (`proportional`) or equally (`equal`), each column exact to the cent.

    Returns:
        {"subtotal", "tax", "tip", "total",
         "splits": {member: {"items", "tax", "tip", "total"}}}
        where the per-member totals sum to "total".
    """
    if mode not in ("proportional", "equal"):
        raise AppError(
            ErrorCode.INVALID_TAX_TIP_MODE,
            f"{mode!r} is not a tax/tip mode. Valid values: proportional, equal.",
            400,
            field="split_tax_tip",
        )

    tax = to_money(tax)
    tip = to_money(tip)

    item_cents: dict[str, int] = {}
    subtotal_cents = 0

    for item in items:
        assignees = [normalize_member(m) for m in item.get("assigned_to") or []]
        if not assignees:
            continue
        price_cents = _to_cents(to_money(item["price"]))
        subtotal_cents += price_cents
        unique = list(dict.fromkeys(assignees))
        for member, cents in zip(unique, allocate_cents(price_cents, [1] * len(unique), unique)):
            item_cents[member] = item_cents.get(member, 0) + cents

    people = list(item_cents)
    if mode == "proportional":
        weights = [item_cents[p] for p in people]
    else:
        weights = [1] * len(people)

    tax_cents = allocate_cents(_to_cents(tax), weights, people) if people else []
    tip_cents = allocate_cents(_to_cents(tip), weights, people) if people else []

    splits = {}
    for person, tx, tp in zip(people, tax_cents, tip_cents):
        items_part = item_cents[person]
        splits[person] = {
            "items": _from_cents(items_part),
            "tax":   _from_cents(tx),
            "tip":   _from_cents(tp),
            "total": _from_cents(items_part + tx + tp),
        }

    # With nobody assigned, tax and tip have nowhere to go.
    allocated_tax = _from_cents(sum(tax_cents)) if people else ZERO
    allocated_tip = _from_cents(sum(tip_cents)) if people else ZERO

    return {
        "subtotal": _from_cents(subtotal_cents),
        "tax": allocated_tax,
        "tip": allocated_tip,
        "total": _from_cents(subtotal_cents) + allocated_tax + allocated_tip,
        "splits": splits,
    }
