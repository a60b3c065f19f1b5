"""
errors.py — AppError base class and error code registry.

Every error returned by the SplitBill API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Categories:
  - Validation (400/422): the request is malformed or the split is wrong.
    Nothing is persisted.
  - State (422): the request is well-formed but the group/edge is in the
    wrong state for it (already resolved, group not active, ...).
  - Conflict (409): another writer changed the group first. Retryable —
    the caller should refetch and resubmit.
  - Not found (404): the client's view is stale.
  - Auth (401/403): never swap these. 401 = who are you, 403 = not allowed.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
            retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error
        self.retryable   = retryable

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.retryable:
            payload["retryable"] = True
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD                 = "MISSING_FIELD"
    INVALID_FIELD                 = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION      = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_POLICY          = "INVALID_SPLIT_POLICY"
    INVALID_TAX_TIP_MODE          = "INVALID_TAX_TIP_MODE"
    AMOUNTS_SENT_FOR_EQUAL_POLICY = "AMOUNTS_SENT_FOR_EQUAL_POLICY"
    DUPLICATE_PAYEE               = "DUPLICATE_PAYEE"

    # ── Split Validation Errors (422) ──────────────────────────────────────
    INVALID_AMOUNT                = "INVALID_AMOUNT"        # total <= 0, share < 0
    EMPTY_PAYEES                  = "EMPTY_PAYEES"
    SPLIT_SUM_MISMATCH            = "SPLIT_SUM_MISMATCH"    # shares != total
    PAYER_NOT_MEMBER              = "PAYER_NOT_MEMBER"
    PAYEE_NOT_MEMBER              = "PAYEE_NOT_MEMBER"

    # ── State Errors (422) ─────────────────────────────────────────────────
    GROUP_NOT_ACTIVE              = "GROUP_NOT_ACTIVE"
    GROUP_ALREADY_DELETED         = "GROUP_ALREADY_DELETED"
    INVALID_STATUS_TRANSITION     = "INVALID_STATUS_TRANSITION"
    EDGE_ALREADY_RESOLVED         = "EDGE_ALREADY_RESOLVED"
    PENDING_EDGES_REMAIN          = "PENDING_EDGES_REMAIN"
    EXPENSE_DELETED               = "EXPENSE_DELETED"
    MEMBER_IN_USE                 = "MEMBER_IN_USE"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    CONCURRENT_MODIFICATION       = "CONCURRENT_MODIFICATION"  # retryable
    ALREADY_MEMBER                = "ALREADY_MEMBER"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    GROUP_NOT_FOUND               = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND             = "EXPENSE_NOT_FOUND"
    EDGE_NOT_FOUND                = "EDGE_NOT_FOUND"
    MEMBER_NOT_FOUND              = "MEMBER_NOT_FOUND"
    INVITE_NOT_FOUND              = "INVITE_NOT_FOUND"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING                 = "TOKEN_MISSING"          # 401
    TOKEN_INVALID                 = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED                 = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                     = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR                = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # An expense name clashed with an existing one and was suffixed " (n)".
    EXPENSE_RENAMED = "EXPENSE_RENAMED"

    # A previously resolved edge went back to pending because new debt
    # was introduced between the same pair.
    EDGE_REOPENED   = "EDGE_REOPENED"


def concurrent_modification(group_id: int | None = None) -> AppError:
    """Builds the retryable 409 raised when two writers race on one group."""
    where = f" group {group_id}" if group_id is not None else " this group"
    return AppError(
        ErrorCode.CONCURRENT_MODIFICATION,
        f"Another change to{where} was saved first. Refresh and try again.",
        409,
        retryable=True,
    )
