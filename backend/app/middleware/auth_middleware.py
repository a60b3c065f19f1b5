"""
middleware/auth_middleware.py — Bearer-token check for every SplitBill route.

SplitBill never issues tokens. The identity service signs them with the
shared JWT_SECRET_KEY, and the `sub` claim carries the member's email.

@require_auth turns a request into a member id, or into a 401:

  no Authorization header            → TOKEN_MISSING
  not "Bearer <token>", bad signature,
  bad claims, or a `sub` that is not
  an email                           → TOKEN_INVALID
  `exp` in the past                  → TOKEN_EXPIRED

On success the lower-cased email is stored on flask.g.member. Whether that
member may touch a given group is decided by the services (403), never here.
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Wraps a view so it only runs for an authenticated member.

        @groups_bp.route("/")
        @require_auth
        def list_groups():
            caller = g.member
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.member = _member_from_request()
        return f(*args, **kwargs)

    return decorated


def _member_from_request() -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        raise AppError(ErrorCode.TOKEN_MISSING, "Missing Authorization header.", 401)

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Expected an 'Authorization: Bearer <token>' header.",
            401,
        )

    try:
        claims = jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(ErrorCode.TOKEN_EXPIRED, "Token has expired.", 401)
    except jwt.InvalidTokenError:
        raise AppError(ErrorCode.TOKEN_INVALID, "Token could not be verified.", 401)

    sub = claims.get("sub")
    if not isinstance(sub, str) or "@" not in sub.strip():
        raise AppError(ErrorCode.TOKEN_INVALID, "Token subject must be an email address.", 401)

    return sub.strip().lower()
