"""Standardised API error responses.

Usage
-----
    from fieldops.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Checklist not found")
    return api_error(E.GATE_NOT_SATISFIED, str(exc), details=exc.details)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • GATE_ prefix for stage-gate errors
    """

    # Validation – HTTP 400
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_REFERENCE = "ERR_INVALID_REFERENCE"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    INSUFFICIENT_ROLE = "ERR_INSUFFICIENT_ROLE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"

    # Stage gate – HTTP 400
    GATE_NOT_SATISFIED = "GATE_NOT_SATISFIED"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_INVALID: 400,
    E.INVALID_REFERENCE: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.INSUFFICIENT_ROLE: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INTERNAL: 500,
    E.GATE_NOT_SATISFIED: 400,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, gate shortfall, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
