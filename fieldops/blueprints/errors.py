"""
Shared error handlers for the EPM blueprints.

Maps the ``fieldops.core.exceptions`` hierarchy to the standard
``{"error", "code", "details?"}`` body.  Registered per blueprint so
non-API routes keep Flask's default HTML errors.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from fieldops.core.exceptions import (
    ConflictError,
    GateNotSatisfiedError,
    InsufficientRoleError,
    InvalidReferenceError,
    NotFoundError,
    ValidationError,
)
from fieldops.models import db
from fieldops.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Attach the domain-exception handlers to blueprint ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(InvalidReferenceError)
    def _handle_invalid_reference(error: InvalidReferenceError):
        return api_error(E.INVALID_REFERENCE, str(error), details=error.details)

    @bp.errorhandler(GateNotSatisfiedError)
    def _handle_gate(error: GateNotSatisfiedError):
        return api_error(E.GATE_NOT_SATISFIED, str(error), details=error.details)

    @bp.errorhandler(InsufficientRoleError)
    def _handle_role(error: InsufficientRoleError):
        return api_error(E.INSUFFICIENT_ROLE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
