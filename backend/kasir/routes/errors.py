# Overview: Maps domain errors to JSON responses for every blueprint.

from flask import current_app
from werkzeug.exceptions import HTTPException

from ..errors import (
    PosError,
    InsufficientStock,
    CartInvalid,
    InsufficientPayment,
    ProductNotFound,
    CustomerNotFound,
    TransactionNotFound,
    KasbonNotFound,
    DuplicateBarcode,
    InvalidTransition,
    StorageFailure,
)
from ..services.reporting_service import ReportError
from ..validation import ValidationError, ConflictError

STATUS_BY_ERROR = (
    (ProductNotFound, 404),
    (CustomerNotFound, 404),
    (TransactionNotFound, 404),
    (KasbonNotFound, 404),
    (DuplicateBarcode, 409),
    (InvalidTransition, 409),
    (InsufficientStock, 422),
    (CartInvalid, 422),
    (InsufficientPayment, 422),
    (StorageFailure, 503),
)


def error_response(exc: PosError):
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status = 400
    return {"error": exc.message, "kind": exc.__class__.__name__, "details": exc.details}, status


def register_error_handlers(app):
    @app.errorhandler(PosError)
    def handle_pos_error(exc):
        if isinstance(exc, StorageFailure):
            current_app.logger.error("Storage failure: %s %s", exc.message, exc.details)
        return error_response(exc)

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        return {"error": str(exc)}, 400

    @app.errorhandler(ConflictError)
    def handle_conflict(exc):
        return {"error": str(exc)}, 409

    @app.errorhandler(ReportError)
    def handle_report_error(exc):
        return {"error": str(exc)}, 400

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            return {"error": exc.description}, exc.code
        current_app.logger.exception("Unhandled error")
        return {"error": "Internal server error"}, 500
