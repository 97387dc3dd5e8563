import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

log = logging.getLogger(__name__)


class ApiError(Exception):
    """Base for errors that are safe to show to the client."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ApiError):
    status_code = 400


class InsufficientFunds(ApiError):
    status_code = 400

    def __init__(self, message: str = "Insufficient wallet balance"):
        super().__init__(message)


class Unauthenticated(ApiError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDenied(ApiError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotEligible(AccessDenied):
    def __init__(self, message: str = "You can only review food items from your orders"):
        super().__init__(message)


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class NoActiveSubscription(NotFound):
    def __init__(self, message: str = "No active subscription found"):
        super().__init__(message)


class NoMealsRemaining(Conflict):
    def __init__(self, message: str = "No meals remaining on subscription"):
        super().__init__(message)


class UpstreamPaymentError(ApiError):
    status_code = 502

    def __init__(self, message: str = "Payment processing failed, please try again"):
        super().__init__(message)


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        return jsonify({"message": err.message}), err.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(err: HTTPException):
        return jsonify({"message": err.description or err.name}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        log.exception("Unhandled error: %s", err)
        return jsonify({"message": "Internal server error"}), 500
