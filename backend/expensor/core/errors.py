"""Domain exceptions raised by the service layer.

Every error carries a user-facing ``message`` and the HTTP status the API
answers with.  Storage faults deliberately keep a generic message; the
underlying driver exception is chained (``raise ... from exc``) and
logged, never returned to the caller.
"""

from __future__ import annotations


class ExpensorError(Exception):
    status_code: int = 400
    message: str = "Request failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# --- storage faults -------------------------------------------------------


class StorageError(ExpensorError):
    status_code = 503


class ReceiptsFetchError(StorageError):
    message = "Failed to fetch receipts"


class FilterOptionsFetchError(StorageError):
    message = "Failed to fetch filter options"


class ReceiptSaveError(StorageError):
    message = "Failed to save receipt"


class QueryTimeoutError(ExpensorError):
    status_code = 504
    message = "The request took too long, please try again"


# --- not found ------------------------------------------------------------


class UserNotFoundError(ExpensorError):
    status_code = 404
    message = "User not found"


class ReceiptNotFoundError(ExpensorError):
    status_code = 404
    message = "Receipt not found"


# --- validation -----------------------------------------------------------


class InvalidCategoryError(ExpensorError):
    status_code = 400
    message = "Invalid category"


class CategoryExistsError(ExpensorError):
    status_code = 409
    message = "A category with this name already exists"


class InvalidTokenAmountError(ExpensorError):
    status_code = 400
    message = "Token amount must be a positive integer"


# --- billing --------------------------------------------------------------


class UnknownPackageError(ExpensorError):
    status_code = 404
    message = "Unknown token package"


class BillingNotConfiguredError(ExpensorError):
    status_code = 503
    message = "Payments are not configured"


class PaymentGatewayError(ExpensorError):
    status_code = 502
    message = "Unable to create checkout session"


# --- auth -----------------------------------------------------------------


class AuthenticationError(ExpensorError):
    status_code = 401
    message = "Invalid Telegram init data"
