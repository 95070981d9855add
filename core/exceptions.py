"""Typed exceptions for invoice lifecycle failures.

Each error carries a short human-readable message. The API layer maps the
type to an HTTP status and error code (see api/errors.py).
"""


class BillingError(Exception):
    """Base class for invoice lifecycle errors."""


class ValidationError(BillingError):
    """Missing or malformed input. User-correctable."""


class AuthorizationError(BillingError):
    """Caller is authenticated but not permitted to perform the action."""


class NotFoundError(BillingError):
    """Referenced invoice or machine service does not exist."""


class ConflictError(BillingError):
    """
    Action is invalid for the invoice's current state.

    For example, creating a payment intent for a paid or cancelled invoice.
    """


class GatewayError(BillingError):
    """Payment gateway unreachable or rejected the request. Safe to retry."""


class PersistenceError(BillingError):
    """Record store write failed."""


class UniqueConstraintError(PersistenceError):
    """Insert violated a unique constraint (e.g. duplicate invoice number)."""
