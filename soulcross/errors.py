"""Paywall error taxonomy.

Every business-rule failure raised by the services is a PaywallError. The
app-level error handler in create_app() turns them into
{"error": message, "code": code} JSON responses with the matching status.
"""


class PaywallError(Exception):
    """Base class for failures surfaced to API callers."""

    code = "paywall_error"
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class ValidationError(PaywallError):
    """Bad or missing input. Raised before any state is touched."""

    code = "validation_error"
    status_code = 400

    def __init__(self, message, fields=None):
        super().__init__(message)
        self.fields = list(fields or [])

    def to_dict(self):
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class NotFoundError(PaywallError):
    code = "not_found"
    status_code = 404


class UpstreamError(PaywallError):
    """A call to Stripe failed. Safe to retry: the pending order is reused."""

    code = "upstream_error"
    status_code = 502
    retryable = True

    def to_dict(self):
        data = super().to_dict()
        data["retryable"] = self.retryable
        return data


class PersistenceError(PaywallError):
    """A store transaction failed and was rolled back."""

    code = "persistence_error"
    status_code = 500


class ConflictError(PersistenceError):
    """A unique constraint rejected a concurrent write."""

    code = "conflict"
    status_code = 409
