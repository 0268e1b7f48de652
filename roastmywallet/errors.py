"""
Error taxonomy for the API.

Every error here is recovered at the request boundary and rendered as a JSON
body by the handlers registered in main.py.
"""

from typing import Optional


class RoastMyWalletError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationFailed(RoastMyWalletError):
    """Malformed or missing input. Never logged as unexpected."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.field:
            body["field"] = self.field
        return body


class EntitlementError(RoastMyWalletError):
    """Quota exhausted or feature not included in the caller's tier."""

    status_code = 403

    QUOTA_EXCEEDED = "quota_exceeded"
    PREMIUM_REQUIRED = "premium_required"
    REPORT_NOT_PURCHASED = "report_not_purchased"

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class UpstreamError(RoastMyWalletError):
    """A model or billing call failed and the operation has no safe fallback."""

    status_code = 500


class NotAuthenticated(RoastMyWalletError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)
