"""
Domain error taxonomy.

Every rejected action raises one of these.  The API layer maps them to a
structured ``{"error": {"kind", "message"}}`` body using ``status_code``.
"""


class DomainError(Exception):
    kind = "DomainError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Bad input shape or range (weight <= 0, missing address, bad phone)."""

    kind = "ValidationError"
    status_code = 400


class NotAuthorized(DomainError):
    """Actor or role does not match the requested action."""

    kind = "NotAuthorized"
    status_code = 403


class NotFound(DomainError):
    kind = "NotFound"
    status_code = 404


class InvalidTransition(DomainError):
    """State-machine rule violation, including stale-state writes."""

    kind = "InvalidTransition"
    status_code = 409


class DuplicateReview(DomainError):
    kind = "DuplicateReview"
    status_code = 409


class NotEligible(DomainError):
    kind = "NotEligible"
    status_code = 409


class UpstreamUnavailable(DomainError):
    """All providers for a required upstream call are exhausted."""

    kind = "UpstreamUnavailable"
    status_code = 503
