"""Domain error taxonomy.

Services raise these; the exception handler in main.py renders them as
``{"error": detail}`` with the carried status code. Nothing in the request
is committed once one of them escapes a route.
"""


class DomainError(Exception):
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(DomainError):
    """Malformed or missing required input."""

    status_code = 400


class InvalidStatus(ValidationError):
    pass


class Forbidden(DomainError):
    """Actor is not a party to the entity, or has the wrong role."""

    status_code = 403


class NotFound(DomainError):
    status_code = 404


class Conflict(DomainError):
    status_code = 409


class InvalidTransition(Conflict):
    pass


class DuplicateMatch(Conflict):
    pass


class SessionAlreadyActive(Conflict):
    pass


class DuplicateFeedback(Conflict):
    pass


class UpstreamFailure(DomainError):
    """A best-effort dependency (push channel, rewards sink) failed."""

    status_code = 502
