"""Error taxonomy shared by the services and the HTTP layer.

Every error is terminal for the request that raised it. The error handler
middleware renders them with their ``status_code`` and ``detail``.
"""


class IncidentFlowError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class UnauthorizedError(IncidentFlowError):
    """No verifiable requester identity."""

    status_code = 401
    default_detail = "Missing authenticated user context."


class ForbiddenError(IncidentFlowError):
    """Identity known, operation rejected by the authorization guard."""

    status_code = 403
    default_detail = "Forbidden"


class NotFoundError(IncidentFlowError):
    status_code = 404
    default_detail = "Not found"


class BadRequestError(IncidentFlowError):
    status_code = 400
    default_detail = "Bad request"


class ConflictError(IncidentFlowError):
    status_code = 409
    default_detail = "Conflict"
