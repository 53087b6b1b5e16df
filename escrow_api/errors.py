"""Typed failures raised by the escrow services.

Each error carries a stable machine-readable ``code`` and the HTTP status the
service boundary renders it with. Services never raise ``HTTPException``;
``escrow_api.main`` maps these classes onto responses.
"""


class EscrowError(Exception):
    """Base class for every failure an escrow operation can return."""

    status_code: int = 400
    code: str = "escrow_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "error": self.code}


class ValidationError(EscrowError):
    """Malformed or out-of-range input."""

    status_code = 422
    code = "validation_error"


class InvalidTransitionError(EscrowError):
    """The entity's current state does not permit the operation."""

    status_code = 409
    code = "invalid_transition"


class InvalidStateError(EscrowError):
    """A write was attempted on an entity that no longer accepts it."""

    status_code = 409
    code = "invalid_state"


class UnauthorizedError(EscrowError):
    status_code = 403
    code = "unauthorized"


class DuplicateApprovalError(EscrowError):
    """The approver has already signed this transaction."""

    status_code = 409
    code = "duplicate_approval"


class AlreadyResolvedError(EscrowError):
    """The dispute already carries a resolution."""

    status_code = 409
    code = "already_resolved"


class NotFoundError(EscrowError):
    status_code = 404
    code = "not_found"


class PersistenceError(EscrowError):
    """The backing store failed. The only kind that may be retried."""

    status_code = 503
    code = "persistence_error"
