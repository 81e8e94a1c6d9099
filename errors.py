class EngineError(ValueError):
    status_code = 400
    code = "engine_error"


class ValidationError(EngineError):
    code = "validation_error"


class NotFound(EngineError):
    status_code = 404
    code = "not_found"


class SourceLocked(EngineError):
    status_code = 409
    code = "source_locked"


class InsufficientFunds(EngineError):
    """Posting would take a source below zero and overdraft is not allowed.

    Clients show this as a warning and may resubmit with ``allow_overdraft``.
    """

    status_code = 422
    code = "insufficient_funds"

    def __init__(self, message: str, *, balance_cents: int, required_cents: int):
        super().__init__(message)
        self.balance_cents = balance_cents
        self.required_cents = required_cents


class ConflictError(EngineError):
    status_code = 409
    code = "conflict"


class AlreadyResolved(EngineError):
    status_code = 409
    code = "already_resolved"
