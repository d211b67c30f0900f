"""
Error taxonomy for supply-chain operations.

Every rejected operation raises one of these with a stable ``code`` so callers
can tell "already done by someone else" from "you lack permission" from
"bad input". ``retryable`` is True only where waiting and retrying can help.
"""


class SupplyError(Exception):
    """Base exception for supply-chain operations"""
    code = "SUPPLY_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(SupplyError):
    """Malformed input: non-positive quantity, missing required field"""
    code = "VALIDATION_ERROR"
    status_code = 400


class MissingEvidenceError(ValidationError):
    """GRN attempted without a proof photo or valid GPS coordinates"""
    code = "MISSING_EVIDENCE"


class PermissionDeniedError(SupplyError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(SupplyError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(SupplyError):
    """Operation attempted outside its required precondition state"""
    code = "INVALID_STATUS"
    status_code = 409


class AlreadySentError(InvalidStateError):
    code = "ALREADY_SENT"


class AlreadyReceivedError(InvalidStateError):
    code = "ALREADY_RECEIVED"


class DuplicateInvoiceError(InvalidStateError):
    code = "DUPLICATE_INVOICE"


class TransientLookupError(SupplyError):
    """A directory or catalog lookup failed in a way a retry may fix"""
    code = "LOOKUP_UNAVAILABLE"
    status_code = 503
    retryable = True


class ConcurrentUpdateError(SupplyError):
    """Lost a write race on shared state such as a number sequence; retry"""
    code = "CONCURRENT_UPDATE"
    status_code = 409
    retryable = True
