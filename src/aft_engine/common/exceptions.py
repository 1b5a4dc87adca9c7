"""AFT-Engine exception hierarchy.

Every error carries a machine-readable ``code``, the HTTP status it maps to at
the API boundary, and the audit ``outcome`` recorded when it aborts an action.
"""


class AFTError(Exception):
    """Base exception for all AFT errors."""

    http_status = 400
    outcome = "denied"

    def __init__(self, message: str = "", code: str = "AFT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthenticationError(AFTError):
    """Raised when the acting principal cannot be resolved."""

    http_status = 401

    def __init__(self, message: str = "Actor could not be resolved"):
        super().__init__(message, code="AUTHENTICATION_FAILED")


class AuthorizationError(AFTError):
    """Raised when none of the actor's roles may perform the action at this status."""

    http_status = 403

    def __init__(self, message: str = "Action not permitted"):
        super().__init__(message, code="NOT_AUTHORIZED")


class IllegalTransition(AFTError):
    """Raised when an action is not defined for the request's current status."""

    http_status = 409

    def __init__(self, message: str = "Illegal transition"):
        super().__init__(message, code="ILLEGAL_TRANSITION")


class SignatureError(AFTError):
    """Raised when a required signature is missing, malformed, or duplicated."""

    http_status = 422

    def __init__(self, message: str = "Signature invalid", step: str | None = None,
                 code: str = "SIGNATURE_INVALID"):
        self.step = step
        super().__init__(message, code=code)


class DuplicateSignatureError(SignatureError):
    """Raised when a signer signs the same step of the same request twice."""

    http_status = 409

    def __init__(self, message: str = "Signature already exists for this step",
                 step: str | None = None):
        super().__init__(message, step=step, code="SIGNATURE_CONFLICT")


class TPIViolation(AFTError):
    """Raised when two-person integrity signatures resolve to one identity."""

    http_status = 422

    def __init__(self, message: str = "Two-person integrity violated"):
        super().__init__(message, code="TPI_VIOLATION")


class ValidationError(AFTError):
    """Raised when an action payload is malformed or incomplete."""

    http_status = 422

    def __init__(self, message: str = "Invalid payload"):
        super().__init__(message, code="VALIDATION_FAILED")


class RequestNotFoundError(AFTError):
    """Raised when an AFT request cannot be found."""

    http_status = 404
    outcome = "error"

    def __init__(self, message: str = "AFT request not found"):
        super().__init__(message, code="NOT_FOUND")


class ConcurrentModification(AFTError):
    """Raised when the stored version moved between read and write."""

    http_status = 409
    outcome = "error"

    def __init__(self, message: str = "Request was modified concurrently"):
        super().__init__(message, code="VERSION_CONFLICT")


class PersistenceError(AFTError):
    """Raised when the request store fails at the storage layer."""

    http_status = 503
    outcome = "error"

    def __init__(self, message: str = "Storage failure", code: str = "PERSISTENCE_ERROR"):
        super().__init__(message, code=code)


class DataIntegrityError(PersistenceError):
    """Raised when a persisted row holds a value outside the known domain."""

    http_status = 500

    def __init__(self, message: str = "Stored data failed integrity checks"):
        super().__init__(message, code="DATA_INTEGRITY")


class AuditWriteError(AFTError):
    """Raised when the audit entry cannot be appended; the action is void."""

    http_status = 503
    outcome = "error"

    def __init__(self, message: str = "Audit entry could not be written"):
        super().__init__(message, code="AUDIT_WRITE_FAILED")


class ImmutableRecordError(AFTError):
    """Raised when code attempts to modify or delete an append-only row."""

    http_status = 500
    outcome = "error"

    def __init__(self, message: str = "Record is immutable"):
        super().__init__(message, code="IMMUTABLE_RECORD")
