# docshare/errors.py
"""
Error taxonomy shared by the stores, the adapters and the HTTP layer.
Every error carries the HTTP status it is rendered with.
"""


class DocShareError(Exception):
    status_code = 500

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(DocShareError):
    status_code = 400


class ConflictError(ValidationError):
    """Uniqueness violation in the record store (duplicate email, blob, ledger id)."""


class AuthenticationError(DocShareError):
    status_code = 401


class AuthorizationError(DocShareError):
    status_code = 403


class NotFoundError(DocShareError):
    status_code = 404


class UpstreamError(DocShareError):
    """A blob store or ledger call failed or was rejected."""
    status_code = 500


class BlobStoreError(UpstreamError):
    pass


class LedgerError(UpstreamError):
    pass
