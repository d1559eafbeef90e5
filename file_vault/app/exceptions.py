"""Typed failures raised by the vault services.

Each error carries a stable machine-readable ``code`` and the HTTP status the
server maps it to.
"""


class VaultError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedRequest(VaultError):
    """Raised when a multipart body cannot be framed."""

    code = "malformed_request"
    status_code = 400


class QuotaExceeded(VaultError):
    """Raised when an upload would push usage over the vault capacity."""

    code = "quota_exceeded"
    status_code = 400

    def __init__(self, capacity_bytes: int, used_bytes: int, required_bytes: int):
        self.capacity_bytes = capacity_bytes
        self.used_bytes = used_bytes
        self.required_bytes = required_bytes
        capacity_gb = capacity_bytes // (1024 * 1024 * 1024)
        super().__init__(f"Storage limit exceeded ({capacity_gb}GB)")


class NotFound(VaultError):
    code = "not_found"
    status_code = 404


class PersistenceFailed(VaultError):
    """Raised when the metadata snapshot could not be written."""

    code = "persistence_failed"
    status_code = 500


class BlobStorageError(VaultError):
    code = "io_error"
    status_code = 500
