"""Domain errors raised by services and adapters.

The HTTP layer translates these into ``HTTPException`` responses; nothing
below ``webapi`` knows about status codes.
"""


class FurniviewError(Exception):
    """Base class for all domain errors."""


class RecordNotFound(FurniviewError):
    pass


class InvalidState(FurniviewError):
    """The record is not in a state that allows the requested transition."""


class EmptyUpload(FurniviewError):
    pass


class UploadTooLarge(FurniviewError):
    def __init__(self, limit_mb: int) -> None:
        super().__init__(f"upload exceeds {limit_mb} MB")
        self.limit_mb = limit_mb


class StorageError(FurniviewError):
    """Object storage or database operation failed."""


class ConversionError(FurniviewError):
    """The external converter failed or produced no output."""


class AuthError(FurniviewError):
    """Credentials were rejected by the identity provider."""


class DuplicateUser(AuthError):
    pass
