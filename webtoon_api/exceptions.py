from typing import Optional


class NotFoundError(Exception):
    """A requested webtoon / chapter / row does not exist. Never retried."""

    def __init__(self, what: str, ident=None):
        self.what = what
        self.ident = ident
        super().__init__(f"{what} not found" if ident is None else f"{what} {ident} not found")


class UploadFailure(Exception):
    """One asset (page or thumbnail) failed to reach storage; fails a single chapter item."""

    def __init__(self, item: str, cause: Optional[BaseException] = None):
        self.item = item
        self.cause = cause
        message = f"Failed to upload {item}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class PersistFailure(Exception):
    """The database write after a successful upload failed."""


class RoleValidationError(ValueError):
    pass


class ReservedRoleError(RoleValidationError):
    pass


class ConflictError(Exception):
    """The write collides with an existing row, e.g. a chapter number already taken."""
