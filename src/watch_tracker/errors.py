"""Exception types raised by the tracker."""


class WatchTrackerError(Exception):
    """Base class for tracker errors."""


class RemoteSyncError(WatchTrackerError):
    """The remote progress store could not be reached or rejected a request."""


class ImportFormatError(WatchTrackerError, ValueError):
    """An import payload is not a valid export."""

    def __init__(self, detail: str = ""):
        message = "Invalid export format."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.detail = detail


class UnknownUnitError(WatchTrackerError, KeyError):
    """An operation referenced a unit id that is not in the library."""

    def __init__(self, unit_id: str):
        super().__init__(unit_id)
        self.unit_id = unit_id

    def __str__(self) -> str:
        return f"Item not found: {self.unit_id}"


class AuthError(WatchTrackerError):
    """Signing in, refreshing or restoring a session failed."""


class DuplicateUnitError(WatchTrackerError, ValueError):
    """A unit was added with an id that is already in the library."""

    def __init__(self, unit_id: str):
        super().__init__(f"Item already exists: {unit_id}")
        self.unit_id = unit_id
