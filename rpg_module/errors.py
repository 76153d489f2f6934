from __future__ import annotations


class ReducerError(ValueError):
    """Base for every failure a reducer reports back to its caller.

    Subclasses carry a stable `code` that the API surfaces verbatim.
    """

    code: str = "ReducerError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)

    @property
    def message(self) -> str:
        return str(self)


class AlreadyRegistered(ReducerError):
    code = "AlreadyRegistered"


class NotRegistered(ReducerError):
    code = "NotRegistered"


class NameTaken(ReducerError):
    code = "NameTaken"


class NotFound(ReducerError):
    code = "NotFound"


class NotOwner(ReducerError):
    code = "NotOwner"


class NotLoggedIn(ReducerError):
    code = "NotLoggedIn"


class AllocationFailure(ReducerError):
    code = "AllocationFailure"


class StoreUnavailable(ReducerError):
    code = "StoreUnavailable"


class InvalidArguments(ReducerError):
    code = "InvalidArguments"
