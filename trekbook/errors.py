from typing import Optional


class BookingError(Exception):
    """Base de todos los fallos que el core reporta al llamador."""

    def __init__(self, message: str, *, entity: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity


class ValidationError(BookingError):
    pass


class NotFoundError(BookingError):
    pass


class PersistenceError(BookingError):
    pass


class ConsistencyWarning(UserWarning):
    """A record referenced something that no longer exists and was dropped."""

    def __init__(self, message: str, *, line_no: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line_no = line_no
