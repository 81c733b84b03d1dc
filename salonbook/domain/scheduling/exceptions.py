"""Scheduling domain errors"""


class BookingError(Exception):
    """Base class for scheduling errors surfaced to callers"""

    status_code = 400
    user_message = "Your booking could not be completed. Please try again."

    def __init__(self, message: str = "", user_message: str = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message

    @property
    def code(self) -> str:
        return type(self).__name__


class SlotUnavailable(BookingError):
    """Hold creation lost the race for an overlapping window. Not retried automatically."""

    status_code = 409
    user_message = "This time was just taken, please choose another."


class HoldExpired(BookingError):
    status_code = 410
    user_message = "Your reservation expired. Please pick a time again."


class HoldNotFound(BookingError):
    status_code = 404
    user_message = "This reservation no longer exists. Please pick a time again."


class InvalidWindow(BookingError):
    """Requested time is outside working hours or the booking window"""

    status_code = 422
    user_message = "This time cannot be booked. Please choose another."


class StorageUnavailable(BookingError):
    status_code = 503
    user_message = "Something went wrong on our side. Please try again in a moment."


class ResourceNotFound(BookingError):
    status_code = 404
    user_message = "Not found."


class InvalidTransition(BookingError):
    status_code = 409
    user_message = "This appointment cannot be changed that way."
