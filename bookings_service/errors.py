from fastapi import status


class BookingError(Exception):
    """
    Base class for per-request booking failures.

    None of these are fatal to the process; each is reported back to
    the caller with a distinct ``kind`` so the client can pick the right
    remediation (choose another seat vs. retry the same action).
    """

    kind = "BookingError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class SeatConflict(BookingError):
    """The seat was already claimed when the booking was committed."""

    kind = "SeatConflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidInput(BookingError):
    """Seat number or capacity outside the allowed range."""

    kind = "InvalidInput"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidTransition(BookingError):
    """Requested status change is not a legal successor of the current one."""

    kind = "InvalidTransition"
    status_code = status.HTTP_409_CONFLICT


class NotFound(BookingError):
    """The booking or slot does not exist."""

    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class StoreUnavailable(BookingError):
    """
    The booking store or the slot catalog could not be reached.

    Callers should re-read occupancy before retrying; a write that timed
    out may still have landed.
    """

    kind = "StoreUnavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
