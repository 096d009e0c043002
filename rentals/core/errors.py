"""
Domain error taxonomy.

Every error carries a stable `code` and the HTTP status the API layer maps it
to. Services raise these; routers never catch them, the exception handler
registered in `rentals.main` renders them.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse


class RentalsError(Exception):
    code = "rentals_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class InvalidDateRange(RentalsError):
    code = "invalid_date_range"
    status_code = status.HTTP_400_BAD_REQUEST


class DateConflict(RentalsError):
    code = "date_conflict"
    status_code = status.HTTP_409_CONFLICT


class ListingUnavailable(RentalsError):
    code = "listing_unavailable"
    status_code = status.HTTP_409_CONFLICT


class PetPolicyViolation(RentalsError):
    code = "pet_policy_violation"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidStateTransition(RentalsError):
    code = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT


class CancellationWindowClosed(RentalsError):
    code = "cancellation_window_closed"
    status_code = status.HTTP_409_CONFLICT


class NotFound(RentalsError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Unauthorized(RentalsError):
    code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class Unauthenticated(Unauthorized):
    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class UpstreamFetchFailed(RentalsError):
    code = "upstream_fetch_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class UpstreamParseFailed(RentalsError):
    code = "upstream_parse_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class PaymentUnavailable(RentalsError):
    code = "payment_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ReferenceUnavailable(RentalsError):
    code = "reference_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def rentals_error_handler(request: Request, exc: RentalsError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.detail},
    )
