from typing import Any, Mapping, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.features.scan.exceptions import (
    ForbiddenTargetError,
    InvalidTargetError,
    ScanError,
    ScanQuotaExceededError,
    ScanReportNotFoundError,
)
from app.features.scan.schemas.scan import ScanSubmitResponse
from app.platform.config import settings

SCAN_ERROR_STATUS = {
    InvalidTargetError: status.HTTP_400_BAD_REQUEST,
    ForbiddenTargetError: status.HTTP_400_BAD_REQUEST,
    ScanQuotaExceededError: status.HTTP_429_TOO_MANY_REQUESTS,
    ScanReportNotFoundError: status.HTTP_404_NOT_FOUND,
}


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """
    Envelope shared by every scan API response:
    ``{"status_code", "status", "message", "data"}``, where status is
    "success" below 400 and "error" otherwise.
    """
    status_str = "success" if status_code < 400 else "error"
    data = jsonable_encoder(data) if data is not None else {}

    return JSONResponse(
        status_code=status_code,
        headers=dict(headers) if headers else None,
        content={
            "status_code": status_code,
            "status": status_str,
            "message": message,
            "data": data,
        },
    )


def report_location(report_id: str) -> str:
    return f"/api/v1/scan/report/{report_id}"


def scan_queued_response(report_id: str, message: str) -> JSONResponse:
    """Tell the caller which report id to poll, in the body and the Location header."""
    return api_response(
        data=ScanSubmitResponse(report_id=report_id),
        message=message,
        headers={"Location": report_location(report_id)},
    )


def scan_error_response(exc: ScanError) -> JSONResponse:
    status_code = SCAN_ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    headers = None
    if isinstance(exc, ScanQuotaExceededError):
        headers = {"Retry-After": str(settings.PUBLIC_SCAN_WINDOW_HOURS * 3600)}
    return api_response(message=str(exc), status_code=status_code, headers=headers)
