import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.features.scan.exceptions import ScanReportNotFoundError
from app.features.scan.models.scan_report import ScanKind, ScanReport
from app.features.scan.schemas.scan import (
    ScanReportResponse,
    ScanSubmitRequest,
)
from app.features.scan.services.reports.report_store import AsyncScanReportStore, as_utc
from app.features.scan.services.reports.submission import ScanSubmissionService
from app.platform.config import settings
from app.platform.db.connection import get_async_connection_manager
from app.platform.logger import get_logger
from app.platform.response import api_response, scan_queued_response

logger = get_logger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])


def get_report_store() -> AsyncScanReportStore:
    return AsyncScanReportStore(get_async_connection_manager())


def get_submission_service(store: AsyncScanReportStore = Depends(get_report_store)) -> ScanSubmissionService:
    return ScanSubmissionService(store)


def require_admin_key(x_admin_key: Optional[str] = Header(default=None)) -> None:
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
        )


def serialize_report(report: ScanReport) -> ScanReportResponse:
    return ScanReportResponse(
        id=report.id,
        url=report.url,
        email=report.requester_key,
        kind=report.kind.value,
        status=report.status.value,
        wcag_level=report.conformance_level,
        result=report.result,
        created_at=as_utc(report.created_at),
        completed_at=as_utc(report.completed_at),
    )


@router.post("/public")
async def start_public_scan(
    payload: ScanSubmitRequest,
    service: ScanSubmissionService = Depends(get_submission_service),
):
    """Queue a rate-limited scan (one per email per day). Poll GET /scan/report/{id}."""
    logger.info(f"Scan requested for {payload.url} by {payload.email}")
    report_id = await service.submit(payload.url, payload.email, payload.wcag_level, kind=ScanKind.public)
    return scan_queued_response(report_id, "Scan queued")


@router.post("/admin", dependencies=[Depends(require_admin_key)])
async def start_admin_scan(
    payload: ScanSubmitRequest,
    service: ScanSubmissionService = Depends(get_submission_service),
):
    report_id = await service.submit(payload.url, payload.email, payload.wcag_level, kind=ScanKind.admin)
    return scan_queued_response(report_id, "Admin scan queued")


@router.get("/reports", dependencies=[Depends(require_admin_key)])
async def list_reports(store: AsyncScanReportStore = Depends(get_report_store)):
    reports = [serialize_report(report) for report in await store.list_recent(limit=100)]
    return api_response(data=reports, message="Reports retrieved")


@router.get("/report/{report_id}")
async def get_report(report_id: str, store: AsyncScanReportStore = Depends(get_report_store)):
    report = await store.find_by_id(report_id)
    if report is None:
        raise ScanReportNotFoundError("Report not found")
    return api_response(data=serialize_report(report), message="Report retrieved")


@router.delete("/report/{report_id}", dependencies=[Depends(require_admin_key)])
async def delete_report(report_id: str, store: AsyncScanReportStore = Depends(get_report_store)):
    if not await store.delete(report_id):
        raise ScanReportNotFoundError("Report not found")
    return api_response(data={"report_id": report_id}, message="Report deleted")
