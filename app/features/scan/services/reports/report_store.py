from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select

from app.features.scan.exceptions import ScanReportNotFoundError
from app.features.scan.models.scan_report import ScanKind, ScanReport, ScanReportStatus
from app.platform.db.connection import AsyncDatabaseConnectionManager, DatabaseConnectionManager
from app.platform.logger import get_logger

logger = get_logger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; every stored value is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def new_report(
    url: str,
    requester_key: str,
    kind: ScanKind,
    conformance_level: str,
    created_at: Optional[datetime],
) -> ScanReport:
    report = ScanReport(
        url=url,
        requester_key=requester_key,
        kind=kind,
        status=ScanReportStatus.pending,
        conformance_level=conformance_level,
    )
    if created_at is not None:
        report.created_at = created_at
    return report


def apply_status(report: Optional[ScanReport], report_id: str, status: ScanReportStatus, result) -> None:
    if report is None:
        raise ScanReportNotFoundError(f"Report {report_id} not found")
    report.status = status
    report.result = result
    if status != ScanReportStatus.pending:
        report.completed_at = datetime.now(timezone.utc)


def recent_by_requester_query(requester_key: str, kind: ScanKind):
    return (
        select(ScanReport.created_at)
        .where(ScanReport.requester_key == requester_key, ScanReport.kind == kind)
        .order_by(ScanReport.created_at.desc())
        .limit(1)
    )


def list_recent_query(limit: int):
    return select(ScanReport).order_by(ScanReport.created_at.desc()).limit(limit)


class ScanReportStore:
    """Persistence for scan jobs and their results (sync, used by the worker)."""

    def __init__(self, connection: DatabaseConnectionManager):
        self.connection = connection

    def create(
        self,
        url: str,
        requester_key: str,
        kind: ScanKind = ScanKind.public,
        conformance_level: str = "AA",
        created_at: Optional[datetime] = None,
    ) -> str:
        report = new_report(url, requester_key, kind, conformance_level, created_at)
        with self.connection.session() as db:
            db.add(report)
            db.flush()
            report_id = report.id

        logger.info(f"Created {kind.value} scan report {report_id} for {url}")
        return report_id

    def update(self, report_id: str, status: ScanReportStatus, result: Optional[Dict[str, Any]] = None) -> None:
        with self.connection.session() as db:
            apply_status(db.get(ScanReport, report_id), report_id, status, result)

    def find_by_id(self, report_id: str) -> Optional[ScanReport]:
        with self.connection.session() as db:
            return db.get(ScanReport, report_id)

    def find_recent_by_requester(self, requester_key: str, kind: ScanKind) -> Optional[datetime]:
        """Timestamp of the requester's latest report of this kind, if any."""
        with self.connection.session() as db:
            return as_utc(db.execute(recent_by_requester_query(requester_key, kind)).scalar_one_or_none())

    def list_recent(self, limit: int = 100) -> List[ScanReport]:
        with self.connection.session() as db:
            return list(db.execute(list_recent_query(limit)).scalars().all())

    def delete(self, report_id: str) -> bool:
        with self.connection.session() as db:
            result = db.execute(delete(ScanReport).where(ScanReport.id == report_id))
            return result.rowcount > 0


class AsyncScanReportStore:
    """Same operations over an AsyncSession, used by the API routes."""

    def __init__(self, connection: AsyncDatabaseConnectionManager):
        self.connection = connection

    async def create(
        self,
        url: str,
        requester_key: str,
        kind: ScanKind = ScanKind.public,
        conformance_level: str = "AA",
        created_at: Optional[datetime] = None,
    ) -> str:
        report = new_report(url, requester_key, kind, conformance_level, created_at)
        async with self.connection.session() as db:
            db.add(report)
            await db.flush()
            report_id = report.id

        logger.info(f"Created {kind.value} scan report {report_id} for {url}")
        return report_id

    async def update(
        self, report_id: str, status: ScanReportStatus, result: Optional[Dict[str, Any]] = None
    ) -> None:
        async with self.connection.session() as db:
            apply_status(await db.get(ScanReport, report_id), report_id, status, result)

    async def find_by_id(self, report_id: str) -> Optional[ScanReport]:
        async with self.connection.session() as db:
            return await db.get(ScanReport, report_id)

    async def find_recent_by_requester(self, requester_key: str, kind: ScanKind) -> Optional[datetime]:
        async with self.connection.session() as db:
            result = await db.execute(recent_by_requester_query(requester_key, kind))
            return as_utc(result.scalar_one_or_none())

    async def list_recent(self, limit: int = 100) -> List[ScanReport]:
        async with self.connection.session() as db:
            result = await db.execute(list_recent_query(limit))
            return list(result.scalars().all())

    async def delete(self, report_id: str) -> bool:
        async with self.connection.session() as db:
            result = await db.execute(delete(ScanReport).where(ScanReport.id == report_id))
            return result.rowcount > 0
