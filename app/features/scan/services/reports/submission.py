from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.features.scan.exceptions import InvalidTargetError, ScanQuotaExceededError
from app.features.scan.models.scan_report import ScanKind, ScanReportStatus
from app.features.scan.schemas.scan import ConformanceLevel
from app.features.scan.services.reports.report_store import AsyncScanReportStore
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)


def dispatch_scan_task(report_id: str) -> None:
    from app.features.scan.workers.tasks import run_accessibility_scan

    run_accessibility_scan.delay(report_id)


class ScanSubmissionService:
    """
    Accepts scan requests and returns a job id immediately.

    The scan itself runs in the Celery worker, which writes the terminal
    status back to the store.
    """

    def __init__(
        self,
        store: AsyncScanReportStore,
        dispatcher: Callable[[str], None] = dispatch_scan_task,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        window: Optional[timedelta] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.window = window or timedelta(hours=settings.PUBLIC_SCAN_WINDOW_HOURS)

    async def can_scan_today(self, requester_key: str) -> bool:
        last = await self.store.find_recent_by_requester(requester_key, ScanKind.public)
        if last is None:
            return True
        return self.clock() - last > self.window

    async def submit(
        self,
        target_url: str,
        requester_key: str,
        conformance_level: ConformanceLevel = ConformanceLevel.AA,
        kind: ScanKind = ScanKind.public,
    ) -> str:
        """
        Create a pending report and queue the scan.

        Raises:
            InvalidTargetError: the URL is syntactically invalid
            ScanQuotaExceededError: public requester scanned within the window
        """
        is_valid, normalized_url, error_message = validate_url(target_url)
        if not is_valid:
            raise InvalidTargetError(f"Invalid URL: {error_message}")

        requester_key = requester_key.strip().lower()
        if kind == ScanKind.public and not await self.can_scan_today(requester_key):
            logger.warning(f"Scan limit reached for {requester_key}")
            raise ScanQuotaExceededError("Scan limit reached for today")

        report_id = await self.store.create(
            url=normalized_url,
            requester_key=requester_key,
            kind=kind,
            conformance_level=conformance_level.value,
        )
        try:
            self.dispatcher(report_id)
        except Exception as e:
            # Never leave a report pending when nothing will pick it up
            logger.error(f"[{report_id}] Failed to queue scan: {e}", exc_info=True)
            await self.store.update(report_id, ScanReportStatus.error, {"error": "Failed to queue scan"})
            raise
        logger.info(f"[{report_id}] Queued {kind.value} scan for {normalized_url} by {requester_key}")
        return report_id
