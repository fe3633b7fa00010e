import logging
from typing import Any, Dict, Optional

from app.features.scan.models.scan_report import ScanReportStatus
from app.features.scan.schemas.scan import ConformanceLevel, ScanRequest
from app.features.scan.services.orchestration.orchestrator import ScanOrchestrator, ScanOutcome, ScanState
from app.features.scan.services.reports.report_store import ScanReportStore
from app.platform.celery_app import celery_app
from app.platform.db.connection import get_connection_manager

logger = logging.getLogger(__name__)


def get_report_store() -> ScanReportStore:
    """Store bound to the worker's process-wide connection manager."""
    return ScanReportStore(get_connection_manager())


def record_outcome(store: ScanReportStore, report_id: str, outcome: ScanOutcome) -> ScanReportStatus:
    """Write the terminal status for a finished scan."""
    if outcome.state == ScanState.done:
        store.update(report_id, ScanReportStatus.complete, result=outcome.result.model_dump(mode="json"))
        return ScanReportStatus.complete

    store.update(
        report_id,
        ScanReportStatus.error,
        result={
            "error": outcome.error_message,
            "state": outcome.state.value,
            "stage": outcome.failed_stage.value if outcome.failed_stage else None,
        },
    )
    return ScanReportStatus.error


def execute_scan(
    store: ScanReportStore,
    report_id: str,
    url: str,
    conformance_level: str = "AA",
    orchestrator: Optional[ScanOrchestrator] = None,
) -> ScanReportStatus:
    """
    Run one scan to a terminal status. Never raises: every failure ends as
    an ``error`` report with a readable message.
    """
    orchestrator = orchestrator or ScanOrchestrator()

    try:
        request = ScanRequest(target_url=url, conformance_level=ConformanceLevel(conformance_level))
        outcome = orchestrator.run(request, job_id=report_id)
    except Exception as e:
        logger.error(f"[{report_id}] Scan crashed: {e}", exc_info=True)
        outcome = ScanOutcome(state=ScanState.failed, error=e)

    try:
        status = record_outcome(store, report_id, outcome)
    except Exception as e:
        logger.error(f"[{report_id}] Failed to store scan outcome: {e}", exc_info=True)
        return ScanReportStatus.error

    if status == ScanReportStatus.complete:
        logger.info(f"[{report_id}] Scan completed for {url}")
    else:
        logger.warning(f"[{report_id}] Scan ended with error for {url}: {outcome.error_message}")
    return status


@celery_app.task(
    bind=True,
    name="app.features.scan.workers.tasks.run_accessibility_scan",
    max_retries=0,
)
def run_accessibility_scan(self, report_id: str) -> Dict[str, Any]:
    """
    Celery entry point: load the pending report, scan, write the result back.

    Args:
        report_id: The ScanReport id returned to the caller at submission

    Returns:
        Dict with the report id and its terminal status
    """
    store = get_report_store()
    report = store.find_by_id(report_id)
    if report is None:
        logger.error(f"[{report_id}] Report not found, nothing to scan")
        return {"report_id": report_id, "status": "missing"}

    logger.info(f"[{report_id}] Starting accessibility scan for {report.url} (task {self.request.id})")
    status = execute_scan(store, report_id, report.url, report.conformance_level)
    return {"report_id": report_id, "status": status.value}
