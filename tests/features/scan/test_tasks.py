from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from app.features.scan.exceptions import ForbiddenTargetError
from app.features.scan.models.scan_report import ScanReportStatus
from app.features.scan.schemas.scan import (
    ConformanceLevel,
    EngineName,
    EngineReport,
    ScanResult,
)
from app.features.scan.services.orchestration.orchestrator import ScanOutcome, ScanState
from app.features.scan.workers.tasks import execute_scan, run_accessibility_scan


def completed_outcome(url="https://example.com"):
    return ScanOutcome(
        state=ScanState.done,
        result=ScanResult(
            url=url,
            conformance_level=ConformanceLevel.AA,
            scanned_at=datetime(2026, 3, 10, tzinfo=timezone.utc),
            htmlcs=EngineReport(engine=EngineName.htmlcs, ruleset="WCAG2AA"),
            axe=EngineReport(engine=EngineName.axe, ruleset="wcag2a,wcag2aa", error="axe engine timed out"),
        ),
    )


def orchestrator_returning(outcome):
    orchestrator = MagicMock()
    orchestrator.run.return_value = outcome
    return orchestrator


class TestExecuteScan:

    def test_successful_scan_stores_serialized_result(self, report_store):
        report_id = report_store.create("https://example.com", "owner@example.com")

        status = execute_scan(
            report_store, report_id, "https://example.com", "AA",
            orchestrator=orchestrator_returning(completed_outcome()),
        )

        report = report_store.find_by_id(report_id)
        assert status == ScanReportStatus.complete
        assert report.status == ScanReportStatus.complete
        assert report.result["url"] == "https://example.com"
        assert report.result["htmlcs"]["ruleset"] == "WCAG2AA"
        assert report.result["axe"]["error"] == "axe engine timed out"

    def test_aborted_scan_stores_readable_error(self, report_store):
        report_id = report_store.create("http://10.0.0.1", "owner@example.com")
        outcome = ScanOutcome(
            state=ScanState.aborted,
            error=ForbiddenTargetError("Scanning internal/private IP addresses is not allowed for security reasons."),
            failed_stage=ScanState.validating,
        )

        status = execute_scan(report_store, report_id, "http://10.0.0.1", orchestrator=orchestrator_returning(outcome))

        report = report_store.find_by_id(report_id)
        assert status == ScanReportStatus.error
        assert report.result == {
            "error": "Scanning internal/private IP addresses is not allowed for security reasons.",
            "state": "aborted",
            "stage": "validating",
        }

    def test_orchestrator_crash_never_escapes(self, report_store):
        report_id = report_store.create("https://example.com", "owner@example.com")
        orchestrator = MagicMock()
        orchestrator.run.side_effect = RuntimeError("chrome not installed")

        status = execute_scan(report_store, report_id, "https://example.com", orchestrator=orchestrator)

        report = report_store.find_by_id(report_id)
        assert status == ScanReportStatus.error
        assert report.result["error"] == "chrome not installed"
        assert report.result["state"] == "failed"

    def test_store_failure_never_escapes(self):
        store = MagicMock()
        store.update.side_effect = RuntimeError("database is locked")

        status = execute_scan(store, "r1", "https://example.com", orchestrator=orchestrator_returning(completed_outcome()))

        assert status == ScanReportStatus.error


class TestRunAccessibilityScanTask:

    def test_task_scans_pending_report(self, report_store):
        report_id = report_store.create("https://example.com", "owner@example.com", conformance_level="AAA")

        with patch("app.features.scan.workers.tasks.get_report_store", return_value=report_store), \
                patch("app.features.scan.workers.tasks.ScanOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run.return_value = completed_outcome()
            result = run_accessibility_scan.apply(args=[report_id]).get()

        assert result == {"report_id": report_id, "status": "complete"}
        request = orchestrator_cls.return_value.run.call_args[0][0]
        assert request.conformance_level == ConformanceLevel.AAA
        assert report_store.find_by_id(report_id).status == ScanReportStatus.complete

    def test_task_with_unknown_report(self, report_store):
        with patch("app.features.scan.workers.tasks.get_report_store", return_value=report_store):
            result = run_accessibility_scan.apply(args=["missing"]).get()

        assert result == {"report_id": "missing", "status": "missing"}
