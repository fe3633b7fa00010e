"""
Scan models package.
"""
from app.features.scan.models.scan_report import ScanKind, ScanReport, ScanReportStatus

__all__ = ["ScanReport", "ScanReportStatus", "ScanKind"]
