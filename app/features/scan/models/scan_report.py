from sqlalchemy import Column, String, DateTime, Enum, Index, JSON
import enum

from app.platform.db.base import BaseModel


class ScanReportStatus(enum.Enum):
    """Job lifecycle: pending until the worker writes a terminal status."""
    pending = "pending"
    complete = "complete"
    error = "error"


class ScanKind(enum.Enum):
    public = "public"  # one per requester per quota window
    admin = "admin"    # unlimited


class ScanReport(BaseModel):

    __tablename__ = "scan_reports"

    url = Column(String(2048), nullable=False)

    # Requester identity used for the public quota (the submitter's email)
    requester_key = Column(String(320), nullable=False, index=True)

    kind = Column(Enum(ScanKind), default=ScanKind.public, nullable=False)
    status = Column(Enum(ScanReportStatus), default=ScanReportStatus.pending, nullable=False, index=True)
    conformance_level = Column(String(8), default="AA", nullable=False)

    # Serialized ScanResult on success, {"error": message} on failure
    result = Column(JSON, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_scan_reports_requester_kind_created", "requester_key", "kind", "created_at"),
    )
