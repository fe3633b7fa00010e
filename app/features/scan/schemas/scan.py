"""
Scan Schemas

Request, result and API models for accessibility scans.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


# ============================================================================
# Scan input
# ============================================================================

class ConformanceLevel(str, Enum):
    AA = "AA"
    AAA = "AAA"


class ScanRequest(BaseModel):
    """Immutable input to one scan."""
    target_url: str
    conformance_level: ConformanceLevel = ConformanceLevel.AA

    class Config:
        frozen = True


class ResolvedAddress(BaseModel):
    """Addresses bound to the target hostname at validation time."""
    url: str  # normalized form the browser will load
    hostname: str
    addresses: List[str]


# ============================================================================
# Findings
# ============================================================================

class EngineName(str, Enum):
    htmlcs = "htmlcs"
    axe = "axe"


class FindingKind(str, Enum):
    violation = "violation"
    passed = "pass"
    incomplete = "incomplete"


class Region(BaseModel):
    x: float
    y: float
    width: float
    height: float


class Evidence(BaseModel):
    """Highlighted screenshot of the element behind a finding."""
    image: str  # data:image/png;base64,...
    region: Region


class Finding(BaseModel):
    engine: EngineName
    kind: FindingKind
    code: str
    message: str
    severity: Optional[str] = None
    selector: Optional[str] = None
    context: Optional[str] = None
    help_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    evidence: Optional[Evidence] = None


class EngineReport(BaseModel):
    """Normalized output of one engine. ``error`` is set when the engine failed."""
    engine: EngineName
    ruleset: str
    violations: List[Finding] = Field(default_factory=list)
    passes: List[Finding] = Field(default_factory=list)
    incomplete: List[Finding] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ScanResult(BaseModel):
    url: str
    conformance_level: ConformanceLevel
    scanned_at: datetime
    htmlcs: EngineReport
    axe: EngineReport
    page_screenshot: Optional[str] = None

    class Config:
        frozen = True

    @property
    def total_violations(self) -> int:
        return len(self.htmlcs.violations) + len(self.axe.violations)

    def findings(self) -> List[Finding]:
        findings: List[Finding] = []
        for report in (self.htmlcs, self.axe):
            findings.extend(report.violations)
            findings.extend(report.passes)
            findings.extend(report.incomplete)
        return findings


class ChallengeVerdict(BaseModel):
    blocked: bool
    signals: List[str] = Field(default_factory=list)


# ============================================================================
# API
# ============================================================================

class ScanSubmitRequest(BaseModel):
    """Request body for public and admin scans."""
    url: str = Field(..., min_length=1)
    email: EmailStr
    wcag_level: ConformanceLevel = ConformanceLevel.AA

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.com",
                "email": "owner@example.com",
                "wcag_level": "AA",
            }
        }


class ScanSubmitResponse(BaseModel):
    report_id: str


class ScanReportResponse(BaseModel):
    id: str
    url: str
    email: str
    kind: str
    status: str
    wcag_level: str
    result: Optional[Dict[str, Any]] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
