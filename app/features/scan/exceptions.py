"""
Scan error taxonomy.

Target and challenge errors abort a scan and become the job's error message.
Engine and evidence failures are contained inside an otherwise successful
result and never reach the caller.
"""

from typing import Optional

CHALLENGE_GUIDANCE = (
    "Cloudflare protection detected. Automated scans are not possible for this site. "
    "Please allow-list the scanner's IP range in your bot-protection dashboard to allow scans."
)


class ScanError(Exception):
    """Base class for every classified scan failure."""


class InvalidTargetError(ScanError):
    """Malformed URL or a hostname that does not resolve."""


class ForbiddenTargetError(ScanError):
    """The target resolves to a private, loopback or link-local address."""


class NavigationError(ScanError):
    """The browser could not load the target page."""


class NavigationTimeoutError(NavigationError):
    """The page did not finish parsing within the navigation timeout."""


class ChallengeDetectedError(ScanError):
    """An anti-bot challenge page was rendered instead of the real site."""

    def __init__(self, signals: Optional[list] = None, message: str = CHALLENGE_GUIDANCE):
        super().__init__(message)
        self.signals = list(signals or [])


class EngineFailure(ScanError):
    """One audit engine failed; the aggregator records it and continues."""

    def __init__(self, engine: str, reason: str):
        super().__init__(f"{engine} engine failed: {reason}")
        self.engine = engine
        self.reason = reason


class EvidenceCaptureFailure(ScanError):
    """A screenshot attempt failed. Never surfaces past evidence capture."""


class ScanQuotaExceededError(ScanError):
    """The requester already ran a public scan inside the quota window."""


class ScanReportNotFoundError(ScanError):
    """No scan report exists with the given id."""
