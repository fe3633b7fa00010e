"""
Scan Orchestrator

One scan moves through:

    validating -> rendering -> challenge_check -> auditing -> done

and ends in exactly one terminal state. ``aborted`` is reached from
validating (rejected target) or challenge_check (bot challenge); ``failed``
from any stage on an unrecoverable error. The browser session is held for
rendering through auditing and released on every exit.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.features.scan.exceptions import (
    ChallengeDetectedError,
    ForbiddenTargetError,
    InvalidTargetError,
    ScanError,
)
from app.features.scan.schemas.scan import EngineName, ScanRequest, ScanResult
from app.features.scan.services.browser.session_manager import BrowserSessionManager
from app.features.scan.services.challenge.challenge_detector import ChallengeDetector
from app.features.scan.services.engines.aggregator import EngineAggregator
from app.features.scan.services.validation.target_validator import TargetValidator
from app.platform.logger import get_logger

logger = get_logger(__name__)


class ScanState(enum.Enum):
    validating = "validating"
    rendering = "rendering"
    challenge_check = "challenge_check"
    auditing = "auditing"
    done = "done"
    aborted = "aborted"
    failed = "failed"


TERMINAL_STATES = {ScanState.done, ScanState.aborted, ScanState.failed}


@dataclass(frozen=True)
class ScanOutcome:
    state: ScanState
    result: Optional[ScanResult] = None
    error: Optional[Exception] = None
    failed_stage: Optional[ScanState] = None

    @property
    def succeeded(self) -> bool:
        return self.state == ScanState.done

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    def unwrap(self) -> ScanResult:
        """Return the result or raise the classified error."""
        if self.result is not None:
            return self.result
        raise self.error


class ScanOrchestrator:
    def __init__(
        self,
        validator: Optional[TargetValidator] = None,
        session_manager: Optional[BrowserSessionManager] = None,
        detector: Optional[ChallengeDetector] = None,
        aggregator: Optional[EngineAggregator] = None,
    ):
        self.validator = validator or TargetValidator()
        self.session_manager = session_manager or BrowserSessionManager()
        self.detector = detector or ChallengeDetector()
        self.aggregator = aggregator or EngineAggregator()

    @staticmethod
    def _capture_page_screenshot(session, tag: str) -> Optional[str]:
        try:
            return session.viewport_screenshot()
        except Exception as e:
            logger.error(f"{tag} Failed to take page screenshot: {e}")
            return None

    def run(self, request: ScanRequest, job_id: Optional[str] = None) -> ScanOutcome:
        tag = f"[{job_id}]" if job_id else "[scan]"
        state = ScanState.validating
        logger.info(f"{tag} {state.value}: {request.target_url}")

        try:
            target = self.validator.validate(request.target_url)
        except (InvalidTargetError, ForbiddenTargetError) as e:
            logger.warning(f"{tag} aborted during validation: {e}")
            return ScanOutcome(state=ScanState.aborted, error=e, failed_stage=state)

        state = ScanState.rendering
        try:
            with self.session_manager.acquire() as session:
                logger.info(f"{tag} {state.value}: {target.url} ({', '.join(target.addresses)})")
                session.navigate(target.url)

                state = ScanState.challenge_check
                verdict = self.detector.detect(session.content(), session.visible_text())
                if verdict.blocked:
                    raise ChallengeDetectedError(verdict.signals)

                page_screenshot = self._capture_page_screenshot(session, tag)

                state = ScanState.auditing
                logger.info(f"{tag} {state.value} at WCAG {request.conformance_level.value}")
                reports = self.aggregator.run(session, request.conformance_level)

                result = ScanResult(
                    url=target.url,
                    conformance_level=request.conformance_level,
                    scanned_at=datetime.now(timezone.utc),
                    htmlcs=reports[EngineName.htmlcs],
                    axe=reports[EngineName.axe],
                    page_screenshot=page_screenshot,
                )
        except ChallengeDetectedError as e:
            logger.warning(f"{tag} aborted: challenge detected ({', '.join(e.signals)})")
            return ScanOutcome(state=ScanState.aborted, error=e, failed_stage=state)
        except ScanError as e:
            logger.error(f"{tag} failed during {state.value}: {e}")
            return ScanOutcome(state=ScanState.failed, error=e, failed_stage=state)
        except Exception as e:
            logger.exception(f"{tag} unexpected error during {state.value}: {e}")
            return ScanOutcome(state=ScanState.failed, error=e, failed_stage=state)

        logger.info(f"{tag} done: {result.total_violations} violations")
        return ScanOutcome(state=ScanState.done, result=result)
