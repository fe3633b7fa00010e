from typing import Dict, List, Optional

from app.features.scan.exceptions import EngineFailure
from app.features.scan.schemas.scan import ConformanceLevel, EngineName, EngineReport, Finding
from app.features.scan.services.engines.axe_engine import AxeEngine
from app.features.scan.services.engines.base import AuditEngine
from app.features.scan.services.engines.htmlcs_engine import HtmlCodeSnifferEngine
from app.features.scan.services.evidence.evidence_capture import EvidenceCapture
from app.platform.logger import get_logger

logger = get_logger(__name__)


class EngineAggregator:
    """
    Runs both engines on the same rendered page and attaches evidence.

    An engine that raises yields an empty report carrying the failure reason;
    the other engine's report is unaffected.
    """

    def __init__(
        self,
        engines: Optional[List[AuditEngine]] = None,
        evidence: Optional[EvidenceCapture] = None,
    ):
        self.engines = engines if engines is not None else [HtmlCodeSnifferEngine(), AxeEngine()]
        self.evidence = evidence or EvidenceCapture()

    @staticmethod
    def _failed_report(engine: AuditEngine, level: ConformanceLevel, reason: str) -> EngineReport:
        return EngineReport(engine=engine.name, ruleset=engine.ruleset_for(level), error=reason)

    def run_engine(self, engine: AuditEngine, session, level: ConformanceLevel) -> EngineReport:
        try:
            return engine.run(session, level)
        except EngineFailure as e:
            logger.error(f"{engine.name.value} engine failed: {e.reason}")
            return self._failed_report(engine, level, e.reason)
        except Exception as e:
            logger.error(f"{engine.name.value} engine failed: {e}", exc_info=True)
            return self._failed_report(engine, level, str(e) or type(e).__name__)

    def attach_evidence(self, session, report: EngineReport) -> EngineReport:
        """Evidence only for violations; passes and incomplete are left bare."""
        if not report.violations:
            return report

        try:
            evidence = self.evidence.capture_many(session, [f.selector for f in report.violations])
        except Exception as e:
            logger.error(f"{report.engine.value}: evidence capture aborted: {e}", exc_info=True)
            evidence = [None] * len(report.violations)
        violations: List[Finding] = [
            finding.model_copy(update={"evidence": shot})
            for finding, shot in zip(report.violations, evidence)
        ]
        captured = sum(1 for shot in evidence if shot is not None)
        logger.info(
            f"{report.engine.value}: captured evidence for {captured}/{len(violations)} violations"
        )
        return report.model_copy(update={"violations": violations})

    def run(self, session, level: ConformanceLevel) -> Dict[EngineName, EngineReport]:
        reports = {engine.name: self.run_engine(engine, session, level) for engine in self.engines}
        return {name: self.attach_evidence(session, report) for name, report in reports.items()}
