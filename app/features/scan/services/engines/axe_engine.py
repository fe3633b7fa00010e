from typing import Any, Dict, List, Optional

from app.features.scan.exceptions import EngineFailure
from app.features.scan.schemas.scan import (
    ConformanceLevel,
    EngineName,
    EngineReport,
    Finding,
    FindingKind,
)
from app.features.scan.services.engines.base import AuditEngine
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

# axe tags are per level, so each conformance level includes the levels below it
TAGS = {
    ConformanceLevel.AA: ["wcag2a", "wcag2aa", "wcag21a", "wcag21aa"],
    ConformanceLevel.AAA: ["wcag2a", "wcag2aa", "wcag2aaa", "wcag21a", "wcag21aa"],
}

RESULT_TYPES = {
    "violations": FindingKind.violation,
    "passes": FindingKind.passed,
    "incomplete": FindingKind.incomplete,
}

RUN_SCRIPT = """
const tags = arguments[0];
const done = arguments[arguments.length - 1];
axe.run(document, {
    runOnly: {type: 'tag', values: tags},
    resultTypes: ['violations', 'passes', 'incomplete'],
}).then(function (results) {
    done({
        violations: results.violations,
        passes: results.passes,
        incomplete: results.incomplete,
    });
}).catch(function (e) {
    done({error: String((e && e.message) || e)});
});
"""


def first_target(node: Dict[str, Any]) -> Optional[str]:
    """axe targets are lists; nested lists mean iframe/shadow paths we cannot query."""
    target = node.get("target") or []
    if target and isinstance(target[0], str):
        return target[0]
    return None


class AxeEngine(AuditEngine):
    name = EngineName.axe

    def __init__(self, script_url: str = None):
        self.script_url = script_url or settings.SCAN_AXE_SCRIPT_URL

    def ruleset_for(self, level: ConformanceLevel) -> str:
        return ",".join(TAGS[level])

    @staticmethod
    def _rule_findings(rule: Dict[str, Any], kind: FindingKind) -> List[Finding]:
        findings = []
        # Rules with no nodes still produce one rule-level finding
        for node in rule.get("nodes") or [None]:
            node = node or {}
            message = node.get("failureSummary") if kind != FindingKind.passed else None
            findings.append(
                Finding(
                    engine=EngineName.axe,
                    kind=kind,
                    code=rule.get("id") or "unknown",
                    message=message or rule.get("help") or rule.get("description") or "",
                    severity=node.get("impact") or rule.get("impact"),
                    selector=first_target(node),
                    context=node.get("html"),
                    help_url=rule.get("helpUrl"),
                    tags=list(rule.get("tags") or []),
                )
            )
        return findings

    @classmethod
    def normalize(cls, raw: Dict[str, Any], ruleset: str) -> EngineReport:
        buckets: Dict[str, List[Finding]] = {key: [] for key in RESULT_TYPES}
        for key, kind in RESULT_TYPES.items():
            for rule in raw.get(key) or []:
                buckets[key].extend(cls._rule_findings(rule, kind))

        return EngineReport(engine=EngineName.axe, ruleset=ruleset, **buckets)

    def run(self, session, level: ConformanceLevel) -> EngineReport:
        ruleset = self.ruleset_for(level)
        self.inject(session, "axe")

        raw = session.driver.execute_async_script(RUN_SCRIPT, TAGS[level])
        if not isinstance(raw, dict):
            raise EngineFailure(self.name.value, "unexpected result from axe-core")
        if raw.get("error"):
            raise EngineFailure(self.name.value, raw["error"])

        report = self.normalize(raw, ruleset)
        logger.info(
            f"axe-core ({ruleset}): {len(report.violations)} violations, "
            f"{len(report.passes)} passes, {len(report.incomplete)} incomplete"
        )
        return report
