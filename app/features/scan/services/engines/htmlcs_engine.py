from typing import Any, Dict, List

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

STANDARDS = {
    ConformanceLevel.AA: "WCAG2AA",
    ConformanceLevel.AAA: "WCAG2AAA",
}

# HTMLCS message types
ERROR, WARNING, NOTICE = 1, 2, 3
SEVERITY = {ERROR: "error", WARNING: "warning", NOTICE: "notice"}

RUN_SCRIPT = """
const standard = arguments[0];
const done = arguments[arguments.length - 1];

function selectorFor(el) {
    if (!el || el.nodeType !== 1) return null;
    const parts = [];
    while (el && el.nodeType === 1 && el !== document.documentElement) {
        if (el.id && document.querySelectorAll('#' + CSS.escape(el.id)).length === 1) {
            parts.unshift('#' + CSS.escape(el.id));
            return parts.join(' > ');
        }
        let part = el.tagName.toLowerCase();
        const parent = el.parentElement;
        if (parent) {
            const siblings = Array.from(parent.children);
            if (siblings.filter(c => c.tagName === el.tagName).length > 1) {
                part += ':nth-child(' + (siblings.indexOf(el) + 1) + ')';
            }
        }
        parts.unshift(part);
        el = parent;
    }
    parts.unshift('html');
    return parts.join(' > ');
}

function contextFor(el) {
    if (!el || !el.outerHTML) return null;
    const html = el.outerHTML;
    return html.length > 300 ? html.slice(0, 300) + '...' : html;
}

try {
    HTMLCS.process(standard, document, function () {
        done({messages: HTMLCS.getMessages().map(function (m) {
            return {
                type: m.type,
                code: m.code,
                message: m.msg,
                selector: selectorFor(m.element),
                context: contextFor(m.element),
            };
        })});
    }, function () {
        done({error: 'HTML_CodeSniffer failed to process the page'});
    }, 'en');
} catch (e) {
    done({error: String((e && e.message) || e)});
}
"""


class HtmlCodeSnifferEngine(AuditEngine):
    """HTML_CodeSniffer, the rule engine pa11y runs."""

    name = EngineName.htmlcs

    def __init__(self, script_url: str = None):
        self.script_url = script_url or settings.SCAN_HTMLCS_SCRIPT_URL

    def ruleset_for(self, level: ConformanceLevel) -> str:
        return STANDARDS[level]

    @staticmethod
    def normalize(messages: List[Dict[str, Any]], ruleset: str) -> EngineReport:
        violations: List[Finding] = []
        incomplete: List[Finding] = []

        for message in messages:
            message_type = message.get("type")
            finding = Finding(
                engine=EngineName.htmlcs,
                kind=FindingKind.incomplete if message_type == NOTICE else FindingKind.violation,
                code=message.get("code") or "unknown",
                message=(message.get("message") or "").strip(),
                severity=SEVERITY.get(message_type, "notice"),
                selector=message.get("selector"),
                context=message.get("context"),
            )
            if finding.kind == FindingKind.violation:
                violations.append(finding)
            else:
                incomplete.append(finding)

        return EngineReport(
            engine=EngineName.htmlcs,
            ruleset=ruleset,
            violations=violations,
            incomplete=incomplete,
        )

    def run(self, session, level: ConformanceLevel) -> EngineReport:
        ruleset = self.ruleset_for(level)
        self.inject(session, "HTMLCS")

        raw = session.driver.execute_async_script(RUN_SCRIPT, ruleset)
        if not isinstance(raw, dict):
            raise EngineFailure(self.name.value, "unexpected result from HTML_CodeSniffer")
        if raw.get("error"):
            raise EngineFailure(self.name.value, raw["error"])

        report = self.normalize(raw.get("messages") or [], ruleset)
        logger.info(
            f"HTML_CodeSniffer ({ruleset}): {len(report.violations)} issues, "
            f"{len(report.incomplete)} notices"
        )
        return report
