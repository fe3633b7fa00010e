"""
Bot-challenge detection.

Challenge pages differ between providers and change often, so the verdict is
a union of weak signals: any one of them marks the page as blocked. This
over-reports on genuinely sparse pages; the thresholds below are the knobs.
"""

import re
from typing import List

from app.features.scan.schemas.scan import ChallengeVerdict

CHALLENGE_PHRASES = (
    "cf-browser-verification",
    "attention required! | cloudflare",
    "challenge-form",
    "cloudflare ray id",
    "just a moment...",
    "checking your browser before accessing",
    "data-cf-settings",
    "data-cf-beacon",
    "ray id:",
    "please enable javascript and cookies to continue",
)

META_REFRESH_RE = re.compile(r"<meta[^>]+http-equiv=[\"']?refresh", re.IGNORECASE)
SPINNER_DIV_RE = re.compile(r"<div[^>]+id=[\"']?cf-spinner", re.IGNORECASE)
CF_CLASS_DIV_RE = re.compile(r"<div[^>]+class=[\"'][^\"']*cf-[^\"']*[\"']", re.IGNORECASE)
SPINNER_KEYWORD_RE = re.compile(r"cf-spinner|cloudflare", re.IGNORECASE)

MIN_VISIBLE_TEXT = 20
MIN_MARKUP_LENGTH = 2000


class ChallengeDetector:

    @staticmethod
    def detect(content: str, visible_text: str) -> ChallengeVerdict:
        """Classify rendered markup + visible text. Pure and deterministic."""
        content = content or ""
        text_length = len((visible_text or "").strip())
        lower_content = content.lower()
        signals: List[str] = []

        for phrase in CHALLENGE_PHRASES:
            if phrase in lower_content:
                signals.append(f"phrase:{phrase}")

        if META_REFRESH_RE.search(content):
            signals.append("meta-refresh")
        if SPINNER_DIV_RE.search(content):
            signals.append("spinner-container")
        if CF_CLASS_DIV_RE.search(content):
            signals.append("challenge-container")
        if SPINNER_KEYWORD_RE.search(content) and text_length < MIN_VISIBLE_TEXT:
            signals.append("spinner-only")
        if text_length < MIN_VISIBLE_TEXT and len(content) < MIN_MARKUP_LENGTH:
            signals.append("suspiciously-empty")

        return ChallengeVerdict(blocked=bool(signals), signals=signals)
