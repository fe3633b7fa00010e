import pytest

from app.features.scan.services.challenge.challenge_detector import ChallengeDetector

REAL_PAGE = (
    "<html><head><title>Example Domain</title></head><body>"
    + "<main><h1>Example Domain</h1>"
    + "<p>This domain is for use in illustrative examples in documents.</p>" * 40
    + "</main></body></html>"
)
REAL_TEXT = "Example Domain. This domain is for use in illustrative examples in documents."


class TestChallengeDetector:

    def test_real_page_is_clear(self):
        verdict = ChallengeDetector.detect(REAL_PAGE, REAL_TEXT)

        assert verdict.blocked is False
        assert verdict.signals == []

    def test_checking_your_browser_with_short_text_is_blocked(self):
        content = "<html><body><p>Checking your browser before accessing example.com</p></body></html>"

        verdict = ChallengeDetector.detect(content, "x" * 8)

        assert verdict.blocked is True
        assert "phrase:checking your browser before accessing" in verdict.signals

    @pytest.mark.parametrize("marker", [
        "<title>Just a moment...</title>",
        "<form id=\"challenge-form\"></form>",
        "<span>Cloudflare Ray ID: 7f1a</span>",
        "<script data-cf-beacon='{}'></script>",
        "<p>Please enable JavaScript and cookies to continue</p>",
    ])
    def test_known_phrases_block_even_on_large_pages(self, marker):
        verdict = ChallengeDetector.detect(REAL_PAGE.replace("<main>", marker + "<main>"), REAL_TEXT)

        assert verdict.blocked is True

    def test_meta_refresh_blocks(self):
        content = REAL_PAGE.replace("<head>", "<head><meta http-equiv=\"refresh\" content=\"5\">")

        verdict = ChallengeDetector.detect(content, REAL_TEXT)

        assert verdict.blocked is True
        assert "meta-refresh" in verdict.signals

    def test_spinner_container_blocks(self):
        content = REAL_PAGE.replace("<main>", "<div id=\"cf-spinner-please-wait\"></div><main>")

        verdict = ChallengeDetector.detect(content, REAL_TEXT)

        assert "spinner-container" in verdict.signals

    def test_challenge_class_container_blocks(self):
        content = REAL_PAGE.replace("<main>", "<div class=\"main cf-wrapper\"></div><main>")

        verdict = ChallengeDetector.detect(content, REAL_TEXT)

        assert "challenge-container" in verdict.signals

    def test_suspiciously_empty_page_blocks(self):
        verdict = ChallengeDetector.detect("<html><body><div id='app'></div></body></html>", "")

        assert verdict.blocked is True
        assert verdict.signals == ["suspiciously-empty"]

    def test_short_text_on_large_markup_is_clear(self):
        content = "<html><body>" + "<div class='card'></div>" * 200 + "</body></html>"

        verdict = ChallengeDetector.detect(content, "Sign in")

        assert verdict.blocked is False

    def test_detection_is_deterministic(self):
        content = "<html><body>Just a moment...</body></html>"

        verdicts = [ChallengeDetector.detect(content, "Just a moment...") for _ in range(5)]

        assert all(v == verdicts[0] for v in verdicts)
