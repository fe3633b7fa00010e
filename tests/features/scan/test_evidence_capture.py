"""
Tests for the evidence screenshot fallback ladder:
element -> parent (one hop) -> full viewport -> None.
"""

from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import InvalidSelectorException, WebDriverException
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from app.features.scan.services.evidence.evidence_capture import (
    HIGHLIGHT_SCRIPT,
    PARENT_SCRIPT,
    RESTORE_SCRIPT,
    EvidenceCapture,
    EvidenceOptions,
)


def make_element(x, y, width, height):
    element = MagicMock()
    element.rect = {"x": x, "y": y, "width": width, "height": height}
    return element


def script_router(parent=None):
    """execute_script stand-in that answers the capture scripts."""
    def execute_script(script, *args):
        if script == PARENT_SCRIPT:
            return parent
        if script == HIGHLIGHT_SCRIPT:
            return ["", "", ""]
        return None
    return execute_script


@pytest.fixture
def capture():
    return EvidenceCapture(
        options=EvidenceOptions(min_size=10, max_attempts=3, padding=20, include_parent=True),
        sleep=lambda _: None,
    )


class TestEvidenceCapture:

    def test_missing_element_returns_none(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.return_value = []

        assert capture.capture(mock_session, "#nope") is None
        mock_driver.execute_cdp_cmd.assert_not_called()

    def test_invalid_selector_returns_none(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.side_effect = InvalidSelectorException("bad selector")

        assert capture.capture(mock_session, "div[") is None
        mock_session.viewport_screenshot.assert_not_called()

    def test_element_without_box_returns_none(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.return_value = [make_element(0, 0, 0, 0)]

        assert capture.capture(mock_session, "span.hidden") is None

    def test_captures_padded_clip_and_removes_highlight(self, capture, mock_session, mock_driver):
        element = make_element(100, 200, 50, 30)
        mock_driver.find_elements.return_value = [element]
        mock_driver.execute_script.side_effect = script_router()
        mock_driver.execute_cdp_cmd.return_value = {"data": "UE5H"}

        evidence = capture.capture(mock_session, "button.buy")

        assert evidence.image == "data:image/png;base64,UE5H"
        assert evidence.region.model_dump() == {"x": 80, "y": 180, "width": 90, "height": 70}
        command, params = mock_driver.execute_cdp_cmd.call_args[0]
        assert command == "Page.captureScreenshot"
        assert params["clip"] == {"x": 80, "y": 180, "width": 90, "height": 70, "scale": 1}
        scripts = [c.args[0] for c in mock_driver.execute_script.call_args_list]
        assert scripts.index(HIGHLIGHT_SCRIPT) < scripts.index(RESTORE_SCRIPT)

    def test_clip_is_clamped_to_page_origin(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.return_value = [make_element(5, 8, 100, 40)]
        mock_driver.execute_script.side_effect = script_router()
        mock_driver.execute_cdp_cmd.return_value = {"data": "UE5H"}

        evidence = capture.capture(mock_session, "header")

        assert evidence.region.x == 0
        assert evidence.region.y == 0
        assert evidence.region.width == 140

    def test_small_element_falls_back_to_parent_once(self, capture, mock_session, mock_driver):
        child = make_element(100, 100, 4, 20)
        parent = make_element(50, 60, 200, 40)
        mock_driver.find_elements.return_value = [child]
        mock_driver.execute_script.side_effect = script_router(parent=parent)
        mock_driver.execute_cdp_cmd.return_value = {"data": "UE5H"}

        evidence = capture.capture(mock_session, "a.icon")

        assert evidence is not None
        assert evidence.region.model_dump() == {"x": 30, "y": 40, "width": 240, "height": 80}
        highlighted = [c.args[1] for c in mock_driver.execute_script.call_args_list if c.args[0] == HIGHLIGHT_SCRIPT]
        assert highlighted == [parent]
        parent_lookups = [c for c in mock_driver.execute_script.call_args_list if c.args[0] == PARENT_SCRIPT]
        assert len(parent_lookups) == 1

    def test_small_parent_does_not_ascend_again(self, capture, mock_session, mock_driver):
        child = make_element(100, 100, 4, 4)
        parent = make_element(98, 98, 8, 8)
        mock_driver.find_elements.return_value = [child]
        mock_driver.execute_script.side_effect = script_router(parent=parent)

        assert capture.capture(mock_session, "i.dot") is None
        parent_lookups = [c for c in mock_driver.execute_script.call_args_list if c.args[0] == PARENT_SCRIPT]
        assert len(parent_lookups) == 1
        mock_driver.execute_cdp_cmd.assert_not_called()

    def test_small_element_without_parent_fallback_returns_none(self, mock_session, mock_driver):
        capture = EvidenceCapture(
            options=EvidenceOptions(include_parent=False), sleep=lambda _: None
        )
        mock_driver.find_elements.return_value = [make_element(0, 0, 4, 4)]

        assert capture.capture(mock_session, "i.dot") is None

    def test_repeated_failures_fall_back_to_viewport(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.side_effect = WebDriverException("stale element")

        evidence = capture.capture(mock_session, "div.flaky")

        assert mock_driver.find_elements.call_count == 3
        assert evidence.image == "data:image/png;base64,VIEWPORT"
        assert evidence.region.model_dump() == {"x": 0, "y": 0, "width": 1280, "height": 800}

    def test_highlight_removed_when_screenshot_fails(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.return_value = [make_element(10, 10, 100, 100)]
        mock_driver.execute_script.side_effect = script_router()
        mock_driver.execute_cdp_cmd.side_effect = WebDriverException("capture failed")

        evidence = capture.capture(mock_session, "section")

        scripts = [c.args[0] for c in mock_driver.execute_script.call_args_list]
        assert scripts.count(HIGHLIGHT_SCRIPT) == 3
        assert scripts.count(RESTORE_SCRIPT) == 3
        assert evidence.image == "data:image/png;base64,VIEWPORT"

    def test_viewport_fallback_failure_returns_none(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.side_effect = WebDriverException("browser gone")
        mock_session.viewport_screenshot.side_effect = WebDriverException("browser gone")

        assert capture.capture(mock_session, "div") is None

    def test_capture_many_keeps_submission_order(self, capture, mock_session, mock_driver):
        elements = {"#a": [make_element(0, 0, 50, 50)], "#b": []}
        mock_driver.find_elements.side_effect = lambda by, selector: elements[selector]
        mock_driver.execute_script.side_effect = script_router()
        mock_driver.execute_cdp_cmd.return_value = {"data": "UE5H"}

        results = capture.capture_many(mock_session, ["#a", None, "#b"])

        assert results[0] is not None
        assert results[1] is None
        assert results[2] is None

    def test_driver_connection_timeout_falls_back_to_viewport(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.return_value = [make_element(10, 10, 50, 50)]
        mock_driver.execute_script.side_effect = script_router()
        mock_driver.execute_cdp_cmd.side_effect = ReadTimeoutError(
            None, "/session/abc/goog/cdp/execute", "Read timed out."
        )

        evidence = capture.capture(mock_session, "img")

        assert mock_driver.execute_cdp_cmd.call_count == 3
        assert evidence.image == "data:image/png;base64,VIEWPORT"

    def test_non_driver_error_in_viewport_fallback_returns_none(self, capture, mock_session, mock_driver):
        mock_driver.find_elements.side_effect = MaxRetryError(None, "/session/abc/elements")
        mock_session.viewport_screenshot.side_effect = MaxRetryError(None, "/session/abc/screenshot")

        assert capture.capture(mock_session, "img") is None
