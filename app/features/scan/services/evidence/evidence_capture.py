import time
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel
from selenium.common.exceptions import InvalidSelectorException
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement

from app.features.scan.exceptions import EvidenceCaptureFailure
from app.features.scan.schemas.scan import Evidence, Region
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

SCROLL_INTO_VIEW_SCRIPT = """
const el = arguments[0], padding = arguments[1];
const rect = el.getBoundingClientRect();
window.scrollTo(rect.left + window.scrollX - padding, rect.top + window.scrollY - padding);
"""

HIGHLIGHT_SCRIPT = """
const el = arguments[0];
const previous = [el.style.outline, el.style.outlineOffset, el.style.zIndex];
el.style.outline = '3px solid red';
el.style.outlineOffset = '2px';
el.style.zIndex = '9999';
return previous;
"""

RESTORE_SCRIPT = """
const el = arguments[0], previous = arguments[1] || ['', '', ''];
el.style.outline = previous[0];
el.style.outlineOffset = previous[1];
el.style.zIndex = previous[2];
"""

PARENT_SCRIPT = "return arguments[0].parentElement;"

ANIMATION_WAIT = 0.1


class EvidenceOptions(BaseModel):
    min_size: int = 10
    max_attempts: int = 3
    padding: int = 20
    include_parent: bool = True

    @classmethod
    def from_settings(cls) -> "EvidenceOptions":
        return cls(
            min_size=settings.EVIDENCE_MIN_SIZE,
            max_attempts=settings.EVIDENCE_MAX_ATTEMPTS,
            padding=settings.EVIDENCE_PADDING,
        )


def to_data_uri(png_base64: str) -> str:
    return f"data:image/png;base64,{png_base64}"


class EvidenceCapture:
    """
    Highlighted, cropped screenshots for findings.

    Degrades element -> parent (one hop) -> full viewport -> None. Nothing
    raised while capturing reaches the caller.
    """

    def __init__(self, options: Optional[EvidenceOptions] = None, sleep: Callable[[float], None] = time.sleep):
        self.options = options or EvidenceOptions.from_settings()
        self._sleep = sleep

    @staticmethod
    def _find(driver, selector: str) -> Optional[WebElement]:
        try:
            elements = driver.find_elements(By.CSS_SELECTOR, selector)
        except InvalidSelectorException:
            logger.info(f"Invalid selector, skipping evidence: {selector}")
            return None
        return elements[0] if elements else None

    @staticmethod
    def _bounding_box(element: WebElement) -> Optional[Dict[str, float]]:
        rect = element.rect
        if not rect or rect.get("width") is None or rect.get("height") is None:
            return None
        if rect["width"] <= 0 and rect["height"] <= 0:
            return None
        return rect

    def _too_small(self, box: Dict[str, float], min_size: int) -> bool:
        return box["width"] < min_size or box["height"] < min_size

    def _shoot(self, driver, element: WebElement, box: Dict[str, float], padding: int) -> Evidence:
        driver.execute_script(SCROLL_INTO_VIEW_SCRIPT, element, padding)
        self._sleep(ANIMATION_WAIT)

        previous = driver.execute_script(HIGHLIGHT_SCRIPT, element)
        try:
            region = Region(
                x=max(0, box["x"] - padding),
                y=max(0, box["y"] - padding),
                width=box["width"] + padding * 2,
                height=box["height"] + padding * 2,
            )
            result = driver.execute_cdp_cmd(
                "Page.captureScreenshot",
                {
                    "format": "png",
                    "captureBeyondViewport": True,
                    "clip": {
                        "x": region.x,
                        "y": region.y,
                        "width": region.width,
                        "height": region.height,
                        "scale": 1,
                    },
                },
            )
            data = (result or {}).get("data")
            if not data:
                raise EvidenceCaptureFailure("Screenshot returned no data")
        finally:
            try:
                driver.execute_script(RESTORE_SCRIPT, element, previous)
            except Exception as e:
                logger.warning(f"Could not remove highlight: {e}")

        return Evidence(image=to_data_uri(data), region=region)

    def _viewport_fallback(self, session) -> Optional[Evidence]:
        try:
            image = session.viewport_screenshot()
            size = session.viewport_size()
        except Exception as e:
            logger.error(f"Fallback viewport screenshot failed: {e}")
            return None
        return Evidence(
            image=image,
            region=Region(x=0, y=0, width=size["width"], height=size["height"]),
        )

    def capture(self, session, selector: str, options: Optional[EvidenceOptions] = None) -> Optional[Evidence]:
        """
        Screenshot the element matched by ``selector``.

        Args:
            session: BrowserSession owning the page
            selector: CSS selector reported by the engine
            options: overrides for size threshold, attempts and padding

        Returns:
            Evidence, or None when the element is missing, has no box, or is
            too small with no usable parent.
        """
        opts = options or self.options
        driver = session.driver
        allow_parent = opts.include_parent
        target: Optional[WebElement] = None
        attempt = 0

        while attempt < opts.max_attempts:
            try:
                element = target if target is not None else self._find(driver, selector)
                if element is None:
                    return None

                box = self._bounding_box(element)
                if box is None:
                    logger.info(f"No bounding box for selector: {selector}")
                    return None

                if self._too_small(box, opts.min_size):
                    if allow_parent:
                        allow_parent = False
                        parent = driver.execute_script(PARENT_SCRIPT, element)
                        parent_box = self._bounding_box(parent) if parent is not None else None
                        if parent_box and (
                            parent_box["width"] > box["width"] or parent_box["height"] > box["height"]
                        ):
                            target = parent
                            continue
                    logger.info(f"Element too small for selector: {selector}")
                    return None

                return self._shoot(driver, element, box, opts.padding)
            except Exception as e:
                attempt += 1
                logger.warning(f"Screenshot attempt {attempt} failed for {selector}: {e}")

        return self._viewport_fallback(session)

    def capture_many(self, session, selectors: Iterable[Optional[str]]) -> List[Optional[Evidence]]:
        """Capture a batch in submission order; the page serializes the work."""
        return [self.capture(session, selector) if selector else None for selector in selectors]
