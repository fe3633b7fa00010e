import random
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.chrome.webdriver import WebDriver
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.keys import Keys

from app.features.scan.exceptions import NavigationError, NavigationTimeoutError
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
]

ACCEPT_LANGUAGE = "en-US,en;q=0.9"

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": ACCEPT_LANGUAGE,
    "Accept-Encoding": "gzip, deflate, br",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

CHROME_ARGUMENTS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--disable-gpu",
    "--disable-features=VizDisplayCompositor",
]

# Runs before any page script on every new document
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || { runtime: {} };
if (navigator.permissions && navigator.permissions.query) {
    const originalQuery = navigator.permissions.query.bind(navigator.permissions);
    navigator.permissions.query = (parameters) => (
        parameters && parameters.name === 'notifications'
            ? Promise.resolve({ state: Notification.permission })
            : originalQuery(parameters)
    );
}
"""

VISIBLE_TEXT_SCRIPT = (
    "return document.body && document.body.innerText ? document.body.innerText.trim() : '';"
)


def get_random_user_agent(rng: random.Random = random) -> str:
    return rng.choice(USER_AGENTS)


class BrowserSession:
    """
    One browser process and its page, owned by a single scan.

    Components receive the session; only BrowserSessionManager creates or
    quits the driver.
    """

    def __init__(
        self,
        driver: WebDriver,
        user_agent: str,
        rng: random.Random = random,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.driver = driver
        self.user_agent = user_agent
        self._rng = rng
        self._sleep = sleep

    def navigate(self, url: str) -> None:
        """
        Load the URL, returning once the document is parsed.

        Raises:
            NavigationTimeoutError: page load exceeded the configured timeout
            NavigationError: any other driver failure while loading
        """
        try:
            self.driver.get(url)
        except TimeoutException as e:
            raise NavigationTimeoutError(
                f"Page load timeout after {settings.SCAN_NAVIGATION_TIMEOUT} seconds for URL: {url}"
            ) from e
        except WebDriverException as e:
            raise NavigationError(f"WebDriver error loading URL {url}: {e.msg or e}") from e

        self.settle()

    def settle(self) -> None:
        """Randomized wait plus a small human-like interaction. Best-effort."""
        self._sleep(self._rng.uniform(settings.SCAN_SETTLE_MIN, settings.SCAN_SETTLE_MAX))
        try:
            actions = ActionChains(self.driver)
            actions.move_by_offset(100, 100).pause(0.1).send_keys(Keys.ARROW_DOWN).perform()
            self.driver.execute_script("window.scrollBy(0, arguments[0]);", self._rng.randint(120, 400))
            self._sleep(1.0)
            self.driver.execute_script("window.scrollTo(0, 0);")
        except WebDriverException as e:
            logger.debug(f"Synthetic interaction skipped: {e}")
        # Gives JS challenges a chance to resolve before the content is inspected
        self._sleep(settings.SCAN_CHALLENGE_SETTLE)

    def content(self) -> str:
        return self.driver.page_source or ""

    def visible_text(self) -> str:
        return self.driver.execute_script(VISIBLE_TEXT_SCRIPT) or ""

    def viewport_screenshot(self) -> str:
        """PNG of the current viewport as a data URI."""
        return f"data:image/png;base64,{self.driver.get_screenshot_as_base64()}"

    def viewport_size(self) -> Dict[str, int]:
        size = self.driver.execute_script(
            "return {width: window.innerWidth, height: window.innerHeight};"
        )
        return size or {"width": settings.SCAN_VIEWPORT_WIDTH, "height": settings.SCAN_VIEWPORT_HEIGHT}


class BrowserSessionManager:
    """Launches a stealth-configured Chrome and hands out scoped sessions."""

    def __init__(
        self,
        driver_factory: Optional[Callable[[], WebDriver]] = None,
        rng: random.Random = random,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._driver_factory = driver_factory or self.build_driver
        self._rng = rng
        self._sleep = sleep

    @staticmethod
    def build_options() -> Options:
        chrome_options = Options()
        if settings.SCAN_HEADLESS:
            chrome_options.add_argument("--headless=new")
        for argument in CHROME_ARGUMENTS:
            chrome_options.add_argument(argument)
        chrome_options.add_argument(
            f"--window-size={settings.SCAN_VIEWPORT_WIDTH},{settings.SCAN_VIEWPORT_HEIGHT}"
        )
        chrome_options.add_argument(f"--lang={ACCEPT_LANGUAGE.split(',')[0]}")
        chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])
        chrome_options.add_experimental_option("useAutomationExtension", False)
        # eager: driver.get returns at DOMContentLoaded
        chrome_options.page_load_strategy = "eager"
        return chrome_options

    @staticmethod
    def build_driver() -> WebDriver:
        chrome_options = BrowserSessionManager.build_options()

        if settings.CHROMEDRIVER_PATH:
            driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
            return webdriver.Chrome(service=driver_service, options=chrome_options)
        return webdriver.Chrome(options=chrome_options)

    def configure(self, driver: WebDriver) -> str:
        """Apply timeouts and fingerprint countermeasures. Returns the chosen user agent."""
        user_agent = get_random_user_agent(self._rng)

        driver.set_page_load_timeout(settings.SCAN_NAVIGATION_TIMEOUT)
        driver.set_script_timeout(settings.SCAN_SCRIPT_TIMEOUT)

        driver.execute_cdp_cmd(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": settings.SCAN_VIEWPORT_WIDTH,
                "height": settings.SCAN_VIEWPORT_HEIGHT,
                "deviceScaleFactor": 1,
                "mobile": False,
            },
        )
        driver.execute_cdp_cmd("Network.enable", {})
        driver.execute_cdp_cmd(
            "Network.setUserAgentOverride",
            {"userAgent": user_agent, "acceptLanguage": ACCEPT_LANGUAGE},
        )
        driver.execute_cdp_cmd("Network.setExtraHTTPHeaders", {"headers": EXTRA_HEADERS})
        driver.execute_cdp_cmd("Page.addScriptToEvaluateOnNewDocument", {"source": STEALTH_SCRIPT})
        return user_agent

    @contextmanager
    def acquire(self) -> Iterator[BrowserSession]:
        """
        Yield a configured session; the browser is quit on every exit path.

        Example:
            with manager.acquire() as session:
                session.navigate("https://example.com")
        """
        driver = self._driver_factory()
        try:
            user_agent = self.configure(driver)
            logger.info(f"Browser session started (user_agent={user_agent[:60]}...)")
            yield BrowserSession(driver, user_agent, rng=self._rng, sleep=self._sleep)
        finally:
            try:
                driver.quit()
            except Exception as e:
                logger.warning(f"Error while closing browser: {e}")
