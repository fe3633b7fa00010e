from functools import lru_cache

import httpx

from app.features.scan.exceptions import EngineFailure
from app.features.scan.schemas.scan import ConformanceLevel, EngineName, EngineReport
from app.platform.logger import get_logger

logger = get_logger(__name__)

SCRIPT_DOWNLOAD_TIMEOUT = 30.0


@lru_cache(maxsize=8)
def fetch_engine_source(url: str) -> str:
    """Download an engine bundle once per worker process."""
    response = httpx.get(url, timeout=SCRIPT_DOWNLOAD_TIMEOUT, follow_redirects=True)
    response.raise_for_status()
    logger.info(f"Fetched engine script {url} ({len(response.text)} bytes)")
    return response.text


class AuditEngine:
    """
    Adapter around an in-page audit library.

    Subclasses translate the conformance level, run the library against the
    session's page and normalize its native output into an EngineReport.
    Evidence is attached later by the aggregator.
    """

    name: EngineName
    script_url: str

    def ruleset_for(self, level: ConformanceLevel) -> str:
        raise NotImplementedError

    def run(self, session, level: ConformanceLevel) -> EngineReport:
        raise NotImplementedError

    def inject(self, session, global_name: str) -> None:
        """
        Evaluate the engine bundle in the page's global scope.

        Runtime.evaluate is not subject to the page's Content-Security-Policy,
        unlike a <script src> tag.
        """
        driver = session.driver
        if driver.execute_script(f"return typeof window.{global_name} !== 'undefined';"):
            return
        try:
            source = fetch_engine_source(self.script_url)
        except httpx.HTTPError as e:
            raise EngineFailure(self.name.value, f"could not download engine script: {e}") from e

        result = driver.execute_cdp_cmd("Runtime.evaluate", {"expression": source})
        if result and result.get("exceptionDetails"):
            details = result["exceptionDetails"].get("text", "script raised")
            raise EngineFailure(self.name.value, f"engine script failed to load: {details}")
