from __future__ import annotations

import logging
from time import monotonic, sleep

from selenium.common.exceptions import InvalidSelectorException, StaleElementReferenceException
from selenium.webdriver.common.by import By

logger = logging.getLogger(__name__)

PREFIXES = {
    "css=": By.CSS_SELECTOR,
    "xpath=": By.XPATH,
    "id=": By.ID,
    "name=": By.NAME,
}


def infer_selector_type(selector: str) -> str:
    stripped = selector.strip()
    if stripped.startswith("/") or stripped.startswith("("):
        return "xpath"
    return "css"


def parse_locator(locator: str) -> tuple[str, str]:
    stripped = locator.strip()
    for prefix, by in PREFIXES.items():
        if stripped.startswith(prefix):
            return by, stripped[len(prefix):]
    if infer_selector_type(stripped) == "xpath":
        return By.XPATH, stripped
    return By.CSS_SELECTOR, stripped


class LocatorFinder:
    """Resolves locator strings against the current driver session."""

    def __init__(self, driver, poll_interval: float = 0.2) -> None:
        self.driver = driver
        self.poll_interval = poll_interval

    def find_all(self, locator: str, timeout: float = 0.0) -> list:
        by, value = parse_locator(locator)
        deadline = monotonic() + timeout
        while True:
            try:
                matches = self.driver.find_elements(by, value)
            except InvalidSelectorException as exc:
                logger.debug("Invalid locator %s: %s", locator, exc)
                return []
            except StaleElementReferenceException:
                matches = []
            if matches or monotonic() >= deadline:
                return list(matches)
            sleep(self.poll_interval)

    def find_first(self, locator: str, timeout: float = 0.0):
        matches = self.find_all(locator, timeout)
        return matches[0] if matches else None
