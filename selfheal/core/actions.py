from __future__ import annotations

import logging
from typing import Any, Callable

from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.by import By
from selenium.webdriver.support.select import Select
from selenium.webdriver.support.ui import WebDriverWait

from selfheal.config.schema import GuardrailConfig
from selfheal.core.exceptions import ActionExecutionFailed, ElementNotRefindable
from selfheal.core.metadata import ActionType, ElementSnapshot
from selfheal.utils.dom_extract import SNAPSHOT_TEXT_LIMIT, css_string, looks_generated, xpath_literal
from selfheal.utils.scoring import best_match

logger = logging.getLogger(__name__)

Strategy = Callable[[Any, Any], None]

SCROLL_INTO_VIEW = "arguments[0].scrollIntoView({behavior: 'instant', block: 'center'});"
JS_CLICK = "arguments[0].click();"
JS_SET_VALUE = (
    "arguments[0].value = arguments[1];"
    "arguments[0].dispatchEvent(new Event('input', {bubbles: true}));"
    "arguments[0].dispatchEvent(new Event('change', {bubbles: true}));"
)


class ActionExecutor:
    """Re-finds an element from its snapshot and performs an action through a fallback ladder.

    Both the re-find step and every action are ordered lists of small
    strategies. The first strategy that succeeds wins; a strategy that raises
    hands over to the next one.
    """

    def __init__(self, driver, config: GuardrailConfig | None = None) -> None:
        self.driver = driver
        self.config = config or GuardrailConfig()

    def execute(self, action: ActionType, snapshot: ElementSnapshot, data: Any = None):
        element = self.refind(snapshot)
        self.perform(action, element, data)
        return element

    def refind(self, snapshot: ElementSnapshot):
        for name, strategy in self.refind_strategies():
            try:
                element = strategy(snapshot)
            except Exception as exc:
                logger.debug("Re-find by %s failed: %s", name, exc)
                continue
            if element is not None:
                logger.debug("Re-found %s by %s", snapshot.describe(), name)
                return element
        raise ElementNotRefindable(f"Could not re-find element from snapshot: {snapshot.describe()}")

    def refind_strategies(self) -> list[tuple[str, Callable[[ElementSnapshot], Any]]]:
        return [
            ("data-testid", self._by_test_id),
            ("id", self._by_id),
            ("aria-label", self._by_aria_label),
            ("text", self._by_text),
            ("name", self._by_name),
        ]

    def perform(self, action: ActionType, element, data: Any = None) -> str:
        """Runs the ladder for ``action`` and returns the name of the strategy that worked."""

        ladder = self.strategies_for(action)
        last_error: Exception | None = None
        for name, strategy in ladder:
            try:
                strategy(element, data)
            except Exception as exc:
                last_error = exc
                logger.debug("%s via %s failed: %s", action.value, name, exc)
                continue
            return name
        message = f"All {action.value} strategies failed"
        if last_error is not None:
            message += f": {last_error}"
        raise ActionExecutionFailed(message, last_error) from last_error

    def strategies_for(self, action: ActionType) -> list[tuple[str, Strategy]]:
        if action is ActionType.CLICK:
            ladder = [
                ("click", self._click),
                ("scroll-click", self._scroll_click),
                ("wait-click", self._wait_click),
                ("pointer-click", self._pointer_click),
            ]
            if self.config.allow_js_click:
                ladder.append(("script-click", self._script_click))
            return ladder
        if action is ActionType.TYPE:
            return [("send-keys", self._send_keys), ("script-value", self._script_value)]
        if action is ActionType.SELECT:
            return [
                ("visible-text", self._select_by_text),
                ("value", self._select_by_value),
                ("index", self._select_by_index),
                ("fuzzy-text", self._select_fuzzy),
            ]
        if action is ActionType.CLEAR:
            return [("clear", lambda element, _: element.clear()), ("script-clear", self._script_clear)]
        if action is ActionType.HOVER:
            return [("hover", lambda element, _: ActionChains(self.driver).move_to_element(element).perform())]
        if action is ActionType.DOUBLE_CLICK:
            return [("double-click", lambda element, _: ActionChains(self.driver).double_click(element).perform())]
        if action is ActionType.RIGHT_CLICK:
            return [("right-click", lambda element, _: ActionChains(self.driver).context_click(element).perform())]
        if action is ActionType.SUBMIT:
            return [("submit", lambda element, _: element.submit()), ("click", self._click_ladder)]
        raise ValueError(f"Unsupported action type: {action}")

    # Re-find strategies

    def _by_test_id(self, snapshot: ElementSnapshot):
        if not snapshot.test_id:
            return None
        return self._first(By.CSS_SELECTOR, f"[data-testid={css_string(snapshot.test_id)}]")

    def _by_id(self, snapshot: ElementSnapshot):
        if not snapshot.id or looks_generated(snapshot.id):
            return None
        return self._first(By.ID, snapshot.id)

    def _by_aria_label(self, snapshot: ElementSnapshot):
        if not snapshot.aria_label:
            return None
        matches = self.driver.find_elements(By.CSS_SELECTOR, f"[aria-label={css_string(snapshot.aria_label)}]")
        return matches[0] if len(matches) == 1 else None

    def _by_text(self, snapshot: ElementSnapshot):
        if not snapshot.text or not snapshot.tag:
            return None
        literal = xpath_literal(snapshot.text)
        if len(snapshot.text) >= SNAPSHOT_TEXT_LIMIT:
            # snapshot text was cut, so only its prefix is known
            return self._first(By.XPATH, f"//{snapshot.tag}[starts-with(normalize-space(.), {literal})]")
        return self._first(By.XPATH, f"//{snapshot.tag}[normalize-space(.)={literal}]")

    def _by_name(self, snapshot: ElementSnapshot):
        if not snapshot.name:
            return None
        return self._first(By.NAME, snapshot.name)

    def _first(self, by: str, value: str):
        matches = self.driver.find_elements(by, value)
        return matches[0] if matches else None

    # Action strategies

    @staticmethod
    def _click(element, _data) -> None:
        element.click()

    def _scroll_click(self, element, _data) -> None:
        self.driver.execute_script(SCROLL_INTO_VIEW, element)
        element.click()

    def _wait_click(self, element, _data) -> None:
        WebDriverWait(self.driver, self.config.interactable_timeout_seconds).until(
            lambda _: element.is_displayed() and element.is_enabled()
        )
        element.click()

    def _pointer_click(self, element, _data) -> None:
        ActionChains(self.driver).move_to_element(element).click().perform()

    def _script_click(self, element, _data) -> None:
        self.driver.execute_script(JS_CLICK, element)

    def _click_ladder(self, element, data) -> None:
        self.perform(ActionType.CLICK, element, data)

    @staticmethod
    def _send_keys(element, data) -> None:
        element.clear()
        element.send_keys(_text(data))

    def _script_value(self, element, data) -> None:
        self.driver.execute_script(JS_SET_VALUE, element, _text(data))

    def _script_clear(self, element, _data) -> None:
        self.driver.execute_script(JS_SET_VALUE, element, "")

    @staticmethod
    def _select_by_text(element, data) -> None:
        Select(element).select_by_visible_text(_text(data))

    @staticmethod
    def _select_by_value(element, data) -> None:
        Select(element).select_by_value(_text(data))

    @staticmethod
    def _select_by_index(element, data) -> None:
        Select(element).select_by_index(int(_text(data)))

    @staticmethod
    def _select_fuzzy(element, data) -> None:
        options = Select(element).options
        match = best_match(
            ((option.text, option.get_attribute("value")) for option in options),
            _text(data),
        )
        if match is None:
            raise ValueError(f"No option resembles {_text(data)!r}")
        option = options[match[0]]
        logger.debug("Fuzzy-selected option %r for %r (%s)", option.text, data, match[1].kind.value)
        if not option.is_selected():
            option.click()


def _text(data: Any) -> str:
    return "" if data is None else str(data)
