from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from time import sleep

from selenium.common.exceptions import (
    ElementNotInteractableException,
    InvalidSelectorException,
    NoSuchElementException,
    WebDriverException,
)
from selenium.webdriver.common.by import By

from selfheal.approval.callbacks import ApprovalCallback
from selfheal.approval.decision import ApprovalDecision

_CSS_PART = re.compile(
    r"""(?P<tag>^[a-zA-Z][\w-]*)
      |\#(?P<id>[\w-]+)
      |\.(?P<cls>[\w-]+)
      |\[\s*(?P<attr>[\w-]+)\s*(?:=\s*(?P<quote>["'])(?P<value>(?:\\.|(?!(?P=quote)).)*)(?P=quote)\s*)?\]""",
    re.VERBOSE,
)
_TEXT_XPATH = re.compile(
    r"""^\.?//(?P<tag>[\w*-]+)\[(?:normalize-space\(\.\)\s*=\s*|(?P<prefix>starts-with\(normalize-space\(\.\),\s*))"""
    r"""(?P<quote>["'])(?P<text>.*)(?P=quote)(?(prefix)\))\]$"""
)
_CSS_DEFAULTS = {"visibility": "visible", "display": "block", "opacity": "1"}


def _normalize(text: str) -> str:
    return " ".join(text.split())


def parse_css(selector: str) -> list[tuple[str, str, str | None]]:
    """Parses a compound CSS selector into (kind, name, value) conditions."""

    conditions: list[tuple[str, str, str | None]] = []
    position = 0
    selector = selector.strip()
    while position < len(selector):
        match = _CSS_PART.match(selector, position)
        if match is None or match.end() == position:
            raise InvalidSelectorException(f"Unsupported selector in fake driver: {selector}")
        if match.group("tag"):
            conditions.append(("tag", match.group("tag").lower(), None))
        elif match.group("id"):
            conditions.append(("attr", "id", match.group("id")))
        elif match.group("cls"):
            conditions.append(("class", match.group("cls"), None))
        else:
            value = match.group("value")
            if value is not None:
                value = re.sub(r"\\(.)", r"\1", value)
            conditions.append(("attr", match.group("attr"), value))
        position = match.end()
    return conditions


class FakeElement:
    """In-memory stand-in for a Selenium WebElement."""

    def __init__(self, tag: str, text: str = "", *children: FakeElement, displayed: bool = True, enabled: bool = True, **attrs) -> None:
        self.tag = tag.lower()
        self.own_text = text
        self.children = list(children)
        self.parent: FakeElement | None = None
        self.displayed = displayed
        self.enabled = enabled
        self.selected = False
        self.attrs = {key.rstrip("_").replace("_", "-"): value for key, value in attrs.items()}
        self.actions: list[str] = []
        self.click_errors: list[Exception] = []
        self.type_errors: list[Exception] = []
        self.submit_errors: list[Exception] = []
        for child in self.children:
            child.parent = self

    @property
    def tag_name(self) -> str:
        return self.tag

    @property
    def text(self) -> str:
        if not self.displayed:
            return ""
        parts = [self.own_text] + [child.text for child in self.children]
        return _normalize(" ".join(part for part in parts if part))

    @property
    def value(self) -> str:
        return self.get_attribute("value") or ""

    def get_attribute(self, name: str):
        if name == "value" and self.tag == "option":
            return self.attrs.get("value", self.own_text)
        if name == "index" and self.tag == "option" and self.parent is not None:
            options = [child for child in self.parent.children if child.tag == "option"]
            return str(options.index(self))
        return self.attrs.get(name)

    def get_dom_attribute(self, name: str):
        return self.attrs.get(name)

    def value_of_css_property(self, name: str) -> str:
        return _CSS_DEFAULTS.get(name, "")

    def is_displayed(self) -> bool:
        return self.displayed

    def is_enabled(self) -> bool:
        return self.enabled

    def is_selected(self) -> bool:
        return self.selected

    def click(self) -> None:
        if self.click_errors:
            raise self.click_errors.pop(0)
        if not self.displayed:
            raise ElementNotInteractableException("element is not visible")
        self._activate("click")

    def js_click(self) -> None:
        self._activate("js-click")

    def submit(self) -> None:
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.actions.append("submit")

    def clear(self) -> None:
        if self.type_errors:
            raise self.type_errors.pop(0)
        self.attrs["value"] = ""
        self.actions.append("clear")

    def send_keys(self, *values: str) -> None:
        if self.type_errors:
            raise self.type_errors.pop(0)
        self.attrs["value"] = self.attrs.get("value", "") + "".join(values)
        self.actions.append("send-keys")

    def find_elements(self, by: str, value: str) -> list[FakeElement]:
        if by == By.XPATH and value.strip() == "./ancestor::label":
            return [node for node in self.ancestors() if node.tag == "label"]
        return [node for node in self.descendants() if _matches(node, by, value)]

    def find_element(self, by: str, value: str) -> FakeElement:
        matches = self.find_elements(by, value)
        if not matches:
            raise NoSuchElementException(f"No element for {by}={value}")
        return matches[0]

    def descendants(self):
        for child in self.children:
            yield child
            yield from child.descendants()

    def ancestors(self):
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def render(self) -> str:
        attrs = "".join(f' {key}="{value}"' for key, value in self.attrs.items())
        inner = self.own_text + "".join(child.render() for child in self.children)
        return f"<{self.tag}{attrs}>{inner}</{self.tag}>"

    def _activate(self, how: str) -> None:
        self.actions.append(how)
        if self.tag == "option" and self.parent is not None:
            for sibling in self.parent.children:
                sibling.selected = sibling is self

    def __repr__(self) -> str:
        return f"FakeElement({self.tag!r}, {self.own_text!r}, {self.attrs!r})"


def _matches(node: FakeElement, by: str, value: str) -> bool:
    if by == By.ID:
        return node.attrs.get("id") == value
    if by == By.NAME:
        return node.attrs.get("name") == value
    if by == By.TAG_NAME:
        return node.tag == value.lower()
    if by == By.CSS_SELECTOR:
        return all(_css_condition(node, *condition) for condition in parse_css(value))
    if by == By.XPATH:
        match = _TEXT_XPATH.match(value.strip())
        if match is None:
            raise InvalidSelectorException(f"Unsupported xpath in fake driver: {value}")
        tag = match.group("tag").lower()
        text = match.group("text")
        if match.group("prefix"):
            matches_text = node.text.startswith(text)
        else:
            matches_text = node.text == _normalize(text)
        return (tag == "*" or node.tag == tag) and matches_text
    raise InvalidSelectorException(f"Unsupported locator strategy: {by}")


def _css_condition(node: FakeElement, kind: str, name: str, value: str | None) -> bool:
    if kind == "tag":
        return node.tag == name
    if kind == "class":
        return name in node.attrs.get("class", "").split()
    if value is None:
        return name in node.attrs
    return node.attrs.get(name) == value


class FakeDriver:
    """In-memory stand-in for a Selenium WebDriver serving one page."""

    def __init__(self, *elements: FakeElement, url: str = "https://app.test/login", title: str = "Login") -> None:
        self.current_url = url
        self.title = title
        self.scripts: list[tuple[str, tuple]] = []
        self.screenshots: list[str] = []
        self.load(*elements)

    def load(self, *elements: FakeElement) -> None:
        self.root = FakeElement("html", "", FakeElement("body", "", *elements))

    @property
    def page_source(self) -> str:
        return self.root.render()

    def find_elements(self, by: str, value: str) -> list[FakeElement]:
        return self.root.find_elements(by, value)

    def find_element(self, by: str, value: str) -> FakeElement:
        return self.root.find_element(by, value)

    def execute_script(self, script: str, *args):
        self.scripts.append((script, args))
        if "click()" in script:
            args[0].js_click()
        elif "value = arguments[1]" in script:
            args[0].attrs["value"] = args[1]
            args[0].actions.append("script-value")
        return None

    def execute(self, command, params=None):
        raise WebDriverException("pointer actions are not simulated by the fake driver")

    def save_screenshot(self, filename: str) -> bool:
        Path(filename).write_bytes(b"\x89PNG fake")
        self.screenshots.append(filename)
        return True


def login_button() -> FakeElement:
    return FakeElement("button", "Login", class_="radius", type="submit")


def login_page() -> FakeDriver:
    return FakeDriver(
        FakeElement(
            "form",
            "",
            FakeElement("label", "Username", for_="username"),
            FakeElement("input", id="username", name="username", type="text"),
            FakeElement("label", "Password", for_="password"),
            FakeElement("input", id="password", name="password", type="password"),
            login_button(),
            id="login",
        )
    )


class CountingReasoningClient:
    """Reasoning client that answers from a script and counts calls."""

    provider_name = "fake"

    def __init__(self, candidate_index: int = 0, confidence: float = 0.9, delay: float = 0.0, error: Exception | None = None) -> None:
        self.candidate_index = candidate_index
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.payloads: list[dict] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        with self._lock:
            return len(self.payloads)

    def choose_candidate(self, payload: dict) -> str:
        with self._lock:
            self.payloads.append(payload)
        if self.delay:
            sleep(self.delay)
        if self.error is not None:
            raise self.error
        return json.dumps(
            {
                "candidate_index": self.candidate_index,
                "confidence": self.confidence,
                "reasoning": "matches the intent",
            }
        )


class ScriptedApprovalCallback(ApprovalCallback):
    """Answers approval requests from a fixed decision, optionally waiting for a release event."""

    name = "scripted"

    def __init__(self, decision: ApprovalDecision | None = None, release: threading.Event | None = None, delay: float = 0.0) -> None:
        self.decision = decision or ApprovalDecision.approve(self.name)
        self.release = release
        self.delay = delay
        self.requests: list = []
        self.auto_applied: list = []
        self.rejected: list = []
        self._lock = threading.Lock()

    def request_approval(self, proposal):
        with self._lock:
            self.requests.append(proposal)
        if self.delay:
            sleep(self.delay)
        if self.release is not None:
            self.release.wait()
        return self.decision

    def notify_auto_applied(self, proposal) -> None:
        self.auto_applied.append(proposal)

    def notify_rejected(self, proposal, reason: str) -> None:
        self.rejected.append((proposal, reason))


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
