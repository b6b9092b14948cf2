from __future__ import annotations

import json
import re
from typing import Any, Iterable

from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By

from selfheal.core.metadata import ActionType, ElementCandidate, ElementSnapshot

GENERATED_ID_PATTERNS = (
    re.compile(r"[0-9a-f]{8,}", re.IGNORECASE),
    re.compile(r"[_-]\d+$"),
    re.compile(r"^[a-z]{1,3}\d+$"),
)
DYNAMIC_CLASS_PATTERN = re.compile(r"[0-9a-f]{6,}|\d{4,}|__")
STABLE_TYPES = {"submit", "button", "checkbox", "radio", "text", "password", "email", "number", "search"}
TEXT_LOCATOR_MAX_LENGTH = 30
SNAPSHOT_TEXT_LIMIT = 200
TAG_IN_LOCATOR = re.compile(r"^(?:css=)?([a-z][a-z0-9-]*)(?=[\[#.:\s]|$)", re.IGNORECASE)

POINTER_TARGETS = ["button", "a", 'input[type="submit"]', 'input[type="button"]', '[role="button"]']
PLAUSIBLE_SELECTORS: dict[ActionType, list[str]] = {
    ActionType.SELECT: ["select", '[role="listbox"]', '[role="combobox"]'],
    ActionType.TYPE: ["input", "textarea", "[contenteditable]"],
    ActionType.CLEAR: ["input", "textarea", "[contenteditable]"],
    ActionType.CLICK: POINTER_TARGETS,
    ActionType.DOUBLE_CLICK: POINTER_TARGETS,
    ActionType.RIGHT_CLICK: POINTER_TARGETS,
    ActionType.HOVER: POINTER_TARGETS,
    ActionType.SUBMIT: POINTER_TARGETS,
}


def looks_generated(identifier: str) -> bool:
    return any(pattern.search(identifier) for pattern in GENERATED_ID_PATTERNS)


def css_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def xpath_literal(value: str) -> str:
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{part}"' for part in parts) + ")"


def attribute(element, name: str) -> str:
    try:
        return (element.get_attribute(name) or "").strip()
    except WebDriverException:
        return ""


def visible_text(element) -> str:
    try:
        return " ".join((element.text or "").split())
    except WebDriverException:
        return ""


def capture_snapshot(element) -> ElementSnapshot:
    return ElementSnapshot(
        tag=(element.tag_name or "").lower(),
        id=attribute(element, "id"),
        name=attribute(element, "name"),
        aria_label=attribute(element, "aria-label"),
        test_id=attribute(element, "data-testid"),
        text=visible_text(element)[:SNAPSHOT_TEXT_LIMIT],
        classes=attribute(element, "class"),
    )


def plausible_selectors(action_type: ActionType, failed_locator: str) -> list[str]:
    selectors = list(PLAUSIBLE_SELECTORS.get(action_type, POINTER_TARGETS))
    match = TAG_IN_LOCATOR.match(failed_locator.strip())
    if match and not failed_locator.strip().startswith(("id=", "name=")):
        tag = match.group(1).lower()
        if tag not in selectors:
            selectors.append(tag)
    return selectors


def associated_labels(driver, element) -> list[str]:
    """Label texts an assistive user would hear for the element."""

    labels: list[str] = []
    element_id = attribute(element, "id")
    if element_id:
        for label in driver.find_elements(By.CSS_SELECTOR, f"label[for={css_string(element_id)}]"):
            labels.append(visible_text(label))
    try:
        for label in element.find_elements(By.XPATH, "./ancestor::label"):
            labels.append(visible_text(label))
    except WebDriverException:
        pass
    for labelled_by in attribute(element, "aria-labelledby").split():
        for label in driver.find_elements(By.ID, labelled_by):
            labels.append(visible_text(label))
    for name in ("aria-label", "placeholder", "title"):
        labels.append(attribute(element, name))
    labels.append(visible_text(element))
    return [label for label in labels if label]


def value_attributes(element) -> list[str]:
    values = [attribute(element, name) for name in ("name", "value", "id", "data-testid")]
    return [value for value in values if value]


def derive_locator(snapshot: ElementSnapshot, element_type: str = "") -> str:
    if snapshot.id and not looks_generated(snapshot.id):
        return f"#{snapshot.id}"
    if snapshot.test_id:
        return f"[data-testid={css_string(snapshot.test_id)}]"
    if snapshot.name:
        return f"{snapshot.tag}[name={css_string(snapshot.name)}]"

    selector = snapshot.tag
    stable_classes = [item for item in snapshot.classes.split() if not DYNAMIC_CLASS_PATTERN.search(item)]
    for class_name in stable_classes[:2]:
        selector += f".{class_name}"
    if element_type and element_type.lower() in STABLE_TYPES and snapshot.tag in {"input", "button"}:
        selector += f"[type={css_string(element_type.lower())}]"

    if selector == snapshot.tag and snapshot.text and len(snapshot.text) <= TEXT_LOCATOR_MAX_LENGTH:
        return f"//{snapshot.tag}[normalize-space(.)={xpath_literal(snapshot.text)}]"
    return selector


def candidate_payload(candidate: ElementCandidate) -> dict[str, Any]:
    return {
        "locator": candidate.locator,
        "tag": candidate.snapshot.tag,
        "label": candidate.label,
        "text": candidate.snapshot.text,
        "attributes": candidate.attributes,
        "heuristic_score": candidate.confidence,
    }


def build_dom_snippet(page_source: str, candidates: Iterable[ElementCandidate], max_chars: int = 12000) -> str:
    items = list(candidates)
    summary = {
        "candidate_locators": [candidate.locator for candidate in items],
        "candidate_tags": [candidate.snapshot.tag for candidate in items],
        "page_source_excerpt": (page_source or "")[: max_chars // 2],
    }
    return json.dumps(summary, indent=2)
