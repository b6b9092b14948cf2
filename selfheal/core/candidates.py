from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By

from selfheal.config.schema import GuardrailConfig
from selfheal.core.metadata import ActionType, ElementCandidate, ElementSnapshot
from selfheal.llm.parser import parse_reasoning_response
from selfheal.utils.dom_extract import (
    associated_labels,
    attribute,
    build_dom_snippet,
    candidate_payload,
    capture_snapshot,
    derive_locator,
    plausible_selectors,
    value_attributes,
)
from selfheal.utils.scoring import NO_MATCH, MatchResult, score

logger = logging.getLogger(__name__)

PAYLOAD_ATTRIBUTES = ("id", "name", "type", "class", "aria-label", "data-testid", "placeholder", "value", "role")


class CandidateGenerator:
    """Finds and ranks replacement elements for a locator that stopped matching.

    Heuristic label scoring decides on its own when exactly one candidate
    clears the confidence floor by a clear margin. When nothing clears it, or
    the leaders are too close to call, the reasoning client (if any) picks the
    winner. A failing reasoning call falls back to the heuristic ranking.
    """

    def __init__(self, driver, config: GuardrailConfig | None = None, reasoning_client=None) -> None:
        self.driver = driver
        self.config = config or GuardrailConfig()
        self.reasoning_client = reasoning_client

    def generate(
        self,
        failed_locator: str,
        intent: str,
        action_type: ActionType,
        reference: ElementSnapshot | None = None,
    ) -> list[ElementCandidate]:
        queries = self._queries(intent, reference)
        scored = sorted(
            (self._score_element(element, queries) for element in self._scan(action_type, failed_locator)),
            key=lambda candidate: candidate.confidence,
            reverse=True,
        )
        passing = [item for item in scored if item.confidence >= self.config.min_heuristic_confidence]
        passing = passing[: self.config.max_candidates]
        logger.debug("%d of %d elements clear the heuristic floor for %s", len(passing), len(scored), failed_locator)

        if not self._needs_reasoning(passing) or self.reasoning_client is None:
            return passing

        pool = passing or scored[: self.config.max_candidates]
        if not pool:
            return []
        chosen = self._ask_reasoning(failed_locator, intent, action_type, pool)
        if chosen is None:
            return passing
        others = [item for item in passing if item.element is not chosen.element]
        return [chosen, *others]

    def _needs_reasoning(self, passing: list[ElementCandidate]) -> bool:
        if not passing:
            return True
        if len(passing) == 1:
            return False
        return passing[0].confidence - passing[1].confidence <= self.config.ambiguity_margin

    def _scan(self, action_type: ActionType, failed_locator: str) -> list:
        elements = []
        seen = set()
        for selector in plausible_selectors(action_type, failed_locator):
            try:
                matches = self.driver.find_elements(By.CSS_SELECTOR, selector)
            except WebDriverException as exc:
                logger.debug("Candidate scan %s failed: %s", selector, exc)
                continue
            for element in matches:
                if element in seen or not _displayed(element):
                    continue
                seen.add(element)
                elements.append(element)
        return elements

    @staticmethod
    def _queries(intent: str, reference: ElementSnapshot | None) -> list[str]:
        queries = [intent]
        if reference is not None:
            queries.extend([reference.text, reference.aria_label, reference.name])
        unique: list[str] = []
        for query in queries:
            if query and query not in unique:
                unique.append(query)
        return unique

    def _score_element(self, element, queries: list[str]) -> ElementCandidate:
        labels = associated_labels(self.driver, element)
        values = value_attributes(element)
        best: MatchResult = NO_MATCH
        best_label, best_query = "", ""
        for query in queries:
            for label in labels:
                result = score(label, query)
                if result.score > best.score:
                    best, best_label, best_query = result, label, query
            for value in values:
                result = score(None, query, value)
                if result.score > best.score:
                    best, best_label, best_query = result, value, query

        snapshot = capture_snapshot(element)
        return ElementCandidate(
            locator=derive_locator(snapshot, attribute(element, "type")),
            confidence=best.score,
            rationale=(
                f"{best.kind.value} match of {best_label!r} against {best_query!r}"
                if best.matched
                else "no label matched the intent"
            ),
            snapshot=snapshot,
            label=best_label or (labels[0] if labels else ""),
            attributes={name: value for name in PAYLOAD_ATTRIBUTES if (value := attribute(element, name))},
            element=element,
        )

    def _ask_reasoning(
        self,
        failed_locator: str,
        intent: str,
        action_type: ActionType,
        pool: list[ElementCandidate],
    ) -> ElementCandidate | None:
        payload = self._build_payload(failed_locator, intent, action_type, pool)
        try:
            response = self.reasoning_client.choose_candidate(payload)
            verdict = parse_reasoning_response(response, len(pool))
        except Exception as exc:
            logger.warning("Reasoning service unavailable, using heuristic ranking: %s", exc)
            return None
        chosen = pool[verdict.candidate_index]
        logger.info(
            "Reasoning chose %s for %s with confidence %.2f",
            chosen.locator,
            failed_locator,
            verdict.confidence,
        )
        return replace(chosen, confidence=verdict.confidence, rationale=verdict.reasoning)

    def _build_payload(
        self,
        failed_locator: str,
        intent: str,
        action_type: ActionType,
        pool: list[ElementCandidate],
    ) -> dict[str, Any]:
        return {
            "mode": "candidate_selection",
            "failed_locator": failed_locator,
            "intent": intent,
            "action_type": action_type.value,
            "page_url": _driver_value(self.driver, "current_url"),
            "page_title": _driver_value(self.driver, "title"),
            "candidates": [candidate_payload(item) for item in pool],
            "dom_snippet": build_dom_snippet(_driver_value(self.driver, "page_source"), pool),
        }


def _displayed(element) -> bool:
    try:
        return element.is_displayed()
    except WebDriverException:
        return False


def _driver_value(driver, name: str) -> str:
    try:
        return getattr(driver, name) or ""
    except WebDriverException:
        return ""
