from __future__ import annotations

import json
from dataclasses import dataclass

from selfheal.core.exceptions import ReasoningResponseError


@dataclass(frozen=True, slots=True)
class ReasoningVerdict:
    candidate_index: int
    confidence: float
    reasoning: str


def parse_reasoning_response(response: str, candidate_count: int) -> ReasoningVerdict:
    content = (response or "").strip()
    if not content:
        raise ReasoningResponseError("Reasoning service returned an empty response")
    if "```" in content:
        raise ReasoningResponseError("Reasoning service returned markdown instead of JSON")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ReasoningResponseError(f"Reasoning service returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ReasoningResponseError("Reasoning service must return a JSON object")

    index = payload.get("candidate_index")
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < candidate_count:
        raise ReasoningResponseError(f"Candidate index out of range: {index!r}")
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
        raise ReasoningResponseError(f"Confidence must be within [0, 1]: {confidence!r}")
    reasoning = str(payload.get("reasoning") or "").strip()
    return ReasoningVerdict(index, float(confidence), reasoning)
