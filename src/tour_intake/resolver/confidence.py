"""
Confidence resolver: merges candidate facts into the job's working record.

- Facts grouped by dotted field path, first-seen order kept
- Highest-confidence non-empty value wins; ties keep the first seen
- Every distinct discarded value is audited, never silently dropped
- Below threshold → suggestion + needs_review
- Any required field not accepted → needs_review, whatever else scored
"""
from __future__ import annotations
import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from tour_intake.common.schemas import CandidateFact
import structlog

logger = structlog.get_logger()

_MISSING = object()


@dataclass
class Resolution:
    extracted: dict
    confidence_map: dict[str, float]
    suggestions: dict[str, Any] = field(default_factory=dict)
    needs_review: bool = False
    audit: list[str] = field(default_factory=list)
    facts_considered: int = 0


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def get_path(record: dict, path: str) -> Any:
    node: Any = record
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def set_path(record: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    node = record
    for part in parts[:-1]:
        if not isinstance(node.get(part), dict):
            node[part] = {}
        node = node[part]
    node[parts[-1]] = value


class ConfidenceResolver:
    def __init__(
        self, threshold: float = 0.75, required_fields: Iterable[str] = ("title", "date"),
    ) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self._threshold = threshold
        self._required = tuple(required_fields)

    @property
    def threshold(self) -> float:
        return self._threshold

    def resolve(self, job, facts: list[CandidateFact]) -> Resolution:
        """job: anything with an ``extracted`` attribute (the prior working record)."""
        grouped: dict[str, list[CandidateFact]] = {}
        for fact in facts:
            grouped.setdefault(fact.field, []).append(fact)

        accepted: dict[str, Any] = {}
        suggestions: dict[str, Any] = {}
        confidence_map: dict[str, float] = {}
        audit: list[str] = []
        needs_review = False

        for path, group in grouped.items():
            present = [f for f in group if not is_missing(f.value)]
            if not present:
                confidence_map[path] = 0.0
                continue

            winner = present[0]
            for candidate in present[1:]:
                if candidate.confidence > winner.confidence:
                    winner = candidate

            seen_discarded: list[Any] = []
            for candidate in present:
                if candidate is winner or candidate.value == winner.value:
                    continue
                if candidate.value in seen_discarded:
                    continue
                seen_discarded.append(candidate.value)
                audit.append(
                    f"conflict: {path}: kept {winner.value!r} ({winner.confidence:.2f}) "
                    f"over {candidate.value!r} ({candidate.confidence:.2f})")

            confidence_map[path] = winner.confidence
            if winner.confidence >= self._threshold:
                accepted[path] = winner.value
            else:
                suggestions[path] = winner.value
                needs_review = True

        missing_required = [r for r in self._required if r not in accepted]
        for path in missing_required:
            confidence_map.setdefault(path, 0.0)
        if missing_required:
            needs_review = True

        prior = getattr(job, "extracted", None) or {}
        extracted = copy.deepcopy(prior) if isinstance(prior, dict) else {}
        for path, value in accepted.items():
            previous = get_path(extracted, path)
            if previous is not _MISSING and previous != value:
                audit.append(f"changed: {path}: {previous!r} -> {value!r}")
            set_path(extracted, path, value)

        logger.debug("facts_resolved",
                     accepted=len(accepted), suggested=len(suggestions),
                     missing_required=missing_required, needs_review=needs_review)
        return Resolution(
            extracted=extracted,
            confidence_map=confidence_map,
            suggestions=suggestions,
            needs_review=needs_review,
            audit=audit,
            facts_considered=len(facts),
        )
