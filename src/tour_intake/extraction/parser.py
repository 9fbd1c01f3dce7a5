"""
Adapter response parser (fallback chain).

Level 1: direct JSON parse
Level 2: JSON inside a markdown code block
Level 3: regex-extracted JSON array / object
Otherwise ExtractionResponseError.

Accepted shapes: ``[fact, ...]``, ``{"facts": [...]}`` or a flat
``{field: {"value": .., "confidence": ..}}`` mapping. A fact is either
``{"field": .., "value": .., "confidence": ..}`` or the shorthand
``{"title": "Show", "confidence": 0.9}`` (one field key plus metadata).
"""
from __future__ import annotations
import math
import re
from typing import Any
import orjson
import structlog

from tour_intake.common.exceptions import ExtractionResponseError
from tour_intake.common.schemas import CandidateFact

logger = structlog.get_logger()

_FACT_META_KEYS = frozenset({"confidence", "source", "value"})

_CODE_BLOCK_PATTERNS = (
    re.compile(r"```json\s*\n?(.*?)\n?\s*```", re.DOTALL),
    re.compile(r"```\s*\n?(.*?)\n?\s*```", re.DOTALL),
)


def clamp_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def _shorthand_field(entry: dict) -> str | None:
    """``{"title": "Show", "confidence": 0.9}`` → "title"."""
    if "confidence" not in entry or "field" in entry or "path" in entry:
        return None
    keys = [k for k in entry if k not in _FACT_META_KEYS]
    return keys[0] if len(keys) == 1 and isinstance(keys[0], str) else None


class FactParser:
    def parse(self, body: str | bytes) -> list[CandidateFact]:
        data = self._load(body)
        entries = self._entries(data)
        facts: list[CandidateFact] = []
        dropped = 0
        for entry in entries:
            fact = self._to_fact(entry)
            if fact is None:
                dropped += 1
                continue
            facts.append(fact)
        if dropped:
            logger.warning("facts_dropped", dropped=dropped, kept=len(facts))
        return facts

    def _load(self, body: str | bytes) -> Any:
        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        if not text or not text.strip():
            raise ExtractionResponseError("Empty extraction response")

        try:
            return orjson.loads(text.strip())
        except orjson.JSONDecodeError:
            pass

        for pattern in _CODE_BLOCK_PATTERNS:
            match = pattern.search(text)
            if match:
                try:
                    return orjson.loads(match.group(1).strip())
                except orjson.JSONDecodeError:
                    continue

        for pattern in (r"\[[\s\S]*\]", r"\{[\s\S]*\}"):
            match = re.search(pattern, text)
            if match:
                try:
                    return orjson.loads(match.group(0))
                except orjson.JSONDecodeError:
                    continue

        logger.warning("parse_fallback_failed", text_preview=text[:200])
        raise ExtractionResponseError("Unparseable extraction response")

    @staticmethod
    def _entries(data: Any) -> list:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            if isinstance(data.get("facts"), list):
                return data["facts"]
            if "field" in data or _shorthand_field(data):
                return [data]
            # {field: {value, confidence}} mapping
            return [
                {"field": k, **v} if isinstance(v, dict) else {"field": k, "value": v}
                for k, v in data.items()
            ]
        raise ExtractionResponseError(
            f"Unexpected extraction payload type: {type(data).__name__}")

    @staticmethod
    def _to_fact(entry: Any) -> CandidateFact | None:
        if not isinstance(entry, dict):
            return None
        field = entry.get("field") or entry.get("path")
        value = entry.get("value")
        if field is None:
            field = _shorthand_field(entry)
            value = entry.get(field) if field else None
        if not isinstance(field, str) or not field.strip():
            return None
        source = entry.get("source")
        return CandidateFact(
            field=field.strip(),
            value=value,
            confidence=clamp_confidence(entry.get("confidence", 0.0)),
            source=str(source) if source is not None else None,
        )
