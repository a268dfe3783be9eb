# core/repair.py
"""
Output repair pipeline.

Models asked for JSON frequently wrap it in markdown fences or prose, or
leave string values unquoted (common with CJK text). Candidates are tried
in a fixed order and the first one that parses wins:

    1. fences stripped
    2. fences stripped + unquoted values re-quoted
    3. outermost [...] span, then the same span re-quoted
    4. outermost {...} span, then the same span re-quoted
"""

import json
import logging
import re
from typing import Any, Iterator, NamedTuple, Optional, Sequence, Tuple

from core.exceptions import UnparsableOutputError
from core.metrics import record_repair

logger = logging.getLogger(__name__)

REQUOTE_FIELDS: Tuple[str, ...] = (
    "title",
    "summary",
    "description",
    "name",
    "role",
    "content",
    "relationships",
    "relationship",
)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_LITERALS = frozenset(("true", "false", "null"))


class RepairAttempt(NamedTuple):
    strategy: str
    text: str


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def _field_pattern(name: str) -> "re.Pattern[str]":
    # "name": <value> where value does not open an object, array or string;
    # capture up to the next comma or closing bracket. \s in the lookahead
    # stops \s* from backtracking onto a quoted value.
    return re.compile(r'"' + re.escape(name) + r'"\s*:\s*(?![\s{\["])([^,}\]]+)')


_FIELD_PATTERNS = tuple(_field_pattern(name) for name in REQUOTE_FIELDS)


def requote_fields(text: str, patterns: Sequence["re.Pattern[str]"] = _FIELD_PATTERNS) -> str:
    """Wrap bare values of tracked fields in quotes."""

    def _quote(match: "re.Match[str]") -> str:
        value = match.group(1).strip()
        if not value or value in _LITERALS or _NUMBER.match(value):
            return match.group(0)
        key = match.group(0).split(":", 1)[0]
        return f"{key}: {json.dumps(value, ensure_ascii=False)}"

    for pattern in patterns:
        text = pattern.sub(_quote, text)
    return text


def _span(text: str, opener: str, closer: str) -> Optional[Tuple[int, int]]:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end == -1 or end <= start:
        return None
    return start, end


def candidates(raw: str) -> Iterator[RepairAttempt]:
    """Yield repair candidates in the order they should be parsed."""
    clean = strip_fences(raw)
    yield RepairAttempt("fences_stripped", clean)
    yield RepairAttempt("requoted", requote_fields(clean))

    array_span = _span(clean, "[", "]")
    object_span = _span(clean, "{", "}")
    spans = [("array", array_span), ("object", object_span)]
    # An array nested inside the object span is not the outermost payload
    if array_span and object_span and object_span[0] < array_span[0] and array_span[1] < object_span[1]:
        spans.reverse()

    for label, span in spans:
        if span is None:
            continue
        sub = clean[span[0]: span[1] + 1]
        yield RepairAttempt(f"{label}_extracted", sub)
        yield RepairAttempt(f"{label}_extracted_requoted", requote_fields(sub))


_FAILED = object()


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return _FAILED


def repair(raw: str) -> Any:
    """
    Parse structured model output, repairing it if needed.

    Empty input yields an empty list. Raises UnparsableOutputError once
    every candidate has failed.
    """
    if raw is None or not raw.strip():
        return []

    seen = set()
    for attempt in candidates(raw):
        if attempt.text in seen:
            continue
        seen.add(attempt.text)
        value = _try_parse(attempt.text)
        if value is not _FAILED:
            if attempt.strategy != "fences_stripped":
                logger.info(
                    "Model output repaired",
                    extra={"event": "output_repaired", "strategy": attempt.strategy},
                )
            record_repair(attempt.strategy)
            return value

    record_repair("failed")
    logger.error(
        "Model output could not be repaired",
        extra={"event": "output_unparsable", "raw_prefix": raw[:200]},
    )
    raise UnparsableOutputError(raw)
