"""Tolerant JSON parsing and schema validation of LLM output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from src.analysis.models import FullAnalysisReport
from src.errors import ModelResponseFormatError, ReportValidationError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (```json ... ```), if any."""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the bracket closing ``text[start]``, or None.

    Brackets inside string literals (including escaped quotes) are ignored.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i + 1
    return None


def extract_json_block(text: str) -> Any | None:
    """Parse the first balanced ``{...}`` or ``[...]`` block that is valid JSON."""
    for start, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        end = _balanced_end(text, start)
        if end is None:
            continue
        try:
            return json.loads(text[start:end])
        except json.JSONDecodeError:
            continue
    return None


def parse_model_json(text: str, context: str) -> Any:
    """Parse possibly-decorated LLM output as JSON.

    Tries, in order: the text with code fences stripped, then the first
    balanced object/array found inside it.

    Args:
        text: Raw model output.
        context: Name of the calling analysis, used in the error.

    Raises:
        ModelResponseFormatError: If no valid JSON can be recovered.
    """
    cleaned = strip_code_fences(text or "")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    block = extract_json_block(cleaned)
    if block is not None:
        logger.debug("Recovered JSON block from decorated %s output", context)
        return block

    logger.warning("Unparseable %s output (%d chars)", context, len(text or ""))
    raise ModelResponseFormatError(context, raw=text or "")


def validate_report(payload: str | dict[str, Any], context: str = "final_report") -> FullAnalysisReport:
    """Parse (if needed) and strictly validate a consolidated report.

    Raises:
        ModelResponseFormatError: If *payload* is text that is not JSON.
        ReportValidationError: If required fields are missing, enum values
            are unknown, or the top level is not an object.
    """
    data = parse_model_json(payload, context) if isinstance(payload, str) else payload
    if not isinstance(data, dict):
        raise ReportValidationError(context, ["top-level JSON value is not an object"])
    try:
        return FullAnalysisReport.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        logger.warning("Report from %s failed validation with %d errors", context, len(errors))
        raise ReportValidationError(context, errors) from exc
