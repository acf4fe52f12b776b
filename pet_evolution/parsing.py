"""Typed parsing of generator output.

`parse_payload` never raises: it returns `ParseOk` with a validated model
or `ParseError` with a reason, so callers branch on the type instead of
catching exceptions.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class ParseOk(Generic[M]):
    value: M

    @property
    def source(self) -> str:
        return getattr(self.value, "source", "generated")


@dataclass(frozen=True)
class ParseError:
    reason: str


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned.strip()


def extract_json(text: str) -> object | None:
    """Parse JSON from generator output, stripping markdown fences.

    Falls back to the span between the first `{` and the last `}` when the
    model wrapped the object in prose.
    """
    cleaned = _strip_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError:
        return None


def parse_payload(text: str, model: type[M]) -> ParseOk[M] | ParseError:
    data = extract_json(text)
    if not isinstance(data, dict):
        logger.warning("Generator output for %s is not a JSON object", model.__name__)
        return ParseError(reason="not a JSON object")
    try:
        return ParseOk(model.model_validate(data))
    except ValidationError as e:
        logger.warning(
            "Generator output failed %s validation: %d error(s)",
            model.__name__, e.error_count(),
        )
        return ParseError(reason=f"invalid {model.__name__}: {e.error_count()} error(s)")
    except (ValueError, OverflowError) as e:
        logger.warning("Generator output for %s could not be converted: %s", model.__name__, e)
        return ParseError(reason=f"invalid {model.__name__}: {e}")
