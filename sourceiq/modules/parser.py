from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from ..models.results import OVERALL_DIMENSION, ModuleRecord, OverallAssessment, SecurityIssue, SecurityRecord

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```(?:json|JSON)?")
TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

MODULE_FIELDS = frozenset(ModuleRecord.model_fields) | {"vulnerabilities"}
OVERALL_FIELDS = frozenset(OverallAssessment.model_fields)


class ParseStage(str, Enum):
    direct = "direct"
    boundary = "boundary"
    recovered = "recovered"
    fallback = "fallback"


@dataclass
class ParsedResponse:
    record: ModuleRecord
    stage: ParseStage

    @property
    def usable(self) -> bool:
        return self.stage != ParseStage.fallback


def clean_text(raw: str) -> str:
    text = FENCE_RE.sub("", raw or "").strip()
    return TRAILING_COMMA_RE.sub(r"\1", text)


def _loads_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text, strict=False)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _boundary_slice(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _brace_recover(text: str) -> Optional[dict]:
    """Return the first balanced top-level object in ``text`` that parses.

    Tracks string and escape state so braces inside string values do not
    move the depth counter. Text between candidates, stray closing braces
    included, is skipped.
    """
    buf: list[str] = []
    depth = 0
    in_string = False
    escaped = False
    for ch in text:
        if depth == 0:
            if ch == "{":
                buf = [ch]
                depth = 1
            continue
        buf.append(ch)
        if escaped:
            escaped = False
            continue
        if in_string:
            if ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                parsed = _loads_object("".join(buf))
                if parsed is not None:
                    return parsed
    return None


def extract_json_object(raw: str) -> tuple[Optional[dict], ParseStage]:
    text = clean_text(raw)

    parsed = _loads_object(text)
    if parsed is not None:
        return parsed, ParseStage.direct

    sliced = _boundary_slice(text)
    if sliced is not None:
        parsed = _loads_object(sliced)
        if parsed is not None:
            return parsed, ParseStage.boundary

    parsed = _brace_recover(text)
    if parsed is not None:
        return parsed, ParseStage.recovered

    return None, ParseStage.fallback


def _unwrap(payload: dict, key: Optional[str], fields: frozenset) -> Optional[dict]:
    wrapped = payload.get(key) if key else None
    if isinstance(wrapped, dict) and fields & wrapped.keys():
        return wrapped
    if fields & payload.keys():
        return payload
    nested = [v for v in payload.values() if isinstance(v, dict) and fields & v.keys()]
    if len(nested) == 1:
        return nested[0]
    return None


def _record_class(dimension: Optional[str]) -> type[ModuleRecord]:
    return SecurityRecord if dimension == "security" else ModuleRecord


def default_record(dimension: Optional[str] = None) -> ModuleRecord:
    """Placeholder record used when a dimension could not be analyzed."""
    name = dimension or "Module"
    data: dict[str, Any] = {
        "score": 50,
        "strengths": [f"{name} analysis was incomplete"],
        "weaknesses": ["Analysis interrupted due to technical issues"],
        "hidden_risks": ["Unable to complete full analysis"],
        "real_world_impact": f"{name} analysis needs to be retried for complete assessment.",
        "failure_scenario": "Technical analysis failure - please retry the analysis.",
        "remediation_steps": ["Retry the analysis", "Check API response format", "Verify repository access"],
    }
    if dimension == "security":
        data["vulnerabilities"] = [default_vulnerability()]
    return _record_class(dimension).model_validate(data)


def default_vulnerability() -> SecurityIssue:
    return SecurityIssue(
        issue="Security analysis incomplete",
        severity=5,
        explanation="Security analysis was interrupted",
        mitigation="Retry security analysis",
    )


def parse_response(raw_text: str, dimension: Optional[str] = None) -> ParsedResponse:
    payload, stage = extract_json_object(raw_text)
    if payload is not None:
        body = _unwrap(payload, dimension, MODULE_FIELDS)
        if body is not None:
            data = {k: v for k, v in body.items() if v is not None}
            try:
                return ParsedResponse(record=_record_class(dimension).model_validate(data), stage=stage)
            except ValidationError as exc:
                logger.warning("model output failed record validation", extra={"dimension": dimension, "error": str(exc)})
            except Exception:
                logger.exception("unexpected error validating model output", extra={"dimension": dimension})

    logger.warning(
        "using default record after parse failure",
        extra={"dimension": dimension, "preview": (raw_text or "")[:200]},
    )
    return ParsedResponse(record=default_record(dimension), stage=ParseStage.fallback)


def parse(raw_text: str, dimension: Optional[str] = None) -> ModuleRecord:
    return parse_response(raw_text, dimension).record


def parse_overall(raw_text: str) -> Optional[OverallAssessment]:
    payload, _ = extract_json_object(raw_text)
    if payload is None:
        return None
    body = _unwrap(payload, OVERALL_DIMENSION, OVERALL_FIELDS)
    if body is None:
        return None
    try:
        return OverallAssessment.model_validate({k: v for k, v in body.items() if v is not None})
    except ValidationError:
        return None
    except Exception:
        logger.exception("unexpected error validating holistic assessment")
        return None
