"""
Response Parser & Repairer
Turns raw model text into an AnalysisPayload through staged recovery:

    1. strip envelope   (code fences, prose around the object)
    2. strict parse     (json.loads)
    3. repair + parse   (quote bare keys, drop trailing commas)
    4. field salvage    (bracket-aware extraction of each top-level field)

Each stage either yields a dict or lets the next stage run. Every outcome is
validated for the required fields; salvage output is always degraded.
Parsing never raises: the worst case is an empty, degraded payload.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.schemas.analysis import (
    AnalysisPayload,
    FinancialTerms,
    Level,
    Opportunity,
    Risk,
    Tier,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("summary", "risks", "opportunities")

UNKNOWN_RISK = "Unknown risk"
UNKNOWN_OPPORTUNITY = "Unknown opportunity"
NO_EXPLANATION = "No explanation provided"

# A JSON string literal; an unterminated literal runs to the end of the text
_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"?', re.DOTALL)
_TERMINATED_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_COLON_RE = re.compile(r"\s*:\s*")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_FENCE_OPEN_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```\s*$")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_SIMPLE_ESCAPES = {'"': '"', "\\": "\\", "/": "/", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t"}


class ParseStage(str, Enum):
    """Stage that produced the payload"""
    STRICT = "strict"
    REPAIRED = "repaired"
    SALVAGED = "salvaged"


@dataclass
class ParseResult:
    """Outcome of parsing one model response"""
    payload: AnalysisPayload
    stage: ParseStage
    degraded: bool
    missing_fields: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Lexical helpers
# ---------------------------------------------------------------------------

def _decode_string(literal: str) -> Optional[str]:
    """
    Decode a JSON string literal (including its quotes).

    Returns None for unterminated literals. Malformed escapes are kept
    verbatim instead of raising.
    """
    if not _TERMINATED_STRING_RE.fullmatch(literal):
        return None
    try:
        return json.loads(literal, strict=False)
    except ValueError:
        return _lenient_unescape(literal[1:-1])


def _lenient_unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\" or i + 1 >= len(body):
            out.append(ch)
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[nxt])
            i += 2
        elif nxt == "u" and re.fullmatch(r"[0-9a-fA-F]{4}", body[i + 2:i + 6] or ""):
            out.append(chr(int(body[i + 2:i + 6], 16)))
            i += 6
        else:
            # malformed escape, keep as written
            out.append(ch)
            i += 1
    return "".join(out)


def _find_closing(text: str, start: int) -> Optional[int]:
    """
    Index of the bracket closing the one at `start`, skipping string literals.

    Returns None when the text ends first (truncated output).
    """
    depth = 0
    pos = start
    while pos < len(text):
        ch = text[pos]
        if ch == '"':
            pos = _STRING_RE.match(text, pos).end()
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return pos
        pos += 1
    return None


def _map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply `fn` to every segment of `text` that is not a string literal."""
    parts = []
    pos = 0
    for match in _STRING_RE.finditer(text):
        parts.append(fn(text[pos:match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(fn(text[pos:]))
    return "".join(parts)


def _top_level_fields(text: str) -> Dict[str, int]:
    """
    Map each key of the object starting at text[0] to the index where its
    value begins. Nested keys are ignored; the first occurrence wins.
    """
    fields: Dict[str, int] = {}
    depth = 0
    pos = 0
    while pos < len(text):
        ch = text[pos]
        if ch == '"':
            end = _STRING_RE.match(text, pos).end()
            if depth == 1:
                colon = _COLON_RE.match(text, end)
                if colon:
                    key = _decode_string(text[pos:end])
                    if key is not None:
                        fields.setdefault(key, colon.end())
                    pos = colon.end()
                    continue
            pos = end
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth <= 0:
                break
        pos += 1
    return fields


def _split_objects(array_text: str) -> List[str]:
    """
    Split the inside of an array into its object items by bracket depth.

    The final item may lack a separator or be cut off; a cut-off item is
    returned up to the end of the text.
    """
    items = []
    pos = 1 if array_text.startswith("[") else 0
    while pos < len(array_text):
        ch = array_text[pos]
        if ch == '"':
            pos = _STRING_RE.match(array_text, pos).end()
            continue
        if ch == "{":
            end = _find_closing(array_text, pos)
            if end is None:
                items.append(array_text[pos:])
                break
            items.append(array_text[pos:end + 1])
            pos = end + 1
            continue
        if ch == "]":
            break
        pos += 1
    return items


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def strip_envelope(raw: str) -> str:
    """
    Stage 1: remove code fences and any prose around the JSON object.

    Keeps everything from the first '{' up to the brace that balances it; when
    the object is truncated, keeps everything up to the end of the text.
    """
    text = (raw or "").strip()
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    text = _FENCE_CLOSE_RE.sub("", text, count=1)

    start = text.find("{")
    if start == -1:
        return ""
    end = _find_closing(text, start)
    if end is None:
        return _FENCE_CLOSE_RE.sub("", text[start:]).rstrip()
    return text[start:end + 1]


def strict_parse(text: str) -> Optional[Dict[str, Any]]:
    """Stage 2: parse as JSON; anything but an object is a miss."""
    if not text:
        return None
    try:
        parsed = json.loads(text, strict=False)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def repair_json(text: str) -> str:
    """
    Stage 3 repairs: quote bare identifier keys and drop trailing commas.

    Applied only outside string literals, so quoted values are never touched,
    and idempotent: repairing repaired text returns it unchanged.
    """
    def _fix(segment: str) -> str:
        segment = _BARE_KEY_RE.sub(r'\1"\2"\3', segment)
        return _TRAILING_COMMA_RE.sub(r"\1", segment)

    return _map_outside_strings(text, _fix)


def salvage_fields(text: str) -> Tuple[Dict[str, Any], List[str]]:
    """
    Stage 4: extract each top-level field independently.

    Args:
        text: Enveloped-stripped (and repaired) model text, possibly truncated

    Returns:
        (data, missing) where data holds every field that could be located and
        missing lists the required fields that could not
    """
    data: Dict[str, Any] = {}
    if not text.startswith("{"):
        return data, list(REQUIRED_FIELDS)

    fields = _top_level_fields(text)
    for key, value_start in fields.items():
        value = _salvage_value(text, value_start)
        if value is not None:
            data[key] = value

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    return data, missing


def _salvage_value(text: str, start: int) -> Any:
    if start >= len(text):
        return None
    ch = text[start]

    if ch == '"':
        literal = _STRING_RE.match(text, start).group(0)
        return _decode_string(literal)

    if ch == "[":
        end = _find_closing(text, start)
        span = text[start:] if end is None else text[start:end + 1]
        parsed = strict_parse('{"v": %s}' % span) if end is not None else None
        if parsed is not None:
            return parsed["v"]
        objects = _split_objects(span)
        if objects:
            return [item for item in (_salvage_object(obj) for obj in objects) if item]
        return _salvage_string_list(span)

    if ch == "{":
        end = _find_closing(text, start)
        if end is None:
            return _salvage_object(text[start:]) or None
        return _salvage_object(text[start:end + 1])

    number = _NUMBER_RE.match(text, start)
    # a number running into the end of the text may have been cut short
    if number and number.end() < len(text):
        return float(number.group(0))
    return None


def _salvage_object(obj_text: str) -> Dict[str, Any]:
    parsed = strict_parse(obj_text)
    if parsed is not None:
        return parsed
    result = {}
    for key, value_start in _top_level_fields(obj_text).items():
        value = _salvage_value(obj_text, value_start)
        if value is not None:
            result[key] = value
    return result


def _salvage_string_list(span: str) -> List[str]:
    values = []
    for match in _STRING_RE.finditer(span):
        value = _decode_string(match.group(0))
        if value is not None:
            values.append(value)
    return values


# ---------------------------------------------------------------------------
# Normalisation into the typed payload
# ---------------------------------------------------------------------------

def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _clean(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "; ".join(_clean(v) for v in value if v not in (None, ""))
    if isinstance(value, dict):
        return "; ".join(f"{k}: {_clean(v)}" for k, v in value.items() if v not in (None, ""))
    # lone surrogates from \ud800-style escapes cannot be stored as UTF-8
    return str(value).encode("utf-8", "replace").decode("utf-8").strip()


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [text for text in (_clean(item) for item in value) if text]


def _level(value: Any) -> Optional[Level]:
    try:
        return Level(str(value).strip().lower())
    except ValueError:
        return None


def _score(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        value = match.group(0) if match else None
    try:
        score = round(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(100, score))


def _items(value: Any, kind: str, tier: Tier) -> List[Any]:
    if not isinstance(value, list):
        return []
    premium = tier == Tier.PREMIUM
    result = []
    for item in value:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        description = _clean(_pick(item, kind, "description", "title", "name"))
        explanation = _clean(_pick(item, "explanation", "details", "reason"))
        if kind == "risk":
            result.append(Risk(
                description=description or UNKNOWN_RISK,
                explanation=explanation or NO_EXPLANATION,
                severity=_level(item.get("severity")) if premium else None,
            ))
        else:
            result.append(Opportunity(
                description=description or UNKNOWN_OPPORTUNITY,
                explanation=explanation or NO_EXPLANATION,
                impact=_level(item.get("impact")) if premium else None,
            ))
    return result


def _financial_terms(value: Any) -> FinancialTerms:
    if value is None:
        return FinancialTerms()
    if not isinstance(value, dict):
        return FinancialTerms(description=_clean(value))
    description = _clean(value.get("description"))
    details = _string_list(value.get("details"))
    for key, item in value.items():
        if key in ("description", "details"):
            continue
        text = _clean(item)
        if text:
            details.append(f"{key}: {text}")
    return FinancialTerms(description=description, details=details)


def build_payload(data: Dict[str, Any], tier: Tier) -> AnalysisPayload:
    """
    Coerce a loosely shaped dict into an AnalysisPayload for a tier.

    Undeclared keys are ignored. Free-tier payloads carry no severity/impact
    and keep every premium-only field at its empty baseline.
    """
    tier = Tier(tier)
    payload = AnalysisPayload(
        risks=_items(data.get("risks"), "risk", tier),
        opportunities=_items(data.get("opportunities"), "opportunity", tier),
        summary=_clean(data.get("summary")),
        overall_score=_score(_pick(data, "overallScore", "overall_score", "score")),
    )
    if tier == Tier.PREMIUM:
        payload.recommendations = _string_list(data.get("recommendations"))
        payload.key_clauses = _string_list(_pick(data, "keyClauses", "key_clauses"))
        payload.legal_compliance = _clean(_pick(data, "legalCompliance", "legal_compliance"))
        payload.negotiation_points = _string_list(_pick(data, "negotiationPoints", "negotiation_points"))
        payload.contract_duration = _clean(_pick(data, "contractDuration", "contract_duration"))
        payload.termination_conditions = _clean(_pick(data, "terminationConditions", "termination_conditions"))
        payload.financial_terms = _financial_terms(
            _pick(data, "financialTerms", "financial_terms", "compensationStructure")
        )
        payload.performance_metrics = _string_list(_pick(data, "performanceMetrics", "performance_metrics"))
        payload.specific_clauses = _clean(
            _pick(data, "specificClauses", "specific_clauses", "intellectualPropertyClauses")
        )
    return payload


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def _finish(data: Dict[str, Any], tier: Tier, stage: ParseStage, missing: List[str]) -> ParseResult:
    degraded = stage == ParseStage.SALVAGED or bool(missing)
    return ParseResult(
        payload=build_payload(data, tier),
        stage=stage,
        degraded=degraded,
        missing_fields=missing,
    )


def parse_analysis_response(raw: str, tier: Tier) -> ParseResult:
    """
    Parse raw model text into an analysis payload.

    Args:
        raw: Text returned by the model
        tier: Tier whose schema the payload must follow

    Returns:
        ParseResult; never raises
    """
    try:
        text = strip_envelope(raw)

        data = strict_parse(text)
        if data is not None:
            missing = [name for name in REQUIRED_FIELDS if name not in data]
            return _finish(data, tier, ParseStage.STRICT, missing)

        repaired = repair_json(text)
        data = strict_parse(repaired)
        if data is not None:
            logger.info("Model response recovered by syntactic repair")
            missing = [name for name in REQUIRED_FIELDS if name not in data]
            return _finish(data, tier, ParseStage.REPAIRED, missing)

        data, missing = salvage_fields(repaired)
        logger.warning(
            f"Model response salvaged field by field "
            f"(found={sorted(data)}, missing={missing}, length={len(raw or '')})"
        )
        return _finish(data, tier, ParseStage.SALVAGED, missing)
    except Exception:
        logger.exception("Unexpected error while parsing model response; returning empty analysis")
        return ParseResult(
            payload=AnalysisPayload(),
            stage=ParseStage.SALVAGED,
            degraded=True,
            missing_fields=list(REQUIRED_FIELDS),
        )
