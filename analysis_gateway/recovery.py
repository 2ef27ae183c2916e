"""Structured-response recovery for provider replies.

Providers are asked for a JSON object but often wrap it in markdown fences,
leave trailing commas, forget to quote keys, or stop mid-object when they run
out of tokens. recover() walks a fixed ladder of increasingly aggressive
strategies and always returns a RecoveredDocument:

1. Parse the first fenced code block.
2. Parse the span from the first "{" to the last "}".
3. Run the repair pipeline (up to MAX_REPAIR_PASSES) and retry.
4. Cut back to the last closing bracket before the parse failure, close any
   open brackets, and retry once.
5. Build a schema-shaped placeholder from the fallback rule table.

Steps 1-2 yield provenance "clean", steps 3-4 "repaired", step 5 "fallback".
"""

import copy
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from analysis_gateway.models import Provenance, RecoveredDocument
from analysis_gateway.telemetry import logger

MAX_REPAIR_PASSES = 3
MAX_RECOVERY_CHARS = 2_000_000

_FENCE_RE = re.compile(r"```[ \t]*[A-Za-z]*[ \t]*\r?\n?(.*?)```", re.DOTALL)
_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"', re.DOTALL)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_C1_RE = re.compile(r"[\x7f-\x9f]")
_LINE_BREAK_RE = re.compile(r"[\t\n\r]")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*:)")

_SCALAR_EXTRA = frozenset("_$.+-")
_CLOSERS = {"{": "}", "[": "]"}


def _excerpt(text: str, pos: Optional[int] = None, width: int = 60) -> str:
    if pos is None:
        return text[: width * 2]
    start = max(0, pos - width)
    return text[start : pos + width]


def _try_parse(text: str) -> Tuple[Any, Optional[json.JSONDecodeError]]:
    """Parse text as JSON, returning (value, None) or (None, error)."""
    try:
        return json.loads(text), None
    except json.JSONDecodeError as exc:
        return None, exc
    except RecursionError:
        return None, json.JSONDecodeError("Nesting too deep", text, 0)


def _outside_strings(text: str, fix: Callable[[str], str]) -> str:
    """Apply fix to every segment of text that is not a string literal."""
    pieces: List[str] = []
    pos = 0
    for match in _STRING_RE.finditer(text):
        pieces.append(fix(text[pos : match.start()]))
        pieces.append(match.group(0))
        pos = match.end()
    pieces.append(fix(text[pos:]))
    return "".join(pieces)


# --- Repair pipeline --------------------------------------------------------


def strip_control_characters(text: str) -> str:
    """Drop control characters; tabs and line breaks become spaces.

    DEL and C1 characters are legal inside JSON strings and are only dropped
    outside them.
    """
    text = _CONTROL_RE.sub("", _LINE_BREAK_RE.sub(" ", text))
    return _outside_strings(text, lambda seg: _C1_RE.sub("", seg))


def remove_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing bracket."""
    return _outside_strings(text, lambda seg: _TRAILING_COMMA_RE.sub(r"\1", seg))


def insert_missing_commas(text: str) -> str:
    """Insert commas between adjacent values that lack a separator.

    Handles `"a" "b"`, `} {`, `] [`, `1 2` and `"x": 1 "y": 2`. String
    contents are left untouched.
    """
    out: List[str] = []
    in_string = False
    escape = False
    prev: Optional[str] = None  # "value" | "scalar" | "punct" | None
    gap = False
    last_sig = 0

    def needs_comma(starts_scalar: bool) -> bool:
        if prev == "value":
            return True
        return prev == "scalar" and (gap or not starts_scalar)

    for ch in text:
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                prev = "value"
                gap = False
                last_sig = len(out)
            continue

        if ch.isspace():
            out.append(ch)
            gap = True
            continue

        is_scalar = ch.isalnum() or ch in _SCALAR_EXTRA
        if ch == '"' or ch in "{[" or is_scalar:
            if needs_comma(is_scalar):
                out.insert(last_sig, ",")
            if ch == '"':
                in_string = True
                prev = None
            elif is_scalar:
                prev = "scalar"
            else:
                prev = "punct"
        elif ch in "}]":
            prev = "value"
        elif ch in ",:":
            prev = "punct"
        else:
            prev = None

        out.append(ch)
        gap = False
        last_sig = len(out)

    return "".join(out)


def quote_bare_keys(text: str) -> str:
    """Wrap unquoted object keys in double quotes."""
    return _outside_strings(text, lambda seg: _BARE_KEY_RE.sub(r'\1"\2"\3', seg))


REPAIR_PIPELINE: Sequence[Callable[[str], str]] = (
    strip_control_characters,
    remove_trailing_commas,
    insert_missing_commas,
    quote_bare_keys,
)


def apply_repairs(text: str) -> str:
    """Run one pass of the repair pipeline, in order."""
    for repair in REPAIR_PIPELINE:
        text = repair(text)
    return text


def truncate_to_balanced(text: str, failure_pos: int) -> Optional[str]:
    """Cut text after the last closing bracket before failure_pos.

    Brackets still open at the cut point are closed in reverse order.
    Returns None if there is no closing bracket to cut at.
    """
    stack: List[str] = []
    in_string = False
    escape = False
    last_close = -1
    open_at_close: List[str] = []

    for i, ch in enumerate(text[:failure_pos]):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]":
            if stack:
                stack.pop()
            last_close = i
            open_at_close = list(stack)

    if last_close == -1:
        return None
    closers = "".join(_CLOSERS[opener] for opener in reversed(open_at_close))
    return text[: last_close + 1] + closers


# --- Fallback rule table ----------------------------------------------------


@dataclass(frozen=True)
class FallbackRule:
    """Maps query keywords to a placeholder document shape."""

    name: str
    pattern: "re.Pattern[str]"
    shape: Dict[str, Any]


_REVIEW_NOTE = "Automated analysis unavailable; manual review recommended."

FALLBACK_RULES: List[FallbackRule] = [
    FallbackRule(
        name="plan_comparison",
        pattern=re.compile(r"\bcompar|\bplan [ab]\b", re.IGNORECASE),
        shape={
            "executiveSummary": _REVIEW_NOTE,
            "keyDifferences": [],
            "planAStrengths": [],
            "planAWeaknesses": [],
            "planBStrengths": [],
            "planBWeaknesses": [],
            "recommendation": {
                "suggestedPlan": "both_suitable",
                "reasoning": _REVIEW_NOTE,
                "confidenceScore": 0.5,
            },
            "riskComparison": {
                "planARiskScore": 0.5,
                "planBRiskScore": 0.5,
                "riskFactors": [],
            },
            "implementationConsiderations": [_REVIEW_NOTE],
        },
    ),
    FallbackRule(
        name="debt_strategy",
        pattern=re.compile(r"\bdebts?\b|\bemis?\b|\bloans?\b|liabilit", re.IGNORECASE),
        shape={
            "debtPrioritization": [],
            "emiOptimization": {"recommendations": []},
            "interestSavings": {"totalSavings": 0},
            "cashFlowImpact": {"summary": _REVIEW_NOTE},
            "riskWarnings": [_REVIEW_NOTE],
            "actionItems": [],
        },
    ),
    FallbackRule(
        name="goal_plan",
        pattern=re.compile(r"\bgoals?\b|\bsips?\b|retirement|education", re.IGNORECASE),
        shape={
            "individualGoalAnalysis": [],
            "multiGoalOptimization": {"summary": _REVIEW_NOTE},
            "assetAllocation": {},
            "implementationPlan": [],
            "riskAssessment": {"warnings": [_REVIEW_NOTE]},
        },
    ),
    FallbackRule(
        name="fund_review",
        pattern=re.compile(r"mutual funds?|\bnav\b|\bfunds?\b", re.IGNORECASE),
        shape={
            "funds": [],
            "recommendations": [],
            "summary": _REVIEW_NOTE,
        },
    ),
]

DEFAULT_FALLBACK_SHAPE: Dict[str, Any] = {
    "summary": _REVIEW_NOTE,
    "recommendations": [],
    "warnings": [_REVIEW_NOTE],
}


def build_fallback(query: str, raw_text: str = "") -> Tuple[str, Dict[str, Any]]:
    """Pick a placeholder shape for a query.

    Matches the query against the rule table in order; an empty query falls
    back to the raw reply text. Returns (rule name, fresh copy of the shape).
    """
    haystack = query or raw_text
    for rule in FALLBACK_RULES:
        if rule.pattern.search(haystack):
            return rule.name, copy.deepcopy(rule.shape)
    return "default", copy.deepcopy(DEFAULT_FALLBACK_SHAPE)


# --- Ladder -----------------------------------------------------------------


def _fenced_block(text: str) -> Optional[str]:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def _brace_depth(text: str) -> int:
    depth = 0
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
    return depth


def _repair_candidate(text: str) -> Optional[str]:
    """Choose the text the repair steps should work on."""
    fenced = _fenced_block(text)
    source = fenced if fenced is not None and "{" in fenced else text
    start = source.find("{")
    if start == -1:
        return None
    end = source.rfind("}")
    if end > start:
        span = source[start : end + 1]
        # A span that still has open brackets was cut short; keep the tail
        # so truncation can find later closing brackets.
        if _brace_depth(span) <= 0:
            return span
    return source[start:]


def recover(raw_text: Optional[str], query: str = "") -> RecoveredDocument:
    """Recover a structured object from a provider reply. Never raises.

    Args:
        raw_text: The provider's reply text.
        query: The user message that produced the reply; used to choose a
            fallback shape when nothing can be recovered.

    Returns:
        A RecoveredDocument tagged with its provenance and the ladder steps
        attempted.
    """
    text = raw_text if isinstance(raw_text, str) else ""
    attempts: List[str] = []

    # Step 1: fenced code block
    fenced = _fenced_block(text)
    if fenced is not None:
        attempts.append("fenced_block")
        value, err = _try_parse(fenced)
        if err is None and isinstance(value, (dict, list)):
            return RecoveredDocument(
                value=value, provenance=Provenance.CLEAN, attempts=attempts
            )
        logger.debug(
            "Fenced block did not parse: %s | %s",
            err.msg if err else "not an object",
            _excerpt(fenced, err.pos if err else None),
        )

    # Step 2: outermost brace span
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        attempts.append("brace_span")
        span = text[start : end + 1]
        value, err = _try_parse(span)
        if err is None and isinstance(value, dict):
            return RecoveredDocument(
                value=value, provenance=Provenance.CLEAN, attempts=attempts
            )
        logger.debug(
            "Brace span did not parse: %s | %s",
            err.msg if err else "not an object",
            _excerpt(span, err.pos if err else None),
        )

    candidate = _repair_candidate(text)
    if candidate is not None and len(candidate) <= MAX_RECOVERY_CHARS:
        # Step 3: repair pipeline
        attempts.append("repair")
        current = candidate
        last_error: Optional[json.JSONDecodeError] = None
        for pass_number in range(1, MAX_REPAIR_PASSES + 1):
            repaired = apply_repairs(current)
            value, last_error = _try_parse(repaired)
            if last_error is None and isinstance(value, dict):
                return RecoveredDocument(
                    value=value, provenance=Provenance.REPAIRED, attempts=attempts
                )
            logger.debug(
                "Repair pass %d did not parse: %s | %s",
                pass_number,
                last_error.msg if last_error else "not an object",
                _excerpt(repaired, last_error.pos if last_error else None),
            )
            if repaired == current:
                break
            current = repaired

        # Step 4: truncate to the last balanced bracket, retry once
        if last_error is not None:
            attempts.append("truncate")
            truncated = truncate_to_balanced(current, last_error.pos)
            if truncated is not None:
                value, err = _try_parse(truncated)
                if err is None and isinstance(value, dict):
                    return RecoveredDocument(
                        value=value, provenance=Provenance.REPAIRED, attempts=attempts
                    )
                logger.debug(
                    "Truncated candidate did not parse: %s | %s",
                    err.msg if err else "not an object",
                    _excerpt(truncated, err.pos if err else None),
                )
    elif candidate is not None:
        logger.warning(
            "Reply of %d chars exceeds recovery limit; skipping repairs",
            len(candidate),
        )

    # Step 5: schema-shaped placeholder
    attempts.append("fallback")
    rule_name, shape = build_fallback(query, text)
    logger.warning(
        "No structured object recovered; using %s fallback | %s",
        rule_name,
        _excerpt(text),
    )
    return RecoveredDocument(
        value=shape, provenance=Provenance.FALLBACK, attempts=attempts
    )
