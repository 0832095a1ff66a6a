"""Parsing of language-model output.

Model output is turned into a tagged variant instead of raising:
- StructuredAnalysis: the output was a JSON object
- RawText: anything else, kept verbatim with the parse error

Callers branch on the variant explicitly. The ``normalize_*`` helpers
coerce a structured payload into the shape each workflow reports, clamping
numbers and dropping malformed list entries.
"""

import json
import logging
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


class StructuredAnalysis(BaseModel):
    """Model output that parsed as a JSON object."""

    kind: Literal["structured"] = "structured"
    data: Dict[str, Any] = Field(default_factory=dict)


class RawText(BaseModel):
    """Model output that could not be parsed as a JSON object."""

    kind: Literal["raw"] = "raw"
    text: str
    error: str


AnalysisResult = Union[StructuredAnalysis, RawText]


def strip_code_fences(response_text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    text = response_text.strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    return text.strip()


def parse_analysis(response_text: str) -> AnalysisResult:
    """Parse model output into the tagged variant.

    Example:
        >>> parse_analysis('```json\\n{"score": 90}\\n```')
        StructuredAnalysis(kind='structured', data={'score': 90})
        >>> parse_analysis("Looks good to me").kind
        'raw'
    """
    try:
        data = json.loads(strip_code_fences(response_text))
    except json.JSONDecodeError as e:
        logger.warning(
            "Failed to parse model output as JSON",
            extra={"response_preview": response_text[:200], "error": str(e)},
        )
        return RawText(text=response_text, error=f"Invalid JSON: {e}")

    if not isinstance(data, dict):
        return RawText(
            text=response_text,
            error=f"Expected a JSON object, got {type(data).__name__}",
        )
    return StructuredAnalysis(data=data)


def _clamp_number(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _clamp_int(value: Any, low: int, high: int, default: int) -> int:
    return int(_clamp_number(value, low, high, default))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


REVIEW_STATUSES = {"approved", "needs_changes", "rejected"}

RISK_LEVELS = ("low", "medium", "high", "critical")


def normalize_intent(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce an intent payload to ``{intent, entities, confidence, suggested_actions}``."""
    intent = str(data.get("intent") or "unknown").strip().lower() or "unknown"
    entities = data.get("entities")
    return {
        "intent": intent,
        "entities": entities if isinstance(entities, dict) else {},
        "confidence": _clamp_number(data.get("confidence"), 0.0, 1.0, 0.0),
        "suggested_actions": _string_list(data.get("suggested_actions")),
    }


def normalize_review(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a code-review payload.

    Unknown statuses become ``needs_changes``; the score is clamped to 0-100.
    """
    status = str(data.get("status", "")).lower()
    if status not in REVIEW_STATUSES:
        status = "needs_changes"

    issues = []
    for issue in _dict_list(data.get("issues")):
        issues.append(
            {
                "type": str(issue.get("type", "logic")),
                "severity": str(issue.get("severity", "low")),
                "line": issue.get("line") if isinstance(issue.get("line"), int) else None,
                "message": str(issue.get("message", "")),
                "suggestion": str(issue.get("suggestion", "")),
            }
        )

    return {
        "status": status,
        "score": _clamp_int(data.get("score"), 0, 100, 0),
        "issues": issues,
        "summary": str(data.get("summary", "")),
        "recommendations": _string_list(data.get("recommendations")),
    }


def normalize_test_generation(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a test-generation payload.

    ``tests_generated`` never goes negative; files without a name are dropped.
    """
    test_files = [
        {"filename": str(f["filename"]), "content": str(f.get("content", ""))}
        for f in _dict_list(data.get("test_files"))
        if f.get("filename")
    ]
    return {
        "tests_generated": _clamp_int(data.get("tests_generated"), 0, 10_000, 0),
        "test_files": test_files,
        "test_framework": str(data.get("test_framework") or "unknown"),
    }


def normalize_security(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a security-review payload."""
    risk_level = str(data.get("risk_level", "")).lower()
    if risk_level not in RISK_LEVELS:
        risk_level = "medium"
    vulnerabilities = _dict_list(data.get("vulnerabilities"))
    return {
        "risk_level": risk_level,
        "vulnerabilities": vulnerabilities,
        "total_vulnerabilities": len(vulnerabilities),
        "summary": str(data.get("summary", "")),
    }


def normalize_triage(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce an incident-triage payload."""
    return {
        "root_cause": str(data.get("root_cause") or "undetermined"),
        "impact": str(data.get("impact", "")),
        "remediation_steps": _string_list(data.get("remediation_steps")),
    }
