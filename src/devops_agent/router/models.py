"""Intent routing models.

IntentResult carries the router's decision for a free-text request. The
clarification policy lives here: results below CLARIFICATION_THRESHOLD
must not be dispatched to a workflow.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


CLARIFICATION_THRESHOLD = 0.3

UNKNOWN_INTENT = "unknown"

# Intent names as produced by the model, mapped to task kinds
INTENT_TO_TASK_KIND = {
    "deploy": "deploy",
    "rollback": "rollback",
    "monitor": "monitor",
    "review": "code_review",
    "code_review": "code_review",
    "test": "test_writer",
    "test_writer": "test_writer",
    "security": "security",
    "cost": "cost",
    "incident": "incident",
    "incident_response": "incident",
}


class IntentResult(BaseModel):
    """Result of routing a free-text request.

    Attributes:
        intent: Primary intent, lower-cased ("unknown" when undetermined).
        entities: Extracted entities (repository, environment, ...).
        confidence: Model confidence between 0.0 and 1.0.
        suggested_actions: Follow-up actions to offer the user.
    """

    intent: str = Field(..., min_length=1)
    entities: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    suggested_actions: List[str] = Field(default_factory=list)

    @property
    def needs_clarification(self) -> bool:
        """Whether the caller should ask for clarification instead of dispatching."""
        return self.confidence < CLARIFICATION_THRESHOLD

    @property
    def task_kind(self) -> Optional[str]:
        """Task kind for the intent, or None when no workflow applies."""
        return INTENT_TO_TASK_KIND.get(self.intent)

    @classmethod
    def create_unknown(cls) -> "IntentResult":
        """Result used when the model output is missing or malformed."""
        return cls(
            intent=UNKNOWN_INTENT,
            entities={},
            confidence=0.1,
            suggested_actions=["Please rephrase your request"],
        )
