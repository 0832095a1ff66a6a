"""Request models for the HTTP surface.

Workflow routes accept the workflow payload models directly; the models
here cover requests that carry more than a payload.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from src.devops_agent.tasks.models import RollbackPayload


class RollbackRequest(RollbackPayload):
    """Rollback payload plus confirmation fields.

    A suspended rollback resumes only when ``confirmation_token`` is sent
    together with ``confirmed=true``. A token with ``confirmed=false`` leaves
    the rollback pending, and ``confirmed`` without a token never bypasses
    the gate.
    """

    confirmed: bool = False
    confirmation_token: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"confirmed", "confirmation_token"})


class ScaleRequest(BaseModel):
    replicas: int


class ConfirmRequest(BaseModel):
    confirmation_token: str = Field(..., min_length=1)


class IntentAnalysisRequest(BaseModel):
    user_message: str = Field(..., min_length=1)
    context: str = "devops"


class ChatRequest(BaseModel):
    """Free-text request.

    ``payload`` fields override entities extracted by the intent router
    when the request is dispatched to a workflow.
    """

    message: str = Field(..., min_length=1)
    context: str = "devops"
    payload: Dict[str, Any] = Field(default_factory=dict)
