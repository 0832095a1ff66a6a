"""Intent routing for free-text requests."""

from src.devops_agent.router.agent import IntentRouter
from src.devops_agent.router.models import CLARIFICATION_THRESHOLD, IntentResult

__all__ = ["IntentRouter", "IntentResult", "CLARIFICATION_THRESHOLD"]
