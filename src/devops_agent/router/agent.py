"""LLM-based intent router.

Maps a free-text request to an IntentResult via the code-intelligence
collaborator. The router never raises for bad model behaviour: a failed
call or malformed output yields ``IntentResult.create_unknown()``.
"""

import logging
from typing import Optional

from src.devops_agent.collaborators import CodeIntelligenceClient
from src.devops_agent.intelligence.parsing import (
    RawText,
    normalize_intent,
    parse_analysis,
)
from src.devops_agent.intelligence.prompts import build_intent_prompt
from src.devops_agent.router.models import IntentResult


logger = logging.getLogger(__name__)


class IntentRouter:
    """Route free-text requests to intents.

    Attributes:
        llm: The code-intelligence collaborator.
        model: Optional model override passed to ``complete``.

    Example:
        >>> router = IntentRouter(llm)
        >>> result = await router.route("roll back checkout in prod")
        >>> result.task_kind
        'rollback'
    """

    def __init__(self, llm: CodeIntelligenceClient, model: Optional[str] = None):
        self.llm = llm
        self.model = model

    async def route(self, message: str, context: str = "devops") -> IntentResult:
        logger.info(
            "Routing request",
            extra={"message_length": len(message), "context": context},
        )

        try:
            text = await self.llm.complete(
                build_intent_prompt(message, context), self.model
            )
        except Exception as e:
            logger.error(
                "Intent analysis failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return IntentResult.create_unknown()

        analysis = parse_analysis(text)
        if isinstance(analysis, RawText):
            logger.warning(
                "Intent analysis returned unstructured output",
                extra={"error": analysis.error},
            )
            return IntentResult.create_unknown()

        result = IntentResult(**normalize_intent(analysis.data))
        logger.info(
            "Request routed",
            extra={
                "intent": result.intent,
                "confidence": result.confidence,
                "needs_clarification": result.needs_clarification,
            },
        )
        return result
