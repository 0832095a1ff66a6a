"""Code-intelligence client backed by an OpenAI-compatible endpoint.

Uses LangChain's ChatOpenAI so any vLLM or OpenAI-compatible server can
serve completions. One chat client is kept per model name.
"""

import logging
from typing import Dict, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from src.devops_agent.errors import UpstreamError
from src.devops_agent.intelligence.parsing import AnalysisResult, parse_analysis
from src.devops_agent.intelligence.prompts import SYSTEM_PROMPT


logger = logging.getLogger(__name__)


class LLMClient:
    """CodeIntelligenceClient over LangChain ChatOpenAI.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Default model used when ``complete`` gets no model.
        timeout: Request timeout in seconds.
        temperature: Sampling temperature.

    Example:
        >>> llm = LLMClient(llm_url="http://localhost:8000/v1", model_name="gpt-4o-mini")
        >>> text = await llm.complete("Summarize this diff: ...")
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        api_key: str = "not-needed",
        timeout: float = 60.0,
        temperature: float = 0.1,
    ):
        self.llm_url = llm_url
        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self._llms: Dict[str, ChatOpenAI] = {}

    def _llm_for(self, model: str) -> ChatOpenAI:
        if model not in self._llms:
            self._llms[model] = ChatOpenAI(
                base_url=self.llm_url,
                model=model,
                temperature=self.temperature,
                timeout=self.timeout,
                api_key=self.api_key,
            )
        return self._llms[model]

    async def complete(self, prompt: str, model: Optional[str] = None) -> str:
        """Complete a prompt.

        Raises:
            UpstreamError: If the endpoint fails or returns non-text content.
        """
        model_name = model or self.model_name
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=prompt),
        ]

        try:
            response = await self._llm_for(model_name).ainvoke(messages)
        except Exception as e:
            logger.error(
                "LLM invocation failed",
                extra={
                    "model": model_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise UpstreamError(f"LLM invocation failed: {e}") from e

        if not isinstance(response.content, str):
            raise UpstreamError(
                f"Unexpected response type: {type(response.content).__name__}"
            )
        return response.content


async def analyze(
    llm, prompt: str, model: Optional[str] = None
) -> AnalysisResult:
    """Complete ``prompt`` and parse the output into the tagged variant.

    Collaborator failures propagate; only malformed output becomes RawText.
    """
    return parse_analysis(await llm.complete(prompt, model))
