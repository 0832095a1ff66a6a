"""Code-intelligence client, prompt builders and output parsing."""

from src.devops_agent.intelligence.client import LLMClient, analyze
from src.devops_agent.intelligence.parsing import (
    AnalysisResult,
    RawText,
    StructuredAnalysis,
    parse_analysis,
)

__all__ = [
    "LLMClient",
    "analyze",
    "AnalysisResult",
    "RawText",
    "StructuredAnalysis",
    "parse_analysis",
]
