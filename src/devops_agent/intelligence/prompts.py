"""Prompt builders for the code-intelligence collaborator.

Every prompt asks for a single JSON object; parsing tolerates anything else.
"""

import json
from typing import Any, Dict


SYSTEM_PROMPT = (
    "You are a DevOps assistant. When asked for JSON you MUST respond with "
    "a single valid JSON object and no text before or after it."
)

# Diffs and files are cut to keep requests inside the model context
MAX_CONTENT_CHARS = 60_000


def _truncate(content: str) -> str:
    if len(content) <= MAX_CONTENT_CHARS:
        return content
    return content[:MAX_CONTENT_CHARS] + "\n... (truncated)"


def build_intent_prompt(user_message: str, context: str = "devops") -> str:
    return f"""Analyze the following user message in the context of a DevOps platform and extract:
1. Primary intent (deploy, monitor, rollback, test, review, security, cost, incident, etc.)
2. Relevant entities (repository, environment, service, version, deployment_id, pr_number, etc.)
3. Confidence level (0-1)
4. Suggested follow-up actions

User message: {json.dumps(user_message)}
Context: {context}

Respond in JSON format:
{{
  "intent": "primary_intent",
  "entities": {{"key": "value"}},
  "confidence": 0.95,
  "suggested_actions": ["action1", "action2"]
}}"""


def build_review_prompt(diff: str, repository: str) -> str:
    return f"""Analyze this code diff for a pull request in repository "{repository}":

{_truncate(diff)}

Review code quality, security, performance, maintainability and test coverage.

Respond in JSON format with:
{{
  "status": "approved|needs_changes|rejected",
  "score": 0-100,
  "issues": [
    {{
      "type": "security|performance|style|logic",
      "severity": "high|medium|low",
      "line": 42,
      "message": "Description of the issue",
      "suggestion": "How to fix it"
    }}
  ],
  "summary": "Overall assessment",
  "recommendations": ["recommendation"]
}}"""


def build_test_prompt(file_path: str, content: str, language: str) -> str:
    return f"""Generate unit tests for the {language} file "{file_path}":

{_truncate(content)}

Cover happy paths, edge cases, error conditions and boundary conditions.

Respond in JSON format:
{{
  "tests_generated": 5,
  "test_files": [{{"filename": "test_file", "content": "test source"}}],
  "test_framework": "pytest|jest|go test|etc"
}}"""


def build_security_prompt(diff: str, repository: str) -> str:
    return f"""Review this pull request diff from "{repository}" for security vulnerabilities:

{_truncate(diff)}

Respond in JSON format:
{{
  "risk_level": "low|medium|high|critical",
  "vulnerabilities": [
    {{"type": "injection|secrets|authz|crypto|dependency|other", "severity": "high|medium|low", "location": "file:line", "description": "..."}}
  ],
  "summary": "Overall assessment"
}}"""


def build_cost_prompt(status: Dict[str, Any]) -> str:
    return f"""Review the resource usage of this Kubernetes deployment and suggest cost optimizations:

{json.dumps(status, indent=2, default=str)}

Respond in JSON format:
{{
  "recommendations": ["recommendation"],
  "summary": "Overall assessment"
}}"""


def build_triage_prompt(
    incident_type: str,
    severity: str,
    snapshot: Dict[str, Any],
) -> str:
    return f"""Triage a {severity} severity "{incident_type}" incident using this deployment snapshot:

{json.dumps(snapshot, indent=2, default=str)}

Respond in JSON format:
{{
  "root_cause": "most likely cause",
  "impact": "user-facing impact",
  "remediation_steps": ["step"]
}}"""


LANGUAGE_BY_EXTENSION = {
    ".py": "Python",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".go": "Go",
    ".java": "Java",
    ".rb": "Ruby",
    ".rs": "Rust",
}


def detect_language(file_path: str) -> str:
    """Guess the language of a file from its extension."""
    for extension, language in LANGUAGE_BY_EXTENSION.items():
        if file_path.endswith(extension):
            return language
    return "unknown"
