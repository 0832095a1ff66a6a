"""HTTP surface: request models, routes and the error envelope."""

from src.devops_agent.api.errors import register_error_handlers, status_code_for
from src.devops_agent.api.routes import AgentRuntime, create_agent_router, get_runtime

__all__ = [
    "AgentRuntime",
    "create_agent_router",
    "get_runtime",
    "register_error_handlers",
    "status_code_for",
]
