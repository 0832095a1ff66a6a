"""Deployment lifecycle: orchestration client, controller, lease and retry."""

from src.devops_agent.orchestration.client import (
    KubernetesOrchestrationClient,
    OrchestrationClient,
)
from src.devops_agent.orchestration.controller import (
    DeploymentController,
    select_rollback_target,
)
from src.devops_agent.orchestration.lease import DeploymentLease
from src.devops_agent.orchestration.models import (
    Deployment,
    DeploymentPhase,
    DeploymentStatus,
    DeployResult,
    Revision,
    RollbackPlan,
    RollbackResult,
    ScaleResult,
    make_deployment_id,
    parse_deployment_id,
)
from src.devops_agent.orchestration.retry import RetryPolicy

__all__ = [
    "OrchestrationClient",
    "KubernetesOrchestrationClient",
    "DeploymentController",
    "select_rollback_target",
    "DeploymentLease",
    "RetryPolicy",
    "Deployment",
    "DeploymentPhase",
    "DeploymentStatus",
    "DeployResult",
    "Revision",
    "RollbackPlan",
    "RollbackResult",
    "ScaleResult",
    "make_deployment_id",
    "parse_deployment_id",
]
