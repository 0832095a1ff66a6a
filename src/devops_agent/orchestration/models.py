"""Deployment lifecycle models.

This module defines the data models exchanged between the orchestration
client and the deployment controller:
- DeploymentPhase: Observed rollout phase of a deployment
- Deployment: A named, namespaced workload with desired image and replicas
- Revision: Immutable historical record of a deployment's prior image
- RollbackPlan: Derived, per-request rollback decision
- DeployResult / ScaleResult / RollbackResult / DeploymentStatus: controller
  results returned to workflows and the HTTP surface
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


MANAGED_BY_LABEL = "managed-by"
MANAGED_BY_VALUE = "devops-agent"


def make_deployment_id(namespace: str, name: str) -> str:
    """Build the canonical deployment identifier ``namespace/name``."""
    return f"{namespace}/{name}"


def parse_deployment_id(deployment_id: str) -> Tuple[str, str]:
    """Split a ``namespace/name`` identifier.

    Args:
        deployment_id: Identifier in format "{namespace}/{name}".

    Returns:
        Tuple of (namespace, name).

    Raises:
        ValueError: If the identifier is not in the expected format.
    """
    parts = deployment_id.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(
            f"deployment_id must be in format namespace/name, got {deployment_id!r}"
        )
    return parts[0], parts[1]


class DeploymentPhase(str, Enum):
    """Observed status of a deployment.

    Attributes:
        PENDING: Not all desired replicas have been created or updated yet.
        AVAILABLE: All desired replicas are available.
        DEGRADED: The rollout stalled or fewer replicas are available than desired.
    """

    PENDING = "pending"
    AVAILABLE = "available"
    DEGRADED = "degraded"


class Deployment(BaseModel):
    """A workload as observed through the orchestration API."""

    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)
    image: Optional[str] = Field(
        default=None,
        description="Image of the first container in the pod template",
    )
    replicas: int = Field(default=0, ge=0)
    ready_replicas: int = Field(default=0, ge=0)
    available_replicas: int = Field(default=0, ge=0)
    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    phase: DeploymentPhase = DeploymentPhase.PENDING
    created_at: Optional[datetime] = None

    @property
    def deployment_id(self) -> str:
        return make_deployment_id(self.namespace, self.name)


class Revision(BaseModel):
    """Immutable revision record owned by a deployment.

    Revision numbers come from the ``deployment.kubernetes.io/revision``
    annotation. A missing or unparseable annotation is recorded as 0.
    """

    number: int = 0
    image: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"frozen": True}


class RollbackPlan(BaseModel):
    """Rollback decision computed for a single request; never persisted."""

    target_revision: int
    target_image: str
    previous_image: Optional[str] = Field(
        default=None,
        description="Image the deployment ran before the rollback patch",
    )


class DeployResult(BaseModel):
    """Result of a deploy operation."""

    deployment_id: str
    status: str = "deployed"
    replicas: int
    image: str
    namespace: str


class ScaleResult(BaseModel):
    """Result of a scale operation."""

    deployment_id: str
    replicas: int
    status: str = "scaling"


class RollbackResult(BaseModel):
    """Result of a rollback operation.

    ``previous_image`` is the image the deployment is rolled back to.
    """

    deployment_id: str
    previous_image: str
    target_revision: int
    replaced_image: Optional[str] = None
    status: str = "rolling_back"


class DeploymentStatus(BaseModel):
    """Status snapshot of a deployment."""

    deployment_id: str
    name: str
    namespace: str
    image: Optional[str] = None
    replicas: int
    ready_replicas: int
    available_replicas: int
    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    phase: DeploymentPhase

    @classmethod
    def from_deployment(cls, deployment: Deployment) -> "DeploymentStatus":
        return cls(
            deployment_id=deployment.deployment_id,
            name=deployment.name,
            namespace=deployment.namespace,
            image=deployment.image,
            replicas=deployment.replicas,
            ready_replicas=deployment.ready_replicas,
            available_replicas=deployment.available_replicas,
            conditions=deployment.conditions,
            phase=deployment.phase,
        )
