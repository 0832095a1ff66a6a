"""Kubernetes adapter for the deployment lifecycle controller.

This module provides a thin, blocking wrapper around the Kubernetes
``AppsV1Api`` for:
- Reading, creating and updating deployments
- Patching a deployment's image or replica count
- Listing the ReplicaSets (revisions) owned by a deployment
- Listing the deployments managed by this agent

Every call carries a request timeout. Kubernetes API and transport errors
are translated into the agent error taxonomy so callers can decide what
to retry:
- 404 → NotFoundError (permanent)
- 409 → ConflictError (retried by the controller)
- 400/422 → ValidationError (permanent)
- 429/5xx and connection failures → UpstreamError (transient)
- read/connect timeouts → OperationTimeoutError (transient)
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from src.devops_agent.errors import (
    ConflictError,
    NotFoundError,
    OperationTimeoutError,
    UpstreamError,
    ValidationError,
)
from src.devops_agent.orchestration.models import (
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    Deployment,
    DeploymentPhase,
    Revision,
)


logger = logging.getLogger(__name__)


REVISION_ANNOTATION = "deployment.kubernetes.io/revision"

CONTAINER_PORT = 8080

DEFAULT_RESOURCES = {
    "requests": {"memory": "128Mi", "cpu": "100m"},
    "limits": {"memory": "512Mi", "cpu": "500m"},
}


@runtime_checkable
class OrchestrationClient(Protocol):
    """Protocol for the blocking orchestration API used by the controller.

    All methods may raise UpstreamError (transient) or NotFoundError
    (permanent). Implementations must not retry; retry policy belongs
    to the caller.
    """

    def get(self, name: str, namespace: str) -> Deployment:
        ...

    def create_or_update(
        self, name: str, namespace: str, image: str, replicas: int
    ) -> Deployment:
        ...

    def patch_image(self, name: str, namespace: str, image: str) -> Deployment:
        ...

    def patch_replicas(self, name: str, namespace: str, replicas: int) -> Deployment:
        ...

    def list_revisions(self, name: str, namespace: str) -> List[Revision]:
        ...

    def list_deployments(self, namespace: Optional[str] = None) -> List[Deployment]:
        ...


def parse_revision_number(annotations: Optional[Dict[str, str]]) -> int:
    """Parse the revision annotation, defaulting to 0 when missing or invalid."""
    raw = (annotations or {}).get(REVISION_ANNOTATION)
    if raw is None:
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def _first_container(pod_spec: Any) -> Any:
    containers = getattr(pod_spec, "containers", None) or []
    return containers[0] if containers else None


def _derive_phase(
    replicas: int, available: int, conditions: List[Dict[str, Any]]
) -> DeploymentPhase:
    for condition in conditions:
        if (
            condition.get("type") == "Progressing"
            and condition.get("reason") == "ProgressDeadlineExceeded"
        ):
            return DeploymentPhase.DEGRADED
    if available >= replicas:
        return DeploymentPhase.AVAILABLE
    for condition in conditions:
        if condition.get("type") == "Available" and condition.get("status") == "False":
            return DeploymentPhase.DEGRADED
    return DeploymentPhase.PENDING


def deployment_from_k8s(obj: Any) -> Deployment:
    """Convert a ``V1Deployment`` into a Deployment model."""
    metadata = obj.metadata
    spec = obj.spec
    status = obj.status

    container = None
    if spec is not None and spec.template is not None:
        container = _first_container(spec.template.spec)

    conditions = [
        {
            "type": c.type,
            "status": c.status,
            "reason": c.reason,
            "message": c.message,
        }
        for c in (getattr(status, "conditions", None) or [])
    ]

    replicas = (spec.replicas if spec is not None else None) or 0
    available = getattr(status, "available_replicas", None) or 0

    return Deployment(
        name=metadata.name,
        namespace=metadata.namespace,
        image=container.image if container is not None else None,
        replicas=replicas,
        ready_replicas=getattr(status, "ready_replicas", None) or 0,
        available_replicas=available,
        conditions=conditions,
        phase=_derive_phase(replicas, available, conditions),
        created_at=metadata.creation_timestamp,
    )


def revision_from_replica_set(obj: Any) -> Revision:
    """Convert a ``V1ReplicaSet`` into a Revision model."""
    metadata = obj.metadata
    image = None
    spec = obj.spec
    if spec is not None and spec.template is not None:
        container = _first_container(spec.template.spec)
        if container is not None:
            image = container.image or None

    return Revision(
        number=parse_revision_number(metadata.annotations),
        image=image,
        created_at=metadata.creation_timestamp,
    )


def is_owned_by(obj: Any, name: str) -> bool:
    """Check whether a ReplicaSet has an owner reference naming the deployment."""
    refs = getattr(obj.metadata, "owner_references", None) or []
    return any(ref.name == name for ref in refs)


def build_deployment_manifest(
    name: str, namespace: str, image: str, replicas: int
) -> Dict[str, Any]:
    """Build the Deployment manifest used when creating a new workload."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"app": name, MANAGED_BY_LABEL: MANAGED_BY_VALUE},
        },
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {
                    "containers": [
                        {
                            "name": name,
                            "image": image,
                            "ports": [{"containerPort": CONTAINER_PORT}],
                            "resources": DEFAULT_RESOURCES,
                        }
                    ]
                },
            },
        },
    }


def translate_api_exception(
    exc: ApiException, operation: str, name: str, namespace: str
) -> Exception:
    """Map a Kubernetes ApiException onto the agent error taxonomy."""
    status = exc.status or 0
    details = {
        "operation": operation,
        "name": name,
        "namespace": namespace,
        "status_code": status,
        "reason": exc.reason,
    }
    message = f"{operation} {namespace}/{name} failed: {status} {exc.reason}"

    if status == 404:
        return NotFoundError(f"Deployment {namespace}/{name} not found", details)
    if status == 409:
        return ConflictError(message, details)
    if status in (400, 422):
        return ValidationError(message, details)
    return UpstreamError(message, status_code=status or None, details=details)


class KubernetesOrchestrationClient:
    """OrchestrationClient backed by the Kubernetes Python client.

    Attributes:
        apps_api: The ``AppsV1Api`` instance used for all calls.
        request_timeout: Per-request timeout in seconds.

    Example:
        >>> k8s = KubernetesOrchestrationClient.from_config()
        >>> deployment = k8s.get("web", "staging")
    """

    def __init__(
        self,
        apps_api: Optional[client.AppsV1Api] = None,
        request_timeout: float = 30.0,
    ):
        self.apps_api = apps_api or client.AppsV1Api()
        self.request_timeout = request_timeout

    @classmethod
    def from_config(
        cls,
        kubeconfig_path: Optional[str] = None,
        in_cluster: bool = False,
        request_timeout: float = 30.0,
    ) -> "KubernetesOrchestrationClient":
        """Load cluster credentials and build a client.

        Args:
            kubeconfig_path: Explicit kubeconfig file. Ignored when in_cluster.
            in_cluster: Use the pod service account.
            request_timeout: Per-request timeout in seconds.
        """
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=kubeconfig_path)
        return cls(apps_api=client.AppsV1Api(), request_timeout=request_timeout)

    def _call(self, operation: str, name: str, namespace: str, fn, *args, **kwargs):
        """Invoke an API method, translating errors."""
        try:
            return fn(*args, _request_timeout=self.request_timeout, **kwargs)
        except ApiException as exc:
            raise translate_api_exception(exc, operation, name, namespace) from exc
        except urllib3.exceptions.TimeoutError as exc:
            raise OperationTimeoutError(
                f"{operation} {namespace}/{name} timed out after {self.request_timeout}s",
                details={"operation": operation},
            ) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise UpstreamError(
                f"{operation} {namespace}/{name} failed: {exc}",
                details={"operation": operation},
            ) from exc

    def _read(self, name: str, namespace: str) -> Any:
        return self._call(
            "read", name, namespace,
            self.apps_api.read_namespaced_deployment, name, namespace,
        )

    def get(self, name: str, namespace: str) -> Deployment:
        """Read a deployment.

        Raises:
            NotFoundError: If the deployment does not exist.
        """
        return deployment_from_k8s(self._read(name, namespace))

    def create_or_update(
        self, name: str, namespace: str, image: str, replicas: int
    ) -> Deployment:
        """Create the deployment, or update image and replicas if it exists."""
        try:
            existing = self._read(name, namespace)
        except NotFoundError:
            existing = None

        if existing is None:
            logger.info(
                "Creating deployment",
                extra={"name": name, "namespace": namespace, "image": image},
            )
            body = build_deployment_manifest(name, namespace, image, replicas)
            created = self._call(
                "create", name, namespace,
                self.apps_api.create_namespaced_deployment, namespace, body,
            )
            return deployment_from_k8s(created)

        container = _first_container(existing.spec.template.spec)
        container_name = container.name if container is not None else name
        patch = {
            "spec": {
                "replicas": replicas,
                "template": {
                    "spec": {"containers": [{"name": container_name, "image": image}]}
                },
            }
        }
        logger.info(
            "Updating deployment",
            extra={
                "name": name,
                "namespace": namespace,
                "image": image,
                "replicas": replicas,
            },
        )
        patched = self._call(
            "update", name, namespace,
            self.apps_api.patch_namespaced_deployment, name, namespace, patch,
        )
        return deployment_from_k8s(patched)

    def patch_image(self, name: str, namespace: str, image: str) -> Deployment:
        """Patch the image of the deployment's first container."""
        existing = self._read(name, namespace)
        container = _first_container(existing.spec.template.spec)
        container_name = container.name if container is not None else name
        patch = {
            "spec": {
                "template": {
                    "spec": {"containers": [{"name": container_name, "image": image}]}
                }
            }
        }
        patched = self._call(
            "patch_image", name, namespace,
            self.apps_api.patch_namespaced_deployment, name, namespace, patch,
        )
        return deployment_from_k8s(patched)

    def patch_replicas(self, name: str, namespace: str, replicas: int) -> Deployment:
        """Patch only the replica count."""
        patched = self._call(
            "patch_replicas", name, namespace,
            self.apps_api.patch_namespaced_deployment,
            name, namespace, {"spec": {"replicas": replicas}},
        )
        return deployment_from_k8s(patched)

    def list_revisions(self, name: str, namespace: str) -> List[Revision]:
        """List ReplicaSets owned by the deployment, in API order."""
        response = self._call(
            "list_revisions", name, namespace,
            self.apps_api.list_namespaced_replica_set, namespace,
            label_selector=f"app={name}",
        )
        return [
            revision_from_replica_set(rs)
            for rs in response.items
            if is_owned_by(rs, name)
        ]

    def list_deployments(self, namespace: Optional[str] = None) -> List[Deployment]:
        """List deployments labelled as managed by this agent."""
        selector = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"
        if namespace:
            response = self._call(
                "list", "*", namespace,
                self.apps_api.list_namespaced_deployment, namespace,
                label_selector=selector,
            )
        else:
            response = self._call(
                "list", "*", "*",
                self.apps_api.list_deployment_for_all_namespaces,
                label_selector=selector,
            )
        return [deployment_from_k8s(item) for item in response.items]
