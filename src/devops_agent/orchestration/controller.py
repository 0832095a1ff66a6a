"""Deployment lifecycle controller.

This module implements the DeploymentController that owns deployment
state transitions: deploy, status, scale and rollback. It wraps a blocking
OrchestrationClient and guarantees:

- Deploy is idempotent: an unchanged (image, replicas) pair issues no
  mutating call.
- At most one mutating operation per (namespace, name) runs at a time,
  enforced by a DeploymentLease rather than by the cluster.
- Transient failures and conflicts are retried with bounded exponential
  backoff and jitter; permanent errors surface immediately.
- Rollback selects the second-most-recent revision by revision number,
  never by discovery order.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Sequence

from src.devops_agent.errors import (
    NoPreviousRevisionError,
    NotFoundError,
    OperationTimeoutError,
    RevisionImageMissingError,
    ValidationError,
)
from src.devops_agent.events.metrics import AgentMetrics
from src.devops_agent.orchestration.client import OrchestrationClient
from src.devops_agent.orchestration.lease import DeploymentLease
from src.devops_agent.orchestration.models import (
    DeployResult,
    Deployment,
    DeploymentStatus,
    Revision,
    RollbackPlan,
    RollbackResult,
    ScaleResult,
    make_deployment_id,
)
from src.devops_agent.orchestration.retry import RetryPolicy


logger = logging.getLogger(__name__)


def select_rollback_target(revisions: Sequence[Revision]) -> Revision:
    """Select the revision to roll back to.

    Revisions are sorted by number, highest first. The sort is stable, so
    revisions sharing a number (including the 0 used for a missing number)
    keep their incoming order. The second entry is the target.

    Args:
        revisions: Revisions owned by the deployment, in any order.

    Returns:
        The second-most-recent revision.

    Raises:
        NoPreviousRevisionError: If fewer than two revisions exist.
        RevisionImageMissingError: If the target has no image.

    Example:
        >>> select_rollback_target([
        ...     Revision(number=1, image="a"),
        ...     Revision(number=3, image="c"),
        ...     Revision(number=2, image="b"),
        ... ]).image
        'b'
    """
    ordered = sorted(revisions, key=lambda r: r.number, reverse=True)
    if len(ordered) < 2:
        raise NoPreviousRevisionError(
            f"Rollback needs at least 2 revisions, found {len(ordered)}",
            details={"revision_count": len(ordered)},
        )

    target = ordered[1]
    if not target.image:
        raise RevisionImageMissingError(
            f"Revision {target.number} has no resolvable image",
            details={"target_revision": target.number},
        )
    return target


def _validate_identity(name: str, namespace: str) -> None:
    if not name or not name.strip():
        raise ValidationError("name cannot be empty")
    if not namespace or not namespace.strip():
        raise ValidationError("namespace cannot be empty")


def _validate_replicas(replicas: int) -> None:
    if replicas < 0:
        raise ValidationError(
            f"replicas must be >= 0, got {replicas}",
            details={"replicas": replicas},
        )


def _discard_outcome(call: "asyncio.Future[Any]") -> None:
    # Marks the abandoned call's exception as retrieved
    if not call.cancelled():
        call.exception()


class DeploymentController:
    """Async controller over a blocking orchestration client.

    Client calls run in a worker thread and a call that exceeds
    ``timeout_seconds`` raises OperationTimeoutError, which the retry policy
    treats as transient. Reads return that error on time. Worker threads
    cannot be interrupted, so a timed-out mutation is first awaited to
    completion; its wall-clock bound is the client's own request timeout,
    not ``timeout_seconds``.

    Attributes:
        client: The orchestration client.
        retry_policy: Backoff settings for transient failures and conflicts.
        lease: Per-deployment serialization.
        timeout_seconds: Upper bound for each client call.
        metrics: Optional Prometheus metrics for mutating operations.

    Example:
        >>> controller = DeploymentController(KubernetesOrchestrationClient.from_config())
        >>> await controller.deploy("web", "staging", "registry/web:abc123", 1)
        >>> await controller.rollback("web", "staging")
    """

    def __init__(
        self,
        client: OrchestrationClient,
        retry_policy: Optional[RetryPolicy] = None,
        lease: Optional[DeploymentLease] = None,
        timeout_seconds: float = 30.0,
        metrics: Optional[AgentMetrics] = None,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.lease = lease or DeploymentLease()
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics

    def _record(self, operation: str, success: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_deployment_operation(operation, success)

    async def _call(
        self,
        operation: str,
        fn: Callable[..., Any],
        *args: Any,
        drain: bool = False,
    ) -> Any:
        """Run a client call in a thread with timeout and retry.

        With ``drain`` a timed-out call is awaited to completion before
        OperationTimeoutError is raised, so a mutation never overlaps the
        next attempt or outlives its lease. Read-only calls raise as soon as
        ``timeout_seconds`` elapses and leave the worker thread to finish.
        """

        async def attempt() -> Any:
            call = asyncio.ensure_future(asyncio.to_thread(fn, *args))
            try:
                return await asyncio.wait_for(
                    asyncio.shield(call), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                if drain:
                    await asyncio.wait([call])
                call.add_done_callback(_discard_outcome)
                raise OperationTimeoutError(
                    f"{operation} timed out after {self.timeout_seconds}s",
                    details={"operation": operation},
                ) from exc

        return await self.retry_policy.run(operation, attempt)

    async def _mutate(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            result = await self._call(operation, fn, *args, drain=True)
        except Exception:
            self._record(operation, success=False)
            raise
        self._record(operation, success=True)
        return result

    async def deploy(
        self,
        name: str,
        namespace: str,
        image: str,
        replicas: int,
        wait: bool = True,
    ) -> DeployResult:
        """Create or update a deployment.

        Args:
            name: Deployment name.
            namespace: Deployment namespace.
            image: Desired image reference.
            replicas: Desired replica count.
            wait: Block on a concurrent mutation instead of failing fast.

        Returns:
            DeployResult with status "deployed". Identical inputs yield
            identical results whether or not a mutation was issued.

        Raises:
            ValidationError: On empty identity/image or negative replicas.
            ConflictError: If ``wait`` is False and a mutation is in flight.
        """
        _validate_identity(name, namespace)
        _validate_replicas(replicas)
        if not image or not image.strip():
            raise ValidationError("image cannot be empty")

        deployment_id = make_deployment_id(namespace, name)

        async with self.lease.hold(namespace, name, wait=wait):
            try:
                current: Optional[Deployment] = await self._call(
                    "get", self.client.get, name, namespace
                )
            except NotFoundError:
                current = None

            if (
                current is not None
                and current.image == image
                and current.replicas == replicas
            ):
                logger.info(
                    "Deployment already up to date",
                    extra={"deployment_id": deployment_id, "image": image},
                )
            else:
                await self._mutate(
                    "create_or_update",
                    self.client.create_or_update,
                    name,
                    namespace,
                    image,
                    replicas,
                )
                logger.info(
                    "Deployment applied",
                    extra={
                        "deployment_id": deployment_id,
                        "image": image,
                        "replicas": replicas,
                        "created": current is None,
                    },
                )

        return DeployResult(
            deployment_id=deployment_id,
            replicas=replicas,
            image=image,
            namespace=namespace,
        )

    async def status(self, name: str, namespace: str) -> DeploymentStatus:
        """Return a status snapshot.

        Raises:
            NotFoundError: If the deployment does not exist.
        """
        _validate_identity(name, namespace)
        deployment = await self._call("get", self.client.get, name, namespace)
        return DeploymentStatus.from_deployment(deployment)

    async def scale(
        self,
        name: str,
        namespace: str,
        replicas: int,
        wait: bool = True,
    ) -> ScaleResult:
        """Patch the replica count only.

        Raises:
            ValidationError: If ``replicas`` is negative.
        """
        _validate_identity(name, namespace)
        _validate_replicas(replicas)

        async with self.lease.hold(namespace, name, wait=wait):
            await self._mutate(
                "patch_replicas", self.client.patch_replicas, name, namespace, replicas
            )

        logger.info(
            "Deployment scaled",
            extra={
                "deployment_id": make_deployment_id(namespace, name),
                "replicas": replicas,
            },
        )
        return ScaleResult(
            deployment_id=make_deployment_id(namespace, name),
            replicas=replicas,
        )

    async def plan_rollback(self, name: str, namespace: str) -> RollbackPlan:
        """Compute the rollback plan without mutating anything."""
        current: Deployment = await self._call("get", self.client.get, name, namespace)
        revisions: List[Revision] = await self._call(
            "list_revisions", self.client.list_revisions, name, namespace
        )
        target = select_rollback_target(revisions)
        return RollbackPlan(
            target_revision=target.number,
            target_image=target.image,
            previous_image=current.image,
        )

    async def rollback(
        self,
        name: str,
        namespace: str,
        wait: bool = True,
    ) -> RollbackResult:
        """Roll the deployment back to its second-most-recent revision.

        Raises:
            NotFoundError: If the deployment does not exist.
            NoPreviousRevisionError: If fewer than two revisions exist.
            RevisionImageMissingError: If the target has no image.
            ConflictError: If conflicts persist after all retries, or
                ``wait`` is False and a mutation is in flight.
        """
        _validate_identity(name, namespace)
        deployment_id = make_deployment_id(namespace, name)

        async with self.lease.hold(namespace, name, wait=wait):
            plan = await self.plan_rollback(name, namespace)
            await self._mutate(
                "patch_image",
                self.client.patch_image,
                name,
                namespace,
                plan.target_image,
            )

        logger.info(
            "Deployment rolled back",
            extra={
                "deployment_id": deployment_id,
                "target_revision": plan.target_revision,
                "target_image": plan.target_image,
                "replaced_image": plan.previous_image,
            },
        )
        return RollbackResult(
            deployment_id=deployment_id,
            previous_image=plan.target_image,
            target_revision=plan.target_revision,
            replaced_image=plan.previous_image,
        )

    async def list_deployments(
        self, namespace: Optional[str] = None
    ) -> List[DeploymentStatus]:
        """List the deployments managed by this agent."""
        deployments = await self._call(
            "list_deployments", self.client.list_deployments, namespace
        )
        return [DeploymentStatus.from_deployment(d) for d in deployments]
