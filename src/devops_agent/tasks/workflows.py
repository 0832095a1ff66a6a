"""Workflow definitions for the agent task pipeline.

Each workflow is an ordered list of Steps plus a function that builds the
task result from the accumulated step outputs. Step outputs are plain
JSON-compatible dicts so a suspended task can be persisted and resumed.

Workflows:
- code_review: diff → review → comment → notify
- test_writer: bounded file fetch → per-file test generation → aggregate
- deploy: apply → schedule monitor → notify
- rollback: confirmation gate → rollback → notify
- monitor: status → health sample → snapshot → notify when unhealthy
- security: diff → security review → notify on high risk
- cost: status → cost review
- incident: status → health sample → snapshot → triage → remediation → page
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.devops_agent.collaborators import (
    CodeHostingClient,
    CodeIntelligenceClient,
    HealthChecker,
    Notifier,
)
from src.devops_agent.errors import NoFilesAvailableError, ValidationError
from src.devops_agent.github.client import split_repository
from src.devops_agent.intelligence.client import analyze
from src.devops_agent.intelligence.parsing import (
    AnalysisResult,
    StructuredAnalysis,
    normalize_review,
    normalize_security,
    normalize_test_generation,
    normalize_triage,
)
from src.devops_agent.intelligence.prompts import (
    build_cost_prompt,
    build_review_prompt,
    build_security_prompt,
    build_test_prompt,
    build_triage_prompt,
    detect_language,
)
from src.devops_agent.orchestration.controller import DeploymentController
from src.devops_agent.orchestration.models import (
    DeploymentPhase,
    DeploymentStatus,
    parse_deployment_id,
)
from src.devops_agent.tasks.fanout import gather_bounded, sorted_outcomes
from src.devops_agent.tasks.models import (
    CodeReviewPayload,
    CostPayload,
    DeployPayload,
    FailureReason,
    IncidentPayload,
    MonitorPayload,
    RollbackPayload,
    SecurityPayload,
    TaskKind,
    WriteTestsPayload,
)
from src.devops_agent.tasks.steps import Step, StepCapability, StepContext, StepResult


logger = logging.getLogger(__name__)


# Response times above this mark a deployment as degraded
SLOW_RESPONSE_MS = 1000.0

# Error rates at or above this mark a deployment as unhealthy
UNHEALTHY_ERROR_RATE = 0.5

# Error rates at or above this mark a deployment as degraded
DEGRADED_ERROR_RATE = 0.05

REMEDIATION_SEVERITIES = ("high", "critical")

HIGH_RISK_LEVELS = ("high", "critical")


@dataclass
class WorkflowServices:
    """Collaborators injected into every workflow step."""

    controller: DeploymentController
    code_hosting: CodeHostingClient
    llm: CodeIntelligenceClient
    notifier: Notifier
    health_checker: HealthChecker
    default_channel: str = "#devops"
    paging_channel: str = "#incidents"
    fetch_concurrency: int = 5
    llm_model: Optional[str] = None


@dataclass
class Workflow:
    """A named sequence of steps with its payload model and result builder."""

    kind: TaskKind
    payload_model: Type[BaseModel]
    steps: List[Step]
    build_result: Callable[[StepContext], Dict[str, Any]]

    def validate_payload(self, payload: Dict[str, Any]) -> BaseModel:
        """Validate a raw payload.

        Raises:
            ValidationError: If the payload does not match ``payload_model``.
        """
        try:
            return self.payload_model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid {self.kind.value} payload: {e.error_count()} error(s)",
                details={
                    "errors": e.errors(
                        include_url=False, include_context=False, include_input=False
                    )
                },
            ) from e


def _model_for(ctx: StepContext) -> Optional[str]:
    return getattr(ctx.payload, "llm_model", None) or ctx.services.llm_model


def _notify_failed(e: Exception) -> Dict[str, Any]:
    return {"notified": False, "notification_error": str(e)}


async def _send(ctx: StepContext, channel: str, message: str) -> Dict[str, Any]:
    await ctx.services.notifier.send(channel, message)
    return {"notified": True}


# -----------------------------------------------------------------------------
# Shared steps
# -----------------------------------------------------------------------------


async def fetch_pull_request_diff(ctx: StepContext) -> Dict[str, Any]:
    owner, repo = split_repository(ctx.payload.repository)
    diff = await ctx.services.code_hosting.get_pull_request_diff(
        owner, repo, ctx.payload.pr_number
    )
    return {"diff": diff}


async def read_deployment_status(ctx: StepContext) -> Dict[str, Any]:
    namespace, name = parse_deployment_id(ctx.payload.deployment_id)
    status = await ctx.services.controller.status(name, namespace)
    return {"status": status.model_dump(mode="json")}


async def sample_health(ctx: StepContext) -> Dict[str, Any]:
    status = DeploymentStatus.model_validate(ctx.data["status"])
    measurement = await ctx.services.health_checker.sample(status)
    return {"health": measurement.model_dump(mode="json")}


def _health_check_failed(e: Exception) -> Dict[str, Any]:
    return {"health": None, "check_error": str(e)}


def classify_health(status: Dict[str, Any], health: Optional[Dict[str, Any]]) -> str:
    """Classify a deployment from its status and one health sample.

    Returns:
        One of ``healthy``, ``degraded``, ``unhealthy`` or ``unknown``.

    Example:
        >>> classify_health(
        ...     {"replicas": 2, "available_replicas": 2, "phase": "available"},
        ...     {"response_time_ms": 40.0, "error_rate": 0.0, "error": None},
        ... )
        'healthy'
    """
    replicas = status.get("replicas", 0)
    available = status.get("available_replicas", 0)
    if replicas > 0 and available == 0:
        return "unhealthy"

    if health is None or health.get("error"):
        return "unknown"

    error_rate = health.get("error_rate") or 0.0
    if error_rate >= UNHEALTHY_ERROR_RATE:
        return "unhealthy"

    if (
        status.get("phase") == DeploymentPhase.DEGRADED.value
        or available < replicas
        or error_rate >= DEGRADED_ERROR_RATE
        or (health.get("response_time_ms") or 0.0) > SLOW_RESPONSE_MS
    ):
        return "degraded"
    return "healthy"


async def summarize_health(ctx: StepContext) -> Dict[str, Any]:
    status = ctx.data["status"]
    health = ctx.data.get("health")
    snapshot: Dict[str, Any] = {
        "deployment_id": status["deployment_id"],
        "health_status": classify_health(status, health),
        "replicas": status["replicas"],
        "ready_replicas": status["ready_replicas"],
        "available_replicas": status["available_replicas"],
        "response_time_ms": health.get("response_time_ms") if health else None,
        "error_rate": health.get("error_rate") if health else None,
        "checked_at": health.get("checked_at") if health else None,
    }
    check_error = ctx.data.get("check_error") or (health or {}).get("error")
    if check_error:
        snapshot["check_error"] = check_error
    return {"snapshot": snapshot}


# -----------------------------------------------------------------------------
# code_review
# -----------------------------------------------------------------------------


def review_from_analysis(analysis: AnalysisResult) -> Dict[str, Any]:
    if isinstance(analysis, StructuredAnalysis):
        return normalize_review(analysis.data)
    return {
        "status": "unparsed",
        "score": 0,
        "issues": [],
        "summary": analysis.text,
        "recommendations": [],
        "parse_error": analysis.error,
    }


def format_review_comment(review: Dict[str, Any]) -> str:
    """Render a review as a Markdown pull request comment."""
    lines = [
        "## 🤖 AI Code Review",
        "",
        f"**Status:** {review['status']}",
        f"**Score:** {review['score']}/100",
        "",
    ]

    if review["issues"]:
        lines.append("### Issues Found")
        for issue in review["issues"]:
            line = issue.get("line")
            location = f" (Line {line})" if line is not None else ""
            lines.append(
                f"- **{issue['severity'].upper()}**{location}: {issue['message']}"
            )
            if issue.get("suggestion"):
                lines.append(f"  *Suggestion:* {issue['suggestion']}")
        lines.append("")

    lines.extend(["### Summary", review["summary"] or "No summary provided.", ""])

    if review["recommendations"]:
        lines.append("### Recommendations")
        lines.extend(f"- {r}" for r in review["recommendations"])

    return "\n".join(lines).rstrip() + "\n"


async def review_diff(ctx: StepContext) -> Dict[str, Any]:
    prompt = build_review_prompt(ctx.data["diff"], ctx.payload.repository)
    analysis = await analyze(ctx.services.llm, prompt, _model_for(ctx))
    return {"review": review_from_analysis(analysis)}


async def post_review_comment(ctx: StepContext) -> Dict[str, Any]:
    owner, repo = split_repository(ctx.payload.repository)
    await ctx.services.code_hosting.create_comment(
        owner, repo, ctx.payload.pr_number, format_review_comment(ctx.data["review"])
    )
    return {"comment_posted": True}


def _comment_failed(e: Exception) -> Dict[str, Any]:
    return {"comment_posted": False, "comment_error": str(e)}


async def notify_review(ctx: StepContext) -> Dict[str, Any]:
    review = ctx.data["review"]
    message = (
        f"Code review for {ctx.payload.repository}#{ctx.payload.pr_number}: "
        f"{review['status']} (score {review['score']}, "
        f"{len(review['issues'])} issue(s))"
    )
    return await _send(ctx, ctx.services.default_channel, message)


def code_review_result(ctx: StepContext) -> Dict[str, Any]:
    review = ctx.data["review"]
    result = dict(review)
    result["issues_found"] = len(review["issues"])
    result["comment_posted"] = ctx.data.get("comment_posted", False)
    if "comment_error" in ctx.data:
        result["comment_error"] = ctx.data["comment_error"]
    return result


# -----------------------------------------------------------------------------
# test_writer
# -----------------------------------------------------------------------------


async def fetch_changed_files(ctx: StepContext) -> Any:
    payload: WriteTestsPayload = ctx.payload
    owner, repo = split_repository(payload.repository)
    hosting = ctx.services.code_hosting

    paths = payload.changed_files
    ref = payload.ref
    if not paths and payload.pr_number is not None:
        paths = await hosting.list_pull_request_files(owner, repo, payload.pr_number)
        ref = ref or f"refs/pull/{payload.pr_number}/head"

    async def fetch(path: str) -> str:
        return await hosting.get_file_content(owner, repo, path, ref)

    outcomes = await gather_bounded(paths, fetch, ctx.services.fetch_concurrency)

    files: Dict[str, str] = {}
    failed_files: List[Dict[str, str]] = []
    for outcome in sorted_outcomes(outcomes):
        if outcome.ok:
            files[outcome.key] = outcome.value
        else:
            logger.warning(
                "Failed to fetch file",
                extra={
                    "task_id": ctx.task_id,
                    "file": outcome.key,
                    "error": str(outcome.error),
                },
            )
            failed_files.append({"file": outcome.key, "error": str(outcome.error)})

    if not files:
        return StepResult.fail(
            NoFilesAvailableError(
                f"None of {len(paths)} file(s) could be fetched",
                details={"failed_files": failed_files},
            ),
            FailureReason.NO_FILES_AVAILABLE,
        )
    return {"files": files, "failed_files": failed_files}


def tests_from_analysis(analysis: AnalysisResult) -> Dict[str, Any]:
    if isinstance(analysis, StructuredAnalysis):
        return normalize_test_generation(analysis.data)
    return {
        "tests_generated": 0,
        "test_files": [],
        "test_framework": "unknown",
        "parse_error": analysis.error,
    }


async def generate_tests(ctx: StepContext) -> Dict[str, Any]:
    files: Dict[str, str] = ctx.data["files"]
    llm = ctx.services.llm
    model = _model_for(ctx)

    async def generate(path: str) -> Dict[str, Any]:
        prompt = build_test_prompt(path, files[path], detect_language(path))
        return tests_from_analysis(await analyze(llm, prompt, model))

    outcomes = sorted_outcomes(
        await gather_bounded(sorted(files), generate, ctx.services.fetch_concurrency)
    )

    generated: Dict[str, Dict[str, Any]] = {}
    analysis_failures: List[Dict[str, str]] = []
    for outcome in outcomes:
        if outcome.ok:
            generated[outcome.key] = outcome.value
        else:
            logger.warning(
                "Test generation failed for file",
                extra={
                    "task_id": ctx.task_id,
                    "file": outcome.key,
                    "error": str(outcome.error),
                },
            )
            analysis_failures.append({"file": outcome.key, "error": str(outcome.error)})

    if not generated:
        raise outcomes[0].error

    return {"generated": generated, "analysis_failures": analysis_failures}


def write_tests_result(ctx: StepContext) -> Dict[str, Any]:
    generated: Dict[str, Dict[str, Any]] = ctx.data["generated"]
    paths = sorted(generated)
    tests_generated = sum(generated[p]["tests_generated"] for p in paths)
    result: Dict[str, Any] = {
        "tests_generated": tests_generated,
        "test_files": [f for p in paths for f in generated[p]["test_files"]],
        "files_processed": len(paths),
        "failed_files": ctx.data.get("failed_files", []),
        "coverage_estimate": min(85, tests_generated * 15),
    }
    if ctx.data.get("analysis_failures"):
        result["analysis_failures"] = ctx.data["analysis_failures"]
    return result


# -----------------------------------------------------------------------------
# deploy
# -----------------------------------------------------------------------------


async def apply_deployment(ctx: StepContext) -> Dict[str, Any]:
    payload: DeployPayload = ctx.payload
    result = await ctx.services.controller.deploy(
        payload.name, payload.namespace, payload.image_tag, payload.target_replicas
    )
    return {"deployment": result.model_dump()}


async def schedule_monitor(ctx: StepContext) -> Dict[str, Any]:
    task = await ctx.submit(
        TaskKind.MONITOR,
        {"deployment_id": ctx.data["deployment"]["deployment_id"]},
    )
    return {"monitor_task_id": task.id}


def _monitor_not_scheduled(e: Exception) -> Dict[str, Any]:
    return {"monitor_task_id": None, "monitor_error": str(e)}


async def notify_deploy(ctx: StepContext) -> Dict[str, Any]:
    deployment = ctx.data["deployment"]
    message = (
        f"Deployed {deployment['image']} to {deployment['deployment_id']} "
        f"({deployment['replicas']} replica(s), {ctx.payload.environment})"
    )
    return await _send(ctx, ctx.services.default_channel, message)


def deploy_result(ctx: StepContext) -> Dict[str, Any]:
    deployment = ctx.data["deployment"]
    result = {
        "deployment_id": deployment["deployment_id"],
        "status": deployment["status"],
        "replicas": deployment["replicas"],
        "image": deployment["image"],
        "environment": ctx.payload.environment,
        "namespace": deployment["namespace"],
        "monitor_task_id": ctx.data.get("monitor_task_id"),
    }
    if "monitor_error" in ctx.data:
        result["monitor_error"] = ctx.data["monitor_error"]
    return result


# -----------------------------------------------------------------------------
# rollback
# -----------------------------------------------------------------------------


async def confirmation_gate(ctx: StepContext) -> Any:
    # Runs only before confirmation; a resumed task starts after this step.
    if ctx.payload.confirmation_required:
        return StepResult.suspend()
    return {}


async def execute_rollback(ctx: StepContext) -> Dict[str, Any]:
    namespace, name = parse_deployment_id(ctx.payload.deployment_id)
    result = await ctx.services.controller.rollback(name, namespace)
    return {"rollback": result.model_dump()}


async def notify_rollback(ctx: StepContext) -> Dict[str, Any]:
    rollback = ctx.data["rollback"]
    message = (
        f"Rolled back {rollback['deployment_id']} to revision "
        f"{rollback['target_revision']} ({rollback['previous_image']})"
    )
    if ctx.payload.reason:
        message += f": {ctx.payload.reason}"
    return await _send(ctx, ctx.services.default_channel, message)


def rollback_result(ctx: StepContext) -> Dict[str, Any]:
    rollback = ctx.data["rollback"]
    return {
        "rollback_id": f"rollback-{ctx.task_id}",
        "deployment_id": rollback["deployment_id"],
        "status": rollback["status"],
        "previous_version": rollback["previous_image"],
        "previous_image": rollback["previous_image"],
        "replaced_image": rollback["replaced_image"],
        "target_revision": rollback["target_revision"],
        "strategy": ctx.payload.rollback_strategy,
        "reason": ctx.payload.reason,
    }


# -----------------------------------------------------------------------------
# monitor
# -----------------------------------------------------------------------------


async def notify_unhealthy(ctx: StepContext) -> Dict[str, Any]:
    snapshot = ctx.data["snapshot"]
    if snapshot["health_status"] == "healthy":
        return {"notified": False}
    message = (
        f"Deployment {snapshot['deployment_id']} is {snapshot['health_status']}: "
        f"{snapshot['available_replicas']}/{snapshot['replicas']} available"
    )
    return await _send(ctx, ctx.services.default_channel, message)


def monitor_result(ctx: StepContext) -> Dict[str, Any]:
    return dict(ctx.data["snapshot"])


# -----------------------------------------------------------------------------
# security
# -----------------------------------------------------------------------------


async def review_security(ctx: StepContext) -> Dict[str, Any]:
    prompt = build_security_prompt(ctx.data["diff"], ctx.payload.repository)
    analysis = await analyze(ctx.services.llm, prompt, _model_for(ctx))
    if isinstance(analysis, StructuredAnalysis):
        return {"security": normalize_security(analysis.data)}
    return {
        "security": {
            "risk_level": "unknown",
            "vulnerabilities": [],
            "total_vulnerabilities": 0,
            "summary": analysis.text,
            "parse_error": analysis.error,
        }
    }


async def notify_security_risk(ctx: StepContext) -> Dict[str, Any]:
    security = ctx.data["security"]
    if security["risk_level"] not in HIGH_RISK_LEVELS:
        return {"notified": False}
    message = (
        f"Security review of {ctx.payload.repository}#{ctx.payload.pr_number}: "
        f"{security['risk_level']} risk, "
        f"{security['total_vulnerabilities']} vulnerability(ies)"
    )
    return await _send(ctx, ctx.services.default_channel, message)


def security_result(ctx: StepContext) -> Dict[str, Any]:
    return dict(ctx.data["security"])


# -----------------------------------------------------------------------------
# cost
# -----------------------------------------------------------------------------


async def review_cost(ctx: StepContext) -> Dict[str, Any]:
    analysis = await analyze(
        ctx.services.llm, build_cost_prompt(ctx.data["status"]), _model_for(ctx)
    )
    if isinstance(analysis, StructuredAnalysis):
        recommendations = analysis.data.get("recommendations")
        return {
            "cost": {
                "recommendations": [
                    str(r) for r in recommendations if r is not None
                ]
                if isinstance(recommendations, list)
                else [],
                "summary": str(analysis.data.get("summary", "")),
            }
        }
    return {
        "cost": {
            "recommendations": [],
            "summary": analysis.text,
            "parse_error": analysis.error,
        }
    }


def cost_result(ctx: StepContext) -> Dict[str, Any]:
    status = ctx.data["status"]
    result = dict(ctx.data["cost"])
    result["deployment_id"] = status["deployment_id"]
    result["replicas"] = status["replicas"]
    return result


# -----------------------------------------------------------------------------
# incident
# -----------------------------------------------------------------------------


async def triage_incident(ctx: StepContext) -> Dict[str, Any]:
    payload: IncidentPayload = ctx.payload
    prompt = build_triage_prompt(
        payload.incident_type, payload.severity, ctx.data["snapshot"]
    )
    analysis = await analyze(ctx.services.llm, prompt, _model_for(ctx))
    if isinstance(analysis, StructuredAnalysis):
        return {"triage": normalize_triage(analysis.data)}
    return {
        "triage": {
            "root_cause": "undetermined",
            "impact": "",
            "remediation_steps": [],
            "notes": analysis.text,
        }
    }


async def remediate(ctx: StepContext) -> Dict[str, Any]:
    payload: IncidentPayload = ctx.payload
    if not payload.auto_remediation or payload.severity not in REMEDIATION_SEVERITIES:
        return {"actions_taken": []}

    namespace, name = parse_deployment_id(payload.deployment_id)
    replicas = ctx.data["status"]["replicas"] + 1
    await ctx.services.controller.scale(name, namespace, replicas)
    return {"actions_taken": [f"Scaled {payload.deployment_id} to {replicas} replica(s)"]}


def _remediation_failed(e: Exception) -> Dict[str, Any]:
    return {"actions_taken": [], "remediation_error": str(e)}


async def page_on_call(ctx: StepContext) -> Dict[str, Any]:
    payload: IncidentPayload = ctx.payload
    triage = ctx.data.get("triage") or {}
    message = (
        f"[{payload.severity.upper()}] {payload.incident_type} on "
        f"{payload.deployment_id}: {ctx.data['snapshot']['health_status']}; "
        f"root cause: {triage.get('root_cause', 'undetermined')}"
    )
    actions = ctx.data.get("actions_taken") or []
    if actions:
        message += f"; actions: {', '.join(actions)}"
    return await _send(ctx, ctx.services.paging_channel, message)


def incident_result(ctx: StepContext) -> Dict[str, Any]:
    payload: IncidentPayload = ctx.payload
    result: Dict[str, Any] = {
        "incident_id": f"incident-{ctx.task_id}",
        "deployment_id": payload.deployment_id,
        "incident_type": payload.incident_type,
        "severity": payload.severity,
        "status": "responding",
        "health": ctx.data["snapshot"],
        "triage": ctx.data.get("triage"),
        "actions_taken": ctx.data.get("actions_taken", []),
        "paged": ctx.data.get("notified", False),
    }
    for key in ("triage_error", "remediation_error", "notification_error"):
        if key in ctx.data:
            result[key] = ctx.data[key]
    return result


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


def _notify_step(name: str, fn: Any) -> Step:
    return Step(name, StepCapability.NOTIFY, fn, critical=False, on_failure=_notify_failed)


def build_workflows() -> Dict[TaskKind, Workflow]:
    """Build the workflow registry keyed by task kind."""
    diff = Step("fetch_diff", StepCapability.FETCH_CONTEXT, fetch_pull_request_diff)
    status = Step("read_status", StepCapability.FETCH_CONTEXT, read_deployment_status)
    health = Step(
        "sample_health",
        StepCapability.FETCH_CONTEXT,
        sample_health,
        critical=False,
        on_failure=_health_check_failed,
    )
    snapshot = Step("summarize_health", StepCapability.ANALYZE, summarize_health)

    workflows = [
        Workflow(
            TaskKind.CODE_REVIEW,
            CodeReviewPayload,
            [
                diff,
                Step("review", StepCapability.ANALYZE, review_diff),
                Step(
                    "post_comment",
                    StepCapability.ACT,
                    post_review_comment,
                    critical=False,
                    on_failure=_comment_failed,
                ),
                _notify_step("notify", notify_review),
            ],
            code_review_result,
        ),
        Workflow(
            TaskKind.TEST_WRITER,
            WriteTestsPayload,
            [
                Step("fetch_files", StepCapability.FETCH_CONTEXT, fetch_changed_files),
                Step("generate_tests", StepCapability.ANALYZE, generate_tests),
            ],
            write_tests_result,
        ),
        Workflow(
            TaskKind.DEPLOY,
            DeployPayload,
            [
                Step("deploy", StepCapability.ACT, apply_deployment),
                Step(
                    "schedule_monitor",
                    StepCapability.ACT,
                    schedule_monitor,
                    critical=False,
                    on_failure=_monitor_not_scheduled,
                ),
                _notify_step("notify", notify_deploy),
            ],
            deploy_result,
        ),
        Workflow(
            TaskKind.ROLLBACK,
            RollbackPayload,
            [
                Step("confirmation_gate", StepCapability.ACT, confirmation_gate),
                Step("rollback", StepCapability.ACT, execute_rollback),
                _notify_step("notify", notify_rollback),
            ],
            rollback_result,
        ),
        Workflow(
            TaskKind.MONITOR,
            MonitorPayload,
            [status, health, snapshot, _notify_step("notify", notify_unhealthy)],
            monitor_result,
        ),
        Workflow(
            TaskKind.SECURITY,
            SecurityPayload,
            [
                diff,
                Step("security_review", StepCapability.ANALYZE, review_security),
                _notify_step("notify", notify_security_risk),
            ],
            security_result,
        ),
        Workflow(
            TaskKind.COST,
            CostPayload,
            [status, Step("cost_review", StepCapability.ANALYZE, review_cost)],
            cost_result,
        ),
        Workflow(
            TaskKind.INCIDENT,
            IncidentPayload,
            [
                status,
                health,
                snapshot,
                Step("triage", StepCapability.ANALYZE, triage_incident, critical=False),
                Step(
                    "remediate",
                    StepCapability.ACT,
                    remediate,
                    critical=False,
                    on_failure=_remediation_failed,
                ),
                _notify_step("page", page_on_call),
            ],
            incident_result,
        ),
    ]
    return {w.kind: w for w in workflows}
