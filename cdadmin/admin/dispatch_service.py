# cdadmin/admin/dispatch_service.py
"""
Dispatch Application Service: the single orchestration point for
triggering, redeploying and cancelling pipeline tasks.

Responsibilities:
    1. Validate requests (raise ``ValidationError`` before any I/O)
    2. Resolve the application, org owner credentials and commit
    3. Layer org secrets / environment config into a trigger payload
    4. Hand the payload to the worker function via the invocation gateway
    5. On cancel, stop the remote invocation and record CANCEL locally

Tasks themselves are created by the worker, keyed by the task id minted
here; this service never inserts a task row.
"""
from __future__ import annotations

import asyncio
import copy
from typing import Any

from cdadmin.admin.errors import NotFoundError, RemoteInvocationError, ValidationError
from cdadmin.admin.models import CancelTaskRequest, DispatchResult, ManualTaskRequest, RedeployRequest
from cdadmin.admin.user_service import UserService
from cdadmin.core.dispatch.ids import union_token
from cdadmin.core.dispatch.merge import env_secrets, merge_environment, merge_secrets, select_env_name
from cdadmin.core.domain import Application, Authorization, TaskStatus, TriggerPayload
from cdadmin.core.ports import ApplicationRepository, GitProviderFactory, OrgRepository, TaskRepository
from cdadmin.infra.audit_log import audit_event
from cdadmin.infra.invocation_gateway import InvocationGateway
from cdadmin.infra.logging_config import LogContext, get_logger, mask_token
from cdadmin.infra.metrics import inc_counter

logger = get_logger(__name__)

ALREADY_COMPLETED_CODE = "StatefulAsyncInvocationAlreadyCompleted"
PRECONDITION_FAILED = 412


def _is_already_stopped(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    return (
        getattr(exc, "status", None) == PRECONDITION_FAILED
        or code == PRECONDITION_FAILED
        or code == ALREADY_COMPLETED_CODE
    )


class DispatchService:
    """
    Orchestrates manual triggers, redeploys and cancellations.

    Stateless, so safe to use as a singleton.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        apps: ApplicationRepository,
        orgs: OrgRepository,
        users: UserService,
        gateway: InvocationGateway,
        git_provider_factory: GitProviderFactory,
    ) -> None:
        self.tasks = tasks
        self.apps = apps
        self.orgs = orgs
        self.users = users
        self.gateway = gateway
        self.git_provider_factory = git_provider_factory

    # ------------------------------------------------------------------
    # Manual trigger
    # ------------------------------------------------------------------

    async def manual_task(
        self,
        dispatch_org_id: str,
        org_name: str,
        req: ManualTaskRequest,
    ) -> DispatchResult:
        """
        Trigger a run of ``req.app_id`` at ``req.ref``.

        When ``commit_id`` is absent the ref is resolved through the git
        provider using the org owner's token.  The environment defaults
        to the first one declared on the application.
        """
        if not req.app_id:
            raise ValidationError("appId is required")
        if req.ref is None:
            raise ValidationError("ref is required")

        app = await self._get_app(req.app_id)
        log = LogContext(logger, app_id=app.id, org_id=dispatch_org_id)

        log.debug("find provider access token")
        owner_user = await self.users.get_owner_user_by_org_name(org_name)
        access_token = owner_user.provider_token(app.provider) if owner_user else ""
        if not access_token:
            raise ValidationError(f"{app.provider} access token lookup failed")

        commit = req.commit_id
        message = req.message or ""
        if not commit:
            log.debug(f"resolve {app.provider} ref {req.ref} (token={mask_token(access_token)})")
            try:
                client = self.git_provider_factory(app.provider, access_token)
                commit_info = await client.get_ref_commit(app.owner, app.repo_name, req.ref)
            except Exception as exc:
                log.error(f"resolve ref failed: {exc}", exc_info=True)
                raise ValidationError(f"Failed to get {app.provider} info: {exc}") from exc
            commit = commit_info.sha
            message = commit_info.message

        owner_secrets = await self._owner_secrets(app)
        env_name = select_env_name(app.environment, req.env_name)

        payload = TriggerPayload(
            task_id=union_token(),
            provider=app.provider,
            clone_url=app.repo_url,
            authorization=Authorization(
                dispatch_org_id=dispatch_org_id,
                app_id=app.id,
                owner=app.owner,
                access_token=access_token,
                secrets=merge_secrets(owner_secrets, env_secrets(app.environment, env_name)),
            ),
            ref=req.ref,
            commit=commit,
            message=message,
            environment=app.environment,
            env_name=env_name,
            custom_inputs=req.inputs,
        )
        log.info(f"manual run task env={env_name} ref={req.ref} commit={commit}")

        result = await self._invoke(payload)
        audit_event(
            "task.manual",
            org_id=dispatch_org_id,
            app_id=app.id,
            task_id=result.task_id,
            detail=f"env={env_name} ref={req.ref}",
        )
        inc_counter("dispatch_manual_total", provider=app.provider)
        return result

    # ------------------------------------------------------------------
    # Redeploy
    # ------------------------------------------------------------------

    async def redeploy(self, dispatch_org_id: str, req: RedeployRequest) -> DispatchResult:
        """
        Re-run a previous task's trigger payload under a fresh task id.

        The original run's environment is layered on top of the
        application's current environment; secrets are recomputed from
        the current org owner secrets.
        """
        if not req.task_id:
            raise ValidationError("taskId is required")
        if not req.app_id:
            raise ValidationError("appId is required")

        task, app = await asyncio.gather(
            self.tasks.get_task_detail(req.task_id),
            self.apps.get_app_by_id(req.app_id),
        )
        if task is None:
            raise NotFoundError(f"Task '{req.task_id}' not found")
        if app is None:
            raise NotFoundError(f"Application '{req.app_id}' not found")
        if not task.trigger_payload:
            raise ValidationError(f"Task '{req.task_id}' has no trigger payload to redeploy")

        payload = TriggerPayload.from_dict(task.trigger_payload)
        payload.redelivery = req.task_id
        payload.task_id = union_token()
        payload.environment = merge_environment(app.environment, payload.environment)
        payload.authorization.dispatch_org_id = dispatch_org_id

        owner_secrets = await self._owner_secrets(app)
        payload.authorization.secrets = merge_secrets(
            owner_secrets, env_secrets(payload.environment, payload.env_name),
        )

        LogContext(logger, task_id=payload.task_id, app_id=app.id, org_id=dispatch_org_id).info(
            f"redeploy of task {req.task_id} env={payload.env_name}"
        )

        result = await self._invoke(payload)
        audit_event(
            "task.redeploy",
            org_id=dispatch_org_id,
            app_id=app.id,
            task_id=result.task_id,
            detail=f"redelivery={req.task_id}",
        )
        inc_counter("dispatch_redeploy_total", provider=app.provider)
        return result

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel_task(self, req: CancelTaskRequest) -> None:
        """
        Stop a task's invocation and record CANCEL on the task and on the
        application's ``latest_task`` for the task's environment.

        The two writes are independent; ``latest_task`` is a best-effort
        summary and may lag the task row if the second write fails.
        """
        if not req.task_id:
            raise ValidationError("taskId is required")

        task = await self.tasks.get_task_detail(req.task_id)
        if task is None:
            raise NotFoundError(f"Task '{req.task_id}' not found")

        log = LogContext(logger, task_id=task.id, app_id=task.app_id)

        try:
            await self.gateway.stop_invocation(task.id)
        except Exception as exc:
            log.debug(f"cancel invoke error: {getattr(exc, 'code', None)}, {exc}")
            if _is_already_stopped(exc):
                raise ValidationError("Task has already been stopped") from exc
            raise RemoteInvocationError(str(exc)) from exc

        cancel = TaskStatus.CANCEL.value
        running = TaskStatus.RUNNING.value
        steps = []
        for step in task.steps:
            data = step.to_dict()
            if step.status == running:
                data["status"] = cancel
            steps.append(data)

        update_task_payload = {"status": cancel, "steps": steps}
        log.debug(f"updateTaskPayload: {update_task_payload}")
        await self.tasks.update_task(task.id, update_task_payload)

        await self._record_latest_task(task.app_id, task.id, task.trigger_payload or {})

        audit_event("task.cancel", app_id=task.app_id, task_id=task.id)
        inc_counter("dispatch_cancel_total")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_app(self, app_id: str) -> Application:
        app = await self.apps.get_app_by_id(app_id)
        if app is None:
            raise NotFoundError(f"Application '{app_id}' not found")
        return app

    async def _owner_secrets(self, app: Application) -> dict[str, Any]:
        owner_org = await self.orgs.get_org_by_id(app.owner_org_id)
        return dict(owner_org.secrets) if owner_org else {}

    async def _invoke(self, payload: TriggerPayload) -> DispatchResult:
        try:
            invocation = await self.gateway.invoke(payload.to_dict())
        except Exception as exc:
            logger.error(
                f"worker invocation failed: {exc}",
                extra={"task_id": payload.task_id},
                exc_info=True,
            )
            inc_counter("dispatch_invoke_failed_total")
            raise RemoteInvocationError(str(exc)) from exc
        return DispatchResult(request_id=invocation.request_id, task_id=invocation.task_id)

    async def _record_latest_task(self, app_id: str, task_id: str, trigger_payload: dict[str, Any]) -> None:
        env_name = trigger_payload.get("envName")
        if not app_id or not env_name:
            logger.warning(
                "cancelled task has no app / env to summarise",
                extra={"task_id": task_id, "app_id": app_id},
            )
            return

        app = await self.apps.get_app_by_id(app_id)
        if app is not None:
            environment = copy.deepcopy(app.environment)
        else:
            environment = copy.deepcopy(trigger_payload.get("environment") or {})

        env = environment.setdefault(env_name, {})
        env["latest_task"] = {
            "taskId": task_id,
            "commit": trigger_payload.get("commit"),
            "message": trigger_payload.get("message"),
            "ref": trigger_payload.get("ref"),
            "completed": True,
            "status": TaskStatus.CANCEL.value,
        }
        await self.apps.update_application(app_id, {"environment": environment})


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_svc: DispatchService | None = None


def get_dispatch_service() -> DispatchService:
    """Get the global DispatchService singleton (Postgres + FC wiring)."""
    global _svc
    if _svc is None:
        from cdadmin.infra.git_provider import git_provider
        from cdadmin.infra.invocation_gateway import get_invocation_gateway
        from cdadmin.infra.pg_repos_async import (
            AsyncPostgresApplicationRepository,
            AsyncPostgresOrgRepository,
            AsyncPostgresTaskRepository,
        )
        from cdadmin.admin.user_service import get_user_service

        _svc = DispatchService(
            tasks=AsyncPostgresTaskRepository(),
            apps=AsyncPostgresApplicationRepository(),
            orgs=AsyncPostgresOrgRepository(),
            users=get_user_service(),
            gateway=get_invocation_gateway(),
            git_provider_factory=git_provider,
        )
    return _svc


def reset_dispatch_service() -> None:
    """Reset the singleton (for testing)."""
    global _svc
    _svc = None
