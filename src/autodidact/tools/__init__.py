"""Tool registration for the autodidact MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from ..identity import Session, SessionUser
from ..orchestrator import AgentRun, TaskOptions
from ..outcomes import ErrorKind, Outcome
from ..store import Task
from ..vault import VaultOutcome
from ..workspace import AgentWorkspace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    sign_in: Any
    sign_out: Any
    store_token: Any
    clear_token: Any
    token_status: Any
    create_task: Any
    list_tasks: Any
    execute_parallel: Any
    list_runs: Any
    clear_runs: Any
    sync_status: Any


def _task_summary(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "instruction": task.instruction,
        "status": task.status,
        "result": task.result,
        "error_message": task.error_message,
        "metadata_valid": task.metadata_valid,
        "metadata": task.metadata.model_dump(by_alias=True, exclude_none=True),
        "created_at": task.created_at.isoformat(),
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


def _run_summary(run: AgentRun) -> dict[str, Any]:
    return run.model_dump(mode="json", exclude={"changes"}) | {"change_count": len(run.changes)}


def _vault_payload(outcome: VaultOutcome) -> dict[str, Any]:
    # the token itself never leaves the process through a tool
    return {
        "ok": outcome.ok,
        "status": outcome.status.value,
        "error": outcome.error.value if outcome.error else None,
        "message": outcome.message,
    }


def _outcome_payload(outcome: Outcome[Task]) -> dict[str, Any]:
    return {
        "ok": outcome.ok,
        "error": outcome.error.value if outcome.error else None,
        "message": outcome.message,
        "task": _task_summary(outcome.value) if outcome.value is not None else None,
        "warnings": [{"kind": kind.value, "message": message} for kind, message in outcome.warnings],
    }


def register_tools(server: FastMCP, *, workspace: AgentWorkspace) -> ToolHandles:
    """Register the autodidact tools on the server."""

    async def _sign_in(
        user_id: str,
        access_token: str,
        provider_token: str | None = None,
        provider: str = "github",
        user_metadata: dict[str, Any] | None = None,
        provider_scopes: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Apply a session issued by the identity provider."""

        app_metadata: dict[str, Any] = {"provider": provider}
        if provider_scopes:
            app_metadata["provider_scopes"] = list(provider_scopes)
        session = Session(
            access_token=access_token,
            provider_token=provider_token,
            user=SessionUser(
                id=user_id,
                app_metadata=app_metadata,
                user_metadata=user_metadata or {},
            ),
        )
        await workspace.on_session_change(session)
        _emit_log(context, "info", "Session applied", extra={"user_id": user_id})
        installation = workspace.binding.installation
        return {
            "user_id": user_id,
            "has_github_auth": workspace.binding.has_github_auth,
            "github_username": installation.github_username if installation else None,
            "binding_error": workspace.binding.error,
            "vault_status": workspace.vault.state.status.value,
        }

    async def _sign_out(context: Context | None = None) -> dict[str, Any]:
        """Tear down the current session."""

        previous = workspace.user_id
        await workspace.on_session_change(None)
        _emit_log(context, "info", "Session cleared", extra={"user_id": previous})
        return {"signed_out": previous is not None, "user_id": previous}

    async def _store_token(token: str, context: Context | None = None) -> dict[str, Any]:
        """Encrypt and persist a personal access token for the current user."""

        outcome = await workspace.store_token(token)
        _emit_log(
            context,
            "info" if outcome.ok else "warning",
            "Store token finished",
            extra={"status": outcome.status.value},
        )
        return _vault_payload(outcome)

    async def _clear_token(context: Context | None = None) -> dict[str, Any]:
        outcome = await workspace.clear_token()
        _emit_log(context, "info", "Clear token finished", extra={"status": outcome.status.value})
        return _vault_payload(outcome)

    def _token_status() -> dict[str, Any]:
        state = workspace.vault.state
        return {
            "status": state.status.value,
            "unlocked": bool(state.token),
            "has_stored_token": state.has_stored_token,
            "storage_available": state.storage_available,
            "last_updated": state.last_updated.isoformat() if state.last_updated else None,
            "error": state.error,
            "resolved_token_available": workspace.resolve_token() is not None,
        }

    async def _create_task(
        instruction: str,
        repo: dict[str, Any] | None = None,
        files: list[dict[str, Any]] | None = None,
        additional_context: str | None = None,
        auto_apply: bool | None = None,
        token: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a pending task and ask the remote service to process it."""

        provided = {
            "repo": repo,
            "files": files,
            "additional_context": additional_context,
            "auto_apply": auto_apply,
            "token": token,
        }
        try:
            options = TaskOptions.model_validate(
                {key: value for key, value in provided.items() if value is not None}
            )
        except ValidationError as exc:
            return _outcome_payload(Outcome.failure(ErrorKind.VALIDATION_FAILED, str(exc)))

        outcome = await workspace.create_task(instruction, options)
        _emit_log(
            context,
            "info" if outcome.ok else "warning",
            "Create task finished",
            extra={
                "ok": outcome.ok,
                "error": outcome.error.value if outcome.error else None,
                "warnings": len(outcome.warnings),
            },
        )
        return _outcome_payload(outcome)

    def _list_tasks(limit: int = 20, status: str | None = None) -> dict[str, Any]:
        tasks = [task for task in workspace.sync.tasks if status is None or task.status == status]
        return {
            "user_id": workspace.sync.user_id,
            "count": len(tasks),
            "tasks": [_task_summary(task) for task in tasks[: max(limit, 0)]],
            "error": workspace.sync.errors.get("tasks"),
        }

    async def _execute_parallel(
        instruction: str,
        agent_count: int = 3,
        repo: dict[str, Any] | None = None,
        token: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run several remote agents on one instruction and wait for all of them."""

        runs = await workspace.execute_parallel(instruction, agent_count, repo=repo, token=token)
        completed = sum(1 for run in runs if run.status == "completed")
        _emit_log(
            context,
            "info",
            "Parallel execution finished",
            extra={"agents": len(runs), "completed": completed},
        )
        return {
            "count": len(runs),
            "completed": completed,
            "failed": len(runs) - completed,
            "runs": [_run_summary(run) for run in runs],
        }

    def _list_runs() -> dict[str, Any]:
        runs = workspace.parallel.runs
        return {
            "executing": workspace.parallel.is_executing,
            "count": len(runs),
            "runs": [_run_summary(run) for run in runs],
        }

    def _clear_runs() -> dict[str, Any]:
        cleared = len(workspace.parallel.runs)
        workspace.clear_runs()
        return {"cleared": cleared}

    def _sync_status() -> dict[str, Any]:
        sync = workspace.sync
        return {
            "user_id": sync.user_id,
            "collections": {
                name: len(sync.collection(name))
                for name in ("tasks", "activities", "metrics", "knowledge_nodes")
            },
            "errors": sync.errors,
            "active_subscriptions": [
                {"table": subscription.table, "owner_id": subscription.owner_id}
                for subscription in sync.active_subscriptions
            ],
            "stats": sync.stats.model_dump(),
        }

    tool_sign_in = server.tool(
        name="sign_in",
        description=(
            "Apply an identity-provider session: unlock the token vault, bind the GitHub "
            "installation and start realtime sync for the user."
        ),
    )(_sign_in)

    tool_sign_out = server.tool(
        name="sign_out",
        description="Sign out: lock the vault and stop every realtime subscription.",
    )(_sign_out)

    tool_store_token = server.tool(
        name="store_token",
        description="Encrypt a GitHub personal access token with the session key and store it locally.",
        annotations={
            "safety": {
                "level": "caution",
                "notes": "The token is stored encrypted; it is never echoed back",
            }
        },
    )(_store_token)

    tool_clear_token = server.tool(
        name="clear_token",
        description="Remove the stored GitHub token for the current user.",
    )(_clear_token)

    tool_token_status = server.tool(
        name="token_status",
        description="Report whether a token is stored, unlocked, locked or unavailable.",
    )(_token_status)

    tool_create_task = server.tool(
        name="create_task",
        description="Create a pending task for the current user and hand it to the remote processor.",
    )(_create_task)

    tool_list_tasks = server.tool(
        name="list_tasks",
        description="List the current user's tasks as last synced from the backing store.",
    )(_list_tasks)

    tool_execute_parallel = server.tool(
        name="execute_parallel",
        description="Run several remote agents concurrently on one instruction and report each run.",
    )(_execute_parallel)

    tool_list_runs = server.tool(
        name="list_runs",
        description="List local agent runs with their progress and estimates.",
    )(_list_runs)

    tool_clear_runs = server.tool(
        name="clear_runs",
        description="Discard local agent run state. Remote tasks are not affected.",
    )(_clear_runs)

    tool_sync_status = server.tool(
        name="sync_status",
        description="Show realtime sync collections, per-collection errors and subscriptions.",
    )(_sync_status)

    return ToolHandles(
        sign_in=tool_sign_in,
        sign_out=tool_sign_out,
        store_token=tool_store_token,
        clear_token=tool_clear_token,
        token_status=tool_token_status,
        create_task=tool_create_task,
        list_tasks=tool_list_tasks,
        execute_parallel=tool_execute_parallel,
        list_runs=tool_list_runs,
        clear_runs=tool_clear_runs,
        sync_status=tool_sync_status,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
