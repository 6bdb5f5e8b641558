"""FastMCP server bootstrap for the autodidact core."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import FastMCP

from . import __version__
from .config import AutodidactSettings, get_settings
from .store import ChromaUnavailableError, MemoryRowStore, get_row_store
from .tools import register_tools
from .workspace import AgentWorkspace


def configure_logging(level: str) -> None:
    """Configure root logging for the autodidact server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[AutodidactSettings] = None,
    workspace: AgentWorkspace | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the workspace tools and status resource."""

    settings = settings or get_settings()

    store_metadata = {
        "backend": settings.row_store,
        "available": True,
        "error": None,
    }
    if workspace is None:
        try:
            store = get_row_store()
        except ChromaUnavailableError as exc:
            store_metadata.update({"backend": "memory", "error": str(exc)})
            store = MemoryRowStore()
        workspace = AgentWorkspace.from_settings(settings, store=store)

    server = FastMCP(
        name="Autodidact MCP",
        instructions=(
            "Autodidact keeps an encrypted GitHub token per user, mirrors the user's tasks, "
            "activities and metrics from the backing store in realtime, and dispatches "
            "single tasks or parallel agent runs to the remote processor."
        ),
    )

    handles = register_tools(server, workspace=workspace)

    def status_resource() -> str:
        """Return a JSON string summarizing vault, sync and run state."""

        vault_state = workspace.vault.state
        run_counts: dict[str, int] = {}
        for run in workspace.parallel.runs:
            run_counts[run.status] = run_counts.get(run.status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "store": store_metadata,
            "profile": workspace.parallel.profile.id,
            "vault": {
                "status": vault_state.status.value,
                "has_stored_token": vault_state.has_stored_token,
                "storage_available": vault_state.storage_available,
                "error": vault_state.error,
            },
            "identity": {
                "user_id": workspace.user_id,
                "has_github_auth": workspace.binding.has_github_auth,
                "error": workspace.binding.error,
            },
            "sync": {
                "collections": {
                    name: len(workspace.sync.collection(name))
                    for name in ("tasks", "activities", "metrics", "knowledge_nodes")
                },
                "errors": workspace.sync.errors,
                "active_subscriptions": len(workspace.sync.active_subscriptions),
            },
            "runs": {
                "count": len(workspace.parallel.runs),
                "executing": workspace.parallel.is_executing,
                "by_status": run_counts,
            },
        }
        return json.dumps(payload)

    server.resource(
        "resource://autodidact/status",
        name="autodidact_status",
        description="Provides the current runtime status for the autodidact server.",
        mime_type="application/json",
    )(status_resource)

    setattr(server, "workspace", workspace)
    setattr(server, "store_metadata", store_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", status_resource)
    return server


def main() -> None:
    """Entry point for running the autodidact MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching autodidact MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "row_store": getattr(server, "store_metadata", {}).get("backend"),
            "functions_configured": bool(settings.functions_url),
        },
    )
    try:
        server.run()
    finally:
        asyncio.run(server.workspace.close())


if __name__ == "__main__":
    main()
