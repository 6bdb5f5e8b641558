from __future__ import annotations

import asyncio
from typing import Any

from autodidact.config import AutodidactSettings
from autodidact.identity import Session, SessionUser
from autodidact.orchestrator import PROCESS_TASK, TOKEN_HEADER, FakeFunctionsClient
from autodidact.store import MemoryRowStore
from autodidact.vault import CredentialVault, FileKeyValueStore, MemoryKeyValueStore, VaultStatus
from autodidact.workspace import AgentWorkspace


def make_session(
    user_id: str = "u1",
    *,
    access_token: str = "sess-1",
    provider_token: str | None = None,
    provider: str = "email",
) -> Session:
    metadata: dict[str, Any] = {"provider_id": "4242", "user_name": "octocat"}
    return Session(
        access_token=access_token,
        provider_token=provider_token,
        user=SessionUser(id=user_id, app_metadata={"provider": provider}, user_metadata=metadata),
    )


def make_workspace(storage: MemoryKeyValueStore | None = None):
    store = MemoryRowStore()
    functions = FakeFunctionsClient()
    workspace = AgentWorkspace(
        store,
        CredentialVault(storage or MemoryKeyValueStore()),
        functions,
        plan_delay_seconds=0,
        notifier=lambda _: None,
    )
    return workspace, store, functions


def test_session_change_wires_every_component() -> None:
    workspace, store, _ = make_workspace()

    asyncio.run(workspace.on_session_change(make_session()))

    assert workspace.user_id == "u1"
    assert workspace.tasks.user_id == "u1"
    assert workspace.sync.user_id == "u1"
    assert len(workspace.sync.active_subscriptions) == 4
    assert workspace.vault.state.status is VaultStatus.ABSENT


def test_sign_out_tears_everything_down() -> None:
    workspace, store, _ = make_workspace()

    async def scenario():
        await workspace.on_session_change(make_session())
        await workspace.store_token("ghp_abc123")
        await workspace.on_session_change(None)

    asyncio.run(scenario())

    assert workspace.user_id is None
    assert workspace.tasks.user_id is None
    assert workspace.sync.active_subscriptions == []
    assert store.feed.subscriptions == []
    assert workspace.vault.token == ""
    assert workspace.resolve_token() is None


def test_token_resolution_priority() -> None:
    workspace, _, _ = make_workspace()

    async def scenario():
        await workspace.on_session_change(make_session())
        await workspace.store_token("ghp_vault")
        vault_only = workspace.resolve_token()

        await workspace.on_session_change(
            make_session(provider="github", provider_token="gho_provider")
        )
        with_provider = workspace.resolve_token()

        await workspace.on_session_change(make_session())
        from_installation = workspace.resolve_token()
        return vault_only, with_provider, from_installation

    vault_only, with_provider, from_installation = asyncio.run(scenario())

    assert vault_only == "ghp_vault"
    assert with_provider == "gho_provider"
    assert from_installation == "gho_provider"


def test_rotated_secret_locks_vault_but_keeps_record() -> None:
    storage = MemoryKeyValueStore()
    workspace, _, _ = make_workspace(storage)

    async def scenario():
        await workspace.on_session_change(make_session(access_token="sess-1"))
        await workspace.store_token("ghp_abc123")
        await workspace.on_session_change(make_session(access_token="sess-2"))

    asyncio.run(scenario())

    state = workspace.vault.state
    assert state.status is VaultStatus.LOCKED
    assert state.has_stored_token is True
    assert workspace.resolve_token() is None


def test_create_task_forwards_resolved_token() -> None:
    workspace, _, functions = make_workspace()

    async def scenario():
        await workspace.on_session_change(make_session())
        await workspace.store_token("ghp_vault")
        return await workspace.create_task("Write docs")

    outcome = asyncio.run(scenario())

    assert outcome.ok is True
    name, body, headers = functions.invocations[-1]
    assert name == PROCESS_TASK
    assert body == {"taskId": outcome.value.id}
    assert headers == {TOKEN_HEADER: "ghp_vault"}
    assert workspace.sync.tasks[0].id == outcome.value.id


def test_execute_parallel_and_clear_runs() -> None:
    workspace, _, functions = make_workspace()
    functions.handlers["bedrock-agent"] = lambda body: {"taskId": "job"}
    functions.handlers["process-task-bedrock"] = lambda body: {"stats": {}}

    runs = asyncio.run(workspace.execute_parallel("Add logging", 2))

    assert [run.status for run in runs] == ["completed", "completed"]
    workspace.clear_runs()
    assert workspace.parallel.runs == ()


def test_workspace_vault_follows_writes_from_another_context(tmp_path, monkeypatch) -> None:
    vault_path = tmp_path / "vault"
    monkeypatch.setenv("AUTODIDACT_VAULT_PATH", str(vault_path))
    monkeypatch.setenv("AUTODIDACT_VAULT_POLL", "0.01")
    monkeypatch.setenv("AUTODIDACT_PROFILE_PATHS", str(tmp_path / "profiles"))
    workspace = AgentWorkspace.from_settings(
        AutodidactSettings(_env_file=None),
        store=MemoryRowStore(),
        functions=FakeFunctionsClient(),
        notifier=lambda _: None,
    )
    other_tab = CredentialVault(FileKeyValueStore(vault_path))

    async def wait_for(predicate) -> bool:
        for _ in range(300):
            if predicate():
                return True
            await asyncio.sleep(0.01)
        return False

    async def scenario():
        await workspace.on_session_change(make_session())
        assert workspace.vault.token == ""

        await other_tab.persist("u1", "ghp_from_other_tab", "sess-1")
        saw_write = await wait_for(lambda: workspace.vault.token == "ghp_from_other_tab")

        await other_tab.clear("u1")
        saw_clear = await wait_for(lambda: not workspace.vault.has_stored_token)

        await workspace.close()
        leftover = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        return saw_write, saw_clear, leftover

    saw_write, saw_clear, leftover = asyncio.run(scenario())

    assert saw_write is True
    assert saw_clear is True
    assert leftover == []
    assert workspace.resolve_token() is None
