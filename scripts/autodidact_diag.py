"""Autodidact diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from autodidact.config import AutodidactSettings
from autodidact.identity import INSTALLATIONS_TABLE
from autodidact.store import AgentStats, ChromaRowStore, ChromaUnavailableError
from autodidact.store.models import AgentMetric
from autodidact.vault import CredentialVault, FileKeyValueStore, VaultRecord


def load_store(settings: AutodidactSettings) -> ChromaRowStore:
    if settings.row_store != "chroma":
        print(
            f"Note: AUTODIDACT_ROW_STORE is '{settings.row_store}', so the server keeps rows in "
            f"memory; reading the Chroma store at {settings.chroma_persist_path} instead.",
            file=sys.stderr,
        )
    try:
        store = ChromaRowStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def _select(store: ChromaRowStore, table: str, user_id: str, **kwargs) -> list[dict]:
    try:
        return asyncio.run(store.select(table, filters={"user_id": user_id}, **kwargs))
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def cmd_tasks(args: argparse.Namespace) -> None:
    settings = AutodidactSettings()
    store = load_store(settings)
    rows = _select(store, "tasks", args.user, order_by="created_at", limit=args.limit)
    if args.json:
        print(json.dumps(rows, indent=2, default=str))
    else:
        for row in rows:
            print(f"{row.get('id')} [{row.get('status')}] {row.get('instruction', '')[:60]}")


def cmd_installations(args: argparse.Namespace) -> None:
    settings = AutodidactSettings()
    store = load_store(settings)
    rows = _select(store, INSTALLATIONS_TABLE, args.user, order_by="created_at")
    payload = [
        {
            "id": row.get("id"),
            "github_user_id": row.get("github_user_id"),
            "github_username": row.get("github_username"),
            "token_type": row.get("token_type"),
            "scope": row.get("scope"),
            "has_access_token": bool(row.get("access_token")),
            "created_at": row.get("created_at"),
        }
        for row in rows
    ]
    print(json.dumps(payload, indent=2))


def cmd_vault(args: argparse.Namespace) -> None:
    settings = AutodidactSettings()
    storage = FileKeyValueStore(settings.vault_path)
    if not storage.probe():
        print(f"Vault storage unavailable at {settings.vault_path}")
        raise SystemExit(1)

    key = CredentialVault(storage).storage_key(args.user)
    raw = storage.get(key)
    payload: dict[str, object] = {"user_id": args.user, "key": key, "record": "absent"}
    if raw is not None:
        payload["record"] = "present"
        try:
            record = VaultRecord.from_storage(raw)
        except ValueError as exc:
            payload["valid"] = False
            payload["error"] = str(exc)
        else:
            payload["valid"] = True
            payload["updated_at"] = record.updated_at.isoformat()
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = AutodidactSettings()
    store = load_store(settings)
    tasks = _select(store, "tasks", args.user)
    metrics = _select(store, "agent_metrics", args.user, order_by="updated_at", limit=1)
    knowledge = _select(store, "knowledge_nodes", args.user, limit=100)

    status_counts: dict[str, int] = {}
    for task in tasks:
        status = task.get("status", "unknown")
        status_counts[status] = status_counts.get(status, 0) + 1

    metric = AgentMetric.from_row(metrics[0]) if metrics else None
    stats = AgentStats.from_sources(metric, len(knowledge))
    print(
        json.dumps(
            {
                "user_id": args.user,
                "tasks_total": len(tasks),
                "status_counts": status_counts,
                "stats": stats.model_dump(),
            },
            indent=2,
        )
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autodidact diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_tasks = sub.add_parser("tasks", help="List a user's tasks")
    p_tasks.add_argument("--user", required=True)
    p_tasks.add_argument("--limit", type=int, default=50)
    p_tasks.add_argument("--json", action="store_true", help="Output JSON")
    p_tasks.set_defaults(func=cmd_tasks)

    p_installations = sub.add_parser("installations", help="List a user's GitHub installations")
    p_installations.add_argument("--user", required=True)
    p_installations.set_defaults(func=cmd_installations)

    p_vault = sub.add_parser("vault", help="Report whether a vault record exists (never decrypts)")
    p_vault.add_argument("--user", required=True)
    p_vault.set_defaults(func=cmd_vault)

    p_metrics = sub.add_parser("metrics", help="Show task counts and dashboard stats")
    p_metrics.add_argument("--user", required=True)
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
