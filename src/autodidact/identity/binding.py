"""Reconcile federated sessions with the stored provider installation."""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import ValidationError

from ..store.base import RowStore, RowStoreError
from .models import Installation, Session

logger = logging.getLogger(__name__)

INSTALLATIONS_TABLE = "github_installations"
REMOTE_USER_ID_CLAIMS = ("user_id", "provider_id", "sub")
REMOTE_USERNAME_CLAIMS = ("user_name", "preferred_username", "name")


def _first_claim(claims: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = claims.get(key)
        if value not in (None, ""):
            return value
    return None


def extract_claims(session: Session) -> tuple[int | None, str | None]:
    """Return ``(remote_user_id, remote_username)`` from the session's claims."""

    claims = session.user.user_metadata
    raw_id = _first_claim(claims, REMOTE_USER_ID_CLAIMS)
    remote_id: int | None
    try:
        remote_id = int(str(raw_id).strip()) if raw_id is not None else None
    except ValueError:
        remote_id = None
    username = _first_claim(claims, REMOTE_USERNAME_CLAIMS)
    return remote_id, (str(username) if username is not None else None)


class IdentityBinding:
    """Upsert the installation row for a session, then fetch the newest one."""

    def __init__(self, store: RowStore, *, provider: str = "github") -> None:
        self._store = store
        self._provider = provider
        self._installation: Installation | None = None
        self._error: str | None = None

    @property
    def installation(self) -> Installation | None:
        return self._installation

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def has_github_auth(self) -> bool:
        return bool(self._installation and self._installation.access_token)

    def applies_to(self, session: Session | None) -> bool:
        return bool(session and session.provider_token and session.user.provider == self._provider)

    async def bind(self, session: Session) -> Installation | None:
        if not self.applies_to(session):
            return None

        remote_id, username = extract_claims(session)
        if remote_id is None or not username:
            logger.warning(
                "Missing provider user metadata",
                extra={"user_id": session.user_id, "provider": self._provider},
            )
            return None

        scopes = session.user.app_metadata.get("provider_scopes") or []
        if isinstance(scopes, str):
            scopes = [part for part in re.split(r"[,\s]+", scopes) if part]
        row = {
            "user_id": session.user_id,
            "github_user_id": remote_id,
            "github_username": username,
            "access_token": session.provider_token,
            "token_type": "oauth",
            "scope": " ".join(str(scope) for scope in scopes),
        }
        try:
            stored = await self._store.upsert(
                INSTALLATIONS_TABLE, row, on_conflict=("user_id", "github_user_id")
            )
            installation = Installation.from_row(stored)
        except (RowStoreError, ValidationError) as exc:
            logger.error("Failed to save provider installation", extra={"error": str(exc)})
            self._error = str(exc) or "Failed to save provider installation"
            return None

        self._installation = installation
        self._error = None
        logger.info(
            "Saved provider installation",
            extra={"user_id": session.user_id, "github_user_id": remote_id},
        )
        return installation

    async def fetch_installation(self, user_id: str | None) -> Installation | None:
        if not user_id:
            self._installation = None
            return None
        try:
            rows = await self._store.select(
                INSTALLATIONS_TABLE,
                filters={"user_id": user_id},
                order_by="created_at",
                descending=True,
                limit=1,
            )
            installation = Installation.from_row(rows[0]) if rows else None
        except (RowStoreError, ValidationError) as exc:
            logger.error("Failed to fetch provider installation", extra={"error": str(exc)})
            self._error = str(exc) or "Failed to fetch provider installation"
            self._installation = None
            return None

        self._installation = installation
        return installation

    async def on_session(self, session: Session | None) -> Installation | None:
        """Run once per session transition: bind when applicable, then fetch."""

        self._error = None
        if session is None:
            self._installation = None
            return None
        if self.applies_to(session):
            await self.bind(session)
        return await self.fetch_installation(session.user_id)


__all__ = ["IdentityBinding", "INSTALLATIONS_TABLE", "extract_claims"]
