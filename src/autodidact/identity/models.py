"""Session and installation records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionUser(BaseModel):
    """Identity claims carried by a federated-login session."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(..., min_length=1)
    email: str | None = None
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def provider(self) -> str | None:
        return self.app_metadata.get("provider")


class Session(BaseModel):
    """Opaque bundle issued by the identity provider.

    ``access_token`` is the short-lived access secret; it rotates and is never
    assumed stable across reloads. ``provider_token`` is the optional long-lived
    token issued by the third-party provider.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str | None = None
    refresh_token: str | None = None
    provider_token: str | None = None
    user: SessionUser

    @property
    def user_id(self) -> str:
        return self.user.id


class Installation(BaseModel):
    """Durable binding between a local account and a provider identity."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    github_user_id: int
    github_username: str
    access_token: str
    token_type: str | None = None
    scope: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Installation":
        return cls.model_validate(row)


__all__ = ["Installation", "Session", "SessionUser"]
