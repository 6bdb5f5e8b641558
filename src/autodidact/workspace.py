"""Wire the vault, identity binding, sync and orchestrators for one process."""

from __future__ import annotations

import logging
from typing import Any

from .config import AutodidactSettings, get_settings
from .identity import IdentityBinding, Session
from .orchestrator import (
    AgentRun,
    DisabledFunctionsClient,
    FunctionsClient,
    ParallelExecutor,
    TaskOptions,
    TaskOrchestrator,
)
from .outcomes import Notifier, Outcome, log_notifier
from .profiles import DEFAULT_PROFILE, AgentProfile, ProfileLoader, ProfileLoadError
from .store import RowStore, Task, get_row_store
from .sync import RealtimeStateSync
from .vault import CredentialVault, FileKeyValueStore, KeyValueStore, VaultOutcome

logger = logging.getLogger(__name__)


def resolve_profile(settings: AutodidactSettings) -> AgentProfile:
    """Return the configured default profile, falling back to the built-in one."""

    try:
        return ProfileLoader(settings.profile_paths).get(settings.default_profile)
    except ProfileLoadError as exc:
        logger.warning(
            "Falling back to built-in agent profile",
            extra={"profile": settings.default_profile, "error": str(exc)},
        )
        return DEFAULT_PROFILE


class AgentWorkspace:
    """Everything one signed-in user works with, driven by session changes."""

    def __init__(
        self,
        store: RowStore,
        vault: CredentialVault,
        functions: FunctionsClient,
        *,
        provider: str = "github",
        profile: AgentProfile = DEFAULT_PROFILE,
        plan_delay_seconds: float = 1.0,
        notifier: Notifier = log_notifier,
    ) -> None:
        self.store = store
        self.vault = vault
        self.functions = functions
        self.binding = IdentityBinding(store, provider=provider)
        self.sync = RealtimeStateSync(store)
        self.tasks = TaskOrchestrator(
            store,
            functions,
            self.sync,
            notifier=notifier,
            token_provider=self.resolve_token,
        )
        self.parallel = ParallelExecutor(
            functions,
            notifier=notifier,
            profile=profile,
            plan_delay_seconds=plan_delay_seconds,
        )
        self._session: Session | None = None

    @classmethod
    def from_settings(
        cls,
        settings: AutodidactSettings | None = None,
        *,
        store: RowStore | None = None,
        storage: KeyValueStore | None = None,
        functions: FunctionsClient | None = None,
        notifier: Notifier = log_notifier,
    ) -> "AgentWorkspace":
        settings = settings or get_settings()
        if functions is None:
            if settings.functions_url:
                functions = FunctionsClient(
                    settings.functions_url,
                    api_key=settings.functions_api_key,
                    timeout_seconds=settings.invoke_timeout_seconds,
                )
            else:
                logger.warning("AUTODIDACT_FUNCTIONS_URL is not set; remote calls will fail")
                functions = DisabledFunctionsClient()

        return cls(
            store or get_row_store(),
            CredentialVault(
                storage or FileKeyValueStore(settings.vault_path),
                watch_interval=settings.vault_poll_seconds,
            ),
            functions,
            provider=settings.identity_provider,
            profile=resolve_profile(settings),
            plan_delay_seconds=settings.plan_delay_seconds,
            notifier=notifier,
        )

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def user_id(self) -> str | None:
        return self._session.user_id if self._session else None

    async def on_session_change(self, session: Session | None) -> None:
        """Apply a sign-in, sign-out, user switch or access-secret rotation."""

        self._session = session
        if session is None:
            await self.vault.unbind()
            await self.binding.on_session(None)
            await self.sync.set_user(None)
            self.tasks.set_user(None)
            logger.info("Workspace signed out")
            return

        await self.vault.bind(session.user_id, session.access_token)
        await self.binding.on_session(session)
        await self.sync.set_user(session.user_id)
        self.tasks.set_user(session.user_id)
        logger.info(
            "Workspace session applied",
            extra={"user_id": session.user_id, "has_github_auth": self.binding.has_github_auth},
        )

    def resolve_token(self) -> str | None:
        """Provider token on the session, then the installation's, then the vault's."""

        if self._session is not None and self._session.provider_token:
            return self._session.provider_token
        installation = self.binding.installation
        if installation is not None and installation.access_token:
            return installation.access_token
        return self.vault.token or None

    async def store_token(self, token: str) -> VaultOutcome:
        secret = self._session.access_token if self._session else None
        return await self.vault.persist(self.user_id, token, secret)

    async def clear_token(self) -> VaultOutcome:
        return await self.vault.clear(self.user_id)

    async def create_task(self, instruction: str, options: TaskOptions | None = None) -> Outcome[Task]:
        return await self.tasks.create_task(instruction, options)

    async def execute_parallel(
        self,
        instruction: str,
        agent_count: int,
        repo: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> list[AgentRun]:
        return await self.parallel.execute_parallel(
            instruction, agent_count, repo=repo, token=token or self.resolve_token()
        )

    def clear_runs(self) -> None:
        self.parallel.clear_runs()

    async def close(self) -> None:
        await self.on_session_change(None)
        await self.functions.aclose()


__all__ = ["AgentWorkspace", "resolve_profile"]
