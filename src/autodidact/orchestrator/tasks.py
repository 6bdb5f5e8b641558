"""Single-task creation and remote processing hand-off."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ..outcomes import ErrorKind, Notification, Notifier, Outcome, log_notifier
from ..store.base import RowStore, RowStoreError
from ..store.models import TASK_TRANSITIONS, FileSnapshot, RepoCoordinates, Task, can_transition
from ..sync.realtime import RealtimeStateSync
from .functions import PROCESS_TASK, FunctionsClient, RemoteInvocationError, credential_headers

logger = logging.getLogger(__name__)

TASKS_TABLE = "tasks"


class TaskOptions(BaseModel):
    """Optional inputs of a task; only fields that were provided reach the metadata."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    repo: RepoCoordinates | None = None
    files: list[FileSnapshot] | None = None
    additional_context: str | None = None
    auto_apply: bool | None = None
    token: str | None = None

    def metadata(self) -> dict[str, Any]:
        return self.model_dump(
            by_alias=True,
            exclude_unset=True,
            exclude_none=True,
            exclude={"token"},
        )


class TaskOrchestrator:
    """Create tasks for the current user and ask the remote service to process them."""

    def __init__(
        self,
        store: RowStore,
        functions: FunctionsClient,
        sync: RealtimeStateSync,
        *,
        notifier: Notifier = log_notifier,
        token_provider: Callable[[], str | None] | None = None,
    ) -> None:
        self._store = store
        self._functions = functions
        self._sync = sync
        self._notify = notifier
        self._token_provider = token_provider or (lambda: None)
        self._user_id: str | None = None
        self._submitting = False

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def set_user(self, user_id: str | None) -> None:
        self._user_id = user_id

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    async def create_task(self, instruction: str, options: TaskOptions | None = None) -> Outcome[Task]:
        """Insert a pending task and hand it to ``process-task``.

        A failed hand-off is a warning only: the task stays ``pending`` and its
        terminal state arrives later through the realtime sync.
        """

        if not self._user_id:
            self._notify(
                Notification("Authentication required", "Sign in to create tasks.", "destructive")
            )
            return Outcome.failure(ErrorKind.AUTHENTICATION_REQUIRED, "No authenticated user")

        text = (instruction or "").strip()
        if not text:
            self._notify(
                Notification("Invalid task", "Instruction must not be empty.", "destructive")
            )
            return Outcome.failure(ErrorKind.VALIDATION_FAILED, "Instruction must not be empty")

        options = options or TaskOptions()
        row = {
            "user_id": self._user_id,
            "instruction": text,
            "status": "pending",
            "metadata": options.metadata(),
        }

        self._submitting = True
        try:
            try:
                stored = await self._store.insert(TASKS_TABLE, row)
                task = Task.from_row(stored)
            except (RowStoreError, ValidationError) as exc:
                logger.error("Failed to create task", extra={"error": str(exc)})
                self._notify(Notification("Error", "Failed to create task", "destructive"))
                return Outcome.failure(ErrorKind.PERSISTENCE_FAILED, str(exc) or "Failed to create task")

            self._sync.prepend("tasks", task)
            logger.info("Task created", extra={"task_id": task.id, "user_id": self._user_id})
            outcome: Outcome[Task] = Outcome.success(task)

            token = options.token or self._token_provider()
            try:
                await self._functions.invoke(
                    PROCESS_TASK, {"taskId": task.id}, headers=credential_headers(token)
                )
            except RemoteInvocationError as exc:
                logger.warning(
                    "Task processing call failed",
                    extra={"task_id": task.id, "error": str(exc)},
                )
                self._notify(Notification("Error", "Failed to process task", "destructive"))
                outcome.warn(ErrorKind.REMOTE_INVOCATION_FAILED, str(exc) or "Failed to process task")
            return outcome
        finally:
            self._submitting = False


__all__ = [
    "TASK_TRANSITIONS",
    "TaskOptions",
    "TaskOrchestrator",
    "can_transition",
]
