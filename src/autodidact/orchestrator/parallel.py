"""Fan one instruction out to several remote agents and track their progress."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, ValidationError

from ..outcomes import Notification, Notifier, log_notifier
from ..profiles.models import DEFAULT_PROFILE, AgentProfile
from ..store.models import RepoCoordinates
from .functions import (
    CREATE_AGENT_JOB,
    RUN_AGENT_JOB,
    FunctionsClient,
    RemoteInvocationError,
    credential_headers,
)
from .pricing import estimate_cost, estimate_time, sample_complexity

logger = logging.getLogger(__name__)

RunStatus = Literal["idle", "running", "completed", "error"]
RunListener = Callable[["AgentRun"], None]

ANALYZING = (20, "Analyzing codebase...")
PLANNING = (40, "Creating execution plan...")
GENERATING = (60, "Generating code changes...")
COMPLETED = (100, "Completed")


class AgentRun(BaseModel):
    """Local-only progress record of one agent. Replaced, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    agent_id: str
    task_id: str = ""
    status: RunStatus = "idle"
    progress: int = 0
    current_step: str = "Initializing..."
    files_changed: int = 0
    lines_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    start_time: datetime
    estimated_time_remaining: int | None = None
    estimated_cost: float = 0.0
    actual_cost: float | None = None
    changes: tuple[dict[str, Any], ...] = ()


class ParallelExecutor:
    """Run ``agent_count`` agents concurrently; each one fails on its own."""

    def __init__(
        self,
        functions: FunctionsClient,
        *,
        notifier: Notifier = log_notifier,
        profile: AgentProfile = DEFAULT_PROFILE,
        plan_delay_seconds: float = 1.0,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._functions = functions
        self._notify = notifier
        self._profile = profile
        self._plan_delay = plan_delay_seconds
        self._rng = rng
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._runs: tuple[AgentRun, ...] = ()
        self._listeners: list[RunListener] = []
        self._in_flight = 0

    @property
    def runs(self) -> tuple[AgentRun, ...]:
        return self._runs

    @property
    def is_executing(self) -> bool:
        return self._in_flight > 0

    @property
    def profile(self) -> AgentProfile:
        return self._profile

    def get_run(self, run_id: str) -> AgentRun | None:
        return next((run for run in self._runs if run.id == run_id), None)

    def add_listener(self, listener: RunListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def clear_runs(self) -> None:
        """Forget every local run. Remote work is left alone."""

        logger.info("Clearing agent runs", extra={"count": len(self._runs)})
        self._runs = ()

    async def execute_parallel(
        self,
        instruction: str,
        agent_count: int,
        repo: RepoCoordinates | dict[str, Any] | None = None,
        token: str | None = None,
    ) -> list[AgentRun]:
        """Start the runs, wait for all of them and return their final snapshots."""

        if not instruction or not instruction.strip():
            return []

        try:
            repo_payload = self._repo_payload(repo)
            new_runs = self._new_runs(agent_count)
        except (ValueError, ValidationError) as exc:
            self._notify(Notification("Invalid request", str(exc), "destructive"))
            return []

        self._in_flight += 1
        try:
            self._runs = self._runs + new_runs
            for run in new_runs:
                self._emit(run)
            await asyncio.gather(
                *(self._execute(run, instruction, repo_payload, token) for run in new_runs)
            )
            self._notify(
                Notification("Tasks completed", f"All {agent_count} agents finished execution")
            )
        finally:
            self._in_flight -= 1

        run_ids = {run.id for run in new_runs}
        return [run for run in self._runs if run.id in run_ids]

    def _new_runs(self, agent_count: int) -> tuple[AgentRun, ...]:
        if agent_count < 1:
            raise ValueError("agent_count must be at least 1")

        batch = uuid4().hex[:8]
        runs = []
        for index in range(agent_count):
            complexity = sample_complexity(self._rng)
            runs.append(
                AgentRun(
                    id=f"agent-{batch}-{index}",
                    agent_id=f"Agent {index + 1}",
                    status="running",
                    start_time=self._clock(),
                    estimated_time_remaining=estimate_time(complexity, profile=self._profile),
                    estimated_cost=estimate_cost(complexity, profile=self._profile).total,
                )
            )
        return tuple(runs)

    @staticmethod
    def _repo_payload(repo: RepoCoordinates | dict[str, Any] | None) -> dict[str, Any] | None:
        if repo is None:
            return None
        if isinstance(repo, dict):
            repo = RepoCoordinates.model_validate(repo)
        return repo.model_dump(by_alias=True, exclude_none=True)

    async def _execute(
        self,
        run: AgentRun,
        instruction: str,
        repo: dict[str, Any] | None,
        token: str | None,
    ) -> None:
        try:
            self._checkpoint(run.id, ANALYZING)
            job_id = await self._analyze(run, instruction, repo, token)
            self._update(run.id, task_id=job_id)

            self._checkpoint(run.id, PLANNING)
            await self._plan(run, job_id)

            self._checkpoint(run.id, GENERATING)
            result = await self._generate(run, job_id, token)
            self._complete(run, result)
        except Exception as exc:  # a failing agent must not take its siblings down
            logger.warning(
                "Agent run failed",
                extra={"run_id": run.id, "agent_id": run.agent_id, "error": str(exc)},
            )
            self._update(
                run.id,
                status="error",
                current_step=str(exc) or "Failed",
                estimated_time_remaining=0,
            )

    async def _analyze(
        self,
        run: AgentRun,
        instruction: str,
        repo: dict[str, Any] | None,
        token: str | None,
    ) -> str:
        body: dict[str, Any] = {
            "instruction": instruction,
            "model": self._profile.model,
            "autoApply": False,
        }
        if repo is not None:
            body["repo"] = repo
        data = await self._functions.invoke(CREATE_AGENT_JOB, body, headers=credential_headers(token))
        job_id = data.get("taskId")
        if not job_id:
            raise RemoteInvocationError(CREATE_AGENT_JOB, "Remote agent did not return a task id")
        return str(job_id)

    async def _plan(self, run: AgentRun, job_id: str) -> None:
        if self._plan_delay > 0:
            await self._sleep(self._plan_delay)

    async def _generate(self, run: AgentRun, job_id: str, token: str | None) -> dict[str, Any]:
        return await self._functions.invoke(
            RUN_AGENT_JOB, {"taskId": job_id}, headers=credential_headers(token)
        )

    def _complete(self, run: AgentRun, result: dict[str, Any]) -> None:
        stats = result.get("stats") or {}
        lines_added = int(stats.get("linesAdded") or 0)
        lines_removed = int(stats.get("linesRemoved") or 0)
        progress, step = COMPLETED
        self._update(
            run.id,
            status="completed",
            progress=progress,
            current_step=step,
            files_changed=int(stats.get("filesChanged") or 0),
            lines_added=lines_added,
            lines_removed=lines_removed,
            lines_changed=lines_added + lines_removed,
            actual_cost=result.get("cost") or run.estimated_cost,
            estimated_time_remaining=0,
            changes=tuple(result.get("changes") or ()),
        )

    def _checkpoint(self, run_id: str, checkpoint: tuple[int, str]) -> None:
        progress, step = checkpoint
        self._update(run_id, progress=progress, current_step=step)

    def _update(self, run_id: str, **changes: Any) -> AgentRun | None:
        for index, current in enumerate(self._runs):
            if current.id == run_id:
                break
        else:
            logger.debug("Dropping update for unknown run", extra={"run_id": run_id})
            return None

        updated = current.model_copy(update=changes)
        self._runs = self._runs[:index] + (updated,) + self._runs[index + 1 :]
        self._emit(updated)
        return updated

    def _emit(self, run: AgentRun) -> None:
        for listener in list(self._listeners):
            try:
                listener(run)
            except Exception:  # listener errors never affect runs
                logger.exception("Run listener failed", extra={"run_id": run.id})


__all__ = ["AgentRun", "ParallelExecutor", "RunStatus"]
