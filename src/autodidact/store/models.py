"""Validated records for rows read from the backing store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

TaskStatus = Literal["pending", "running", "completed", "error"]
ChangeAction = Literal["create", "update", "delete"]

# transitions are applied remotely and observed through the change feed
TASK_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running"}),
    "running": frozenset({"completed", "error"}),
    "completed": frozenset(),
    "error": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TASK_TRANSITIONS.get(current, frozenset())


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class RepoCoordinates(_CamelModel):
    owner: str
    name: str
    branch: str | None = None


class FileSnapshot(_CamelModel):
    path: str
    content: str
    sha: str | None = None


class PlanStep(_CamelModel):
    id: str
    title: str
    objective: str
    target_files: list[dict[str, Any]] = Field(
        default_factory=list, validation_alias=AliasChoices("target_files", "targetFiles")
    )


class TaskPlan(_CamelModel):
    summary: str | None = None
    steps: list[PlanStep] = Field(default_factory=list)


class GeneratedChange(_CamelModel):
    path: str
    action: ChangeAction
    description: str | None = None
    language: str | None = None
    diff: str | None = None
    new_content: str | None = Field(
        default=None, validation_alias=AliasChoices("new_content", "newContent")
    )
    summary: str | None = None
    line_delta: int | None = None
    previous_content: str | None = None
    step_id: str | None = None
    step_title: str | None = None
    lines_added: int | None = None
    lines_removed: int | None = None


class TaskStats(_CamelModel):
    lines_changed: int | None = None
    lines_added: int | None = None
    lines_removed: int | None = None
    files_changed: int | None = None
    steps_executed: int | None = None
    changes_proposed: int | None = None
    model: str | None = None


class AutoApplyResult(_CamelModel):
    attempted: bool | None = None
    success: bool | None = None
    commit_sha: str | None = None
    error: str | None = None
    files_changed: list[str] | None = None


class TaskMetadata(_CamelModel):
    """Side-channel data of a task: request inputs plus the job's results."""

    repo: RepoCoordinates | None = None
    files: list[FileSnapshot] | None = None
    additional_context: str | None = None
    auto_apply: bool | None = None
    plan: TaskPlan | None = None
    generated_changes: list[GeneratedChange] | None = None
    stats: TaskStats | None = None
    auto_apply_result: AutoApplyResult | None = None
    github_token_used: bool | None = None


class Task(BaseModel):
    """Server-authoritative unit of requested work."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str | None = None
    instruction: str
    status: TaskStatus
    result: str | None = None
    error_message: str | None = None
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)
    raw_metadata: Any = None
    metadata_valid: bool = True
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Task":
        """Validate a ``tasks`` row.

        Row-level fields must validate. Metadata that does not match
        :class:`TaskMetadata` is not trusted: the task gets empty metadata and the
        raw value is kept on ``raw_metadata`` with ``metadata_valid=False``.
        """

        data = dict(row)
        raw = data.pop("metadata", None)
        task = cls.model_validate(data)
        if raw is None:
            return task
        try:
            metadata = TaskMetadata.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "Task metadata failed validation",
                extra={"task_id": task.id, "errors": exc.error_count()},
            )
            return task.model_copy(update={"raw_metadata": raw, "metadata_valid": False})
        return task.model_copy(update={"metadata": metadata})


class Activity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    message: str
    status: str
    task_id: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime

    @property
    def timestamp(self) -> datetime:
        return self.created_at

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Activity":
        return cls.model_validate(row)


class AgentMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    tasks_completed: int | None = None
    lines_changed: int | None = None
    ai_decisions: int | None = None
    learning_score: float | None = None
    knowledge_nodes: int | None = None
    autonomy_level: float | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AgentMetric":
        return cls.model_validate(row)


class KnowledgeNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    category: str | None = None
    content: str | None = None
    confidence_score: float | None = None
    usage_count: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "KnowledgeNode":
        return cls.model_validate(row)


class AgentStats(BaseModel):
    """Dashboard counters derived from the latest metrics row."""

    model_config = ConfigDict(frozen=True)

    tasks_completed: int = 0
    lines_changed: int = 0
    ai_decisions: int = 0
    learning_score: float = 75
    knowledge_nodes: int = 0
    autonomy_level: float = 92

    @classmethod
    def from_sources(cls, metric: AgentMetric | None, knowledge_count: int) -> "AgentStats":
        if metric is None:
            return cls(knowledge_nodes=knowledge_count)
        defaults = cls()
        return cls(
            tasks_completed=metric.tasks_completed or 0,
            lines_changed=metric.lines_changed or 0,
            ai_decisions=metric.ai_decisions or 0,
            learning_score=(
                metric.learning_score if metric.learning_score is not None else defaults.learning_score
            ),
            knowledge_nodes=knowledge_count,
            autonomy_level=(
                metric.autonomy_level if metric.autonomy_level is not None else defaults.autonomy_level
            ),
        )


__all__ = [
    "Activity",
    "AgentMetric",
    "AgentStats",
    "AutoApplyResult",
    "FileSnapshot",
    "GeneratedChange",
    "KnowledgeNode",
    "PlanStep",
    "RepoCoordinates",
    "Task",
    "TaskMetadata",
    "TaskPlan",
    "TaskStats",
    "TaskStatus",
    "TASK_TRANSITIONS",
    "can_transition",
]
