# src/routinelink/core/events.py

from __future__ import annotations

"""
Domain events emitted after state transitions.

Each event carries enough denormalized state (task / stat / project snapshot and
the acting user) for a subscriber to update its view without a follow-up fetch.
Events are built only after the corresponding store write has returned.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..tasks.task_models import DailyStat, Project, Task
    from .ports import EventPublisher

logger = logging.getLogger(__name__)


class Channel(StrEnum):
    TASKS = "tasks-channel"
    PROJECTS = "projects-channel"
    STATS = "stats-channel"


class EventKind(StrEnum):
    TASK_CREATED = "task-created"
    TASK_UPDATED = "task-updated"
    TASK_COMPLETED = "task-completed"
    TASK_DELETED = "task-deleted"
    STATS_UPDATED = "stats-updated"
    PROJECT_CREATED = "project-created"
    PROJECT_UPDATED = "project-updated"
    PROJECT_DELETED = "project-deleted"


@dataclass(frozen=True, slots=True)
class DomainEvent:
    kind: EventKind
    channel: Channel
    actor_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "channel": self.channel.value,
            "payload": dict(self.payload),
        }


def task_event(kind: EventKind, task: Task, actor_id: str | None, **extra: Any) -> DomainEvent:
    payload: dict[str, Any] = {"task": task.to_dict(), "user_id": actor_id}
    payload.update(extra)
    return DomainEvent(kind=kind, channel=Channel.TASKS, actor_id=actor_id, payload=payload)


def task_deleted(task_id: str, actor_id: str | None) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.TASK_DELETED,
        channel=Channel.TASKS,
        actor_id=actor_id,
        payload={"task_id": task_id, "user_id": actor_id},
    )


def stats_updated(stat: DailyStat, actor_id: str | None = None) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.STATS_UPDATED,
        channel=Channel.STATS,
        actor_id=actor_id or stat.user_id,
        payload={"user_id": stat.user_id, "streak": stat.streak, "stat": stat.to_dict()},
    )


def stats_reset(user_id: str, reset_type: str, actor_id: str | None) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.STATS_UPDATED,
        channel=Channel.STATS,
        actor_id=actor_id,
        payload={"user_id": user_id, "reset_type": reset_type},
    )


def project_event(kind: EventKind, project: Project, actor_id: str | None) -> DomainEvent:
    return DomainEvent(
        kind=kind,
        channel=Channel.PROJECTS,
        actor_id=actor_id,
        payload={"project": project.to_dict(), "user_id": actor_id},
    )


def project_deleted(project_id: str, actor_id: str | None) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.PROJECT_DELETED,
        channel=Channel.PROJECTS,
        actor_id=actor_id,
        payload={"project_id": project_id, "user_id": actor_id},
    )


async def publish_event(publisher: EventPublisher | None, event: DomainEvent) -> bool:
    """
    Publish after a successful write.

    The transport is at-least-once and the write already happened, so a failed
    publish is logged and reported as False instead of failing the caller.
    """
    if publisher is None:
        return False
    try:
        await publisher.publish(event)
        return True
    except Exception:
        logger.exception("publish failed kind=%s channel=%s", event.kind.value, event.channel.value)
        return False
