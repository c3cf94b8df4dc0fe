# src/routinelink/tasks/project_api.py

from __future__ import annotations

import logging
import uuid

from ..core.errors import NotFound, PermissionDenied
from ..core.events import EventKind, project_deleted, project_event, publish_event
from ..core.state import AppState
from .task_models import DEFAULT_PROJECT_COLOR, Project, validate_project_fields

logger = logging.getLogger(__name__)


def _check_can_modify(state: AppState, project: Project, acting_user: str) -> None:
    # Shared (owner-less) projects: admin only. Owned projects: owner or admin.
    if state.is_admin(acting_user):
        return
    if project.is_shared:
        raise PermissionDenied("only an admin can modify shared projects")
    if project.owner_id != acting_user:
        raise PermissionDenied(f"project {project.id} belongs to {project.owner_id}")


def _load(state: AppState, project_id: str) -> Project:
    project = state.store.get_project(project_id)
    if project is None:
        raise NotFound("project", project_id)
    return project


async def create_project(
    state: AppState,
    *,
    name: str,
    acting_user: str,
    color: str = DEFAULT_PROJECT_COLOR,
    is_shared: bool = False,
) -> Project:
    validate_project_fields(name, color)
    if is_shared and not state.is_admin(acting_user):
        raise PermissionDenied("only an admin can create shared projects")

    now = state.clock.now()
    project = Project(
        id=uuid.uuid4().hex,
        name=name.strip(),
        color=color,
        owner_id=None if is_shared else acting_user,
        created_at=now,
        updated_at=now,
    )
    state.store.upsert_project(project)
    logger.info("Project created id=%s shared=%s by=%s", project.id, is_shared, acting_user)
    await publish_event(state.bus, project_event(EventKind.PROJECT_CREATED, project, acting_user))
    return project


def list_projects(state: AppState, user_id: str) -> list[Project]:
    return state.store.list_projects_for_user(user_id)


async def update_project(
    state: AppState,
    project_id: str,
    *,
    acting_user: str,
    name: str | None = None,
    color: str | None = None,
    is_shared: bool | None = None,
) -> Project:
    project = _load(state, project_id)
    _check_can_modify(state, project, acting_user)

    new_name = project.name if name is None else name.strip()
    new_color = project.color if color is None else color
    validate_project_fields(new_name, new_color)

    owner_id = project.owner_id
    if is_shared is not None:
        if is_shared != project.is_shared and not state.is_admin(acting_user):
            raise PermissionDenied("only an admin can share or unshare projects")
        owner_id = None if is_shared else (project.owner_id or acting_user)

    project.name = new_name
    project.color = new_color
    project.owner_id = owner_id
    project.updated_at = state.clock.now()
    state.store.upsert_project(project)

    await publish_event(state.bus, project_event(EventKind.PROJECT_UPDATED, project, acting_user))
    return project


async def delete_project(state: AppState, project_id: str, *, acting_user: str) -> None:
    project = _load(state, project_id)
    _check_can_modify(state, project, acting_user)

    state.store.delete_project(project_id)
    logger.info("Project deleted id=%s by=%s", project_id, acting_user)
    await publish_event(state.bus, project_deleted(project_id, acting_user))
