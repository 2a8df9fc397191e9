"""Pydantic models for the Freelo API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProjectInfo(BaseModel):
    id: int
    name: str


class RawTask(BaseModel):
    """Task as returned by ``/all-tasks``."""

    id: int
    name: str
    project: ProjectInfo


class WorkItem(BaseModel):
    """A work item the user can track time against."""

    id: int
    name: str
    project_id: int
    project_name: str

    @property
    def key(self) -> str:
        """Item ID as used for tracking keys."""
        return str(self.id)

    @property
    def label(self) -> str:
        return f"{self.project_name} / {self.name}"

    @classmethod
    def from_raw(cls, raw: RawTask) -> WorkItem:
        return cls(
            id=raw.id,
            name=raw.name,
            project_id=raw.project.id,
            project_name=raw.project.name,
        )


class StartTrackingResponse(BaseModel):
    uuid: str


def parse_task_list(payload: dict[str, Any]) -> list[WorkItem]:
    """Convert an ``/all-tasks`` response body into work items."""
    tasks = payload.get("data", {}).get("tasks", [])
    return [WorkItem.from_raw(RawTask.model_validate(task)) for task in tasks]


class ItemCache:
    """Read-only lookup of work items by ID, loaded once per engine start."""

    UNKNOWN_LABEL = "unknown"

    def __init__(self, items: list[WorkItem] | None = None):
        self._items: dict[str, WorkItem] = {item.key: item for item in items or []}

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: str | int | None) -> WorkItem | None:
        if item_id is None:
            return None
        return self._items.get(str(item_id))

    def name_for(self, item_id: str | int | None) -> str:
        item = self.get(item_id)
        return item.name if item else self.UNKNOWN_LABEL

    def items(self) -> list[WorkItem]:
        return list(self._items.values())

    def replace(self, items: list[WorkItem]) -> None:
        self._items = {item.key: item for item in items}
