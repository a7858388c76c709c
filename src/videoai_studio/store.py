"""CRUD for ``video_projects`` rows through the Supabase REST client."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from supabase import Client

from .errors import NotFoundError, StorageError, ValidationError
from .models import GeneratedMedia, MediaMap, Project, ProjectStatus, Script, now_iso
from .schema import PROJECT_FULL_COLUMNS, PROJECT_METADATA_COLUMNS

logger = logging.getLogger(__name__)

TABLE = "video_projects"


def _execute(query: Any, action: str) -> list[dict[str, Any]]:
    try:
        response = query.execute()
    except Exception as exc:
        logger.exception("Supabase %s failed", action)
        raise StorageError(f"Database {action} failed: {exc}") from exc
    return list(getattr(response, "data", None) or [])


def _to_project(row: dict[str, Any]) -> Project:
    try:
        return Project.from_row(row)
    except ValidationError as exc:
        raise StorageError(f"Project {row.get('id')} holds invalid data: {exc.message}") from exc


class ProjectStore:
    def __init__(self, client: Client) -> None:
        self.client = client
        # Serializes media read-modify-write cycles issued from this process.
        self._media_lock = Lock()

    def _table(self):
        return self.client.table(TABLE)

    def create(
        self,
        user_id: str,
        *,
        title: str,
        topic: str,
        script: Script | None = None,
        status: ProjectStatus = ProjectStatus.DRAFT,
    ) -> Project:
        timestamp = now_iso()
        row = {
            "user_id": user_id,
            "title": title,
            "prompt": topic,
            "script": script.to_document() if script else None,
            "media": MediaMap().to_document(),
            "status": status.value,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        rows = _execute(self._table().insert(row), "insert")
        if not rows:
            raise StorageError("Project insert returned no row")
        project = _to_project({**row, **rows[0]})
        logger.info("Created project %s for user %s", project.id, user_id)
        return project

    def get(self, project_id: str, *, user_id: str | None = None, full: bool = False) -> Project:
        columns = PROJECT_FULL_COLUMNS if full else PROJECT_METADATA_COLUMNS
        query = self._table().select(",".join(columns)).eq("id", project_id)
        if user_id is not None:
            query = query.eq("user_id", user_id)
        rows = _execute(query.limit(1), "select")
        if not rows:
            raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
        return _to_project(rows[0])

    def list_by_owner(self, user_id: str, *, limit: int = 50) -> list[Project]:
        query = (
            self._table()
            .select(",".join(PROJECT_METADATA_COLUMNS))
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
        )
        return [_to_project(row) for row in _execute(query, "select")]

    def update(self, project_id: str, **fields: Any) -> Project:
        """Partially update a project; accepts ``title``, ``topic``, ``script``,
        ``status`` and ``media``."""

        payload: dict[str, Any] = {}
        for name, value in fields.items():
            if name == "title":
                payload["title"] = value
            elif name == "topic":
                payload["prompt"] = value
            elif name == "script":
                payload["script"] = value.to_document() if value is not None else None
            elif name == "status":
                payload["status"] = ProjectStatus(value).value
            elif name == "media":
                payload["media"] = value.to_document()
            else:
                raise ValueError(f"Unknown project field: {name}")
        payload["updated_at"] = now_iso()
        _execute(self._table().update(payload).eq("id", project_id), "update")
        return self.get(project_id, full=True)

    def delete(self, project_id: str, *, user_id: str) -> None:
        self.get(project_id, user_id=user_id)
        _execute(
            self._table().delete().eq("id", project_id).eq("user_id", user_id), "delete"
        )
        logger.info("Deleted project %s", project_id)

    def load_media(self, project_id: str) -> MediaMap:
        rows = _execute(
            self._table().select("id,media").eq("id", project_id).limit(1), "select"
        )
        if not rows:
            raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
        try:
            return MediaMap.from_document(rows[0].get("media"))
        except ValidationError as exc:
            raise StorageError(
                f"Project {project_id} holds an invalid media map: {exc.message}"
            ) from exc

    def set_scene_media(self, project_id: str, media: GeneratedMedia) -> MediaMap:
        """Replace one scene's image or video entry and persist the whole map.

        The map is re-read right before the write so concurrent writers for
        other scenes are not clobbered.
        """

        with self._media_lock:
            current = self.load_media(project_id)
            current.put(media)
            _execute(
                self._table()
                .update({"media": current.to_document(), "updated_at": now_iso()})
                .eq("id", project_id),
                "update",
            )
        logger.info(
            "Stored %s for project %s scene %d (success=%s)",
            media.kind.value,
            project_id,
            media.scene_number,
            media.success,
        )
        return current
