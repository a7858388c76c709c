"""Domain records for projects, scripts and the per-scene media map.

Script and media map are persisted as versioned JSON documents; the
``from_document`` constructors validate what comes back from the database
and still accept the legacy JSON-in-string rows.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import ValidationError

SCRIPT_VERSION = 1
MEDIA_VERSION = 1


def now_iso() -> str:
    """Current UTC time in ISO 8601."""

    return datetime.now(timezone.utc).isoformat()


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _scene_number(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid scene number: {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid scene number: {value!r}") from exc
    if number <= 0 or (isinstance(value, float) and value != number):
        raise ValidationError(f"Invalid scene number: {value!r}")
    return number


def _load_json(raw: Any, what: str) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise ValidationError(f"{what} is not valid JSON") from exc
    return raw


@dataclass(frozen=True)
class Scene:
    scene_number: int
    title: str
    visual: str
    narration: str
    audio_description: str | None = None
    duration_seconds: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Scene":
        if not isinstance(data, Mapping):
            raise ValidationError("Each scene must be an object")
        duration = data.get("duration_seconds")
        return cls(
            scene_number=_scene_number(data.get("scene_number")),
            title=_text(data.get("title")),
            visual=_text(data.get("visual")),
            narration=_text(data.get("narration")),
            audio_description=_text(data.get("audio_description")) or None,
            duration_seconds=float(duration) if isinstance(duration, (int, float)) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "scene_number": self.scene_number,
            "title": self.title,
            "visual": self.visual,
            "narration": self.narration,
        }
        if self.audio_description is not None:
            data["audio_description"] = self.audio_description
        if self.duration_seconds is not None:
            data["duration_seconds"] = self.duration_seconds
        return data


@dataclass(frozen=True)
class Script:
    title: str
    music: str
    scenes: tuple[Scene, ...]
    total_duration_seconds: float | None = None

    def __post_init__(self) -> None:
        if not self.scenes:
            raise ValidationError("A script needs at least one scene")
        numbers = [scene.scene_number for scene in self.scenes]
        if len(set(numbers)) != len(numbers):
            raise ValidationError("Scene numbers must be unique")

    @property
    def scene_count(self) -> int:
        return len(self.scenes)

    def scene(self, scene_number: int) -> Scene | None:
        for scene in self.scenes:
            if scene.scene_number == scene_number:
                return scene
        return None

    @classmethod
    def from_dict(cls, data: Any) -> "Script":
        data = _load_json(data, "Script")
        if not isinstance(data, Mapping):
            raise ValidationError("Script must be an object")
        raw_scenes = data.get("scenes")
        if not isinstance(raw_scenes, list):
            raise ValidationError("Script.scenes must be a list")
        total = data.get("total_duration_seconds")
        return cls(
            title=_text(data.get("title")),
            music=_text(data.get("music")),
            scenes=tuple(Scene.from_dict(scene) for scene in raw_scenes),
            total_duration_seconds=float(total) if isinstance(total, (int, float)) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.title,
            "music": self.music,
            "scenes": [scene.to_dict() for scene in self.scenes],
            "scene_count": self.scene_count,
        }
        if self.total_duration_seconds is not None:
            data["total_duration_seconds"] = self.total_duration_seconds
        return data

    @classmethod
    def from_document(cls, raw: Any) -> "Script":
        data = _load_json(raw, "Stored script")
        if isinstance(data, Mapping):
            version = data.get("version", SCRIPT_VERSION)
            if version != SCRIPT_VERSION:
                raise ValidationError(f"Unsupported script version: {version!r}")
        return cls.from_dict(data)

    def to_document(self) -> dict[str, Any]:
        return {"version": SCRIPT_VERSION, **self.to_dict()}


@dataclass(frozen=True)
class GeneratedMedia:
    kind: MediaKind
    scene_number: int
    url: str | None
    prompt: str = ""
    success: bool = True
    error: str | None = None
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def failed(
        cls, kind: MediaKind, scene_number: int, prompt: str, error: str
    ) -> "GeneratedMedia":
        return cls(kind, scene_number, None, prompt, success=False, error=error)

    @classmethod
    def from_dict(cls, kind: MediaKind, scene_number: int, data: Mapping[str, Any]) -> "GeneratedMedia":
        url = data.get("url")
        return cls(
            kind=kind,
            scene_number=scene_number,
            url=url if isinstance(url, str) and url else None,
            prompt=_text(data.get("prompt")),
            success=bool(data.get("success", url is not None)),
            error=data.get("error") if isinstance(data.get("error"), str) else None,
            updated_at=data.get("updated_at") or now_iso(),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "prompt": self.prompt,
            "success": self.success,
            "updated_at": self.updated_at,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class SceneMedia:
    scene_number: int
    image: GeneratedMedia | None = None
    video: GeneratedMedia | None = None
    audio: GeneratedMedia | None = None

    @property
    def has_image(self) -> bool:
        return self.image is not None and self.image.success and bool(self.image.url)

    def with_media(self, media: GeneratedMedia) -> "SceneMedia":
        if media.kind is MediaKind.IMAGE:
            return replace(self, image=media)
        if media.kind is MediaKind.AUDIO:
            return replace(self, audio=media)
        return replace(self, video=media)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scene_number": self.scene_number,
            "image": self.image.to_dict() if self.image else None,
            "video": self.video.to_dict() if self.video else None,
            "audio": self.audio.to_dict() if self.audio else None,
        }


class MediaMap(dict):
    """Scene-number keyed ``SceneMedia`` entries."""

    def put(self, media: GeneratedMedia) -> SceneMedia:
        entry = self.get(media.scene_number) or SceneMedia(media.scene_number)
        entry = entry.with_media(media)
        self[media.scene_number] = entry
        return entry

    def image_url(self, scene_number: int) -> str | None:
        entry = self.get(scene_number)
        return entry.image.url if entry is not None and entry.has_image else None

    @classmethod
    def from_document(cls, raw: Any) -> "MediaMap":
        data = _load_json(raw, "Stored media map")
        media = cls()
        if data is None:
            return media
        if isinstance(data, list):
            return cls._from_legacy_list(data)
        if not isinstance(data, Mapping):
            raise ValidationError("Stored media map must be an object")
        version = data.get("version", MEDIA_VERSION)
        if version != MEDIA_VERSION:
            raise ValidationError(f"Unsupported media map version: {version!r}")
        scenes = data.get("scenes") or {}
        if not isinstance(scenes, Mapping):
            raise ValidationError("media.scenes must be an object")
        for key, entry in scenes.items():
            number = _scene_number(key)
            if not isinstance(entry, Mapping):
                raise ValidationError(f"Invalid media entry for scene {number}")
            media[number] = SceneMedia(
                number,
                **{
                    kind.value: GeneratedMedia.from_dict(kind, number, entry[kind.value])
                    for kind in MediaKind
                    if isinstance(entry.get(kind.value), Mapping)
                },
            )
        return media

    @classmethod
    def _from_legacy_list(cls, rows: list[Any]) -> "MediaMap":
        media = cls()
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                continue
            number = _scene_number(row.get("sceneNumber") or index + 1)
            image_url = row.get("imageUrl")
            if isinstance(image_url, str) and image_url:
                media.put(
                    GeneratedMedia(MediaKind.IMAGE, number, image_url, _text(row.get("prompt")))
                )
            video_url = row.get("videoUrl")
            if isinstance(video_url, str) and video_url:
                media.put(
                    GeneratedMedia(
                        MediaKind.VIDEO, number, video_url, _text(row.get("videoPrompt"))
                    )
                )
        return media

    def to_document(self) -> dict[str, Any]:
        return {
            "version": MEDIA_VERSION,
            "scenes": {
                str(number): self[number].to_dict() for number in sorted(self)
            },
        }


@dataclass
class Project:
    id: str
    user_id: str
    title: str
    topic: str
    status: ProjectStatus
    script: Script | None = None
    media: MediaMap | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Project":
        status = row.get("status") or ProjectStatus.DRAFT.value
        try:
            project_status = ProjectStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown project status: {status!r}") from exc
        script_raw = row.get("script")
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            title=_text(row.get("title")),
            topic=_text(row.get("prompt")),
            status=project_status,
            script=Script.from_document(script_raw) if script_raw else None,
            media=MediaMap.from_document(row["media"]) if "media" in row else None,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "topic": self.topic,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.script is not None:
            data["script"] = self.script.to_dict()
        if self.media is not None:
            data["media"] = self.media.to_document()["scenes"]
        return data
