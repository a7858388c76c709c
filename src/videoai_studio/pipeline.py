"""Topic → script → per-scene image, video and narration orchestration.

Every unit of work is persisted as soon as it finishes. Image failures are
recorded per scene and never stop sibling scenes; video failures are recorded
and then raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from time import monotonic
from typing import Any

from prometheus_client import Counter, Histogram

from . import fal_queue, image_gateway, poller, video_gateway, voice_gateway
from .config import image_poll_settings, video_poll_settings
from .errors import GenerationError, StorageError, ValidationError
from .media import UrlMedia, load_media_bytes
from .models import GeneratedMedia, MediaKind, Project, ProjectStatus, Scene, Script
from .quota import IncrementResult, QuotaGate
from .storage import MediaStorage, object_key
from .store import ProjectStore

logger = logging.getLogger(__name__)

STAGE_OUTCOMES = Counter(
    "videoai_generation_total", "generation steps by stage and outcome", ["stage", "outcome"]
)
PROVIDER_WAIT = Histogram(
    "videoai_provider_wait_seconds", "time spent waiting on queue providers", ["stage"]
)


@dataclass(frozen=True)
class VideoOutcome:
    media: GeneratedMedia
    usage: IncrementResult


@dataclass(frozen=True)
class NarrationOutcome:
    media: GeneratedMedia
    content: bytes
    content_type: str


def _content_type(content_type: str, family: str, fallback: str) -> str:
    return content_type if content_type.startswith(f"{family}/") else fallback


class GenerationPipeline:
    def __init__(
        self,
        store: ProjectStore,
        quota: QuotaGate,
        images: MediaStorage,
        videos: MediaStorage,
        audio: MediaStorage,
    ) -> None:
        self.store = store
        self.quota = quota
        self.images = images
        self.videos = videos
        self.audio = audio

    def approve_script(
        self,
        user_id: str,
        script: Script,
        *,
        topic: str,
        title: str | None = None,
        project_id: str | None = None,
    ) -> Project:
        """Persist ``script`` and move the project to ``generating``.

        A new project is created unless ``project_id`` points at an existing
        one owned by ``user_id``, in which case its script is replaced.
        """

        title = (title or script.title or topic).strip()
        if project_id:
            self.store.get(project_id, user_id=user_id)
            project = self.store.update(
                project_id,
                title=title,
                topic=topic,
                script=script,
                status=ProjectStatus.GENERATING,
            )
        else:
            project = self.store.create(
                user_id,
                title=title,
                topic=topic,
                script=script,
                status=ProjectStatus.GENERATING,
            )
        logger.info(
            "Script approved for project %s (%d scenes)", project.id, script.scene_count
        )
        return project

    def rehost_image(self, project_id: str, scene_number: int, url: str) -> str:
        content, content_type = load_media_bytes(UrlMedia(url), provider=fal_queue.PROVIDER)
        content_type = _content_type(content_type, "image", "image/png")
        return self.images.upload(object_key(project_id, scene_number, content_type), content, content_type)

    def generate_scene_image(
        self,
        project_id: str,
        scene: Scene,
        *,
        style_id: str | None = None,
        prompt: str | None = None,
    ) -> GeneratedMedia:
        """Generate, re-host and persist the image of one scene.

        Provider, timeout, upload and empty-prompt failures are stored as a
        failure marker and returned instead of raised.
        """

        prompt = prompt or scene.visual or scene.narration or ""
        settings = image_poll_settings()
        started = monotonic()
        try:
            handle = image_gateway.submit_image(prompt, scene.title, style_id=style_id)
            result = poller.await_job(handle, settings.interval, settings.timeout)
            PROVIDER_WAIT.labels("image").observe(monotonic() - started)
            url = self.rehost_image(project_id, scene.scene_number, image_gateway.image_urls(result)[0])
        except (GenerationError, StorageError, ValidationError) as exc:
            logger.error(
                "Image generation failed for project %s scene %d after %.1fs: %s",
                project_id,
                scene.scene_number,
                monotonic() - started,
                exc.message,
            )
            STAGE_OUTCOMES.labels("image", "failed").inc()
            media = GeneratedMedia.failed(MediaKind.IMAGE, scene.scene_number, prompt, exc.message)
        else:
            STAGE_OUTCOMES.labels("image", "completed").inc()
            media = GeneratedMedia(MediaKind.IMAGE, scene.scene_number, url, prompt)
        self.store.set_scene_media(project_id, media)
        return media

    async def generate_images(
        self,
        project_id: str,
        *,
        user_id: str | None = None,
        style_id: str | None = None,
        scene_numbers: Iterable[int] | None = None,
        prompts: dict[int, str] | None = None,
    ) -> list[GeneratedMedia]:
        """Fan out one image job per scene and wait for all of them."""

        project = self.store.get(project_id, user_id=user_id, full=True)
        if project.script is None:
            raise ValidationError("The project has no approved script", project_id=project_id)

        scenes = list(project.script.scenes)
        if scene_numbers is not None:
            wanted = set(scene_numbers)
            unknown = wanted - {scene.scene_number for scene in scenes}
            if unknown:
                raise ValidationError(
                    f"Unknown scene numbers: {sorted(unknown)}", project_id=project_id
                )
            scenes = [scene for scene in scenes if scene.scene_number in wanted]

        prompts = prompts or {}
        logger.info("Generating %d images for project %s", len(scenes), project_id)
        results = await asyncio.gather(
            *(
                asyncio.to_thread(
                    self.generate_scene_image,
                    project_id,
                    scene,
                    style_id=style_id,
                    prompt=prompts.get(scene.scene_number),
                )
                for scene in scenes
            )
        )
        failed = sum(1 for media in results if not media.success)
        logger.info(
            "Image fan-out for project %s finished: %d ok, %d failed",
            project_id,
            len(results) - failed,
            failed,
        )
        return list(results)

    def generate_scene_video(
        self,
        user_id: str,
        project_id: str,
        scene_number: int,
        *,
        prompt: str | None = None,
        image_url: str | None = None,
        style_id: str | None = None,
        duration: Any = None,
        prompt_optimizer: bool | None = None,
    ) -> VideoOutcome:
        project = self.store.get(project_id, user_id=user_id, full=True)
        media = project.media or {}
        entry = media.get(scene_number)
        if entry is None or not entry.has_image:
            raise ValidationError(
                f"Scene {scene_number} has no generated image yet",
                project_id=project_id,
                scene_number=scene_number,
            )
        scene = project.script.scene(scene_number) if project.script else None
        if not prompt and scene is not None:
            prompt = video_gateway.build_video_prompt(scene, style_id, entry.image.prompt)
        if not prompt:
            raise ValidationError("A video prompt is required", scene_number=scene_number)

        self.quota.ensure_allowed(user_id)

        settings = video_poll_settings()
        started = monotonic()
        try:
            handle = video_gateway.submit_video(
                image_url or entry.image.url,
                prompt,
                duration=duration,
                prompt_optimizer=prompt_optimizer,
            )
            result = poller.await_job(handle, settings.interval, settings.timeout)
            PROVIDER_WAIT.labels("video").observe(monotonic() - started)
            content, content_type = load_media_bytes(
                video_gateway.video_reference(result), provider=handle.provider
            )
        except GenerationError as exc:
            logger.error(
                "Video generation failed for project %s scene %d after %.1fs: %s",
                project_id,
                scene_number,
                monotonic() - started,
                exc.message,
            )
            STAGE_OUTCOMES.labels("video", "failed").inc()
            self.store.set_scene_media(
                project_id,
                GeneratedMedia.failed(MediaKind.VIDEO, scene_number, prompt, exc.message),
            )
            raise

        content_type = _content_type(content_type, "video", "video/mp4")
        url = self.videos.upload(object_key(project_id, scene_number, content_type), content, content_type)
        video = GeneratedMedia(MediaKind.VIDEO, scene_number, url, prompt)
        self.store.set_scene_media(project_id, video)
        STAGE_OUTCOMES.labels("video", "completed").inc()

        usage = self.quota.increment(user_id)
        logger.info(
            "Video ready for project %s scene %d (%d/%d videos used)",
            project_id,
            scene_number,
            usage.new_count,
            usage.quota,
        )
        return VideoOutcome(video, usage)

    def narrate_scene(
        self,
        user_id: str,
        project_id: str,
        scene_number: int,
        *,
        narration: str | None = None,
    ) -> NarrationOutcome:
        """Synthesize one scene's narration and keep it with the project.

        Without ``narration`` the scene's script text is spoken. A failed
        synthesis is recorded on the scene and raised.
        """

        project = self.store.get(project_id, user_id=user_id, full=True)
        scene = project.script.scene(scene_number) if project.script else None
        if scene is None:
            raise ValidationError(
                f"Unknown scene number: {scene_number}",
                project_id=project_id,
                scene_number=scene_number,
            )
        narration = narration or scene.narration

        try:
            content, content_type = voice_gateway.synthesize(narration)
        except GenerationError as exc:
            logger.error(
                "Narration failed for project %s scene %d: %s",
                project_id,
                scene_number,
                exc.message,
            )
            STAGE_OUTCOMES.labels("audio", "failed").inc()
            self.store.set_scene_media(
                project_id,
                GeneratedMedia.failed(MediaKind.AUDIO, scene_number, narration or "", exc.message),
            )
            raise

        content_type = _content_type(content_type, "audio", "audio/wav")
        url = self.audio.upload(object_key(project_id, scene_number, content_type), content, content_type)
        media = GeneratedMedia(MediaKind.AUDIO, scene_number, url, narration)
        self.store.set_scene_media(project_id, media)
        STAGE_OUTCOMES.labels("audio", "completed").inc()
        return NarrationOutcome(media, content, content_type)

    def complete_project(self, user_id: str, project_id: str) -> Project:
        """Mark the project completed once every scene has an image."""

        project = self.store.get(project_id, user_id=user_id, full=True)
        if project.script is None:
            raise ValidationError("The project has no approved script", project_id=project_id)
        media = project.media or {}
        missing = [
            scene.scene_number
            for scene in project.script.scenes
            if scene.scene_number not in media or not media[scene.scene_number].has_image
        ]
        if missing:
            raise ValidationError(
                "Some scenes have no successful image yet",
                project_id=project_id,
                missing_scenes=missing,
            )
        return self.store.update(project_id, status=ProjectStatus.COMPLETED)
