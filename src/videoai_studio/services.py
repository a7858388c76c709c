"""Process-wide Supabase client and the pipeline wired on top of it."""

from __future__ import annotations

import logging

from supabase import Client, create_client

from .config import audio_bucket, image_bucket, require_env, video_bucket
from .pipeline import GenerationPipeline
from .quota import QuotaGate
from .storage import MediaStorage
from .store import ProjectStore

logger = logging.getLogger(__name__)

supabase: Client | None = None
_pipeline: GenerationPipeline | None = None
_pipeline_client: Client | None = None


def get_supabase() -> Client:
    """Return the shared client, creating it from the environment on first use."""

    global supabase
    if supabase is None:
        url = require_env("SUPABASE_URL")
        key = require_env("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_KEY")
        supabase = create_client(url, key)
        logger.info("Supabase client created for %s", url)
    return supabase


def get_pipeline() -> GenerationPipeline:
    global _pipeline, _pipeline_client
    client = get_supabase()
    # Rebuilt when the client is swapped so the store lock follows the client.
    if _pipeline is None or _pipeline_client is not client:
        _pipeline = GenerationPipeline(
            ProjectStore(client),
            QuotaGate(client),
            MediaStorage(client, image_bucket()),
            MediaStorage(client, video_bucket()),
            MediaStorage(client, audio_bucket()),
        )
        _pipeline_client = client
    return _pipeline
