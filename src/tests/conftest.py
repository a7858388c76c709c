import os

import pytest

# Read at import time by the worker module
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "1")

from _supabase_dummy import DummySupabase
from videoai_studio import services


@pytest.fixture(autouse=True)
def provider_env(monkeypatch):
    monkeypatch.setenv("FAL_KEY", "fal-test-key")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("CARTESIA_API_KEY", "cartesia-test")
    monkeypatch.setenv("IMAGE_POLL_INTERVAL_MS", "10")
    monkeypatch.setenv("IMAGE_POLL_TIMEOUT_MS", "500")
    monkeypatch.setenv("VIDEO_POLL_INTERVAL_MS", "10")
    monkeypatch.setenv("VIDEO_POLL_TIMEOUT_MS", "500")


@pytest.fixture()
def dummy_supabase(monkeypatch):
    client = DummySupabase()
    monkeypatch.setattr(services, "supabase", client)
    return client


@pytest.fixture()
def anyio_backend():
    return "asyncio"
