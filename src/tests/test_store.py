import threading

import pytest

from _supabase_dummy import DummySupabase
from videoai_studio.errors import NotFoundError, StorageError
from videoai_studio.models import GeneratedMedia, MediaKind, ProjectStatus, Scene, Script
from videoai_studio.store import ProjectStore

SCRIPT = Script("Berlin", "synths", (Scene(1, "a", "v1", "n1"), Scene(2, "b", "v2", "n2")))


@pytest.fixture()
def store():
    return ProjectStore(DummySupabase())


def test_create_and_get_full(store):
    project = store.create("u1", title="Berlin", topic="The wall", script=SCRIPT)
    loaded = store.get(project.id, user_id="u1", full=True)
    assert loaded.script == SCRIPT
    assert loaded.status is ProjectStatus.DRAFT
    assert loaded.media == {}
    row = store.client.rows("video_projects")[0]
    assert row["script"]["version"] == 1
    assert row["prompt"] == "The wall"


def test_metadata_get_excludes_documents(store):
    project = store.create("u1", title="Berlin", topic="The wall", script=SCRIPT)
    loaded = store.get(project.id)
    assert loaded.script is None
    assert loaded.media is None


def test_get_checks_owner(store):
    project = store.create("u1", title="t", topic="x")
    with pytest.raises(NotFoundError):
        store.get(project.id, user_id="intruder")


def test_list_by_owner_newest_first(store):
    store.client.rows("video_projects").extend(
        [
            {"id": "old", "user_id": "u1", "title": "old", "prompt": "", "status": "draft", "created_at": "2026-01-01"},
            {"id": "new", "user_id": "u1", "title": "new", "prompt": "", "status": "draft", "created_at": "2026-03-01"},
            {"id": "other", "user_id": "u2", "title": "x", "prompt": "", "status": "draft", "created_at": "2026-04-01"},
        ]
    )
    assert [project.id for project in store.list_by_owner("u1")] == ["new", "old"]


def test_update_is_partial(store):
    project = store.create("u1", title="t", topic="x", script=SCRIPT)
    updated = store.update(project.id, status=ProjectStatus.GENERATING, title="New")
    assert updated.title == "New"
    assert updated.status is ProjectStatus.GENERATING
    assert updated.script == SCRIPT
    with pytest.raises(ValueError):
        store.update(project.id, colour="red")


def test_delete_requires_owner(store):
    project = store.create("u1", title="t", topic="x")
    with pytest.raises(NotFoundError):
        store.delete(project.id, user_id="u2")
    store.delete(project.id, user_id="u1")
    assert store.client.rows("video_projects") == []


def test_set_scene_media_rereads_before_write(store):
    project = store.create("u1", title="t", topic="x", script=SCRIPT)
    store.set_scene_media(project.id, GeneratedMedia(MediaKind.IMAGE, 1, "https://one"))
    # Another writer lands scene 2 directly in the row
    row = store.client.rows("video_projects")[0]
    row["media"]["scenes"]["2"] = {"scene_number": 2, "image": {"url": "https://two", "success": True}, "video": None}

    store.set_scene_media(project.id, GeneratedMedia(MediaKind.IMAGE, 1, "https://one-again"))
    media = store.load_media(project.id)
    assert media.image_url(1) == "https://one-again"
    assert media.image_url(2) == "https://two"


def test_concurrent_scene_writes_are_all_kept(store):
    project = store.create("u1", title="t", topic="x")
    threads = [
        threading.Thread(
            target=store.set_scene_media,
            args=(project.id, GeneratedMedia(MediaKind.IMAGE, n, f"https://img/{n}")),
        )
        for n in range(1, 9)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert sorted(store.load_media(project.id)) == list(range(1, 9))


def test_backend_failures_are_storage_errors(store):
    store.client.fail("video_projects", RuntimeError("timeout"))
    with pytest.raises(StorageError):
        store.get("p1")


def test_invalid_stored_document_is_storage_error(store):
    store.client.rows("video_projects").append(
        {"id": "p1", "user_id": "u1", "status": "draft", "media": {"version": 9}}
    )
    with pytest.raises(StorageError):
        store.load_media("p1")
