import json

import pytest

from videoai_studio.errors import ValidationError
from videoai_studio.models import (
    GeneratedMedia,
    MediaKind,
    MediaMap,
    Project,
    ProjectStatus,
    Scene,
    Script,
)


def _script(count=3):
    return Script(
        title="The Berlin Wall",
        music="Tense synth pads",
        scenes=tuple(
            Scene(n, f"Scene {n}", f"visual {n}", f"narration {n}", duration_seconds=2.0)
            for n in range(1, count + 1)
        ),
        total_duration_seconds=2.0 * count,
    )


def test_script_rejects_empty_and_duplicate_scenes():
    with pytest.raises(ValidationError):
        Script("t", "m", ())
    with pytest.raises(ValidationError):
        Script("t", "m", (Scene(1, "a", "v", "n"), Scene(1, "b", "v", "n")))


def test_script_document_round_trip():
    script = _script()
    document = script.to_document()
    assert document["version"] == 1
    assert document["scene_count"] == 3
    assert Script.from_document(json.loads(json.dumps(document))) == script


def test_script_accepts_legacy_json_string():
    raw = json.dumps({"title": "t", "music": "m", "scenes": [{"scene_number": "2", "title": "x", "visual": "v", "narration": "n"}]})
    script = Script.from_document(raw)
    assert script.scene(2).title == "x"
    assert script.scene(1) is None


def test_script_rejects_unknown_version():
    document = _script().to_document()
    document["version"] = 7
    with pytest.raises(ValidationError):
        Script.from_document(document)


@pytest.mark.parametrize("number", [0, -1, "abc", 1.5, True, None])
def test_scene_numbers_must_be_positive_integers(number):
    with pytest.raises(ValidationError):
        Scene.from_dict({"scene_number": number, "title": "t", "visual": "v", "narration": "n"})


def test_regenerating_a_scene_replaces_its_entry():
    media = MediaMap()
    media.put(GeneratedMedia(MediaKind.IMAGE, 2, "https://a", "first"))
    media.put(GeneratedMedia(MediaKind.IMAGE, 3, "https://c", "other"))
    before = MediaMap.from_document(media.to_document())

    media.put(GeneratedMedia(MediaKind.IMAGE, 2, "https://b", "second"))
    assert len(media) == 2
    assert media.image_url(2) == "https://b"
    assert media[3] == before[3]

    document = media.to_document()
    assert MediaMap.from_document(document).to_document() == document


def test_video_entry_keeps_the_image():
    media = MediaMap()
    media.put(GeneratedMedia(MediaKind.IMAGE, 1, "https://img"))
    media.put(GeneratedMedia.failed(MediaKind.VIDEO, 1, "p", "timeout"))
    entry = media[1]
    assert entry.has_image
    assert entry.video.success is False
    assert entry.video.error == "timeout"


def test_narration_is_kept_beside_image_and_video():
    media = MediaMap()
    media.put(GeneratedMedia(MediaKind.IMAGE, 1, "https://img"))
    media.put(GeneratedMedia(MediaKind.AUDIO, 1, "https://voice.wav", "Crowds gather"))

    restored = MediaMap.from_document(json.dumps(media.to_document()))

    assert restored[1].audio.url == "https://voice.wav"
    assert restored[1].audio.prompt == "Crowds gather"
    assert restored[1].has_image
    assert restored[1].video is None


def test_failed_image_is_not_usable():
    media = MediaMap()
    media.put(GeneratedMedia.failed(MediaKind.IMAGE, 4, "p", "nsfw"))
    assert media.image_url(4) is None
    assert not media[4].has_image


def test_media_map_reads_legacy_list():
    legacy = json.dumps(
        [
            {"sceneNumber": 1, "imageUrl": "https://i1", "prompt": "p1", "videoUrl": "https://v1", "videoPrompt": "vp1"},
            {"sceneNumber": 2, "imageUrl": "https://i2", "prompt": "p2"},
        ]
    )
    media = MediaMap.from_document(legacy)
    assert media.image_url(1) == "https://i1"
    assert media[1].video.url == "https://v1"
    assert media[2].video is None


def test_project_from_row_maps_columns():
    row = {
        "id": "p1",
        "user_id": "u1",
        "title": "Berlin",
        "prompt": "The fall of the Berlin Wall",
        "status": "generating",
        "script": _script(2).to_document(),
        "media": {"version": 1, "scenes": {}},
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    project = Project.from_row(row)
    assert project.status is ProjectStatus.GENERATING
    data = project.to_dict()
    assert data["topic"] == "The fall of the Berlin Wall"
    assert data["script"]["scene_count"] == 2
    assert data["media"] == {}
    assert "media" not in Project.from_row({"id": "p2", "status": "draft"}).to_dict()


def test_project_rejects_unknown_status():
    with pytest.raises(ValidationError):
        Project.from_row({"id": "p1", "status": "exploded"})
