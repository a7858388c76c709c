import base64
import json

import pytest

from _http_dummy import DummyResponse
from videoai_studio import image_gateway, media, poller, script_gateway, video_gateway, voice_gateway
from videoai_studio.app import app
from videoai_studio.fal_queue import JobHandle

AUTH = {"Authorization": "Bearer token-u1"}

BERLIN_SCRIPT = {
    "title": "The Night the Wall Fell",
    "music": "Slow cold war synths rising to a hopeful choir",
    "scenes": [
        {
            "scene_number": n,
            "title": f"Scene {n}",
            "visual": f"East Berlin crowd, moment {n}",
            "narration": "Crowds press toward the checkpoint as guards hesitate tonight",
            "audio_description": "distant chanting",
        }
        for n in range(1, 17)
    ],
}


class Spy:
    def __init__(self, target):
        self.target = target
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        return self.target(*args, **kwargs)


@pytest.fixture()
def studio(dummy_supabase, monkeypatch):
    dummy_supabase.auth.add_token("token-u1", "u1")
    dummy_supabase.add_subscription("u1", quota=5)

    content = json.dumps(BERLIN_SCRIPT)

    def fake_post(url, headers, json, timeout):
        return DummyResponse({"choices": [{"message": {"content": f"```json\n{content}\n```"}}]})

    def submit_image(prompt, scene_title=None, **kwargs):
        return JobHandle("img-" + str(abs(hash(prompt))), "https://s", "https://r")

    def submit_video(image_url, prompt, **kwargs):
        return JobHandle("vid-" + str(abs(hash(prompt))), "https://s", "https://r")

    def await_job(handle, poll_interval, timeout):
        if handle.request_id.startswith("img-"):
            return {"images": [{"url": f"https://fal.media/{handle.request_id}.png"}]}
        return {"video": {"url": f"https://fal.media/{handle.request_id}.mp4"}}

    def download(url, timeout):
        if url.endswith(".mp4"):
            return DummyResponse(content=b"mp4", headers={"Content-Type": "video/mp4"})
        return DummyResponse(content=b"png", headers={"Content-Type": "image/png"})

    monkeypatch.setattr(script_gateway.requests, "post", fake_post)
    monkeypatch.setattr(image_gateway, "submit_image", submit_image)
    video_spy = Spy(submit_video)
    monkeypatch.setattr(video_gateway, "submit_video", video_spy)
    monkeypatch.setattr(poller, "await_job", await_job)
    monkeypatch.setattr(media.requests, "get", download)
    return {"client": app.test_client(), "supabase": dummy_supabase, "video_spy": video_spy}


def _approve(client):
    script = client.post("/generate-script", json={"topic": "The fall of the Berlin Wall"}).get_json()["script"]
    resp = client.post(
        "/projects", json={"topic": "The fall of the Berlin Wall", "script": script}, headers=AUTH
    )
    assert resp.status_code == 201
    return resp.get_json()


def test_berlin_wall_end_to_end(studio):
    client = studio["client"]

    resp = client.post("/generate-script", json={"topic": "The fall of the Berlin Wall", "visualStyle": "digital-noir"})
    assert resp.status_code == 200
    script = resp.get_json()["script"]
    assert script["scene_count"] == 16
    assert len({scene["scene_number"] for scene in script["scenes"]}) == 16

    project = _approve(client)
    assert project["status"] == "generating"
    project_id = project["id"]

    resp = client.post(f"/projects/{project_id}/images", json={"wait": True, "styleId": "digital-noir"}, headers=AUTH)
    assert resp.status_code == 200
    results = resp.get_json()["results"]
    assert len(results) == 16
    assert all(item["success"] for item in results)

    resp = client.post(
        "/generate-video",
        json={"projectId": project_id, "sceneNumber": 1, "prompt": "Crowd surges through the gate", "videoDuration": 6},
        headers=AUTH,
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "completed"
    assert body["videoUrl"].startswith("https://storage.test/generated-videos/")
    assert body["videosGenerated"] == 1
    assert body["videosQuota"] == 5

    resp = client.post(f"/projects/{project_id}/complete", headers=AUTH)
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "completed"

    full = client.get(f"/projects/{project_id}?full=1", headers=AUTH).get_json()
    assert len(full["media"]) == 16
    assert full["media"]["1"]["video"]["url"] == body["videoUrl"]
    assert full["media"]["2"]["video"] is None


def test_quota_exceeded_never_calls_the_provider(studio):
    client = studio["client"]
    project_id = _approve(client)["id"]
    client.post(f"/projects/{project_id}/images", json={"wait": True, "sceneNumbers": [1]}, headers=AUTH)
    studio["supabase"].rows("subscriptions")[0]["videos_generated"] = 5

    resp = client.post(
        "/generate-video",
        json={"projectId": project_id, "sceneNumber": 1, "prompt": "p", "imageUrl": "https://img"},
        headers=AUTH,
    )

    assert resp.status_code == 429
    body = resp.get_json()
    assert body["reason"] == "quota_exceeded"
    assert body["videosGenerated"] == 5
    assert studio["video_spy"].calls == 0


def test_generate_video_without_subscription_is_403(studio):
    client = studio["client"]
    project_id = _approve(client)["id"]
    client.post(f"/projects/{project_id}/images", json={"wait": True, "sceneNumbers": [1]}, headers=AUTH)
    studio["supabase"].rows("subscriptions")[0]["status"] = "canceled"

    resp = client.post("/generate-video", json={"projectId": project_id, "sceneNumber": 1, "prompt": "p"}, headers=AUTH)
    assert resp.status_code == 403
    assert studio["video_spy"].calls == 0


def test_generate_video_validation(studio):
    client = studio["client"]
    assert client.post("/generate-video", json={"sceneNumber": 1}).status_code == 401
    resp = client.post("/generate-video", json={"sceneNumber": 1}, headers=AUTH)
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "invalid_request"
    resp = client.post("/generate-video", json={"projectId": "missing", "sceneNumber": 1}, headers=AUTH)
    assert resp.status_code == 404


def test_background_image_fanout_through_celery(studio):
    client = studio["client"]
    project_id = _approve(client)["id"]

    resp = client.post(f"/projects/{project_id}/images", json={"sceneNumbers": [1, 2]}, headers=AUTH)

    assert resp.status_code == 202
    assert resp.get_json()["status"] == "queued"
    full = client.get(f"/projects/{project_id}?full=1", headers=AUTH).get_json()
    assert sorted(full["media"]) == ["1", "2"]


def test_generate_image_checks_quota_without_counting(studio):
    client = studio["client"]
    project_id = _approve(client)["id"]

    resp = client.post(
        "/generate-image",
        json={"prompt": "A guard tower at dusk", "styleId": "arcane", "projectId": project_id, "sceneNumber": 3},
        headers=AUTH,
    )

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["imageUrl"].startswith("https://storage.test/generated-images/")
    assert body["recordId"].startswith("img-")
    assert studio["supabase"].rows("subscriptions")[0]["videos_generated"] == 0
    full = client.get(f"/projects/{project_id}?full=1", headers=AUTH).get_json()
    assert full["media"]["3"]["image"]["url"] == body["imageUrl"]


def test_generate_script_errors(studio, monkeypatch):
    client = studio["client"]
    resp = client.post("/generate-script", json={})
    assert resp.status_code == 400

    monkeypatch.setattr(
        script_gateway.requests, "post", lambda *a, **k: DummyResponse({"error": "slow down"}, 429)
    )
    resp = client.post("/generate-script", json={"topic": "x"})
    assert resp.status_code == 429
    assert resp.get_json()["reason"] == "rate_limited"


def test_generate_prompts_accepts_script_object(studio, monkeypatch):
    captured = {}

    def fake_prompts(script_text, visual_style=None):
        captured["script"] = script_text
        return [{"scene_number": 1, "scene_title": "a", "prompt": "b"}]

    monkeypatch.setattr(script_gateway, "generate_image_prompts", fake_prompts)
    resp = studio["client"].post("/generate-prompts", json={"script": {"title": "Berlin"}})
    assert resp.status_code == 200
    assert resp.get_json()["prompts"][0]["prompt"] == "b"
    assert json.loads(captured["script"]) == {"title": "Berlin"}


def test_generate_voice(studio, monkeypatch):
    monkeypatch.setattr(voice_gateway, "synthesize", lambda narration: (b"RIFF", "audio/wav"))
    resp = studio["client"].post("/generate-voice", json={"narration": "Hello"})
    assert resp.status_code == 200
    assert base64.b64decode(resp.get_json()["audioBase64"]) == b"RIFF"
    assert resp.get_json()["contentType"] == "audio/wav"

    assert studio["client"].post("/generate-voice", json={}).status_code == 400


def test_check_subscription(studio):
    client = studio["client"]
    resp = client.post("/check-subscription", headers=AUTH)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["hasAccess"] is True
    assert body["videosQuota"] == 5
    assert body["planDisplayName"] == "Creator"
    assert body["cancelAtPeriodEnd"] is False

    resp = client.post("/check-subscription")
    assert resp.status_code == 400
    assert resp.get_json()["hasAccess"] is False


def test_project_crud(studio):
    client = studio["client"]
    project_id = _approve(client)["id"]

    listed = client.get("/projects", headers=AUTH).get_json()
    assert [item["id"] for item in listed] == [project_id]
    assert "script" not in listed[0]

    resp = client.patch(f"/projects/{project_id}", json={"title": "Renamed", "status": "draft"}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.get_json()["title"] == "Renamed"
    assert client.patch(f"/projects/{project_id}", json={"status": "nope"}, headers=AUTH).status_code == 400

    studio["supabase"].auth.add_token("token-u2", "u2")
    other = {"Authorization": "Bearer token-u2"}
    assert client.get(f"/projects/{project_id}", headers=other).status_code == 404
    assert client.delete(f"/projects/{project_id}", headers=other).status_code == 404

    assert client.delete(f"/projects/{project_id}", headers=AUTH).status_code == 204
    assert client.get(f"/projects/{project_id}", headers=AUTH).status_code == 404


def test_invalid_token_is_401(studio):
    resp = studio["client"].get("/projects", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.get_json()["reason"] == "unauthenticated"


def test_cors_preflight_and_headers(studio):
    client = studio["client"]
    resp = client.options("/generate-video")
    assert resp.status_code == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    resp = client.post("/generate-script", json={})
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_metrics_ip_allow_list(studio):
    client = studio["client"]
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"flask_http_requests_total" in resp.data
    resp = client.get("/metrics", environ_base={"REMOTE_ADDR": "10.1.2.3"})
    assert resp.status_code == 403


@pytest.mark.parametrize(
    "extra",
    [{"numImages": "many"}, {"numImages": [2]}, {"numImages": 0}, {"imageSize": 16}],
)
def test_generate_image_rejects_malformed_options(studio, extra):
    resp = studio["client"].post(
        "/generate-image", json={"prompt": "A guard tower", **extra}, headers=AUTH
    )
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "invalid_request"


def test_unexpected_errors_are_json(studio, monkeypatch):
    def explode(narration):
        raise RuntimeError("boom")

    monkeypatch.setattr(voice_gateway, "synthesize", explode)
    resp = studio["client"].post("/generate-voice", json={"narration": "Hello"})
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Internal server error", "reason": "internal_error"}

    resp = studio["client"].get("/no-such-route")
    assert resp.status_code == 404
    assert resp.get_json()["reason"] == "not_found"


def test_generate_voice_stores_narration_on_the_project(studio, monkeypatch):
    client = studio["client"]
    project_id = _approve(client)["id"]
    monkeypatch.setattr(voice_gateway, "synthesize", lambda narration: (b"RIFF", "audio/wav"))

    assert client.post("/generate-voice", json={"projectId": project_id, "sceneNumber": 1}).status_code == 401
    resp = client.post("/generate-voice", json={"projectId": project_id}, headers=AUTH)
    assert resp.status_code == 400

    resp = client.post("/generate-voice", json={"projectId": project_id, "sceneNumber": 1}, headers=AUTH)
    assert resp.status_code == 200
    body = resp.get_json()
    assert base64.b64decode(body["audioBase64"]) == b"RIFF"
    assert body["audioUrl"].startswith("https://storage.test/generated-audio/")

    full = client.get(f"/projects/{project_id}?full=1", headers=AUTH).get_json()
    assert full["media"]["1"]["audio"]["url"] == body["audioUrl"]
    assert full["media"]["1"]["audio"]["prompt"] == BERLIN_SCRIPT["scenes"][0]["narration"]
