import asyncio
import base64
import json
import os
from time import time

from flask import Flask, Response, g, jsonify, request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    Gauge,
    generate_latest,
)
from werkzeug.exceptions import HTTPException

from . import config, image_gateway, poller, script_gateway, services, voice_gateway, worker
from .auth import require_user, resolve_user
from .errors import StudioError, ValidationError
from .models import GeneratedMedia, MediaKind, ProjectStatus, Script

app = Flask(__name__)
app.secret_key = os.getenv("FLASK_SECRET", "dev-secret-change-me")
app.config["JSONIFY_PRETTYPRINT_REGULAR"] = False

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PATCH, DELETE, OPTIONS",
}

REQS = Counter("flask_http_requests_total", "count", ["method", "endpoint", "status"])
LAT = Histogram("flask_http_request_seconds", "latency", ["endpoint"])
INPROG = Gauge("flask_http_requests_in_progress", "in-progress HTTP requests")

ALLOWED_METRICS_IPS = set(
    os.getenv("METRICS_IP_WHITELIST", "127.0.0.1").split(",")
)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _required_text(data: dict, key: str, message: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


def _positive_int(value, name: str) -> int:
    message = f"{name} must be a positive integer"
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(message)
    try:
        number = int(value)
    except ValueError as exc:
        raise ValidationError(message) from exc
    if number <= 0:
        raise ValidationError(message)
    return number


def _scene_number(value) -> int:
    return _positive_int(value, "sceneNumber")


def _optional_text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value or None


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


@app.before_request
def _t0():
    request._t0 = time()
    if request.method == "OPTIONS":
        return Response(status=204)
    if request.endpoint != "metrics":
        INPROG.inc()
    return None


@app.after_request
def _metrics(resp):
    for name, value in CORS_HEADERS.items():
        resp.headers.setdefault(name, value)
    if request.method == "OPTIONS":
        return resp
    dt = time() - getattr(request, "_t0", time())
    if request.endpoint != "metrics":
        REQS.labels(
            request.method, request.endpoint or "unknown", resp.status_code
        ).inc()
        LAT.labels(request.endpoint or "unknown").observe(dt)
        INPROG.dec()
    return resp


@app.errorhandler(StudioError)
def _studio_error(exc: StudioError):
    if exc.status_code >= 500:
        app.logger.error(
            "%s on %s: %s (%s)", type(exc).__name__, request.path, exc.message, exc.context
        )
    else:
        app.logger.info("%s on %s: %s", type(exc).__name__, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


@app.errorhandler(Exception)
def _unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return jsonify({"error": exc.description, "reason": exc.name.lower().replace(" ", "_")}), exc.code
    app.logger.exception("Unhandled error on %s", request.path)
    return jsonify({"error": "Internal server error", "reason": "internal_error"}), 500


@app.get("/metrics")
def metrics():
    if request.remote_addr not in ALLOWED_METRICS_IPS:
        return jsonify({"error": "forbidden"}), 403
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


@app.post("/generate-script")
def generate_script():
    data = _json_body()
    topic = _required_text(data, "topic", "A topic is required")
    script = script_gateway.generate_script(topic, data.get("visualStyle"))
    return jsonify({"script": script.to_dict()})


@app.post("/generate-prompts")
def generate_prompts():
    data = _json_body()
    script = data.get("script")
    if isinstance(script, dict):
        script = json.dumps(script, ensure_ascii=False)
    if not isinstance(script, str) or not script.strip():
        raise ValidationError("A script is required")
    prompts = script_gateway.generate_image_prompts(script, data.get("visualStyle"))
    return jsonify({"prompts": prompts})


@app.post("/generate-image")
@require_user
def generate_image():
    data = _json_body()
    prompt = _required_text(data, "prompt", "A prompt is required")
    num_images = (
        _positive_int(data["numImages"], "numImages") if data.get("numImages") is not None else 1
    )
    image_size = _optional_text(data, "imageSize")
    project_id = data.get("projectId")
    scene_number = (
        _scene_number(data["sceneNumber"]) if data.get("sceneNumber") is not None else None
    )
    pipeline = services.get_pipeline()
    if project_id and scene_number is not None:
        pipeline.store.get(project_id, user_id=g.user_id)

    pipeline.quota.ensure_allowed(g.user_id)

    style_id = data.get("styleId")
    handle = image_gateway.submit_image(
        prompt,
        data.get("sceneTitle"),
        style_id=style_id,
        num_images=num_images,
        aspect_ratio=image_size,
    )
    settings = config.image_poll_settings()
    options = image_gateway.image_urls(
        poller.await_job(handle, settings.interval, settings.timeout)
    )

    if project_id and scene_number is not None:
        url = pipeline.rehost_image(project_id, scene_number, options[0])
        pipeline.store.set_scene_media(
            project_id, GeneratedMedia(MediaKind.IMAGE, scene_number, url, prompt)
        )
        options = [url, *options[1:]]

    app.logger.info("Image request %s returned %d options", handle.request_id, len(options))
    return jsonify(
        {
            "options": options,
            "imageUrl": options[0],
            "prompt": prompt,
            "styleId": style_id,
            "recordId": handle.request_id,
        }
    )


@app.post("/generate-video")
@require_user
def generate_video():
    data = _json_body()
    project_id = _required_text(data, "projectId", "projectId is required")
    if data.get("sceneNumber") is None:
        raise ValidationError("sceneNumber is required")
    scene_number = _scene_number(data["sceneNumber"])
    prompt = data.get("prompt")
    image_url = data.get("imageUrl")
    if (prompt is not None and not isinstance(prompt, str)) or (
        image_url is not None and not isinstance(image_url, str)
    ):
        raise ValidationError("imageUrl and prompt must be strings")

    outcome = services.get_pipeline().generate_scene_video(
        g.user_id,
        project_id,
        scene_number,
        prompt=prompt,
        image_url=image_url,
        style_id=data.get("styleId"),
        duration=data.get("videoDuration"),
        prompt_optimizer=data.get("promptOptimizer"),
    )
    return jsonify(
        {
            "status": "completed",
            "videoUrl": outcome.media.url,
            "videosGenerated": outcome.usage.new_count,
            "videosQuota": outcome.usage.quota,
        }
    )


@app.post("/generate-voice")
def generate_voice():
    data = _json_body()
    project_id = data.get("projectId")
    if not project_id:
        audio, content_type = voice_gateway.synthesize(data.get("narration"))
        return jsonify(
            {
                "audioBase64": base64.b64encode(audio).decode("ascii"),
                "contentType": content_type,
            }
        )

    # Storing narration on a project needs its owner.
    user_id = resolve_user(request.headers.get("Authorization"))
    if not isinstance(project_id, str):
        raise ValidationError("projectId must be a string")
    if data.get("sceneNumber") is None:
        raise ValidationError("sceneNumber is required with projectId")
    outcome = services.get_pipeline().narrate_scene(
        user_id,
        project_id,
        _scene_number(data["sceneNumber"]),
        narration=_optional_text(data, "narration"),
    )
    return jsonify(
        {
            "audioBase64": base64.b64encode(outcome.content).decode("ascii"),
            "contentType": outcome.content_type,
            "audioUrl": outcome.media.url,
        }
    )


@app.post("/check-subscription")
def check_subscription():
    try:
        user_id = resolve_user(request.headers.get("Authorization"))
        quota = services.get_pipeline().quota
        decision = quota.check(user_id)
        subscription = quota.subscription(user_id) or {}
    except StudioError as exc:
        app.logger.warning("Subscription check failed: %s", exc.message)
        return jsonify({"hasAccess": False, "error": exc.message, "reason": exc.reason}), 400

    return jsonify(
        {
            "hasAccess": decision.allowed,
            "reason": decision.reason,
            "videosGenerated": decision.used,
            "videosQuota": decision.quota,
            "planName": decision.plan_name,
            "planDisplayName": subscription.get("plan_display_name"),
            "currentPeriodEnd": subscription.get("current_period_end"),
            "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end", False)),
        }
    )


@app.post("/projects")
@require_user
def approve_project():
    data = _json_body()
    topic = _required_text(data, "topic", "A topic is required")
    if "script" not in data:
        raise ValidationError("A script is required")
    project = services.get_pipeline().approve_script(
        g.user_id,
        Script.from_dict(data["script"]),
        topic=topic,
        title=data.get("title"),
        project_id=data.get("projectId"),
    )
    return jsonify(project.to_dict()), 201


@app.get("/projects")
@require_user
def list_projects():
    projects = services.get_pipeline().store.list_by_owner(g.user_id)
    return jsonify([project.to_dict() for project in projects])


@app.get("/projects/<project_id>")
@require_user
def get_project(project_id):
    project = services.get_pipeline().store.get(
        project_id, user_id=g.user_id, full=_truthy(request.args.get("full"))
    )
    return jsonify(project.to_dict())


@app.patch("/projects/<project_id>")
@require_user
def update_project(project_id):
    data = _json_body()
    fields = {}
    for key in ("title", "topic"):
        if key in data:
            fields[key] = _required_text(data, key, f"{key} must be a non-empty string")
    if "script" in data:
        fields["script"] = Script.from_dict(data["script"])
    if "status" in data:
        try:
            fields["status"] = ProjectStatus(data["status"])
        except ValueError as exc:
            raise ValidationError(f"Unknown status: {data['status']!r}") from exc
    if not fields:
        raise ValidationError("Nothing to update")

    store = services.get_pipeline().store
    store.get(project_id, user_id=g.user_id)
    return jsonify(store.update(project_id, **fields).to_dict())


@app.delete("/projects/<project_id>")
@require_user
def delete_project(project_id):
    services.get_pipeline().store.delete(project_id, user_id=g.user_id)
    return Response(status=204)


@app.post("/projects/<project_id>/images")
@require_user
def generate_project_images(project_id):
    data = _json_body()
    scene_numbers = data.get("sceneNumbers")
    if scene_numbers is not None:
        if not isinstance(scene_numbers, list):
            raise ValidationError("sceneNumbers must be a list")
        scene_numbers = [_scene_number(number) for number in scene_numbers]
    style_id = data.get("styleId")
    pipeline = services.get_pipeline()
    pipeline.store.get(project_id, user_id=g.user_id)

    if _truthy(data.get("wait")):
        results = asyncio.run(
            pipeline.generate_images(
                project_id, user_id=g.user_id, style_id=style_id, scene_numbers=scene_numbers
            )
        )
        return jsonify(
            {
                "projectId": project_id,
                "results": [
                    {"sceneNumber": media.scene_number, **media.to_dict()} for media in results
                ],
            }
        )

    result = worker.generate_project_images.delay(project_id, style_id, scene_numbers)
    app.logger.info("Queued image fan-out %s for project %s", result.id, project_id)
    return jsonify({"projectId": project_id, "taskId": result.id, "status": "queued"}), 202


@app.post("/projects/<project_id>/complete")
@require_user
def complete_project(project_id):
    project = services.get_pipeline().complete_project(g.user_id, project_id)
    return jsonify(project.to_dict())


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
