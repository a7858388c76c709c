from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from celery import Celery
from dotenv import load_dotenv

from . import services

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration Celery
celery_broker = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
celery_backend = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
celery = Celery("videoai_worker", broker=celery_broker, backend=celery_backend)

# Exécution immédiate des tâches (tests et déploiements mono-processus)
if os.getenv("CELERY_TASK_ALWAYS_EAGER") == "1":
    celery.conf.task_always_eager = True


@celery.task(name="videoai_studio.generate_project_images")
def generate_project_images(
    project_id: str,
    style_id: str | None = None,
    scene_numbers: list[int] | None = None,
) -> list[dict[str, Any]]:
    """Tâche Celery qui génère en arrière-plan les images de ``project_id``.

    Chaque scène est enregistrée dès qu'elle est terminée ; la valeur de
    retour n'est qu'un résumé destiné au backend de résultats.
    """

    pipeline = services.get_pipeline()
    results = asyncio.run(
        pipeline.generate_images(project_id, style_id=style_id, scene_numbers=scene_numbers)
    )
    summary = [
        {"scene_number": media.scene_number, "success": media.success, "url": media.url}
        for media in results
    ]
    logger.info(
        "Background fan-out for project %s stored %d scenes",
        project_id,
        sum(1 for item in summary if item["success"]),
    )
    return summary
