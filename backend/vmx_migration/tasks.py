from __future__ import annotations

import logging
from typing import Any

from celery import shared_task

from .runner import get_queue_runner

logger = logging.getLogger(__name__)


@shared_task(name="vmx_migration.run_migration_queue", max_retries=0, acks_late=True)
def run_migration_queue() -> dict[str, Any]:
    """Run the migration queue once inside the worker process."""
    runner = get_queue_runner()
    run_id = runner.run()
    if run_id is None:
        logger.info("migration.task busy")
        return {"result": "busy"}

    logger.info("migration.task done", extra={"run_id": run_id})
    return {"result": "completed", "run_id": run_id}
