from django.urls import path

from .views import (
    health,
    queue,
    queue_item,
    queue_item_logs,
    queue_next_vmid,
    queue_run,
    queue_run_cancel,
    scan,
)

urlpatterns = [
    path("health", health, name="health"),
    path("queue", queue, name="queue"),
    path("queue/next-vmid", queue_next_vmid, name="queue-next-vmid"),
    path("queue/run", queue_run, name="queue-run"),
    path("queue/run/cancel", queue_run_cancel, name="queue-run-cancel"),
    path("queue/<int:item_id>", queue_item, name="queue-item"),
    path("queue/<int:item_id>/logs", queue_item_logs, name="queue-item-logs"),
    path("scan", scan, name="scan"),
]
