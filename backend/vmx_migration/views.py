from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .models import MigrationQueueItem, MigrationQueueLog, MigrationSelection, ProxmoxHost
from .remote import RemoteCommandError, RemoteConnectionError, node_for_host
from .runner import get_queue_runner
from .scanner import VmxScanner
from .serializers import MigrationQueueItemSerializer, MigrationQueueLogSerializer
from .tasks import run_migration_queue

MIN_VMID = 100
LOG_PAGE_DEFAULT = 200
LOG_PAGE_MAX = 1000


def suggest_vmid(used: set[int], cluster_next: int | None = None) -> int:
    """Lowest id at or above the cluster's suggestion that is above every id already used."""
    candidate = max(MIN_VMID, cluster_next or 0)
    if used:
        candidate = max(candidate, max(used) + 1)
    return candidate


@api_view(["GET"])
@permission_classes([AllowAny])
def health(request):
    return Response({"status": "ok"})


@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def queue_run(request):
    """GET reports whether a run is active; POST starts one.

    ``{"use_worker": true}`` hands the run to the Celery worker instead of this process.
    """
    runner = get_queue_runner()
    if request.method == "GET":
        return Response({"running": runner.is_running}, status=status.HTTP_200_OK)

    if bool(request.data.get("use_worker", False)):
        task = run_migration_queue.delay()
        return Response({"started": True, "task_id": task.id}, status=status.HTTP_202_ACCEPTED)

    if not runner.start():
        return Response(
            {"started": False, "running": True, "error": "A migration run is already active."},
            status=status.HTTP_409_CONFLICT,
        )
    return Response({"started": True, "running": True}, status=status.HTTP_202_ACCEPTED)


@api_view(["POST"])
@permission_classes([AllowAny])
def queue_run_cancel(request):
    runner = get_queue_runner()
    if not runner.cancel():
        return Response({"cancelled": False, "error": "No migration run is active."}, status=status.HTTP_409_CONFLICT)
    return Response({"cancelled": True}, status=status.HTTP_202_ACCEPTED)


@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def queue(request):
    """List queue items (optionally ``?status=``) or enqueue a new one."""
    if request.method == "GET":
        qs = MigrationQueueItem.objects.order_by("created_at", "id")
        wanted = request.query_params.get("status")
        if wanted:
            qs = qs.filter(status__iexact=wanted)
        return Response(MigrationQueueItemSerializer(qs, many=True).data, status=status.HTTP_200_OK)

    serializer = MigrationQueueItemSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    item = serializer.save()
    return Response(MigrationQueueItemSerializer(item).data, status=status.HTTP_201_CREATED)


@api_view(["DELETE"])
@permission_classes([AllowAny])
def queue_item(request, item_id: int):
    """Remove a queue item; its log rows are kept."""
    try:
        item = MigrationQueueItem.objects.get(id=item_id)
    except MigrationQueueItem.DoesNotExist:
        return Response({"error": f"Queue item {item_id} not found."}, status=status.HTTP_404_NOT_FOUND)

    if item.status == MigrationQueueItem.Status.PROCESSING:
        return Response(
            {"error": f"Queue item {item_id} is being processed by the active run."},
            status=status.HTTP_409_CONFLICT,
        )
    item.delete()
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(["GET"])
@permission_classes([AllowAny])
def queue_next_vmid(request):
    """Suggest a VMID that is free on the cluster and not held by an unfinished queue item.

    Only a hint for enqueueing; the executor checks the id again before writing anything.
    When the cluster cannot be asked, the suggestion is based on the queue alone.
    """
    finished = (MigrationQueueItem.Status.DONE, MigrationQueueItem.Status.FAILED)
    used = set(
        MigrationQueueItem.objects.exclude(status__in=finished)
        .filter(vm_id__gt=0)
        .values_list("vm_id", flat=True)
    )

    selection = (
        MigrationSelection.objects.select_related("host", "host__cluster").order_by("-updated_at", "-id").first()
    )
    if selection is None:
        return Response({"vm_id": suggest_vmid(used), "source": "queue-only"}, status=status.HTTP_200_OK)

    try:
        with node_for_host(selection.host) as node:
            used |= node.cluster_vmids()
            cluster_next = node.cluster_next_vmid()
    except (RemoteConnectionError, RemoteCommandError) as exc:
        return Response(
            {"vm_id": suggest_vmid(used), "source": "queue-only", "error": str(exc)},
            status=status.HTTP_200_OK,
        )
    return Response({"vm_id": suggest_vmid(used, cluster_next), "source": "cluster+queue"}, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([AllowAny])
def queue_item_logs(request, item_id: int):
    """Log rows for one item; rows survive deletion of the item itself.

    ``?run_id=`` narrows to one run. ``?take=`` caps the row count (1..1000, default 200);
    ``?newest_first=true`` returns the latest rows first.
    """
    newest_first = request.query_params.get("newest_first", "").lower() in ("1", "true", "yes")
    order = ("-created_at", "-id") if newest_first else ("created_at", "id")
    logs = MigrationQueueLog.objects.filter(item_id=item_id).order_by(*order)
    run_id = request.query_params.get("run_id")
    if run_id:
        logs = logs.filter(run_id=run_id)

    try:
        take = int(request.query_params.get("take", LOG_PAGE_DEFAULT))
    except ValueError:
        return Response({"error": "take must be an integer."}, status=status.HTTP_400_BAD_REQUEST)
    take = min(max(take, 1), LOG_PAGE_MAX)
    return Response(MigrationQueueLogSerializer(logs[:take], many=True).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([AllowAny])
def scan(request):
    """Scan the storage of the current selection; errors are reported, never raised."""
    selection = MigrationSelection.objects.order_by("-updated_at", "-id").first()
    if selection is None or not selection.storage_identifier:
        return Response({"items": [], "error": "No migration selection configured."}, status=status.HTTP_200_OK)

    try:
        results = VmxScanner().scan(selection.cluster_id, selection.host_id, selection.storage_identifier)
    except (RemoteConnectionError, RemoteCommandError, ProxmoxHost.DoesNotExist) as exc:
        return Response({"items": [], "error": str(exc)}, status=status.HTTP_200_OK)

    queued = dict(
        MigrationQueueItem.objects.filter(vmx_path__in=[r.vmx_path for r in results]).values_list("vmx_path", "status")
    )
    items = []
    for result in results:
        payload = result.to_dict()
        payload["status"] = queued.get(result.vmx_path, result.status)
        items.append(payload)
    return Response({"items": items, "storage": selection.storage_identifier}, status=status.HTTP_200_OK)
