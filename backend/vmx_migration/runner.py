"""Single-flight batch runner for the migration queue."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Iterable

from django.conf import settings
from django.db import DatabaseError, connection, transaction
from django.utils import timezone

from .cancellation import CancellationToken, OperationCancelled
from .executor import ProxmoxMigrationExecutor, executor_for_selection
from .models import MigrationQueueItem, MigrationQueueLog, MigrationSelection
from .pve_config import storage_of
from .snapshots import SnapshotError, StorageSnapshotCoordinator, distinct_names

logger = logging.getLogger(__name__)

Level = MigrationQueueLog.Level
Status = MigrationQueueItem.Status


class SelectionMissingError(Exception):
    """Raised when no migration selection (cluster, host, storage) is configured."""


def storages_for_items(item_ids: Iterable[int]) -> list[str]:
    """Distinct target storages referenced by the disk lists of the given items."""
    names: list[str | None] = []
    for disks in MigrationQueueItem.objects.filter(id__in=list(item_ids)).order_by("created_at", "id").values_list(
        "disks", flat=True
    ):
        for disk in disks if isinstance(disks, list) else []:
            names.append(storage_of(disk))
    return distinct_names(names)


class MigrationQueueRunner:
    """Process queued items in two phases: snapshot the sources, then prepare each VM.

    Only one run may be active per runner. ``start`` runs in a background thread and
    ``run`` in the calling one; both return without effect while another run is active.
    """

    def __init__(
        self,
        executor_factory: Callable[[MigrationSelection], ProxmoxMigrationExecutor] = executor_for_selection,
        snapshot_coordinator: StorageSnapshotCoordinator | None = None,
        *,
        wait_timeout: float | None = None,
        poll_interval: float | None = None,
        allow_unsnapshotted: bool | None = None,
    ) -> None:
        self.executor_factory = executor_factory
        self.snapshot_coordinator = snapshot_coordinator
        self.wait_timeout = wait_timeout if wait_timeout is not None else getattr(settings, "MIGRATION_QUEUE_WAIT_SECONDS", 60)
        self.poll_interval = poll_interval or getattr(settings, "MIGRATION_QUEUE_POLL_SECONDS", 1.0)
        self.allow_unsnapshotted = (
            allow_unsnapshotted
            if allow_unsnapshotted is not None
            else getattr(settings, "MIGRATION_ALLOW_UNSNAPSHOTTED_RUN", True)
        )
        self._gate = threading.BoundedSemaphore(1)
        self._active = threading.Event()
        self._thread: threading.Thread | None = None
        self._token: CancellationToken | None = None

    @property
    def is_running(self) -> bool:
        return self._active.is_set()

    def _acquire(self, token: CancellationToken) -> bool:
        if not self._gate.acquire(blocking=False):
            return False
        self._token = token
        self._active.set()
        return True

    def _release(self) -> None:
        self._active.clear()
        self._gate.release()

    def start(self, token: CancellationToken | None = None) -> bool:
        """Begin a run in a background thread; False if one is already active."""
        token = token or CancellationToken()
        if not self._acquire(token):
            logger.info("migration.run busy")
            return False

        thread = threading.Thread(target=self._run_in_thread, args=(token,), name="migration-queue-runner", daemon=True)
        self._thread = thread
        try:
            thread.start()
        except RuntimeError:
            self._release()
            raise
        return True

    def _run_in_thread(self, token: CancellationToken) -> None:
        try:
            self._run(token)
        finally:
            self._release()
            connection.close()

    def run(self, token: CancellationToken | None = None) -> str | None:
        """Execute one run in the calling thread; returns its id, or None when busy."""
        token = token or CancellationToken()
        if not self._acquire(token):
            logger.info("migration.run busy")
            return None
        try:
            return self._run(token)
        finally:
            self._release()

    def cancel(self) -> bool:
        if not self.is_running or self._token is None:
            return False
        self._token.cancel()
        logger.info("migration.run cancel_requested")
        return True

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _log(self, item_id: int | None, step: str, message: str, level: str, run_id: str) -> None:
        MigrationQueueLog.record(item_id, step, message, level, run_id=run_id, logger=logger)

    def _run(self, token: CancellationToken) -> str:
        run_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        logger.info("migration.run start", extra={"run_id": run_id})
        try:
            self._plan_and_process(run_id, token)
        except OperationCancelled:
            self._log(None, "Run", f"Run {run_id} canceled.", Level.WARNING, run_id)
        except SelectionMissingError as exc:
            self._log(None, "Plan", str(exc), Level.ERROR, run_id)
        except Exception as exc:
            logger.exception("migration.run aborted", extra={"run_id": run_id})
            self._log(None, "Run", f"Run {run_id} aborted: {exc}", Level.ERROR, run_id)
        logger.info("migration.run end", extra={"run_id": run_id, "seconds": round(time.monotonic() - started, 3)})
        return run_id

    def _queued_ids(self) -> list[int]:
        return list(
            MigrationQueueItem.objects.filter(status=Status.QUEUED).order_by("created_at", "id").values_list("id", flat=True)
        )

    def _wait_for_items(self, run_id: str, token: CancellationToken) -> list[int]:
        self._log(None, "Plan", f"No queued items yet; waiting up to {self.wait_timeout}s.", Level.INFO, run_id)
        deadline = time.monotonic() + self.wait_timeout
        while time.monotonic() < deadline:
            token.wait(min(self.poll_interval, max(0.0, deadline - time.monotonic())))
            ids = self._queued_ids()
            if ids:
                return ids
        return []

    def _plan_and_process(self, run_id: str, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        selection = (
            MigrationSelection.objects.select_related("cluster", "host", "host__cluster")
            .order_by("-updated_at", "-id")
            .first()
        )
        if selection is None:
            raise SelectionMissingError("No MigrationSelection found; cannot resolve migration context.")

        volume_ids = sorted(
            set(MigrationSelection.objects.exclude(selected_volume=None).values_list("selected_volume_id", flat=True))
        )
        candidates = self._queued_ids()
        if not volume_ids and not candidates:
            candidates = self._wait_for_items(run_id, token)

        # Items enqueued from here on belong to the next run.
        self._log(None, "Plan", f"Run {run_id}: {len(candidates)} candidate item(s).", Level.INFO, run_id)

        self._snapshot(run_id, volume_ids, candidates, token)
        self._process(run_id, selection, candidates, token)

    def _snapshot(self, run_id: str, volume_ids: list[int], candidates: list[int], token: CancellationToken) -> None:
        coordinator = self.snapshot_coordinator
        if coordinator is None:
            self._log(None, "Snapshot", "No snapshot coordinator configured; snapshots skipped.", Level.WARNING, run_id)
            return

        try:
            if volume_ids:
                coordinator.ensure_snapshots_by_volume_ids(volume_ids, token)
                message = f"Snapshots ensured by volume id(s): {', '.join(str(i) for i in volume_ids)}"
            else:
                storages = storages_for_items(candidates) or distinct_names(
                    MigrationSelection.objects.values_list("storage_identifier", flat=True)
                )
                if not storages:
                    if not self.allow_unsnapshotted:
                        raise SnapshotError("No snapshot targets could be determined for this run.")
                    self._log(None, "Snapshot", "No snapshot targets found; snapshots skipped.", Level.WARNING, run_id)
                    return
                coordinator.ensure_snapshots(storages, token)
                message = f"Snapshots ensured by storage name(s): {', '.join(storages)}"
        except OperationCancelled:
            raise
        except Exception as exc:
            for item_id in candidates:
                self._log(item_id, "Snapshot", f"Snapshot step failed; run aborted: {exc}", Level.ERROR, run_id)
            raise

        for item_id in candidates:
            self._log(item_id, "Snapshot", message, Level.INFO, run_id)

    def _claim_next(self, candidates: list[int]) -> MigrationQueueItem | None:
        with transaction.atomic():
            item = (
                MigrationQueueItem.objects.select_for_update()
                .filter(status=Status.QUEUED, id__in=candidates)
                .order_by("created_at", "id")
                .first()
            )
            if item is not None:
                item.transition(Status.PROCESSING)
            return item

    def _set_status(self, item_id: int, status: str) -> None:
        """Move a claimed item out of Processing, falling back to a plain UPDATE on database errors."""
        try:
            with transaction.atomic():
                item = MigrationQueueItem.objects.select_for_update().get(id=item_id)
                item.transition(status)
        except DatabaseError:
            logger.exception("migration.item status_update_failed", extra={"item_id": item_id, "status": status})
            updated = MigrationQueueItem.objects.filter(id=item_id, status=Status.PROCESSING).update(
                status=status, updated_at=timezone.now()
            )
            if not updated:
                raise

    def _process(
        self,
        run_id: str,
        selection: MigrationSelection,
        candidates: list[int],
        token: CancellationToken,
    ) -> None:
        if not candidates:
            return
        executor = self.executor_factory(selection)

        while True:
            token.raise_if_cancelled()
            item = self._claim_next(candidates)
            if item is None:
                break

            self._log(item.id, "Queue", f"Processing start (run {run_id})", Level.INFO, run_id)
            try:
                executor.execute(item, token, run_id=run_id)
            except OperationCancelled:
                self._set_status(item.id, Status.QUEUED)
                self._log(item.id, "Queue", f"Processing canceled (run {run_id}); item re-queued.", Level.WARNING, run_id)
                raise
            except Exception as exc:
                self._set_status(item.id, Status.FAILED)
                self._log(item.id, "Queue", f"Processing failed (run {run_id}): {exc}", Level.ERROR, run_id)
                continue

            self._set_status(item.id, Status.DONE)
            self._log(item.id, "Queue", f"Processing done (run {run_id})", Level.INFO, run_id)


_runner: MigrationQueueRunner | None = None
_runner_lock = threading.Lock()


def get_queue_runner() -> MigrationQueueRunner:
    """Process-wide runner shared by the API and the Celery task."""
    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = MigrationQueueRunner(snapshot_coordinator=StorageSnapshotCoordinator())
        return _runner
