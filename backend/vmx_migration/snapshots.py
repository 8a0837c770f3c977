"""Resolve which NetApp volumes back a migration run and snapshot them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from django.conf import settings

from .cancellation import CancellationToken
from .models import NetappController, SelectedNetappVolume
from .netapp_client import NetappSnapshotClient

logger = logging.getLogger(__name__)

POLICY_PREFER_PRIMARY = "prefer-primary"
POLICY_FAIL = "fail"


class SnapshotError(Exception):
    """Raised when a required pre-migration snapshot cannot be taken."""


@dataclass
class SnapshotTarget:
    storage: str
    controller_id: int
    volume_uuid: str | None = None
    svm: str | None = None
    disabled: bool = False
    volume_id: int | None = None

    @classmethod
    def from_volume(cls, volume: SelectedNetappVolume) -> "SnapshotTarget":
        return cls(
            storage=volume.volume_name,
            controller_id=volume.controller_id,
            volume_uuid=volume.uuid or None,
            svm=volume.vserver or None,
            disabled=volume.disabled,
            volume_id=volume.id,
        )


def distinct_names(names: Iterable[str | None]) -> list[str]:
    """Non-blank names, first spelling wins, compared case-insensitively."""
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        value = (name or "").strip()
        if value and value.lower() not in seen:
            seen.add(value.lower())
            result.append(value)
    return result


class StorageSnapshotCoordinator:
    def __init__(self, client=None, *, label: str | None = None, ambiguous_policy: str | None = None) -> None:
        self.client = client or NetappSnapshotClient()
        self.label = label or getattr(settings, "MIGRATION_SNAPSHOT_LABEL", "Migration")
        self.ambiguous_policy = (
            ambiguous_policy or getattr(settings, "MIGRATION_SNAPSHOT_AMBIGUOUS_POLICY", POLICY_PREFER_PRIMARY)
        ).strip().lower()

    def resolve_storage(self, storage: str) -> SnapshotTarget:
        mappings = list(
            SelectedNetappVolume.objects.select_related("controller")
            .filter(volume_name__iexact=storage)
            .order_by("id")
        )
        if not mappings:
            raise SnapshotError(
                f"No SelectedNetappVolume mapping found for storage '{storage}'. Cannot determine NetApp controller."
            )

        if len(mappings) > 1:
            controllers = sorted({m.controller.hostname for m in mappings})
            if self.ambiguous_policy == POLICY_FAIL:
                raise SnapshotError(f"Storage '{storage}' is mapped on several controllers: {', '.join(controllers)}.")
            logger.warning(
                "snapshot.resolve ambiguous",
                extra={"storage": storage, "controllers": controllers, "policy": self.ambiguous_policy},
            )

        chosen = next((m for m in mappings if m.controller.is_primary), mappings[0])
        target = SnapshotTarget.from_volume(chosen)
        if target.disabled:
            raise SnapshotError(f"Volume '{chosen.volume_name}' for storage '{storage}' is disabled for snapshots.")
        return target

    def ensure_snapshots(self, storage_names: Iterable[str], token: CancellationToken | None = None) -> list[str]:
        """Snapshot every distinct storage; returns the created snapshot names."""
        token = token or CancellationToken()
        names = distinct_names(storage_names)
        if not names:
            logger.info("snapshot.ensure nothing_to_do")
            return []

        targets = [self.resolve_storage(name) for name in names]
        created = [self._create(target, token) for target in targets]
        logger.info("snapshot.ensure done", extra={"storages": names, "count": len(created)})
        return created

    def ensure_snapshots_by_volume_ids(self, ids: Iterable[int], token: CancellationToken | None = None) -> list[str]:
        token = token or CancellationToken()
        wanted = sorted({int(i) for i in ids if i is not None})
        if not wanted:
            logger.info("snapshot.ensure nothing_to_do")
            return []

        volumes = list(SelectedNetappVolume.objects.filter(id__in=wanted).order_by("id"))
        missing = sorted(set(wanted) - {v.id for v in volumes})
        if missing:
            logger.warning("snapshot.ensure unknown_volume_ids", extra={"volume_ids": missing})

        targets = [SnapshotTarget.from_volume(v) for v in volumes]
        for target in targets:
            if target.disabled:
                raise SnapshotError(f"Volume '{target.storage}' (id={target.volume_id}) is disabled for snapshots.")

        created = [self._create(target, token) for target in targets]
        logger.info("snapshot.ensure done", extra={"volume_ids": [t.volume_id for t in targets], "count": len(created)})
        return created

    def _create(self, target: SnapshotTarget, token: CancellationToken) -> str:
        token.raise_if_cancelled()
        controller = NetappController.objects.get(id=target.controller_id)

        if not target.volume_uuid:
            logger.warning(
                "snapshot.create by_name",
                extra={"storage": target.storage, "svm": target.svm, "controller_id": target.controller_id},
            )

        result = self.client.create_snapshot(
            controller,
            volume_name=target.storage,
            volume_uuid=target.volume_uuid,
            svm=target.svm,
            label=self.label,
            snap_locking=False,
            lock_retention_count=None,
            lock_retention_unit=None,
            token=token,
        )
        if result is None or not result.success:
            error = (result.error_message if result else "") or "Unknown error"
            raise SnapshotError(
                f"Snapshot failed for storage '{target.storage}' on controller {target.controller_id}: {error}"
            )

        logger.info(
            "snapshot.create ok",
            extra={"storage": target.storage, "controller_id": target.controller_id, "snapshot": result.snapshot_name},
        )
        return result.snapshot_name
