"""Minimal ONTAP REST client for creating volume snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import requests
from django.conf import settings
from django.utils import timezone

from .cancellation import CancellationToken
from .credentials import resolve_secret
from .models import NetappController

logger = logging.getLogger(__name__)

RETENTION_UNITS = {
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


class SnapshotClientError(Exception):
    """Raised for transport or API failures talking to a storage controller."""


@dataclass
class SnapshotResult:
    success: bool
    snapshot_name: str = ""
    error_message: str = ""


def snapshot_name(label: str, when: datetime) -> str:
    return f"BP_{label}-{when.strftime('%Y-%m-%d-%H_%M-%S')}"


def lock_expiry(created: datetime, count: int | None, unit: str | None) -> datetime:
    if not count or not unit:
        raise SnapshotClientError("Snapshot locking requested but no retention count/unit supplied.")
    step = RETENTION_UNITS.get(unit.strip().lower())
    if step is None:
        raise SnapshotClientError(f"Unknown retention unit '{unit}'.")
    expiry = created + step * count
    if expiry <= created:
        raise SnapshotClientError(f"Expiry time '{expiry:%Y-%m-%d %H:%M:%S}' must be in the future.")
    return expiry


class NetappSnapshotClient:
    """Create snapshots through ``/api/storage/volumes/<uuid>/snapshots``."""

    def __init__(
        self,
        *,
        verify_tls: bool | None = None,
        timeout: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.verify_tls = verify_tls if verify_tls is not None else getattr(settings, "NETAPP_VERIFY_TLS", False)
        self.timeout = timeout or getattr(settings, "NETAPP_TIMEOUT_SECONDS", 60)
        self.session = session or requests.Session()

    @staticmethod
    def base_url(controller: NetappController) -> str:
        return f"https://{controller.ip_address or controller.hostname}/api/"

    def _request(
        self,
        method: str,
        controller: NetappController,
        path: str,
        token: CancellationToken,
        **kwargs: Any,
    ) -> dict[str, Any]:
        token.raise_if_cancelled()
        url = self.base_url(controller) + path
        try:
            response = self.session.request(
                method,
                url,
                auth=(controller.username, resolve_secret(controller.password)),
                verify=self.verify_tls,
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SnapshotClientError(f"{method} {url} failed: {exc}") from exc

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise SnapshotClientError(f"{method} {url} returned invalid JSON.") from exc
        return payload if isinstance(payload, dict) else {}

    def lookup_volume_uuid(
        self,
        controller: NetappController,
        volume_name: str,
        svm: str | None,
        token: CancellationToken,
    ) -> str:
        params = {"name": volume_name, "fields": "uuid,svm.name"}
        if svm:
            params["svm.name"] = svm
        payload = self._request("GET", controller, "storage/volumes", token, params=params)
        records = payload.get("records") or []
        if not records or not records[0].get("uuid"):
            raise SnapshotClientError(f"Volume '{volume_name}' not found on {controller.hostname}.")
        return records[0]["uuid"]

    def create_snapshot(
        self,
        controller: NetappController,
        *,
        volume_name: str,
        volume_uuid: str | None = None,
        svm: str | None = None,
        label: str,
        snap_locking: bool = False,
        lock_retention_count: int | None = None,
        lock_retention_unit: str | None = None,
        token: CancellationToken | None = None,
    ) -> SnapshotResult:
        token = token or CancellationToken()
        created = timezone.localtime()
        name = snapshot_name(label, created)
        body: dict[str, Any] = {"name": name, "snapmirror_label": label}

        try:
            if snap_locking:
                body["expiry_time"] = lock_expiry(created, lock_retention_count, lock_retention_unit).isoformat()
            uuid = volume_uuid or self.lookup_volume_uuid(controller, volume_name, svm, token)
            self._request("POST", controller, f"storage/volumes/{uuid}/snapshots", token, json=body)
        except SnapshotClientError as exc:
            logger.error(
                "netapp.snapshot failed",
                extra={"controller": controller.hostname, "volume": volume_name, "error": str(exc)},
            )
            return SnapshotResult(success=False, error_message=str(exc))

        logger.info(
            "netapp.snapshot created",
            extra={"controller": controller.hostname, "volume": volume_name, "snapshot": name},
        )
        return SnapshotResult(success=True, snapshot_name=name)
